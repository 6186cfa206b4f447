"""
Actor eligibility checks shared by every document workflow.

Each workflow builds an ``ApprovalGate`` mapping target states (or explicit
``(from_state, to_state)`` edges, which take precedence) to a tuple of
predicates. A predicate returns ``None`` when the actor passes, or a deny
reason. The gate only decides; it never touches the document.
"""
import enum
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from stockflow.core.errors import PermissionDenied
from stockflow.core.permissions import OVERRIDE_SEGREGATION, has_permission
from stockflow.core.security_current import Actor


class Approvable(Protocol):
    id: str
    status: str
    created_by_user_id: str


class Releasable(Approvable, Protocol):
    approved_by_user_id: Optional[str]


Predicate = Callable[[Actor, Any], Optional[str]]


def _state(value: Any) -> str:
    return value.value if isinstance(value, enum.Enum) else str(value)


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: str | None = None


def holds_override(actor: Actor) -> bool:
    return has_permission(role=actor.role, permission=OVERRIDE_SEGREGATION)


def requires_permission(permission: str) -> Predicate:
    def check(actor: Actor, document: Any) -> Optional[str]:
        if has_permission(role=actor.role, permission=permission):
            return None
        return f"Role '{actor.role}' lacks permission '{permission}'"

    check.__name__ = f"requires_permission[{permission}]"
    return check


def not_creator(actor: Actor, document: Approvable) -> Optional[str]:
    if actor.id != document.created_by_user_id or holds_override(actor):
        return None
    return "The creator of a document cannot approve or decide on it"


def not_approver(actor: Actor, document: Releasable) -> Optional[str]:
    if document.approved_by_user_id is None or actor.id != document.approved_by_user_id:
        return None
    if holds_override(actor):
        return None
    return "The approver of a document cannot also release it"


class ApprovalGate:
    def __init__(
        self,
        document_type: str,
        rules: Mapping[str | tuple[str, str], tuple[Predicate, ...]],
    ):
        self.document_type = document_type
        self._rules: dict[str | tuple[str, str], tuple[Predicate, ...]] = {}
        for key, checks in rules.items():
            if isinstance(key, tuple):
                key = (_state(key[0]), _state(key[1]))
            else:
                key = _state(key)
            self._rules[key] = tuple(checks)

    def can_transition(self, actor: Actor, document: Any, from_state: str, to_state: str) -> GateDecision:
        checks = self._rules.get((_state(from_state), _state(to_state)))
        if checks is None:
            checks = self._rules.get(_state(to_state))
        if checks is None:
            return GateDecision(
                allowed=False,
                reason=f"No approval rule for {self.document_type} transition to '{_state(to_state)}'",
            )
        for check in checks:
            reason = check(actor, document)
            if reason:
                return GateDecision(allowed=False, reason=reason)
        return GateDecision(allowed=True)

    def ensure(self, actor: Actor, document: Any, from_state: str, to_state: str) -> None:
        decision = self.can_transition(actor, document, from_state, to_state)
        if not decision.allowed:
            raise PermissionDenied(
                decision.reason or "Transition not permitted",
                details=[
                    {
                        "document_type": self.document_type,
                        "document_id": getattr(document, "id", None),
                        "from_state": _state(from_state),
                        "to_state": _state(to_state),
                        "actor_id": actor.id,
                    }
                ],
            )
