from types import SimpleNamespace

import pytest

from stockflow.core.errors import PermissionDenied
from stockflow.core.security_current import Actor
from stockflow.services.approval_gate import ApprovalGate, not_approver, not_creator, requires_permission

MANAGER = Actor(id="u_mgr", username="mgr", role="manager")
OTHER_MANAGER = Actor(id="u_mgr2", username="mgr2", role="manager")
WAREHOUSE = Actor(id="u_wh", username="wh", role="warehouse")
ADMIN = Actor(id="u_admin", username="admin", role="admin")

GATE = ApprovalGate(
    "outbound",
    {
        "APPROVED": (requires_permission("outbound.approve"), not_creator),
        "RELEASED": (requires_permission("outbound.release"), not_creator, not_approver),
        ("APPROVED", "REJECTED"): (requires_permission("outbound.reject"),),
        "REJECTED": (requires_permission("outbound.reject"), not_creator),
    },
)


def _doc(created_by: str, approved_by: str | None = None, status: str = "DRAFT"):
    return SimpleNamespace(id="out_1", status=status, created_by_user_id=created_by, approved_by_user_id=approved_by)


def test_permission_and_segregation_both_apply():
    document = _doc(created_by=MANAGER.id)

    assert not GATE.can_transition(MANAGER, document, "DRAFT", "APPROVED").allowed
    assert GATE.can_transition(OTHER_MANAGER, document, "DRAFT", "APPROVED").allowed

    denied = GATE.can_transition(WAREHOUSE, document, "DRAFT", "APPROVED")
    assert not denied.allowed
    assert "outbound.approve" in denied.reason


def test_approver_cannot_release():
    document = _doc(created_by="u_staff", approved_by=WAREHOUSE.id, status="APPROVED")
    assert not GATE.can_transition(WAREHOUSE, document, "APPROVED", "RELEASED").allowed

    other_clerk = Actor(id="u_wh2", username="wh2", role="warehouse")
    assert GATE.can_transition(other_clerk, document, "APPROVED", "RELEASED").allowed


def test_edge_rule_takes_precedence_over_target_rule():
    document = _doc(created_by=MANAGER.id, status="APPROVED")

    # Edge rule has no not_creator check.
    assert GATE.can_transition(MANAGER, document, "APPROVED", "REJECTED").allowed
    assert not GATE.can_transition(MANAGER, document, "DRAFT", "REJECTED").allowed


def test_missing_rule_denies():
    decision = GATE.can_transition(ADMIN, _doc(created_by="x"), "RELEASED", "DRAFT")
    assert not decision.allowed
    assert "No approval rule" in decision.reason


def test_override_permission_bypasses_segregation():
    document = _doc(created_by=ADMIN.id, approved_by=ADMIN.id, status="APPROVED")
    assert not_creator(ADMIN, document) is None
    assert not_approver(ADMIN, document) is None
    assert GATE.can_transition(ADMIN, document, "APPROVED", "RELEASED").allowed


def test_ensure_raises_permission_denied_with_context():
    document = _doc(created_by=MANAGER.id)
    with pytest.raises(PermissionDenied) as exc_info:
        GATE.ensure(MANAGER, document, "DRAFT", "APPROVED")

    assert exc_info.value.status_code == 403
    assert exc_info.value.details[0]["document_id"] == "out_1"
    assert exc_info.value.details[0]["to_state"] == "APPROVED"
