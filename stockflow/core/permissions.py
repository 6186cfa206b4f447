from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from stockflow.core.security_current import Actor, get_current_actor

OVERRIDE_SEGREGATION = "workflow.override_segregation"

ROLE_PERMISSION_MATRIX: dict[str, set[str]] = {
    "admin": {"*"},
    "manager": {
        "stock.read",
        "audit.view",
        "purchase.read",
        "purchase.manager_approve",
        "inbound.read",
        "outbound.read",
        "outbound.approve",
        "outbound.reject",
        "adjustment.read",
        "adjustment.approve",
        "opname.read",
        "opname.manage",
        "opname.finalize",
        "return.read",
        "return.approve",
    },
    "purchasing": {
        "stock.read",
        "purchase.read",
        "purchase.create",
        "purchase.confirm",
        "purchase.issue_po",
        "inbound.read",
        "inbound.create",
        "return.read",
        "return.create",
        "return.ship",
        "return.complete",
    },
    "finance": {
        "stock.read",
        "purchase.read",
        "purchase.payment",
        "inbound.read",
    },
    "warehouse": {
        "stock.read",
        "inbound.read",
        "inbound.create",
        "inbound.verify",
        "inbound.resolve",
        "outbound.read",
        "outbound.create",
        "outbound.release",
        "adjustment.read",
        "adjustment.create",
        "opname.read",
        "opname.count",
        "return.read",
        "return.create",
        "return.ship",
        "return.complete",
    },
    "auditor": {
        "stock.read",
        "audit.view",
        "adjustment.read",
        "opname.read",
        "opname.manage",
        "opname.count",
    },
    "staff": {
        "stock.read",
        "purchase.read",
        "purchase.create",
        "outbound.read",
        "outbound.create",
        "adjustment.read",
        "adjustment.create",
        "opname.read",
        "opname.count",
        "return.read",
        "return.create",
    },
}

KNOWN_ROLES = frozenset(ROLE_PERMISSION_MATRIX)


def role_permissions(role: str) -> set[str]:
    normalized = (role or "").strip().lower()
    return set(ROLE_PERMISSION_MATRIX.get(normalized, set()))


def has_permission(*, role: str, permission: str) -> bool:
    permissions = role_permissions(role)
    if "*" in permissions:
        return True
    return permission in permissions


def require_permission(permission: str) -> Callable[[Actor], Actor]:
    normalized_permission = (permission or "").strip().lower()
    if not normalized_permission:
        raise ValueError("Permission key is required")

    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not has_permission(role=actor.role, permission=normalized_permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permission for this action",
            )
        return actor

    return dependency
