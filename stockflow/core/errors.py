"""
Domain errors raised by the stock ledger and the document workflows.

Each error carries a stable ``code`` and the HTTP status the API maps it to.
Services raise them; ``observability.domain_exception_handler`` renders them
with the standard error envelope.
"""
from typing import Any


class StockflowError(Exception):
    code = "stockflow_error"
    status_code = 400

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFound(StockflowError):
    code = "not_found"
    status_code = 404


class InvalidStateTransition(StockflowError):
    code = "invalid_state_transition"
    status_code = 409

    def __init__(self, document_type: str, current_state: str, target_state: str):
        super().__init__(
            f"Cannot transition {document_type} from '{current_state}' to '{target_state}'",
            details=[
                {
                    "document_type": document_type,
                    "current_state": current_state,
                    "target_state": target_state,
                }
            ],
        )
        self.document_type = document_type
        self.current_state = current_state
        self.target_state = target_state


class PermissionDenied(StockflowError):
    code = "permission_denied"
    status_code = 403


class QuantityOutOfRange(StockflowError):
    code = "quantity_out_of_range"
    status_code = 400


class InsufficientStock(StockflowError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, item_id: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for item {item_id}: available {available}, requested {requested}",
            details=[{"item_id": item_id, "available": available, "requested": requested}],
        )
        self.item_id = item_id
        self.available = available
        self.requested = requested


class ValidationError(StockflowError):
    code = "validation_error"
    status_code = 422


class StockConflict(StockflowError):
    """current_stock changed between the locked read and the write; retry the call."""

    code = "stock_conflict"
    status_code = 409


class LedgerInvariantError(RuntimeError):
    """A denormalized value disagrees with its source of truth. Always a bug."""
