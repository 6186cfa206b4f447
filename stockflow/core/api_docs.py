from stockflow.core.errors import (
    InsufficientStock,
    InvalidStateTransition,
    NotFound,
    PermissionDenied,
    QuantityOutOfRange,
    StockConflict,
    StockflowError,
    ValidationError,
)
from stockflow.schemas.common import ErrorOut


_DOMAIN_ERRORS: tuple[tuple[type[StockflowError], str], ...] = (
    (QuantityOutOfRange, "Quantity is zero, negative or above what the document allows"),
    (PermissionDenied, "Actor may not perform this transition on this document"),
    (NotFound, "Document, item or master record not found"),
    (InvalidStateTransition, "Document is not in a state that allows this transition"),
    (InsufficientStock, "Movement would take an item's stock below zero"),
    (StockConflict, "Stock changed concurrently; retry the request"),
    (ValidationError, "Request is well-formed but violates a business rule"),
)

# Raised outside the domain layer: auth dependencies, request parsing, the rate limiter.
_HTTP_ERRORS: dict[int, tuple[str, str]] = {
    401: ("unauthorized", "Missing or invalid bearer token"),
    403: ("forbidden", "Role lacks the permission this endpoint requires"),
    422: ("validation_error", "Request body or query failed validation"),
    429: ("rate_limited", "Too many failed login attempts"),
    500: ("internal_error", "Internal server error"),
}


def _envelope(code: str, message: str) -> dict:
    return {
        "error": {
            "code": code,
            "message": message,
            "request_id": "request-id",
            "path": "/example",
            "details": None,
        }
    }


def error_examples(status_code: int) -> dict[str, dict]:
    """Every error code an endpoint can answer with for one HTTP status."""
    examples: dict[str, dict] = {}
    if status_code in _HTTP_ERRORS:
        code, message = _HTTP_ERRORS[status_code]
        examples[code] = {"summary": message, "value": _envelope(code, message)}
    for error_class, message in _DOMAIN_ERRORS:
        if error_class.status_code == status_code:
            examples[error_class.code] = {"summary": message, "value": _envelope(error_class.code, message)}
    if not examples:
        examples["http_error"] = {"summary": "HTTP error", "value": _envelope("http_error", "HTTP error")}
    return examples


def error_responses(*status_codes: int) -> dict[int, dict]:
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        examples = error_examples(status_code)
        responses[status_code] = {
            "model": ErrorOut,
            "description": " | ".join(sorted(examples)),
            "content": {"application/json": {"examples": examples}},
        }
    return responses
