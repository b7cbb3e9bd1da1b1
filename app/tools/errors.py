from fastapi import HTTPException

from app.services.exceptions import (
    ConflictError,
    InsufficientStockError,
    InvalidStateTransitionError,
    NotFoundError,
    ServiceError,
    StorageFailureError,
    ValidationFailureError,
)

_STATUS_CODES = (
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidStateTransitionError, 409),
    (InsufficientStockError, 409),
    (ValidationFailureError, 422),
    (StorageFailureError, 503),
)


def http_error(exc: ServiceError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            break
    else:
        status_code = 500

    detail = {"error": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, ConflictError):
        detail["booking_id"] = exc.booking_id
        detail["customer_name"] = exc.customer_name
    return HTTPException(status_code=status_code, detail=detail)
