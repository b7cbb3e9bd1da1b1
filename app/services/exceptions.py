from __future__ import annotations


class ServiceError(Exception):
    """Base exception for service layer failures."""

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class NotFoundError(ServiceError):
    """Raised when an invoice, booking, stylist or catalog item is absent."""

    def __init__(self, entity: str, identifier: str, *, cause: Exception | None = None):
        super().__init__(f"{entity} {identifier} not found", cause=cause)
        self.entity = entity
        self.identifier = identifier


class InvalidStateTransitionError(ServiceError):
    """Raised when a lifecycle change is not allowed from the current state."""

    def __init__(
        self,
        message: str,
        *,
        current_state: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.current_state = current_state


class ConflictError(ServiceError):
    """Raised when a stylist time assignment overlaps an existing booking."""

    def __init__(
        self,
        message: str,
        *,
        booking_id: str | None = None,
        customer_name: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.booking_id = booking_id
        self.customer_name = customer_name


class ValidationFailureError(ServiceError):
    """Raised when input breaks a business rule (quantities, discounts, payments)."""


class InsufficientStockError(ServiceError):
    def __init__(
        self,
        product_id: str,
        available: int,
        requested: int,
        *,
        cause: Exception | None = None,
    ):
        super().__init__(
            f"Not enough stock for product {product_id}: {available} < {requested}",
            cause=cause,
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class StorageFailureError(ServiceError):
    """Raised when the persistence layer fails or a unit of work cannot reconcile."""

