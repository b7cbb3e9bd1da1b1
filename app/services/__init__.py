"""Service package public API definitions.

Service implementations are imported lazily when first accessed so that
``app.services.exceptions`` and ``app.services.store`` can be imported on
their own (the store depends on the exceptions module, and every service
depends on the store).
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "BookingService",
    "CommissionService",
    "InvoiceService",
    "PaymentLedger",
]

_SERVICE_MODULES = {
    "BookingService": "appointment",
    "CommissionService": "commission",
    "InvoiceService": "invoice",
    "PaymentLedger": "payments",
}


def __getattr__(name: str) -> Any:
    if name not in _SERVICE_MODULES:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module = import_module(f".{_SERVICE_MODULES[name]}", __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .appointment import BookingService as BookingService
    from .commission import CommissionService as CommissionService
    from .invoice import InvoiceService as InvoiceService
    from .payments import PaymentLedger as PaymentLedger
