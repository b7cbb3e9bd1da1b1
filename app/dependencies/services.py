from __future__ import annotations

from fastapi import Depends

from app.services import BookingService, CommissionService, InvoiceService, PaymentLedger
from app.services.store import InMemoryStore, get_store


def get_store_dependency() -> InMemoryStore:
    return get_store()


def get_booking_service(
    store: InMemoryStore = Depends(get_store_dependency),
) -> BookingService:
    return BookingService(store)


def get_invoice_service(
    store: InMemoryStore = Depends(get_store_dependency),
) -> InvoiceService:
    return InvoiceService(store)


def get_payment_ledger(
    store: InMemoryStore = Depends(get_store_dependency),
) -> PaymentLedger:
    return PaymentLedger(store)


def get_commission_service(
    store: InMemoryStore = Depends(get_store_dependency),
) -> CommissionService:
    return CommissionService(store)
