from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List

from app.schemas.billing import Invoice, InvoicePayment, PaymentRequest
from app.schemas.settings import InvoiceSettings
from app.services.calculations import payment_status_for, to_money
from app.services.exceptions import (
    InvalidStateTransitionError,
    NotFoundError,
    ValidationFailureError,
)
from app.services.store import InMemoryStore, get_store, unit_of_work

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PaymentLedger:
    """Append-only payment history and the paid/due figures derived from it.

    Payments are never edited or removed. A correction is a new entry with a
    negative amount, which may bring the invoice back to ``partial``,
    ``unpaid`` or ``refunded``.
    """

    def __init__(
        self,
        store: InMemoryStore | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store or get_store()
        self._clock = clock or _utc_now

    async def record_payment(self, invoice_id: str, request: PaymentRequest) -> Invoice:
        amount = to_money(request.amount)
        logger.info("Recording %s payment of %s on invoice %s", request.payment_method, amount, invoice_id)

        async with self._store.invoice_locks.get(invoice_id):
            async with unit_of_work(self._store, "record payment"):
                invoice = await self._require_header(invoice_id)
                if invoice.status in ("cancelled", "void"):
                    raise InvalidStateTransitionError(
                        "Cannot record payment on cancelled/void invoice",
                        current_state=invoice.status,
                    )
                if invoice.payment_status == "written_off":
                    raise InvalidStateTransitionError(
                        "Cannot record payment on a written-off invoice",
                        current_state=invoice.payment_status,
                    )
                if amount == 0:
                    raise ValidationFailureError("Payment amount cannot be zero")

                settings = await self._store.settings.get()
                new_amount_paid = invoice.amount_paid + amount
                self._check_amount(invoice, amount, new_amount_paid, settings)

                now = self._clock()
                await self._store.invoices.add_payment(
                    InvoicePayment(
                        payment_id=self._store.invoices.next_child_id("PAY"),
                        invoice_id=invoice_id,
                        amount=amount,
                        payment_method=request.payment_method,
                        payment_reference=request.payment_reference,
                        notes=request.notes,
                        processed_by=request.processed_by,
                        payment_date=now,
                    )
                )

                new_status = payment_status_for(
                    new_amount_paid, invoice.total, previously_paid=invoice.amount_paid
                )
                await self._store.invoices.save(
                    invoice.model_copy(
                        update={
                            "amount_paid": new_amount_paid,
                            "amount_due": invoice.total - new_amount_paid,
                            "payment_status": new_status,
                            "updated_at": now,
                        }
                    )
                )

                if new_status == "paid" and settings.auto_approve_commission_on_payment:
                    await self._approve_on_payment(invoice, now)

        logger.info("Invoice %s is now %s", invoice_id, new_status)
        return await self._store.invoices.get(invoice_id)

    async def list_payments(self, invoice_id: str) -> List[InvoicePayment]:
        await self._require_header(invoice_id)
        return await self._store.invoices.list_payments(invoice_id)

    async def write_off(self, invoice_id: str) -> Invoice:
        """Close the outstanding balance without recording money received."""

        async with self._store.invoice_locks.get(invoice_id):
            async with unit_of_work(self._store, "write off invoice"):
                invoice = await self._require_header(invoice_id)
                if invoice.status not in ("finalized", "sent"):
                    raise InvalidStateTransitionError(
                        "Only finalized invoices can be written off",
                        current_state=invoice.status,
                    )
                if invoice.amount_due <= 0:
                    raise InvalidStateTransitionError(
                        "Invoice has no outstanding balance",
                        current_state=invoice.payment_status,
                    )
                await self._store.invoices.save(
                    invoice.model_copy(
                        update={"payment_status": "written_off", "updated_at": self._clock()}
                    )
                )
        logger.warning("Invoice %s written off with %s outstanding", invoice_id, invoice.amount_due)
        return await self._store.invoices.get(invoice_id)

    @staticmethod
    def _check_amount(
        invoice: Invoice,
        amount: Decimal,
        new_amount_paid: Decimal,
        settings: InvoiceSettings,
    ) -> None:
        if new_amount_paid < 0:
            raise ValidationFailureError(
                f"Refund of {-amount} exceeds the {invoice.amount_paid} paid on this invoice"
            )
        if amount > 0 and new_amount_paid > invoice.total and settings.overpayment_policy == "reject":
            raise ValidationFailureError(
                f"Payment of {amount} exceeds the amount due of {invoice.amount_due}"
            )

    async def _approve_on_payment(self, invoice: Invoice, now: datetime) -> None:
        commission = await self._store.invoices.get_commission(invoice.invoice_id)
        if commission is not None and commission.payment_status in ("pending", "approved"):
            await self._store.invoices.save_commission(
                commission.model_copy(update={"payment_status": "approved", "approved_at": now})
            )
            logger.info("Commission for invoice %s auto-approved", invoice.invoice_id)

        if invoice.booking_id:
            booking = await self._store.bookings.get(invoice.booking_id)
            if booking is not None:
                await self._store.bookings.save(
                    booking.model_copy(
                        update={"payment_status": "paid", "payment_date": now, "updated_at": now}
                    )
                )

    async def _require_header(self, invoice_id: str) -> Invoice:
        invoice = await self._store.invoices.get_header(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice
