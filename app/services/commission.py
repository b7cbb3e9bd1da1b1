from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable, List, Sequence

from app.schemas.billing import InvoiceCommission
from app.schemas.commission import (
    CommissionLine,
    CommissionReport,
    CommissionSummary,
    CommissionSummaryResponse,
    MarkCommissionsPaidResponse,
    StylistCommissionSummary,
)
from app.services.calculations import ZERO
from app.services.exceptions import (
    InvalidStateTransitionError,
    NotFoundError,
    ValidationFailureError,
)
from app.services.store import InMemoryStore, get_store, service_date_in_range, unit_of_work

logger = logging.getLogger(__name__)

_REPORTABLE_STATUSES = ("finalized", "sent")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CommissionService:
    """Stylist commission reporting, approval and payroll payout."""

    def __init__(
        self,
        store: InMemoryStore | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store or get_store()
        self._clock = clock or _utc_now

    async def get_report(self, stylist_id: str, start_date: date, end_date: date) -> CommissionReport:
        logger.info("Commission report for %s from %s to %s", stylist_id, start_date, end_date)
        if end_date < start_date:
            raise ValidationFailureError("The report end date is before its start date")

        lines: List[CommissionLine] = []
        for commission in await self._store.invoices.list_commissions(stylist_id):
            invoice = await self._store.invoices.get_header(commission.invoice_id)
            if invoice is None or invoice.status not in _REPORTABLE_STATUSES:
                continue
            if not service_date_in_range(invoice.service_date, start_date, end_date):
                continue
            lines.append(
                CommissionLine(
                    invoice_id=invoice.invoice_id,
                    invoice_number=invoice.invoice_number,
                    customer_name=invoice.customer_name,
                    service_date=invoice.service_date,
                    invoice_total=invoice.total,
                    invoice_payment_status=invoice.payment_status,
                    services_commission=commission.services_commission,
                    products_commission=commission.products_commission,
                    total_commission=commission.total_commission,
                    payment_status=commission.payment_status,
                )
            )
        lines.sort(key=lambda line: (line.service_date, line.invoice_id), reverse=True)

        return CommissionReport(
            stylist_id=stylist_id,
            start_date=start_date,
            end_date=end_date,
            summary=_summarize(lines),
            commissions=lines,
        )

    async def summary(self, start_date: date, end_date: date) -> CommissionSummaryResponse:
        summaries = []
        for stylist in await self._store.catalog.list_stylists():
            report = await self.get_report(stylist.stylist_id, start_date, end_date)
            summaries.append(
                StylistCommissionSummary(
                    stylist_id=stylist.stylist_id,
                    stylist_name=stylist.name,
                    **report.summary.model_dump(),
                )
            )
        return CommissionSummaryResponse(start_date=start_date, end_date=end_date, summaries=summaries)

    async def approve(self, invoice_id: str, approved_by: str | None = None) -> InvoiceCommission:
        async with unit_of_work(self._store, "approve commission"):
            commission = await self._require_commission(invoice_id)
            if commission.payment_status != "pending":
                raise InvalidStateTransitionError(
                    f"Commission for invoice {invoice_id} is already {commission.payment_status}",
                    current_state=commission.payment_status,
                )
            approved = commission.model_copy(
                update={
                    "payment_status": "approved",
                    "approved_by": approved_by,
                    "approved_at": self._clock(),
                }
            )
            await self._store.invoices.save_commission(approved)
        logger.info("Commission for invoice %s approved by %s", invoice_id, approved_by)
        return approved

    async def mark_paid(
        self,
        invoice_ids: Sequence[str],
        payment_reference: str | None = None,
        payment_date: datetime | None = None,
    ) -> MarkCommissionsPaidResponse:
        """Mark a payroll batch paid; either every invoice in it changes or none do."""

        if not invoice_ids:
            raise ValidationFailureError("invoice_ids must not be empty")
        paid_on = payment_date or self._clock()
        reference = payment_reference or f"PAYROLL-{int(paid_on.timestamp() * 1000)}"
        unique_ids = list(dict.fromkeys(invoice_ids))

        async with unit_of_work(self._store, "mark commissions paid"):
            for invoice_id in unique_ids:
                commission = await self._require_commission(invoice_id)
                if commission.payment_status == "cancelled":
                    raise InvalidStateTransitionError(
                        f"Commission for invoice {invoice_id} is cancelled",
                        current_state=commission.payment_status,
                    )
                invoice = await self._store.invoices.get_header(invoice_id)
                if invoice is None:
                    raise NotFoundError("Invoice", invoice_id)

                await self._store.invoices.save_commission(
                    commission.model_copy(
                        update={
                            "payment_status": "paid",
                            "payment_reference": reference,
                            "payment_date": paid_on,
                        }
                    )
                )
                await self._store.invoices.save(
                    invoice.model_copy(
                        update={"commission_paid": True, "commission_paid_date": paid_on}
                    )
                )

        logger.info("Marked %d commissions paid under %s", len(unique_ids), reference)
        return MarkCommissionsPaidResponse(
            count=len(unique_ids),
            payment_reference=reference,
            payment_date=paid_on,
        )

    async def _require_commission(self, invoice_id: str) -> InvoiceCommission:
        commission = await self._store.invoices.get_commission(invoice_id)
        if commission is None:
            raise NotFoundError("Commission for invoice", invoice_id)
        return commission


def _summarize(lines: List[CommissionLine]) -> CommissionSummary:
    return CommissionSummary(
        total_invoices=len(lines),
        total_sales=sum((line.invoice_total for line in lines), ZERO),
        services_commission=sum((line.services_commission for line in lines), ZERO),
        products_commission=sum((line.products_commission for line in lines), ZERO),
        total_commission=sum((line.total_commission for line in lines), ZERO),
        paid_commission=sum(
            (line.total_commission for line in lines if line.payment_status == "paid"), ZERO
        ),
        pending_commission=sum(
            (
                line.total_commission
                for line in lines
                if line.payment_status in ("pending", "approved")
            ),
            ZERO,
        ),
    )
