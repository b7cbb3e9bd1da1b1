from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional

from app.schemas.appointment import Booking
from app.schemas.billing import (
    Discount,
    Invoice,
    InvoiceCommission,
    InvoiceCreateRequest,
    InvoiceListRequest,
    InvoiceListResponse,
    InvoiceProductLine,
    InvoiceServiceLine,
    InvoiceSummary,
    ProductLineRequest,
    ServiceLineRequest,
)
from app.schemas.catalog import ProductItem, ServiceItem
from app.schemas.settings import InvoiceSettings
from app.services.calculations import (
    ZERO,
    LineAmounts,
    invoice_totals,
    line_amounts,
    payment_status_for,
    validate_line,
)
from app.services.exceptions import (
    ConflictError,
    InsufficientStockError,
    InvalidStateTransitionError,
    NotFoundError,
    StorageFailureError,
    ValidationFailureError,
)
from app.services.rates import RateResolver
from app.services.store import (
    InMemoryStore,
    get_store,
    service_date_in_range,
    unit_of_work,
)

logger = logging.getLogger(__name__)

_TERMINAL_STATUSES = ("cancelled", "void")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_invoice_number(settings: InvoiceSettings, number: int, year: int) -> str:
    """Render e.g. ``INV-2025-00001`` from the configured template."""

    return (
        settings.invoice_number_format.replace("{PREFIX}", settings.invoice_number_prefix)
        .replace("{YEAR}", str(year))
        .replace("{NUMBER}", str(number).zfill(settings.invoice_number_padding))
    )


@dataclass
class _PreparedService:
    request: ServiceLineRequest
    item: ServiceItem
    unit_price: Decimal
    override: Optional[Decimal]
    amounts: LineAmounts


@dataclass
class _PreparedProduct:
    request: ProductLineRequest
    item: ProductItem
    unit_price: Decimal
    amounts: LineAmounts


class InvoiceService:
    """Draft, finalize, send, cancel and void invoices."""

    def __init__(
        self,
        store: InMemoryStore | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store or get_store()
        self._clock = clock or _utc_now

    async def create(self, request: InvoiceCreateRequest) -> Invoice:
        logger.info("Creating draft invoice for customer %s", request.user_id)
        async with unit_of_work(self._store, "create invoice"):
            invoice_id = self._store.invoices.new_invoice_id()
            await self._write_draft(invoice_id, request, created_at=self._clock())
        return await self.get(invoice_id)

    async def update_draft(self, invoice_id: str, request: InvoiceCreateRequest) -> Invoice:
        async with self._store.invoice_locks.get(invoice_id):
            async with unit_of_work(self._store, "update invoice"):
                existing = await self._require_header(invoice_id)
                self._ensure_draft(existing, "edit")
                await self._store.invoices.delete_lines(invoice_id)
                await self._write_draft(
                    invoice_id,
                    request,
                    created_at=existing.created_at,
                    amount_paid=existing.amount_paid,
                )
        logger.info("Draft invoice %s replaced", invoice_id)
        return await self.get(invoice_id)

    async def delete_draft(self, invoice_id: str) -> None:
        async with self._store.invoice_locks.get(invoice_id):
            async with unit_of_work(self._store, "delete invoice"):
                invoice = await self._require_header(invoice_id)
                self._ensure_draft(invoice, "delete")
                if await self._store.invoices.list_payments(invoice_id):
                    raise InvalidStateTransitionError(
                        "Draft has recorded payments; cancel it instead",
                        current_state=invoice.status,
                    )
                await self._store.invoices.delete(invoice_id)
        logger.info("Draft invoice %s deleted", invoice_id)

    async def finalize(self, invoice_id: str) -> Invoice:
        async with self._store.invoice_locks.get(invoice_id):
            async with unit_of_work(self._store, "finalize invoice"):
                invoice = await self.get(invoice_id)
                if invoice.status != "draft":
                    raise InvalidStateTransitionError(
                        "Only draft invoices can be finalized",
                        current_state=invoice.status,
                    )
                settings = await self._store.settings.get()
                now = self._clock()

                sequence = await self._store.settings.allocate_invoice_number()
                invoice_number = format_invoice_number(settings, sequence, now.year)

                await self._store.invoices.save_commission(
                    self._commission_snapshot(invoice, settings, now)
                )
                if invoice.booking_id:
                    await self._link_booking(invoice.booking_id, invoice_id, now)
                if settings.deduct_stock_on_finalize:
                    await self._deduct_stock(invoice, settings)

                await self._store.invoices.save(
                    invoice.model_copy(
                        update={
                            "status": "finalized",
                            "invoice_number": invoice_number,
                            "invoice_date": now.date(),
                            "finalized_at": now,
                            "updated_at": now,
                        }
                    )
                )

        logger.info("Finalized invoice %s as %s", invoice_id, invoice_number)
        return await self.get(invoice_id)

    async def retry_stock_deduction(self, invoice_id: str) -> Invoice:
        """Deduct stock for retail lines skipped at finalization.

        Lines already flagged as deducted are left alone, so this can run any
        number of times. Nothing happens while stock deduction is switched off.
        """

        async with self._store.invoice_locks.get(invoice_id):
            async with unit_of_work(self._store, "deduct stock"):
                invoice = await self.get(invoice_id)
                if invoice.status not in ("finalized", "sent"):
                    raise InvalidStateTransitionError(
                        "Stock is only deducted for finalized invoices",
                        current_state=invoice.status,
                    )
                settings = await self._store.settings.get()
                if not settings.deduct_stock_on_finalize:
                    logger.info("Stock deduction is disabled; invoice %s left as is", invoice_id)
                    return invoice
                await self._deduct_stock(invoice, settings)
        return await self.get(invoice_id)

    async def mark_sent(self, invoice_id: str) -> Invoice:
        return await self._transition(invoice_id, "sent", allowed=("finalized",))

    async def cancel(self, invoice_id: str) -> Invoice:
        return await self._transition(
            invoice_id, "cancelled", allowed=("draft", "finalized", "sent")
        )

    async def void(self, invoice_id: str, reason: str | None = None) -> Invoice:
        return await self._transition(
            invoice_id, "void", allowed=("finalized", "sent"), reason=reason
        )

    async def get(self, invoice_id: str) -> Invoice:
        invoice = await self._store.invoices.get(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def list(self, request: InvoiceListRequest) -> InvoiceListResponse:
        search = (request.search or "").strip().lower()
        matches: List[Invoice] = []
        for invoice in await self._store.invoices.list_headers():
            if request.status and invoice.status != request.status:
                continue
            if request.payment_status and invoice.payment_status != request.payment_status:
                continue
            if request.stylist_id and invoice.stylist_id != request.stylist_id:
                continue
            if request.user_id and invoice.user_id != request.user_id:
                continue
            if not service_date_in_range(invoice.service_date, request.start_date, request.end_date):
                continue
            if search and not any(
                search in (value or "").lower()
                for value in (invoice.invoice_number, invoice.customer_name)
            ):
                continue
            matches.append(invoice)

        matches.sort(key=lambda invoice: (invoice.created_at, invoice.invoice_id), reverse=True)
        page = matches[request.offset : request.offset + request.limit]
        items = [
            InvoiceSummary(
                invoice_id=invoice.invoice_id,
                invoice_number=invoice.invoice_number,
                customer_name=invoice.customer_name,
                stylist_id=invoice.stylist_id,
                service_date=invoice.service_date,
                total=invoice.total,
                amount_due=invoice.amount_due,
                status=invoice.status,
                payment_status=invoice.payment_status,
            )
            for invoice in page
        ]
        return InvoiceListResponse(total=len(matches), items=items)

    async def _write_draft(
        self,
        invoice_id: str,
        request: InvoiceCreateRequest,
        *,
        created_at: datetime,
        amount_paid: Decimal = ZERO,
    ) -> None:
        settings = await self._store.settings.get()
        catalog = self._store.catalog

        if await catalog.get_stylist(request.stylist_id) is None:
            raise NotFoundError("Stylist", request.stylist_id)
        booking = await self._resolve_booking(request, invoice_id, settings)
        booking_override = booking.commission_rate if booking else None

        resolver = RateResolver(catalog, settings)
        services: List[_PreparedService] = []
        for line in request.services:
            item = await catalog.get_service(line.service_id)
            if item is None:
                raise NotFoundError("Service", line.service_id)
            unit_price = line.unit_price if line.unit_price is not None else item.price
            validate_line("Service", line.service_id, unit_price, line.quantity, line.discount)
            override = line.commission_rate if line.commission_rate is not None else booking_override
            rate = await resolver.resolve(line.service_id, "service", request.stylist_id, override)
            services.append(
                _PreparedService(
                    line, item, unit_price, override,
                    line_amounts(unit_price, line.quantity, line.discount, rate),
                )
            )

        products: List[_PreparedProduct] = []
        for line in request.products:
            item = await catalog.get_product(line.product_id)
            if item is None:
                raise NotFoundError("Product", line.product_id)
            unit_price = line.unit_price if line.unit_price is not None else item.price
            validate_line("Product", line.product_id, unit_price, line.quantity, line.discount)
            rate = await resolver.resolve(
                line.product_id, "product", request.stylist_id, line.commission_rate
            )
            products.append(
                _PreparedProduct(
                    line, item, unit_price,
                    line_amounts(unit_price, line.quantity, line.discount, rate),
                )
            )

        totals = invoice_totals(
            (prepared.amounts for prepared in services),
            (prepared.amounts for prepared in products),
            request.discount,
            settings,
        )
        amount_due = totals.total - amount_paid
        payment_status = (
            payment_status_for(amount_paid, totals.total) if amount_paid > 0 else "unpaid"
        )
        await self._store.invoices.save(
            Invoice(
                invoice_id=invoice_id,
                booking_id=request.booking_id,
                user_id=request.user_id,
                customer_name=request.customer_name or (booking.customer_name if booking else None),
                stylist_id=request.stylist_id,
                services_subtotal=totals.services_subtotal,
                products_subtotal=totals.products_subtotal,
                subtotal=totals.subtotal,
                discount=Discount(
                    type=request.discount.type if request.discount else None,
                    value=request.discount.value if request.discount else ZERO,
                    amount=totals.discount_amount,
                    reason=request.discount.reason if request.discount else None,
                ),
                tax_rate=totals.tax_rate,
                tax_amount=totals.tax_amount,
                total=totals.total,
                payment_status=payment_status,
                amount_paid=amount_paid,
                amount_due=amount_due,
                commission_total=totals.commission_total,
                status="draft",
                service_date=request.service_date,
                client_notes=request.client_notes,
                internal_notes=request.internal_notes,
                created_by=request.created_by,
                created_at=created_at,
                updated_at=self._clock(),
            )
        )

        # Each line resolves its own rate again when it is snapshotted; the sum
        # of the snapshots has to match the header or the draft is rejected.
        services_commission = ZERO
        for prepared in services:
            rate = await resolver.resolve(
                prepared.request.service_id, "service", request.stylist_id, prepared.override
            )
            amounts = line_amounts(
                prepared.unit_price, prepared.request.quantity, prepared.request.discount, rate
            )
            services_commission += amounts.commission_amount
            await self._store.invoices.add_service_line(
                InvoiceServiceLine(
                    line_id=self._store.invoices.next_child_id("SVL"),
                    invoice_id=invoice_id,
                    service_id=prepared.item.service_id,
                    service_name=prepared.request.service_name or prepared.item.name,
                    service_category=prepared.item.category,
                    unit_price=prepared.unit_price,
                    quantity=prepared.request.quantity,
                    discount=prepared.request.discount,
                    total=amounts.total,
                    commission_rate=amounts.commission_rate,
                    commission_amount=amounts.commission_amount,
                    duration_minutes=prepared.request.duration_minutes
                    or prepared.item.duration_minutes,
                    notes=prepared.request.notes,
                )
            )

        products_commission = ZERO
        for prepared in products:
            rate = await resolver.resolve(
                prepared.request.product_id,
                "product",
                request.stylist_id,
                prepared.request.commission_rate,
            )
            amounts = line_amounts(
                prepared.unit_price, prepared.request.quantity, prepared.request.discount, rate
            )
            products_commission += amounts.commission_amount
            await self._store.invoices.add_product_line(
                InvoiceProductLine(
                    line_id=self._store.invoices.next_child_id("PRL"),
                    invoice_id=invoice_id,
                    product_id=prepared.item.product_id,
                    product_name=prepared.request.product_name or prepared.item.name,
                    product_category=prepared.item.category,
                    product_type="service" if prepared.item.is_service_product else "retail",
                    unit_price=prepared.unit_price,
                    quantity=prepared.request.quantity,
                    discount=prepared.request.discount,
                    total=amounts.total,
                    commission_rate=amounts.commission_rate,
                    commission_amount=amounts.commission_amount,
                    notes=prepared.request.notes,
                )
            )

        if (
            services_commission != totals.services_commission
            or products_commission != totals.products_commission
        ):
            raise StorageFailureError(
                f"Line commissions for invoice {invoice_id} do not reconcile with its total"
            )

    async def _resolve_booking(
        self,
        request: InvoiceCreateRequest,
        invoice_id: str,
        settings: InvoiceSettings,
    ) -> Optional[Booking]:
        if not request.booking_id:
            if settings.require_booking_for_invoice:
                raise ValidationFailureError("Invoices must be linked to a booking")
            return None

        booking = await self._store.bookings.get(request.booking_id)
        if booking is None:
            raise NotFoundError("Booking", request.booking_id)
        for other in await self._store.invoices.find_by_booking(request.booking_id):
            if other.invoice_id != invoice_id and other.status not in _TERMINAL_STATUSES:
                raise ConflictError(
                    f"Booking {request.booking_id} is already invoiced on {other.invoice_id}",
                    booking_id=request.booking_id,
                    customer_name=booking.customer_name,
                )
        return booking

    def _commission_snapshot(
        self, invoice: Invoice, settings: InvoiceSettings, now: datetime
    ) -> InvoiceCommission:
        services_commission = sum((line.commission_amount for line in invoice.services), ZERO)
        products_commission = sum((line.commission_amount for line in invoice.products), ZERO)
        approve = invoice.payment_status == "paid" and settings.auto_approve_commission_on_payment
        return InvoiceCommission(
            commission_id=self._store.invoices.next_child_id("COM"),
            invoice_id=invoice.invoice_id,
            stylist_id=invoice.stylist_id,
            services_commission=services_commission,
            products_commission=products_commission,
            total_commission=services_commission + products_commission,
            payment_status="approved" if approve else "pending",
            approved_at=now if approve else None,
            created_at=now,
        )

    async def _link_booking(self, booking_id: str, invoice_id: str, now: datetime) -> None:
        booking = await self._store.bookings.get(booking_id)
        if booking is None:
            logger.warning("Invoice %s references missing booking %s", invoice_id, booking_id)
            return
        await self._store.bookings.save(
            booking.model_copy(update={"invoice_id": invoice_id, "invoiced": True, "updated_at": now})
        )

    async def _deduct_stock(self, invoice: Invoice, settings: InvoiceSettings) -> None:
        for line in invoice.products:
            if line.product_type != "retail" or line.deducted_from_stock:
                continue
            deducted = await self._store.catalog.deduct_stock(
                line.product_id, line.quantity, allow_negative=settings.allow_negative_stock
            )
            if not deducted:
                product = await self._store.catalog.get_product(line.product_id)
                available = product.stock if product else 0
                if settings.stock_shortfall_policy == "block":
                    raise InsufficientStockError(line.product_id, available, line.quantity)
                logger.warning(
                    "Not enough stock for %s: %s < %s; line %s left for manual resolution",
                    line.product_name,
                    available,
                    line.quantity,
                    line.line_id,
                )
                continue
            await self._store.invoices.save_product_line(
                line.model_copy(update={"deducted_from_stock": True})
            )

    async def _transition(
        self,
        invoice_id: str,
        status: str,
        *,
        allowed: tuple[str, ...],
        reason: str | None = None,
    ) -> Invoice:
        async with self._store.invoice_locks.get(invoice_id):
            async with unit_of_work(self._store, f"mark invoice {status}"):
                invoice = await self._require_header(invoice_id)
                if invoice.status not in allowed:
                    raise InvalidStateTransitionError(
                        f"Cannot move invoice {invoice_id} from {invoice.status} to {status}",
                        current_state=invoice.status,
                    )
                now = self._clock()
                changes = {"status": status, "updated_at": now}
                if status == "sent":
                    changes["sent_at"] = now
                elif status == "cancelled":
                    changes["cancelled_at"] = now
                elif status == "void":
                    changes["voided_at"] = now
                    changes["void_reason"] = reason
                await self._store.invoices.save(invoice.model_copy(update=changes))
        logger.info("Invoice %s marked %s", invoice_id, status)
        return await self.get(invoice_id)

    async def _require_header(self, invoice_id: str) -> Invoice:
        invoice = await self._store.invoices.get_header(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    @staticmethod
    def _ensure_draft(invoice: Invoice, action: str) -> None:
        if invoice.status != "draft":
            raise InvalidStateTransitionError(
                f"Can only {action} draft invoices",
                current_state=invoice.status,
            )
