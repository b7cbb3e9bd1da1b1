from __future__ import annotations

import asyncio
import itertools
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Hashable, List, Optional

from app.config import Settings, get_settings
from app.schemas.appointment import Booking, BookingListRequest, BookingRequest
from app.schemas.billing import (
    Invoice,
    InvoiceCommission,
    InvoicePayment,
    InvoiceProductLine,
    InvoiceServiceLine,
)
from app.schemas.catalog import ProductItem, ServiceItem, Stylist
from app.schemas.settings import InvoiceSettings, InvoiceSettingsUpdate
from app.services.exceptions import ServiceError, StorageFailureError

logger = logging.getLogger(__name__)

_MISSING = object()

# defaults that may be explicitly reset to null; every other field ignores null
_CLEARABLE_SETTINGS = frozenset(
    {
        "default_service_commission_rate",
        "default_product_commission_rate",
        "default_service_product_commission_rate",
    }
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_dt(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class _UndoJournal:
    """Remembers the first prior value of every row written inside a transaction."""

    def __init__(self) -> None:
        self._entries: List[tuple[Dict[Hashable, Any], Hashable, Any]] = []
        self._seen: set[tuple[int, Hashable]] = set()

    def remember(self, table: Dict[Hashable, Any], key: Hashable) -> None:
        marker = (id(table), key)
        if marker in self._seen:
            return
        self._seen.add(marker)
        self._entries.append((table, key, table.get(key, _MISSING)))

    def rollback(self) -> None:
        for table, key, previous in reversed(self._entries):
            if previous is _MISSING:
                table.pop(key, None)
            else:
                table[key] = previous
        self._entries.clear()
        self._seen.clear()


_active_journal: ContextVar[Optional[_UndoJournal]] = ContextVar(
    "salon_store_journal", default=None
)


class KeyedLocks:
    """One ``asyncio.Lock`` per aggregate key (invoice id, stylist id)."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


class _BaseRepository:
    def __init__(self, prefix: str) -> None:
        self._prefix = prefix
        self._counter = itertools.count(1)

    def _next_id(self) -> str:
        return f"{self._prefix}-{next(self._counter):05d}"

    @staticmethod
    def _write(table: Dict[Hashable, Any], key: Hashable, value: Any) -> None:
        journal = _active_journal.get()
        if journal is not None:
            journal.remember(table, key)
        table[key] = value

    @staticmethod
    def _delete(table: Dict[Hashable, Any], key: Hashable) -> bool:
        if key not in table:
            return False
        journal = _active_journal.get()
        if journal is not None:
            journal.remember(table, key)
        del table[key]
        return True


class SettingsRepository(_BaseRepository):
    """Holds the invoice settings singleton and the invoice-number counter.

    The counter is kept apart from the journaled settings row: once a number
    has been handed out it is never given back, even when the finalize that
    asked for it rolls back.
    """

    _KEY = "invoice_settings"

    def __init__(self, initial: InvoiceSettings | None = None) -> None:
        super().__init__("SET")
        initial = initial or InvoiceSettings()
        self._rows: Dict[Hashable, InvoiceSettings] = {self._KEY: initial}
        self._next_number = initial.next_invoice_number
        self._counter_lock = asyncio.Lock()

    async def get(self) -> InvoiceSettings:
        return self._rows[self._KEY].model_copy(
            update={"next_invoice_number": self._next_number}, deep=True
        )

    async def update(self, changes: InvoiceSettingsUpdate) -> InvoiceSettings:
        provided = {
            key: value
            for key, value in changes.model_dump(exclude_unset=True).items()
            if value is not None or key in _CLEARABLE_SETTINGS
        }
        current = self._rows[self._KEY]
        merged = InvoiceSettings.model_validate({**current.model_dump(), **provided})
        self._write(self._rows, self._KEY, merged)
        return await self.get()

    async def allocate_invoice_number(self) -> int:
        async with self._counter_lock:
            number = self._next_number
            self._next_number += 1
            return number


class CatalogRepository(_BaseRepository):
    def __init__(self) -> None:
        super().__init__("CAT")
        self._stylists: Dict[Hashable, Stylist] = {}
        self._services: Dict[Hashable, ServiceItem] = {}
        self._products: Dict[Hashable, ProductItem] = {}

    async def add_stylist(self, stylist: Stylist) -> Stylist:
        self._write(self._stylists, stylist.stylist_id, stylist.model_copy(deep=True))
        return stylist

    async def add_service(self, service: ServiceItem) -> ServiceItem:
        self._write(self._services, service.service_id, service.model_copy(deep=True))
        return service

    async def add_product(self, product: ProductItem) -> ProductItem:
        self._write(self._products, product.product_id, product.model_copy(deep=True))
        return product

    async def get_stylist(self, stylist_id: str) -> Optional[Stylist]:
        stylist = self._stylists.get(stylist_id)
        return stylist.model_copy(deep=True) if stylist is not None else None

    async def get_service(self, service_id: str) -> Optional[ServiceItem]:
        service = self._services.get(service_id)
        return service.model_copy(deep=True) if service is not None else None

    async def get_product(self, product_id: str) -> Optional[ProductItem]:
        product = self._products.get(product_id)
        return product.model_copy(deep=True) if product is not None else None

    async def list_stylists(self) -> List[Stylist]:
        return [stylist.model_copy(deep=True) for stylist in self._stylists.values()]

    async def deduct_stock(self, product_id: str, quantity: int, *, allow_negative: bool) -> bool:
        """Decrement stock in one step; returns False when stock is short and not allowed."""

        product = self._products.get(product_id)
        if product is None:
            return False
        if not allow_negative and product.stock < quantity:
            return False
        self._write(
            self._products,
            product_id,
            product.model_copy(update={"stock": product.stock - quantity}),
        )
        return True


class BookingRepository(_BaseRepository):
    def __init__(self) -> None:
        super().__init__("BKG")
        self._bookings: Dict[Hashable, Booking] = {}

    async def create(self, request: BookingRequest, *, now: datetime | None = None) -> Booking:
        timestamp = now or _utc_now()
        booking = Booking(
            booking_id=self._next_id(),
            created_at=timestamp,
            updated_at=timestamp,
            **request.model_dump(),
        )
        self._write(self._bookings, booking.booking_id, booking)
        return booking.model_copy(deep=True)

    async def add(self, booking: Booking) -> Booking:
        self._write(self._bookings, booking.booking_id, booking.model_copy(deep=True))
        return booking

    async def get(self, booking_id: str) -> Optional[Booking]:
        booking = self._bookings.get(booking_id)
        return booking.model_copy(deep=True) if booking is not None else None

    async def save(self, booking: Booking) -> Booking:
        self._write(self._bookings, booking.booking_id, booking.model_copy(deep=True))
        return booking

    async def list(self, request: BookingListRequest) -> List[Booking]:
        items = []
        for booking in self._bookings.values():
            if request.stylist_id and booking.stylist_id != request.stylist_id:
                continue
            if request.status and booking.status != request.status:
                continue
            if request.date_from and booking.requested_date < request.date_from:
                continue
            if request.date_to and booking.requested_date > request.date_to:
                continue
            items.append(booking.model_copy(deep=True))
        items.sort(key=lambda item: (item.requested_date, item.booking_id))
        return items

    async def find_conflict(
        self,
        stylist_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: str | None = None,
    ) -> Optional[Booking]:
        start = normalize_dt(start)
        end = normalize_dt(end)
        for booking in self._bookings.values():
            if booking.stylist_id != stylist_id:
                continue
            if booking.status not in ("CONFIRMED", "REQUESTED"):
                continue
            if booking.assigned_start_time is None or booking.assigned_end_time is None:
                continue
            if exclude_booking_id and booking.booking_id == exclude_booking_id:
                continue
            existing_start = normalize_dt(booking.assigned_start_time)
            existing_end = normalize_dt(booking.assigned_end_time)
            starts_inside = existing_start <= start < existing_end
            ends_inside = existing_start < end <= existing_end
            covers = start <= existing_start and end >= existing_end
            if starts_inside or ends_inside or covers:
                return booking.model_copy(deep=True)
        return None


class InvoiceRepository(_BaseRepository):
    def __init__(self) -> None:
        super().__init__("INV")
        self._invoices: Dict[Hashable, Invoice] = {}
        self._service_lines: Dict[Hashable, InvoiceServiceLine] = {}
        self._product_lines: Dict[Hashable, InvoiceProductLine] = {}
        self._payments: Dict[Hashable, InvoicePayment] = {}
        self._commissions: Dict[Hashable, InvoiceCommission] = {}
        self._child_ids = itertools.count(1)

    def next_child_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._child_ids):06d}"

    def new_invoice_id(self) -> str:
        return self._next_id()

    async def save(self, invoice: Invoice) -> Invoice:
        header = invoice.model_copy(
            update={"services": [], "products": [], "payments": [], "commission": None},
            deep=True,
        )
        self._write(self._invoices, invoice.invoice_id, header)
        return invoice

    async def get_header(self, invoice_id: str) -> Optional[Invoice]:
        invoice = self._invoices.get(invoice_id)
        return invoice.model_copy(deep=True) if invoice is not None else None

    async def get(self, invoice_id: str) -> Optional[Invoice]:
        invoice = self._invoices.get(invoice_id)
        if invoice is None:
            return None
        return invoice.model_copy(
            update={
                "services": await self.list_service_lines(invoice_id),
                "products": await self.list_product_lines(invoice_id),
                "payments": await self.list_payments(invoice_id),
                "commission": await self.get_commission(invoice_id),
            },
            deep=True,
        )

    async def list_headers(self) -> List[Invoice]:
        return [invoice.model_copy(deep=True) for invoice in self._invoices.values()]

    async def find_by_booking(self, booking_id: str) -> List[Invoice]:
        return [
            invoice.model_copy(deep=True)
            for invoice in self._invoices.values()
            if invoice.booking_id == booking_id
        ]

    async def delete(self, invoice_id: str) -> bool:
        await self.delete_lines(invoice_id)
        for payment_id in [
            key for key, payment in self._payments.items() if payment.invoice_id == invoice_id
        ]:
            self._delete(self._payments, payment_id)
        self._delete(self._commissions, invoice_id)
        return self._delete(self._invoices, invoice_id)

    async def add_service_line(self, line: InvoiceServiceLine) -> InvoiceServiceLine:
        self._write(self._service_lines, line.line_id, line.model_copy(deep=True))
        return line

    async def add_product_line(self, line: InvoiceProductLine) -> InvoiceProductLine:
        self._write(self._product_lines, line.line_id, line.model_copy(deep=True))
        return line

    async def save_product_line(self, line: InvoiceProductLine) -> InvoiceProductLine:
        return await self.add_product_line(line)

    async def list_service_lines(self, invoice_id: str) -> List[InvoiceServiceLine]:
        return [
            line.model_copy(deep=True)
            for line in self._service_lines.values()
            if line.invoice_id == invoice_id
        ]

    async def list_product_lines(self, invoice_id: str) -> List[InvoiceProductLine]:
        return [
            line.model_copy(deep=True)
            for line in self._product_lines.values()
            if line.invoice_id == invoice_id
        ]

    async def delete_lines(self, invoice_id: str) -> None:
        for table in (self._service_lines, self._product_lines):
            for line_id in [key for key, line in table.items() if line.invoice_id == invoice_id]:
                self._delete(table, line_id)

    async def add_payment(self, payment: InvoicePayment) -> InvoicePayment:
        if payment.payment_id in self._payments:
            raise ValueError(f"Payment {payment.payment_id} already recorded")
        self._write(self._payments, payment.payment_id, payment.model_copy(deep=True))
        return payment

    async def list_payments(self, invoice_id: str) -> List[InvoicePayment]:
        payments = [
            payment.model_copy(deep=True)
            for payment in self._payments.values()
            if payment.invoice_id == invoice_id
        ]
        payments.sort(key=lambda payment: payment.payment_date, reverse=True)
        return payments

    async def get_commission(self, invoice_id: str) -> Optional[InvoiceCommission]:
        commission = self._commissions.get(invoice_id)
        return commission.model_copy(deep=True) if commission is not None else None

    async def save_commission(self, commission: InvoiceCommission) -> InvoiceCommission:
        self._write(self._commissions, commission.invoice_id, commission.model_copy(deep=True))
        return commission

    async def list_commissions(self, stylist_id: str | None = None) -> List[InvoiceCommission]:
        return [
            commission.model_copy(deep=True)
            for commission in self._commissions.values()
            if stylist_id is None or commission.stylist_id == stylist_id
        ]


@dataclass
class InMemoryStore:
    settings: SettingsRepository
    catalog: CatalogRepository
    bookings: BookingRepository
    invoices: InvoiceRepository
    invoice_locks: KeyedLocks
    stylist_locks: KeyedLocks

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run a unit of work; every row written inside is restored on failure.

        Nested calls join the outer unit of work.
        """

        if _active_journal.get() is not None:
            yield
            return

        journal = _UndoJournal()
        token = _active_journal.set(journal)
        try:
            yield
        except BaseException:
            journal.rollback()
            raise
        finally:
            _active_journal.reset(token)


@asynccontextmanager
async def unit_of_work(store: InMemoryStore, action: str) -> AsyncIterator[None]:
    """Run ``action`` as one transaction, surfacing unexpected failures as storage errors."""

    try:
        async with store.transaction():
            yield
    except ServiceError:
        raise
    except Exception as exc:
        logger.exception("Unexpected error while trying to %s", action)
        raise StorageFailureError(f"Failed to {action}", cause=exc) from exc


def _seed_demo_data(catalog: CatalogRepository) -> None:
    stylists = [
        Stylist(stylist_id="STY-001", name="Lerato Mokoena", specialty="Colour", commission_rate=Decimal("0.35")),
        Stylist(stylist_id="STY-002", name="Jess van Wyk", specialty="Cuts & styling"),
    ]
    services = [
        ServiceItem(
            service_id="SRV-101",
            name="Cut & Blow-dry",
            category="cut",
            price=Decimal("450.00"),
            duration_minutes=60,
        ),
        ServiceItem(
            service_id="SRV-102",
            name="Full Head Colour",
            category="colour",
            price=Decimal("950.00"),
            duration_minutes=120,
            commission_rate=Decimal("0.30"),
        ),
        ServiceItem(
            service_id="SRV-103",
            name="Keratin Treatment",
            category="treatment",
            price=Decimal("1800.00"),
            duration_minutes=150,
        ),
    ]
    products = [
        ProductItem(
            product_id="PRD-201",
            name="Repair Shampoo 250ml",
            category="haircare",
            price=Decimal("320.00"),
            commission_rate=Decimal("0.10"),
            stock=24,
        ),
        ProductItem(
            product_id="PRD-202",
            name="Colour Tube 60ml",
            category="colour",
            price=Decimal("85.00"),
            is_service_product=True,
            stock=60,
        ),
    ]
    for stylist in stylists:
        catalog._stylists[stylist.stylist_id] = stylist
    for service in services:
        catalog._services[service.service_id] = service
    for product in products:
        catalog._products[product.product_id] = product


def build_store(
    invoice_settings: InvoiceSettings | None = None,
    *,
    seed_demo_data: bool = False,
) -> InMemoryStore:
    catalog = CatalogRepository()
    if seed_demo_data:
        _seed_demo_data(catalog)
    return InMemoryStore(
        settings=SettingsRepository(invoice_settings),
        catalog=catalog,
        bookings=BookingRepository(),
        invoices=InvoiceRepository(),
        invoice_locks=KeyedLocks(),
        stylist_locks=KeyedLocks(),
    )


def invoice_settings_from(settings: Settings) -> InvoiceSettings:
    return InvoiceSettings(
        tax_enabled=settings.tax_enabled,
        tax_rate=settings.tax_rate,
        invoice_number_prefix=settings.invoice_number_prefix,
        overpayment_policy=settings.overpayment_policy,
        stock_shortfall_policy=settings.stock_shortfall_policy,
        currency=settings.currency,
    )


_store: Optional[InMemoryStore] = None


def get_store() -> InMemoryStore:
    global _store
    if _store is None:
        settings = get_settings()
        _store = build_store(
            invoice_settings_from(settings),
            seed_demo_data=settings.seed_demo_data,
        )
        logger.info("Initialised in-memory store (demo data: %s)", settings.seed_demo_data)
    return _store


def reset_store() -> None:
    global _store
    _store = None


def service_date_in_range(value: date, start: date | None, end: date | None) -> bool:
    if start and value < start:
        return False
    if end and value > end:
        return False
    return True
