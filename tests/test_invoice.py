import asyncio
from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.schemas.appointment import BookingRequest
from app.schemas.billing import (
    DiscountRequest,
    InvoiceListRequest,
    ProductLineRequest,
    ServiceLineRequest,
)
from app.schemas.catalog import ProductItem
from app.schemas.settings import InvoiceSettings, InvoiceSettingsUpdate
from app.services.exceptions import (
    ConflictError,
    InsufficientStockError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationFailureError,
)
from app.services.invoice import InvoiceService, format_invoice_number

from conftest import SERVICE_DATE, fixed_clock, invoice_request


def _service(store) -> InvoiceService:
    return InvoiceService(store, clock=fixed_clock)


def _stock(store, product_id: str) -> int:
    return asyncio.run(store.catalog.get_product(product_id)).stock


def _book(store, **overrides):
    payload = {
        "user_id": "CUST-1",
        "customer_name": "Naledi Khumalo",
        "service_id": "SRV-CUT",
        "stylist_id": "STY-A",
        "requested_date": SERVICE_DATE,
    }
    payload.update(overrides)
    return asyncio.run(store.bookings.create(BookingRequest(**payload)))


def test_create_draft_computes_totals_and_commission(store) -> None:
    invoice = asyncio.run(_service(store).create(invoice_request()))

    assert invoice.status == "draft"
    assert invoice.invoice_number is None
    assert invoice.subtotal == Decimal("700")
    assert invoice.tax_amount == Decimal("105")
    assert invoice.total == Decimal("805")
    assert invoice.amount_due == Decimal("805")
    assert invoice.payment_status == "unpaid"
    assert invoice.commission_total == Decimal("170")

    assert [line.commission_rate for line in invoice.services] == [Decimal("0.30")]
    assert invoice.products[0].total == Decimal("200")
    assert invoice.products[0].product_type == "retail"
    assert invoice.commission is None


def test_line_sums_match_header(store) -> None:
    request = invoice_request(
        services=[
            ServiceLineRequest(service_id="SRV-CUT", discount=Decimal("25")),
            ServiceLineRequest(service_id="SRV-BLOW", quantity=2),
        ],
        products=[
            ProductLineRequest(product_id="PRD-SHAMPOO", quantity=1),
            ProductLineRequest(product_id="PRD-DYE", quantity=3),
        ],
    )
    invoice = asyncio.run(_service(store).create(request))

    assert invoice.services_subtotal == sum(line.total for line in invoice.services)
    assert invoice.products_subtotal == sum(line.total for line in invoice.products)
    assert invoice.commission_total == sum(
        line.commission_amount for line in invoice.services + invoice.products
    )
    assert invoice.total == invoice.subtotal - invoice.discount.amount + invoice.tax_amount
    rates = {line.product_id: line.commission_rate for line in invoice.products}
    assert rates == {"PRD-SHAMPOO": Decimal("0.10"), "PRD-DYE": Decimal("0.05")}
    assert invoice.services[1].commission_rate == Decimal("0.25")


def test_percentage_discount_applies_before_tax(store) -> None:
    request = invoice_request(
        discount=DiscountRequest(type="percentage", value=Decimal("10"), reason="Birthday"),
    )
    invoice = asyncio.run(_service(store).create(request))

    assert invoice.discount.amount == Decimal("70")
    assert invoice.tax_amount == Decimal("94.50")
    assert invoice.total == Decimal("724.50")
    assert invoice.commission_total == Decimal("170")


def test_create_rejects_unknown_references(store) -> None:
    service = _service(store)
    with pytest.raises(NotFoundError):
        asyncio.run(service.create(invoice_request(stylist_id="STY-NOPE")))
    with pytest.raises(NotFoundError):
        asyncio.run(
            service.create(invoice_request(services=[ServiceLineRequest(service_id="SRV-NOPE")]))
        )
    with pytest.raises(ValidationFailureError):
        asyncio.run(
            service.create(
                invoice_request(services=[ServiceLineRequest(service_id="SRV-CUT", quantity=-1)])
            )
        )
    assert asyncio.run(service.list(InvoiceListRequest())).total == 0


def test_finalize_assigns_number_and_snapshots_commission(store) -> None:
    service = _service(store)
    draft = asyncio.run(service.create(invoice_request()))
    invoice = asyncio.run(service.finalize(draft.invoice_id))

    assert invoice.status == "finalized"
    assert invoice.invoice_number == "INV-2025-00001"
    assert invoice.invoice_date == SERVICE_DATE
    assert invoice.commission.total_commission == Decimal("170")
    assert invoice.commission.services_commission == Decimal("150")
    assert invoice.commission.products_commission == Decimal("20")
    assert invoice.commission.payment_status == "pending"
    assert invoice.products[0].deducted_from_stock is True
    assert _stock(store, "PRD-SHAMPOO") == 3
    assert asyncio.run(store.settings.get()).next_invoice_number == 2


def test_service_products_are_not_deducted(store) -> None:
    service = _service(store)
    draft = asyncio.run(
        service.create(
            invoice_request(products=[ProductLineRequest(product_id="PRD-DYE", quantity=2)])
        )
    )
    invoice = asyncio.run(service.finalize(draft.invoice_id))

    assert invoice.products[0].product_type == "service"
    assert invoice.products[0].deducted_from_stock is False
    assert _stock(store, "PRD-DYE") == 10


def test_finalize_twice_is_rejected_without_side_effects(store) -> None:
    service = _service(store)
    draft = asyncio.run(service.create(invoice_request()))
    asyncio.run(service.finalize(draft.invoice_id))

    with pytest.raises(InvalidStateTransitionError):
        asyncio.run(service.finalize(draft.invoice_id))

    assert _stock(store, "PRD-SHAMPOO") == 3
    assert asyncio.run(store.settings.get()).next_invoice_number == 2


def test_concurrent_finalize_of_same_invoice_succeeds_once(store) -> None:
    service = _service(store)
    draft = asyncio.run(service.create(invoice_request()))

    async def run():
        return await asyncio.gather(
            service.finalize(draft.invoice_id),
            service.finalize(draft.invoice_id),
            return_exceptions=True,
        )

    results = asyncio.run(run())
    assert sum(isinstance(result, InvalidStateTransitionError) for result in results) == 1
    assert _stock(store, "PRD-SHAMPOO") == 3


def test_concurrent_finalize_hands_out_distinct_numbers(store) -> None:
    service = _service(store)
    drafts = [
        asyncio.run(service.create(invoice_request(products=[]))) for _ in range(5)
    ]

    async def run():
        return await asyncio.gather(*(service.finalize(draft.invoice_id) for draft in drafts))

    numbers = [invoice.invoice_number for invoice in asyncio.run(run())]
    assert len(set(numbers)) == 5
    assert sorted(numbers) == [f"INV-2025-{n:05d}" for n in range(1, 6)]


def test_format_invoice_number_uses_template(store) -> None:
    settings = asyncio.run(
        store.settings.update(
            InvoiceSettingsUpdate(
                invoice_number_prefix="SAL",
                invoice_number_format="{YEAR}/{PREFIX}/{NUMBER}",
                invoice_number_padding=3,
            )
        )
    )
    assert format_invoice_number(settings, 7, 2025) == "2025/SAL/007"


def test_number_format_without_number_placeholder_is_rejected(store) -> None:
    with pytest.raises(ValidationError):
        InvoiceSettingsUpdate(invoice_number_format="{PREFIX}-{YEAR}")
    with pytest.raises(ValidationError):
        InvoiceSettings(invoice_number_format="{PREFIX}-{YEAR}")

    service = _service(store)
    numbers = set()
    for _ in range(2):
        draft = asyncio.run(service.create(invoice_request(products=[])))
        numbers.add(asyncio.run(service.finalize(draft.invoice_id)).invoice_number)
    assert len(numbers) == 2


def test_stock_retry_does_nothing_when_deduction_is_disabled(store) -> None:
    asyncio.run(store.settings.update(InvoiceSettingsUpdate(deduct_stock_on_finalize=False)))
    service = _service(store)
    draft = asyncio.run(service.create(invoice_request()))
    asyncio.run(service.finalize(draft.invoice_id))
    assert _stock(store, "PRD-SHAMPOO") == 5

    retried = asyncio.run(service.retry_stock_deduction(draft.invoice_id))

    assert retried.products[0].deducted_from_stock is False
    assert _stock(store, "PRD-SHAMPOO") == 5


def test_stock_shortfall_is_skipped_and_can_be_retried(store) -> None:
    service = _service(store)
    draft = asyncio.run(
        service.create(
            invoice_request(products=[ProductLineRequest(product_id="PRD-SHAMPOO", quantity=8)])
        )
    )
    invoice = asyncio.run(service.finalize(draft.invoice_id))

    assert invoice.status == "finalized"
    assert invoice.products[0].deducted_from_stock is False
    assert _stock(store, "PRD-SHAMPOO") == 5

    asyncio.run(
        store.catalog.add_product(
            ProductItem(
                product_id="PRD-SHAMPOO",
                name="Moisture Shampoo",
                price=Decimal("100"),
                commission_rate=Decimal("0.10"),
                stock=20,
            )
        )
    )
    retried = asyncio.run(service.retry_stock_deduction(draft.invoice_id))
    assert retried.products[0].deducted_from_stock is True
    assert _stock(store, "PRD-SHAMPOO") == 12

    asyncio.run(service.retry_stock_deduction(draft.invoice_id))
    assert _stock(store, "PRD-SHAMPOO") == 12


def test_blocking_shortfall_rolls_back_finalize(store) -> None:
    asyncio.run(store.settings.update(InvoiceSettingsUpdate(stock_shortfall_policy="block")))
    service = _service(store)
    draft = asyncio.run(
        service.create(
            invoice_request(
                products=[
                    ProductLineRequest(product_id="PRD-CONDITIONER", quantity=1),
                    ProductLineRequest(product_id="PRD-SHAMPOO", quantity=8),
                ]
            )
        )
    )

    with pytest.raises(InsufficientStockError) as excinfo:
        asyncio.run(service.finalize(draft.invoice_id))

    assert excinfo.value.product_id == "PRD-SHAMPOO"
    invoice = asyncio.run(service.get(draft.invoice_id))
    assert invoice.status == "draft"
    assert invoice.invoice_number is None
    assert invoice.commission is None
    assert all(not line.deducted_from_stock for line in invoice.products)
    assert _stock(store, "PRD-CONDITIONER") == 3
    assert _stock(store, "PRD-SHAMPOO") == 5

    # the number handed out to the failed attempt is not reused
    other = asyncio.run(service.create(invoice_request(products=[])))
    assert asyncio.run(service.finalize(other.invoice_id)).invoice_number == "INV-2025-00002"


def test_booking_rate_and_link(store) -> None:
    booking = _book(store, commission_rate=Decimal("0.40"))
    service = _service(store)
    draft = asyncio.run(
        service.create(invoice_request(booking_id=booking.booking_id, customer_name=None))
    )

    assert draft.customer_name == "Naledi Khumalo"
    assert draft.services[0].commission_rate == Decimal("0.40")
    assert draft.products[0].commission_rate == Decimal("0.10")

    asyncio.run(service.finalize(draft.invoice_id))
    linked = asyncio.run(store.bookings.get(booking.booking_id))
    assert linked.invoiced is True
    assert linked.invoice_id == draft.invoice_id


def test_booking_can_only_have_one_live_invoice(store) -> None:
    booking = _book(store)
    service = _service(store)
    first = asyncio.run(service.create(invoice_request(booking_id=booking.booking_id)))

    with pytest.raises(ConflictError):
        asyncio.run(service.create(invoice_request(booking_id=booking.booking_id)))

    asyncio.run(service.cancel(first.invoice_id))
    second = asyncio.run(service.create(invoice_request(booking_id=booking.booking_id)))
    assert second.booking_id == booking.booking_id


def test_booking_required_when_configured(store) -> None:
    asyncio.run(store.settings.update(InvoiceSettingsUpdate(require_booking_for_invoice=True)))
    with pytest.raises(ValidationFailureError):
        asyncio.run(_service(store).create(invoice_request()))


def test_update_draft_replaces_lines(store) -> None:
    service = _service(store)
    draft = asyncio.run(service.create(invoice_request()))
    updated = asyncio.run(
        service.update_draft(
            draft.invoice_id,
            invoice_request(services=[ServiceLineRequest(service_id="SRV-BLOW")], products=[]),
        )
    )

    assert updated.invoice_id == draft.invoice_id
    assert [line.service_id for line in updated.services] == ["SRV-BLOW"]
    assert updated.products == []
    assert updated.total == Decimal("345.00")
    assert updated.created_at == draft.created_at


def test_finalized_invoice_cannot_be_edited_or_deleted(store) -> None:
    service = _service(store)
    draft = asyncio.run(service.create(invoice_request()))
    asyncio.run(service.finalize(draft.invoice_id))

    with pytest.raises(InvalidStateTransitionError):
        asyncio.run(service.update_draft(draft.invoice_id, invoice_request()))
    with pytest.raises(InvalidStateTransitionError):
        asyncio.run(service.delete_draft(draft.invoice_id))


def test_delete_draft_removes_invoice_and_lines(store) -> None:
    service = _service(store)
    draft = asyncio.run(service.create(invoice_request()))
    asyncio.run(service.delete_draft(draft.invoice_id))

    with pytest.raises(NotFoundError):
        asyncio.run(service.get(draft.invoice_id))
    assert asyncio.run(store.invoices.list_service_lines(draft.invoice_id)) == []


def test_lifecycle_transitions(store) -> None:
    service = _service(store)
    draft = asyncio.run(service.create(invoice_request()))

    with pytest.raises(InvalidStateTransitionError):
        asyncio.run(service.mark_sent(draft.invoice_id))
    with pytest.raises(InvalidStateTransitionError):
        asyncio.run(service.void(draft.invoice_id, "typo"))

    asyncio.run(service.finalize(draft.invoice_id))
    sent = asyncio.run(service.mark_sent(draft.invoice_id))
    assert sent.status == "sent"
    assert sent.sent_at == fixed_clock()

    voided = asyncio.run(service.void(draft.invoice_id, "Duplicate of walk-in ticket"))
    assert voided.status == "void"
    assert voided.void_reason == "Duplicate of walk-in ticket"

    with pytest.raises(InvalidStateTransitionError):
        asyncio.run(service.cancel(draft.invoice_id))


def test_list_filters_and_search(store) -> None:
    service = _service(store)
    first = asyncio.run(service.create(invoice_request()))
    asyncio.run(service.create(invoice_request(customer_name="Lindiwe Nkosi", stylist_id="STY-B")))
    asyncio.run(service.finalize(first.invoice_id))

    finalized = asyncio.run(service.list(InvoiceListRequest(status="finalized")))
    assert [item.invoice_id for item in finalized.items] == [first.invoice_id]

    by_stylist = asyncio.run(service.list(InvoiceListRequest(stylist_id="STY-B")))
    assert by_stylist.total == 1
    assert by_stylist.items[0].customer_name == "Lindiwe Nkosi"

    by_number = asyncio.run(service.list(InvoiceListRequest(search="inv-2025-00001")))
    assert by_number.total == 1

    paged = asyncio.run(service.list(InvoiceListRequest(limit=1)))
    assert paged.total == 2
    assert len(paged.items) == 1
