from decimal import Decimal

import pytest

from app.schemas.billing import DiscountRequest
from app.schemas.settings import InvoiceSettings
from app.services.calculations import (
    discount_amount,
    invoice_totals,
    line_amounts,
    payment_status_for,
    to_money,
    validate_line,
)
from app.services.exceptions import ValidationFailureError


def _scenario_lines():
    services = [line_amounts(Decimal("500"), 1, Decimal("0"), Decimal("0.30"))]
    products = [line_amounts(Decimal("100"), 2, Decimal("0"), Decimal("0.10"))]
    return services, products


def test_to_money_rounds_half_up() -> None:
    assert to_money(Decimal("2.005")) == Decimal("2.01")
    assert to_money("94.5") == Decimal("94.50")


def test_line_total_is_clamped_at_zero() -> None:
    amounts = line_amounts(Decimal("50"), 1, Decimal("80"), Decimal("0.30"))
    assert amounts.total == Decimal("0.00")
    assert amounts.commission_amount == Decimal("0.00")


def test_negative_quantity_is_rejected() -> None:
    with pytest.raises(ValidationFailureError):
        validate_line("Service", "SRV-CUT", Decimal("500"), -1, Decimal("0"))


def test_totals_without_discount() -> None:
    services, products = _scenario_lines()
    totals = invoice_totals(services, products, None, InvoiceSettings())

    assert totals.subtotal == Decimal("700")
    assert totals.tax_amount == Decimal("105.00")
    assert totals.total == Decimal("805.00")
    assert totals.commission_total == Decimal("170.00")


def test_percentage_discount_reduces_taxable_amount() -> None:
    services, products = _scenario_lines()
    discount = DiscountRequest(type="percentage", value=Decimal("10"), reason="Regular client")
    totals = invoice_totals(services, products, discount, InvoiceSettings())

    assert totals.discount_amount == Decimal("70.00")
    assert totals.taxable_amount == Decimal("630.00")
    assert totals.tax_amount == Decimal("94.50")
    assert totals.total == Decimal("724.50")
    # commission is earned on line totals, before the invoice discount
    assert totals.commission_total == Decimal("170.00")


def test_tax_disabled_gives_zero_tax() -> None:
    services, products = _scenario_lines()
    totals = invoice_totals(services, products, None, InvoiceSettings(tax_enabled=False))
    assert totals.tax_amount == Decimal("0")
    assert totals.total == Decimal("700")


def test_loyalty_points_convert_at_ten_per_unit() -> None:
    discount = DiscountRequest(type="loyalty_points", value=Decimal("250"))
    assert discount_amount(discount, Decimal("700")) == Decimal("25.00")


def test_manual_discount_needs_an_amount() -> None:
    with pytest.raises(ValidationFailureError):
        discount_amount(DiscountRequest(type="manual", reason="Goodwill"), Decimal("700"))


def test_discount_requires_reason_when_configured() -> None:
    services, products = _scenario_lines()
    discount = DiscountRequest(type="fixed", value=Decimal("50"))
    with pytest.raises(ValidationFailureError):
        invoice_totals(services, products, discount, InvoiceSettings())

    totals = invoice_totals(
        services, products, discount, InvoiceSettings(require_discount_reason=False)
    )
    assert totals.discount_amount == Decimal("50.00")


def test_discount_larger_than_subtotal_is_rejected() -> None:
    services, products = _scenario_lines()
    discount = DiscountRequest(type="fixed", value=Decimal("800"), reason="Oops")
    with pytest.raises(ValidationFailureError):
        invoice_totals(services, products, discount, InvoiceSettings())


def test_discount_over_maximum_percentage_is_rejected() -> None:
    services, products = _scenario_lines()
    discount = DiscountRequest(type="percentage", value=Decimal("30"), reason="Staff")
    with pytest.raises(ValidationFailureError):
        invoice_totals(
            services, products, discount, InvoiceSettings(max_discount_percentage=Decimal("25"))
        )


def test_payment_status_transitions() -> None:
    total = Decimal("805")
    assert payment_status_for(Decimal("0"), total) == "unpaid"
    assert payment_status_for(Decimal("400"), total) == "partial"
    assert payment_status_for(Decimal("805"), total) == "paid"
    assert payment_status_for(Decimal("900"), total) == "paid"
    assert payment_status_for(Decimal("0"), total, previously_paid=Decimal("805")) == "refunded"
