from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from app.schemas.billing import DiscountRequest, PaymentStatus
from app.schemas.settings import InvoiceSettings
from app.services.exceptions import ValidationFailureError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
POINTS_PER_CURRENCY_UNIT = Decimal("10")


def to_money(value: Decimal | int | float | str) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineAmounts:
    total: Decimal
    commission_rate: Decimal
    commission_amount: Decimal


def line_amounts(
    unit_price: Decimal,
    quantity: int,
    discount: Decimal,
    commission_rate: Decimal,
) -> LineAmounts:
    """Compute a line total (never below zero) and the commission earned on it."""

    gross = Decimal(unit_price) * quantity - Decimal(discount)
    total = to_money(max(gross, ZERO))
    return LineAmounts(
        total=total,
        commission_rate=commission_rate,
        commission_amount=to_money(total * commission_rate),
    )


def validate_line(kind: str, item_id: str, unit_price: Decimal, quantity: int, discount: Decimal) -> None:
    if quantity < 0:
        raise ValidationFailureError(f"{kind} {item_id}: quantity cannot be negative")
    if unit_price < 0:
        raise ValidationFailureError(f"{kind} {item_id}: unit price cannot be negative")
    if discount < 0:
        raise ValidationFailureError(f"{kind} {item_id}: line discount cannot be negative")


def discount_amount(discount: Optional[DiscountRequest], subtotal: Decimal) -> Decimal:
    if discount is None:
        return ZERO
    if discount.value < 0 or (discount.amount is not None and discount.amount < 0):
        raise ValidationFailureError("Discount cannot be negative")

    if discount.type == "percentage":
        return to_money(subtotal * discount.value / HUNDRED)
    if discount.type == "fixed":
        return to_money(discount.value)
    if discount.type == "loyalty_points":
        return to_money(discount.value / POINTS_PER_CURRENCY_UNIT)
    # promo_code and manual carry an amount worked out by the caller
    if discount.amount is None:
        raise ValidationFailureError(f"A {discount.type} discount needs an amount")
    return to_money(discount.amount)


def validate_discount(
    discount: Optional[DiscountRequest],
    amount: Decimal,
    subtotal: Decimal,
    settings: InvoiceSettings,
) -> None:
    if discount is None or amount <= 0:
        return
    if settings.require_discount_reason and not (discount.reason or "").strip():
        raise ValidationFailureError("A reason is required when applying a discount")
    if amount > subtotal:
        raise ValidationFailureError(
            f"Discount {amount} exceeds the invoice subtotal {subtotal}"
        )
    share = amount / subtotal * HUNDRED
    if discount.type == "percentage":
        share = discount.value
    if share > settings.max_discount_percentage:
        raise ValidationFailureError(
            f"Discount of {share:.2f}% exceeds the maximum of "
            f"{settings.max_discount_percentage}%"
        )


@dataclass(frozen=True)
class InvoiceTotals:
    services_subtotal: Decimal
    products_subtotal: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    services_commission: Decimal
    products_commission: Decimal

    @property
    def commission_total(self) -> Decimal:
        return self.services_commission + self.products_commission


def invoice_totals(
    services: Iterable[LineAmounts],
    products: Iterable[LineAmounts],
    discount: Optional[DiscountRequest],
    settings: InvoiceSettings,
) -> InvoiceTotals:
    services = list(services)
    products = list(products)
    services_subtotal = sum((line.total for line in services), ZERO)
    products_subtotal = sum((line.total for line in products), ZERO)
    subtotal = services_subtotal + products_subtotal

    discount_value = discount_amount(discount, subtotal)
    validate_discount(discount, discount_value, subtotal, settings)

    taxable = subtotal - discount_value
    tax_rate = settings.tax_rate if settings.tax_enabled else ZERO
    tax = to_money(taxable * tax_rate) if settings.tax_enabled else ZERO

    return InvoiceTotals(
        services_subtotal=services_subtotal,
        products_subtotal=products_subtotal,
        subtotal=subtotal,
        discount_amount=discount_value,
        taxable_amount=taxable,
        tax_rate=tax_rate,
        tax_amount=tax,
        total=taxable + tax,
        services_commission=sum((line.commission_amount for line in services), ZERO),
        products_commission=sum((line.commission_amount for line in products), ZERO),
    )


def payment_status_for(
    amount_paid: Decimal,
    total: Decimal,
    *,
    previously_paid: Decimal = ZERO,
) -> PaymentStatus:
    if amount_paid <= 0 and previously_paid > 0:
        return "refunded"
    if amount_paid >= total:
        return "paid"
    if amount_paid > 0:
        return "partial"
    return "unpaid"
