from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

OverpaymentPolicy = Literal["credit", "reject"]
StockShortfallPolicy = Literal["skip", "block"]


def _require_number_placeholder(value: Optional[str]) -> Optional[str]:
    if value is not None and "{NUMBER}" not in value:
        raise ValueError("invoice_number_format must contain {NUMBER}")
    return value


class InvoiceSettings(BaseModel):
    """Business rules shared by every invoice operation.

    A single record lives in the store. Services read a copy at the start of an
    operation and pass it into the calculators, so the rules used for one
    invoice never change halfway through a unit of work.
    """

    tax_enabled: bool = True
    tax_rate: Decimal = Field(Decimal("0.15"), ge=0, le=1)
    tax_name: str = "VAT"

    default_service_commission_rate: Optional[Decimal] = Field(Decimal("0.30"), ge=0, le=1)
    default_product_commission_rate: Optional[Decimal] = Field(Decimal("0.10"), ge=0, le=1)
    default_service_product_commission_rate: Optional[Decimal] = Field(
        Decimal("0.05"), ge=0, le=1
    )

    invoice_number_prefix: str = "INV"
    invoice_number_format: str = "{PREFIX}-{YEAR}-{NUMBER}"
    invoice_number_padding: int = Field(5, ge=1, le=12)
    next_invoice_number: int = Field(1, ge=1)

    max_discount_percentage: Decimal = Field(Decimal("100"), ge=0, le=100)
    require_discount_reason: bool = True

    deduct_stock_on_finalize: bool = True
    allow_negative_stock: bool = False
    stock_shortfall_policy: StockShortfallPolicy = "skip"

    require_booking_for_invoice: bool = False
    auto_approve_commission_on_payment: bool = True
    overpayment_policy: OverpaymentPolicy = "credit"

    currency: str = "ZAR"

    @field_validator("invoice_number_format")
    def _check_number_format(cls, value):
        return _require_number_placeholder(value)


class InvoiceSettingsUpdate(BaseModel):
    """Partial update; only the fields that are set overwrite the stored record."""

    tax_enabled: Optional[bool] = None
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    tax_name: Optional[str] = None
    default_service_commission_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    default_product_commission_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    default_service_product_commission_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    invoice_number_prefix: Optional[str] = None
    invoice_number_format: Optional[str] = None
    invoice_number_padding: Optional[int] = Field(None, ge=1, le=12)
    max_discount_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    require_discount_reason: Optional[bool] = None
    deduct_stock_on_finalize: Optional[bool] = None
    allow_negative_stock: Optional[bool] = None
    stock_shortfall_policy: Optional[StockShortfallPolicy] = None
    require_booking_for_invoice: Optional[bool] = None
    auto_approve_commission_on_payment: Optional[bool] = None
    overpayment_policy: Optional[OverpaymentPolicy] = None
    currency: Optional[str] = None

    @field_validator("invoice_number_format")
    def _check_number_format(cls, value):
        return _require_number_placeholder(value)
