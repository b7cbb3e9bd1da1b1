from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

DiscountType = Literal["percentage", "fixed", "loyalty_points", "promo_code", "manual"]
InvoiceStatus = Literal["draft", "finalized", "sent", "cancelled", "void"]
PaymentStatus = Literal["unpaid", "partial", "paid", "refunded", "written_off"]
CommissionStatus = Literal["pending", "approved", "paid", "cancelled"]
ProductType = Literal["retail", "service"]

ZERO = Decimal("0.00")


class ServiceLineRequest(BaseModel):
    service_id: str
    service_name: Optional[str] = None  # defaults to the catalog name
    unit_price: Optional[Decimal] = None  # defaults to the catalog price
    quantity: int = 1
    discount: Decimal = Decimal("0")
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=1)  # explicit override
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None


class ProductLineRequest(BaseModel):
    product_id: str
    product_name: Optional[str] = None
    unit_price: Optional[Decimal] = None
    quantity: int = 1
    discount: Decimal = Decimal("0")
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    notes: Optional[str] = None


class DiscountRequest(BaseModel):
    type: DiscountType
    value: Decimal = Decimal("0")
    amount: Optional[Decimal] = None  # caller-supplied for promo_code and manual
    reason: Optional[str] = None


class InvoiceCreateRequest(BaseModel):
    booking_id: Optional[str] = None
    user_id: str
    customer_name: Optional[str] = None
    stylist_id: str
    service_date: date
    services: List[ServiceLineRequest] = Field(default_factory=list)
    products: List[ProductLineRequest] = Field(default_factory=list)
    discount: Optional[DiscountRequest] = None
    client_notes: Optional[str] = None
    internal_notes: Optional[str] = None
    created_by: Optional[str] = None


class Discount(BaseModel):
    type: Optional[DiscountType] = None
    value: Decimal = ZERO
    amount: Decimal = ZERO
    reason: Optional[str] = None


class InvoiceServiceLine(BaseModel):
    line_id: str
    invoice_id: str
    service_id: str
    service_name: str
    service_category: Optional[str] = None
    unit_price: Decimal
    quantity: int
    discount: Decimal
    total: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None


class InvoiceProductLine(BaseModel):
    line_id: str
    invoice_id: str
    product_id: str
    product_name: str
    product_category: Optional[str] = None
    product_type: ProductType = "retail"
    unit_price: Decimal
    quantity: int
    discount: Decimal
    total: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    deducted_from_stock: bool = False
    notes: Optional[str] = None


class PaymentRequest(BaseModel):
    amount: Decimal
    payment_method: str
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    processed_by: Optional[str] = None


class InvoicePayment(BaseModel):
    payment_id: str
    invoice_id: str
    amount: Decimal
    payment_method: str
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    processed_by: Optional[str] = None
    payment_date: datetime


class InvoiceCommission(BaseModel):
    commission_id: str
    invoice_id: str
    stylist_id: str
    services_commission: Decimal
    products_commission: Decimal
    total_commission: Decimal
    payment_status: CommissionStatus = "pending"
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    payment_date: Optional[datetime] = None
    created_at: datetime


class Invoice(BaseModel):
    invoice_id: str
    invoice_number: Optional[str] = None
    booking_id: Optional[str] = None
    user_id: str
    customer_name: Optional[str] = None
    stylist_id: str

    services_subtotal: Decimal = ZERO
    products_subtotal: Decimal = ZERO
    subtotal: Decimal = ZERO
    discount: Discount = Field(default_factory=Discount)
    tax_rate: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total: Decimal = ZERO

    payment_status: PaymentStatus = "unpaid"
    amount_paid: Decimal = ZERO
    amount_due: Decimal = ZERO

    commission_total: Decimal = ZERO
    commission_paid: bool = False
    commission_paid_date: Optional[datetime] = None

    status: InvoiceStatus = "draft"
    service_date: date
    invoice_date: Optional[date] = None
    client_notes: Optional[str] = None
    internal_notes: Optional[str] = None
    created_by: Optional[str] = None
    void_reason: Optional[str] = None

    created_at: datetime
    updated_at: datetime
    finalized_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None

    # populated when the invoice is read with its children
    services: List[InvoiceServiceLine] = Field(default_factory=list)
    products: List[InvoiceProductLine] = Field(default_factory=list)
    payments: List[InvoicePayment] = Field(default_factory=list)
    commission: Optional[InvoiceCommission] = None


class InvoiceListRequest(BaseModel):
    status: Optional[InvoiceStatus] = None
    payment_status: Optional[PaymentStatus] = None
    stylist_id: Optional[str] = None
    user_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search: Optional[str] = None
    limit: int = Field(50, ge=1, le=500)
    offset: int = Field(0, ge=0)


class InvoiceSummary(BaseModel):
    invoice_id: str
    invoice_number: Optional[str] = None
    customer_name: Optional[str] = None
    stylist_id: str
    service_date: date
    total: Decimal
    amount_due: Decimal
    status: InvoiceStatus
    payment_status: PaymentStatus


class InvoiceListResponse(BaseModel):
    total: int
    items: List[InvoiceSummary]


class InvoiceVoidRequest(BaseModel):
    reason: Optional[str] = None
