from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.billing import CommissionStatus, PaymentStatus


class CommissionReportRequest(BaseModel):
    stylist_id: str
    start_date: date
    end_date: date


class CommissionLine(BaseModel):
    """One invoice's commission as it appears on a payroll report."""

    invoice_id: str
    invoice_number: Optional[str] = None
    customer_name: Optional[str] = None
    service_date: date
    invoice_total: Decimal
    invoice_payment_status: PaymentStatus
    services_commission: Decimal
    products_commission: Decimal
    total_commission: Decimal
    payment_status: CommissionStatus


class CommissionSummary(BaseModel):
    total_invoices: int = 0
    total_sales: Decimal = Decimal("0.00")
    services_commission: Decimal = Decimal("0.00")
    products_commission: Decimal = Decimal("0.00")
    total_commission: Decimal = Decimal("0.00")
    paid_commission: Decimal = Decimal("0.00")
    pending_commission: Decimal = Decimal("0.00")  # pending plus approved


class CommissionReport(BaseModel):
    stylist_id: str
    start_date: date
    end_date: date
    summary: CommissionSummary
    commissions: List[CommissionLine] = Field(default_factory=list)


class StylistCommissionSummary(CommissionSummary):
    stylist_id: str
    stylist_name: str


class CommissionSummaryRequest(BaseModel):
    start_date: date
    end_date: date


class CommissionSummaryResponse(BaseModel):
    start_date: date
    end_date: date
    summaries: List[StylistCommissionSummary]


class CommissionApproveRequest(BaseModel):
    invoice_id: str
    approved_by: Optional[str] = None


class MarkCommissionsPaidRequest(BaseModel):
    invoice_ids: List[str] = Field(..., min_length=1)
    payment_reference: Optional[str] = None
    payment_date: Optional[datetime] = None


class MarkCommissionsPaidResponse(BaseModel):
    count: int
    payment_reference: str
    payment_date: datetime
