from fastapi import APIRouter, Depends

from app.dependencies.services import get_commission_service
from app.schemas.billing import InvoiceCommission
from app.schemas.commission import (
    CommissionApproveRequest,
    CommissionReport,
    CommissionReportRequest,
    CommissionSummaryRequest,
    CommissionSummaryResponse,
    MarkCommissionsPaidRequest,
    MarkCommissionsPaidResponse,
)
from app.services import CommissionService
from app.services.exceptions import ServiceError
from app.tools.errors import http_error

router = APIRouter()


@router.post("/report", response_model=CommissionReport)
async def commission_report(
    req: CommissionReportRequest,
    service: CommissionService = Depends(get_commission_service),
):
    try:
        return await service.get_report(req.stylist_id, req.start_date, req.end_date)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/summary", response_model=CommissionSummaryResponse)
async def commission_summary(
    req: CommissionSummaryRequest,
    service: CommissionService = Depends(get_commission_service),
):
    try:
        return await service.summary(req.start_date, req.end_date)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/approve", response_model=InvoiceCommission)
async def approve_commission(
    req: CommissionApproveRequest,
    service: CommissionService = Depends(get_commission_service),
):
    try:
        return await service.approve(req.invoice_id, req.approved_by)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/mark-paid", response_model=MarkCommissionsPaidResponse)
async def mark_commissions_paid(
    req: MarkCommissionsPaidRequest,
    service: CommissionService = Depends(get_commission_service),
):
    try:
        return await service.mark_paid(req.invoice_ids, req.payment_reference, req.payment_date)
    except ServiceError as exc:
        raise http_error(exc) from exc
