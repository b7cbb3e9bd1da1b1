from typing import List

from fastapi import APIRouter, Depends, Response

from app.dependencies.services import (
    get_invoice_service,
    get_payment_ledger,
    get_store_dependency,
)
from app.schemas.billing import (
    Invoice,
    InvoiceCreateRequest,
    InvoiceListRequest,
    InvoiceListResponse,
    InvoicePayment,
    InvoiceVoidRequest,
    PaymentRequest,
)
from app.schemas.settings import InvoiceSettings, InvoiceSettingsUpdate
from app.services import InvoiceService, PaymentLedger
from app.services.exceptions import ServiceError
from app.services.store import InMemoryStore
from app.tools.errors import http_error

router = APIRouter()


@router.get("/settings", response_model=InvoiceSettings)
async def get_invoice_settings(store: InMemoryStore = Depends(get_store_dependency)):
    return await store.settings.get()


@router.put("/settings", response_model=InvoiceSettings)
async def update_invoice_settings(
    req: InvoiceSettingsUpdate,
    store: InMemoryStore = Depends(get_store_dependency),
):
    return await store.settings.update(req)


@router.post("/create", response_model=Invoice)
async def create_invoice(
    req: InvoiceCreateRequest,
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        return await service.create(req)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/list", response_model=InvoiceListResponse)
async def list_invoices(
    req: InvoiceListRequest,
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.list(req)


@router.get("/{invoice_id}", response_model=Invoice)
async def get_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        return await service.get(invoice_id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.put("/{invoice_id}", response_model=Invoice)
async def update_draft_invoice(
    invoice_id: str,
    req: InvoiceCreateRequest,
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        return await service.update_draft(invoice_id, req)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.delete("/{invoice_id}", status_code=204)
async def delete_draft_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        await service.delete_draft(invoice_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@router.post("/{invoice_id}/finalize", response_model=Invoice)
async def finalize_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        return await service.finalize(invoice_id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/{invoice_id}/deduct-stock", response_model=Invoice)
async def retry_stock_deduction(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        return await service.retry_stock_deduction(invoice_id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/{invoice_id}/send", response_model=Invoice)
async def mark_invoice_sent(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        return await service.mark_sent(invoice_id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/{invoice_id}/cancel", response_model=Invoice)
async def cancel_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        return await service.cancel(invoice_id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/{invoice_id}/void", response_model=Invoice)
async def void_invoice(
    invoice_id: str,
    req: InvoiceVoidRequest,
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        return await service.void(invoice_id, req.reason)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/{invoice_id}/payments", response_model=Invoice)
async def record_payment(
    invoice_id: str,
    req: PaymentRequest,
    ledger: PaymentLedger = Depends(get_payment_ledger),
):
    try:
        return await ledger.record_payment(invoice_id, req)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.get("/{invoice_id}/payments", response_model=List[InvoicePayment])
async def list_payments(
    invoice_id: str,
    ledger: PaymentLedger = Depends(get_payment_ledger),
):
    try:
        return await ledger.list_payments(invoice_id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/{invoice_id}/write-off", response_model=Invoice)
async def write_off_invoice(
    invoice_id: str,
    ledger: PaymentLedger = Depends(get_payment_ledger),
):
    try:
        return await ledger.write_off(invoice_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
