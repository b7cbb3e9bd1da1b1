from fastapi import APIRouter, Depends

from app.schemas.appointment import (
    Booking,
    BookingListRequest,
    BookingListResponse,
    BookingRequest,
    ConflictCheckRequest,
    ConflictCheckResponse,
    TimeAssignmentRequest,
)

from app.dependencies.services import get_booking_service
from app.services import BookingService
from app.services.exceptions import ServiceError
from app.tools.errors import http_error

router = APIRouter()


@router.post("/book", response_model=Booking)
async def book_appointment(
    req: BookingRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.create(req)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/list", response_model=BookingListResponse)
async def list_bookings(
    req: BookingListRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.list(req)


@router.post("/conflicts", response_model=ConflictCheckResponse)
async def check_conflicts(
    req: ConflictCheckRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.check(req)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.get("/{booking_id}", response_model=Booking)
async def get_booking(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.get(booking_id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/{booking_id}/assign-time", response_model=Booking)
async def assign_time(
    booking_id: str,
    req: TimeAssignmentRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.assign_time(booking_id, req)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/{booking_id}/complete", response_model=Booking)
async def complete_booking(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.complete(booking_id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/{booking_id}/cancel", response_model=Booking)
async def cancel_booking(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.cancel(booking_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
