from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

BookingStatus = Literal["REQUESTED", "CONFIRMED", "COMPLETED", "CANCELLED"]


class BookingRequest(BaseModel):
    user_id: str
    customer_name: str
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    stylist_id: Optional[str] = None
    requested_date: date
    requested_time_window: Optional[str] = None  # e.g. morning | afternoon | evening
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    notes: Optional[str] = None


class Booking(BaseModel):
    booking_id: str
    user_id: str
    customer_name: str
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    stylist_id: Optional[str] = None
    requested_date: date
    requested_time_window: Optional[str] = None
    assigned_start_time: Optional[datetime] = None
    assigned_end_time: Optional[datetime] = None
    confirmed_time: Optional[datetime] = None  # legacy mirror of assigned_start_time
    status: BookingStatus = "REQUESTED"
    commission_rate: Optional[Decimal] = None
    payment_status: Optional[str] = None
    payment_date: Optional[datetime] = None
    invoice_id: Optional[str] = None
    invoiced: bool = False
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class TimeAssignmentRequest(BaseModel):
    stylist_id: str
    assigned_start_time: datetime
    assigned_end_time: datetime


class ConflictCheckRequest(BaseModel):
    stylist_id: str
    start_time: datetime
    end_time: datetime
    exclude_booking_id: Optional[str] = None


class ConflictCheckResponse(BaseModel):
    conflict: bool
    booking_id: Optional[str] = None
    customer_name: Optional[str] = None
    assigned_start_time: Optional[datetime] = None
    assigned_end_time: Optional[datetime] = None


class BookingListRequest(BaseModel):
    stylist_id: Optional[str] = None
    status: Optional[BookingStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class BookingListResponse(BaseModel):
    total: int
    items: List[Booking]
