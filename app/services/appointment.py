from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from app.schemas.appointment import (
    Booking,
    BookingListRequest,
    BookingListResponse,
    BookingRequest,
    ConflictCheckRequest,
    ConflictCheckResponse,
    TimeAssignmentRequest,
)
from app.services.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationFailureError,
)
from app.services.store import InMemoryStore, get_store, normalize_dt, unit_of_work

logger = logging.getLogger(__name__)

_OPEN_STATUSES = ("REQUESTED", "CONFIRMED")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BookingService:
    def __init__(
        self,
        store: InMemoryStore | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store or get_store()
        self._clock = clock or _utc_now

    async def create(self, request: BookingRequest) -> Booking:
        logger.info("Booking request for %s on %s", request.customer_name, request.requested_date)
        if request.stylist_id and await self._store.catalog.get_stylist(request.stylist_id) is None:
            raise NotFoundError("Stylist", request.stylist_id)
        return await self._store.bookings.create(request, now=self._clock())

    async def get(self, booking_id: str) -> Booking:
        booking = await self._store.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    async def list(self, request: BookingListRequest) -> BookingListResponse:
        items = await self._store.bookings.list(request)
        return BookingListResponse(total=len(items), items=items)

    async def find_conflict(
        self,
        stylist_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: str | None = None,
    ) -> Optional[Booking]:
        """Return an open booking of the stylist whose assigned slot overlaps ``[start, end)``."""

        return await self._store.bookings.find_conflict(
            stylist_id, start, end, exclude_booking_id
        )

    async def check(self, request: ConflictCheckRequest) -> ConflictCheckResponse:
        _validate_interval(request.start_time, request.end_time)
        conflict = await self.find_conflict(
            request.stylist_id,
            request.start_time,
            request.end_time,
            request.exclude_booking_id,
        )
        if conflict is None:
            return ConflictCheckResponse(conflict=False)
        return ConflictCheckResponse(
            conflict=True,
            booking_id=conflict.booking_id,
            customer_name=conflict.customer_name,
            assigned_start_time=conflict.assigned_start_time,
            assigned_end_time=conflict.assigned_end_time,
        )

    async def assign_time(self, booking_id: str, assignment: TimeAssignmentRequest) -> Booking:
        _validate_interval(assignment.assigned_start_time, assignment.assigned_end_time)

        # conflict check and write happen under the same stylist lock
        async with self._store.stylist_locks.get(assignment.stylist_id):
            async with unit_of_work(self._store, "assign booking time"):
                booking = await self.get(booking_id)
                if booking.status not in _OPEN_STATUSES:
                    raise InvalidStateTransitionError(
                        f"Cannot assign a time to a {booking.status} booking",
                        current_state=booking.status,
                    )
                if await self._store.catalog.get_stylist(assignment.stylist_id) is None:
                    raise NotFoundError("Stylist", assignment.stylist_id)

                conflict = await self.find_conflict(
                    assignment.stylist_id,
                    assignment.assigned_start_time,
                    assignment.assigned_end_time,
                    booking_id,
                )
                if conflict is not None:
                    raise ConflictError(
                        f"Time slot conflict with booking {conflict.booking_id} "
                        f"for {conflict.customer_name or 'a customer'}",
                        booking_id=conflict.booking_id,
                        customer_name=conflict.customer_name,
                    )

                updated = booking.model_copy(
                    update={
                        "stylist_id": assignment.stylist_id,
                        "assigned_start_time": assignment.assigned_start_time,
                        "assigned_end_time": assignment.assigned_end_time,
                        "confirmed_time": assignment.assigned_start_time,
                        "status": "CONFIRMED",
                        "updated_at": self._clock(),
                    }
                )
                await self._store.bookings.save(updated)

        logger.info(
            "Assigned booking %s to stylist %s at %s",
            booking_id,
            assignment.stylist_id,
            assignment.assigned_start_time.isoformat(),
        )
        return updated

    async def complete(self, booking_id: str) -> Booking:
        return await self._transition(booking_id, "COMPLETED")

    async def cancel(self, booking_id: str) -> Booking:
        return await self._transition(booking_id, "CANCELLED")

    async def _transition(self, booking_id: str, status: str) -> Booking:
        stylist_id = (await self.get(booking_id)).stylist_id
        # same lock as assign_time for this stylist
        async with self._store.stylist_locks.get(stylist_id or booking_id):
            async with unit_of_work(self._store, f"mark booking {status.lower()}"):
                booking = await self.get(booking_id)
                if booking.status not in _OPEN_STATUSES:
                    raise InvalidStateTransitionError(
                        f"Booking {booking_id} is already {booking.status}",
                        current_state=booking.status,
                    )
                now = self._clock()
                changes = {"status": status, "updated_at": now}
                if status == "COMPLETED":
                    changes["completed_at"] = now
                updated = booking.model_copy(update=changes)
                await self._store.bookings.save(updated)
        logger.info("Booking %s marked %s", booking_id, status)
        return updated


def _validate_interval(start: datetime, end: datetime) -> None:
    if normalize_dt(end) <= normalize_dt(start):
        raise ValidationFailureError("The end time must be after the start time")
