from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .core.capacity import (
    UNASSIGNED,
    AttendanceWindow,
    BookedSegment,
    EmployeeAssignment,
    OwnerAssignment,
    ServiceRecord,
)
from .core.civil_time import from_utc_naive, to_utc_naive
from .models import (
    AvailedService,
    Booking,
    Employee,
    EmployeeAttendance,
    Service,
)

ATTENDANCE_ACTIVE_STATUSES = ("PRESENT", "LATE")
CANCELLED = "CANCELLED"
ACCEPTED = "ACCEPTED"


@dataclass(frozen=True)
class FutureBooking:
    id: int
    scheduled_at: datetime
    customer_name: str | None
    service_ids: tuple[int, ...]


def find_services_by_ids(
    db: Session, business_id: int, service_ids: Iterable[int]
) -> dict[int, ServiceRecord]:
    ids = sorted({int(i) for i in service_ids})
    if not ids:
        return {}
    rows = db.execute(
        select(Service).where(Service.business_id == business_id, Service.id.in_(ids))
    ).scalars()
    return {
        row.id: ServiceRecord(
            id=row.id, category=row.category, duration_min=int(row.duration_min or 0)
        )
        for row in rows
    }


def _assignment_for(item: AvailedService):
    if item.served_by_id:
        return EmployeeAssignment(item.served_by_id)
    if item.served_by_owner_id:
        return OwnerAssignment(item.served_by_owner_id)
    return UNASSIGNED


def find_booked_segments_for_day(
    db: Session, business_id: int, day_start: datetime, day_end: datetime
) -> list[BookedSegment]:
    bookings = db.execute(
        select(Booking)
        .where(
            Booking.business_id == business_id,
            Booking.scheduled_at >= to_utc_naive(day_start),
            Booking.scheduled_at <= to_utc_naive(day_end),
            Booking.status != CANCELLED,
        )
        .options(selectinload(Booking.availed_services).selectinload(AvailedService.service))
    ).scalars()

    segments: list[BookedSegment] = []
    for booking in bookings:
        for item in booking.availed_services:
            if item.status == CANCELLED:
                continue
            start = item.scheduled_at or booking.scheduled_at
            end = item.estimated_end or booking.estimated_end
            if start is None or end is None:
                continue
            segments.append(
                BookedSegment(
                    start=from_utc_naive(start),
                    end=from_utc_naive(end),
                    category=item.service.category.lower(),
                    assignment=_assignment_for(item),
                )
            )
    return segments


def find_attendance_windows_for_day(
    db: Session, business_id: int, day_start: datetime, day_end: datetime
) -> dict[int, list[AttendanceWindow]]:
    rows = db.execute(
        select(EmployeeAttendance)
        .join(Employee, Employee.id == EmployeeAttendance.employee_id)
        .where(
            Employee.business_id == business_id,
            EmployeeAttendance.date >= to_utc_naive(day_start),
            EmployeeAttendance.date < to_utc_naive(day_end),
            EmployeeAttendance.status.in_(ATTENDANCE_ACTIVE_STATUSES),
            EmployeeAttendance.time_in.is_not(None),
        )
    ).scalars()

    windows: dict[int, list[AttendanceWindow]] = {}
    for row in rows:
        windows.setdefault(row.employee_id, []).append(
            AttendanceWindow(
                time_in=from_utc_naive(row.time_in),
                time_out=from_utc_naive(row.time_out),
            )
        )
    return windows


def find_future_accepted_bookings(
    db: Session,
    business_id: int,
    start_at: datetime,
    end_before: datetime,
    limit: int,
) -> list[FutureBooking]:
    bookings = db.execute(
        select(Booking)
        .where(
            Booking.business_id == business_id,
            Booking.status == ACCEPTED,
            Booking.scheduled_at >= to_utc_naive(start_at),
            Booking.scheduled_at < to_utc_naive(end_before),
        )
        .options(selectinload(Booking.availed_services), selectinload(Booking.customer))
        .order_by(Booking.scheduled_at.asc(), Booking.id.asc())
        .limit(max(1, int(limit)))
    ).scalars()

    return [
        FutureBooking(
            id=b.id,
            scheduled_at=from_utc_naive(b.scheduled_at),
            customer_name=b.customer.name if b.customer else None,
            service_ids=tuple(
                item.service_id for item in b.availed_services if item.status != CANCELLED
            ),
        )
        for b in bookings
    ]
