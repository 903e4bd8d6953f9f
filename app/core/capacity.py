"""Slot capacity computation.

Everything in this module is pure: callers fetch the business context,
policy, catalog rows, booked segments and attendance, and pass them in
together with an explicit ``now``. Given the same inputs the result is
always the same list of slots.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Mapping, Sequence

from app.context import GENERAL_CATEGORY, BusinessContext, HoursRow, Provider
from app.core.civil_time import (
    at_civil_time,
    civil_date,
    day_bounds,
    day_of_week,
    horizon_day_diff,
)
from app.policy import BusinessPolicy

DEFAULT_SERVICE_DURATION_MIN = 30
DEFAULT_SLOT_INTERVAL_MIN = 30
MIN_SLOT_INTERVAL_MIN = 5


class SlotSource(str, Enum):
    ATTENDANCE = "ATTENDANCE"
    ROSTER = "ROSTER"


class SlotConfidence(str, Enum):
    CONFIRMED = "CONFIRMED"
    TENTATIVE = "TENTATIVE"


@dataclass(frozen=True)
class TimeSlot:
    start_time: datetime
    end_time: datetime
    available_employee_count: int
    available_owner_count: int
    source: SlotSource
    confidence: SlotConfidence
    available: bool = True


@dataclass(frozen=True)
class SelectedService:
    id: int
    quantity: int = 1


@dataclass(frozen=True)
class ServiceRecord:
    id: int
    category: str
    duration_min: int


@dataclass(frozen=True)
class AttendanceWindow:
    time_in: datetime
    time_out: datetime | None = None

    def covers(self, start: datetime, end: datetime) -> bool:
        return self.time_in <= start and (self.time_out is None or self.time_out >= end)


@dataclass(frozen=True)
class EmployeeAssignment:
    employee_id: int


@dataclass(frozen=True)
class OwnerAssignment:
    owner_id: int


class Unassigned:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNASSIGNED"


UNASSIGNED = Unassigned()

Assignment = EmployeeAssignment | OwnerAssignment | Unassigned


@dataclass(frozen=True)
class BookedSegment:
    start: datetime
    end: datetime
    category: str
    assignment: Assignment = UNASSIGNED

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class HoursMeta:
    windows: tuple[Window, ...]
    window_minutes: float


@dataclass(frozen=True)
class SegmentAvailability:
    available_employees: int
    available_owners: int

    @property
    def total_available(self) -> int:
        return self.available_employees + self.available_owners


NO_CAPACITY = SegmentAvailability(0, 0)


@dataclass(frozen=True)
class ServiceUnit:
    service_id: int
    category: str
    duration_min: int
    hours: HoursMeta


def normalize_slot_interval(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return DEFAULT_SLOT_INTERVAL_MIN
    return max(MIN_SLOT_INTERVAL_MIN, math.floor(value))


def normalize_quantity(value) -> int:
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        quantity = 0
    return max(1, quantity or 1)


def is_within_horizon(policy: BusinessPolicy, target: date | datetime, now: datetime) -> bool:
    diff = horizon_day_diff(target, now)
    if diff < 0 or diff >= policy.booking_horizon_days:
        return False
    if not policy.booking_v2_enabled and diff > 0:
        return False
    return True


def build_windows(row: HoursRow, day: date) -> tuple[Window, ...]:
    if row.is_closed:
        return ()

    bounds = day_bounds(day)
    if row.open_time == row.close_time:
        return (Window(bounds.day_start, bounds.day_end),)

    open_at = at_civil_time(day, row.open_time)
    close_at = at_civil_time(day, row.close_time)
    if open_at < close_at:
        return (Window(open_at, close_at),)

    # hours wrap past midnight: keep both ends inside this civil day
    return (
        Window(open_at, bounds.day_end),
        Window(bounds.day_start, close_at),
    )


class HoursResolver:
    """Per-category operating windows for one civil day, with ``general`` fallback."""

    def __init__(self, hours: Sequence[HoursRow], day: date):
        self.hours = hours
        self.day = day
        self.weekday = day_of_week(day)
        self._resolved: dict[str, HoursMeta] = {}

    def _find_row(self, key: str) -> HoursRow | None:
        for row in self.hours:
            if row.day_of_week == self.weekday and row.category.lower() == key:
                return row
        return None

    def for_category(self, category: str) -> HoursMeta:
        key = category.lower()
        if key in self._resolved:
            return self._resolved[key]

        row = self._find_row(key) or self._find_row(GENERAL_CATEGORY)
        if row is None:
            meta = HoursMeta(windows=(), window_minutes=0)
        else:
            windows = build_windows(row, self.day)
            minutes = sum((w.end - w.start).total_seconds() / 60 for w in windows)
            meta = HoursMeta(windows=windows, window_minutes=minutes)
        self._resolved[key] = meta
        return meta


def is_within_windows(start: datetime, end: datetime, windows: Sequence[Window]) -> bool:
    return any(start >= w.start and end <= w.end for w in windows)


def is_employee_clocked_in(
    attendance: Mapping[int, Sequence[AttendanceWindow]],
    employee_id: int,
    start: datetime,
    end: datetime,
) -> bool:
    return any(w.covers(start, end) for w in attendance.get(employee_id, ()))


def apply_unassigned_load(
    available_employees: int, available_owners: int, unassigned_count: int
) -> SegmentAvailability:
    """Subtract unplaced overlapping work, employees first, then owners.

    Product has not confirmed why employees absorb this load before owners;
    the order is kept as the platform has always applied it.
    """
    employees = max(0, available_employees)
    owners = max(0, available_owners)
    remaining = max(0, unassigned_count)

    if remaining > 0:
        reduction = min(remaining, employees)
        employees -= reduction
        remaining -= reduction

    if remaining > 0:
        owners = max(0, owners - remaining)

    return SegmentAvailability(available_employees=employees, available_owners=owners)


def compute_segment_availability(
    *,
    category: str,
    start: datetime,
    end: datetime,
    booked_segments: Sequence[BookedSegment],
    eligible_employee_ids: Sequence[int],
    eligible_owner_ids: Sequence[int],
) -> SegmentAvailability:
    if not eligible_employee_ids and not eligible_owner_ids:
        return NO_CAPACITY

    employee_pool = set(eligible_employee_ids)
    owner_pool = set(eligible_owner_ids)
    busy_employees: set[int] = set()
    busy_owners: set[int] = set()
    unplaced = 0
    key = category.lower()

    for segment in booked_segments:
        if segment.category != key or not segment.overlaps(start, end):
            continue

        assignment = segment.assignment
        if isinstance(assignment, EmployeeAssignment) and assignment.employee_id in employee_pool:
            busy_employees.add(assignment.employee_id)
        elif isinstance(assignment, OwnerAssignment) and assignment.owner_id in owner_pool:
            busy_owners.add(assignment.owner_id)
        else:
            # unassigned, or assigned to someone outside this pool: it still
            # occupies one generic seat
            unplaced += 1

    return apply_unassigned_load(
        available_employees=len(employee_pool) - len(busy_employees),
        available_owners=len(owner_pool) - len(busy_owners),
        unassigned_count=unplaced,
    )


def qualified_ids(providers: Sequence[Provider], category: str) -> list[int]:
    return [p.id for p in providers if p.is_qualified_for(category)]


def expand_service_units(
    services: Sequence[SelectedService],
    catalog: Mapping[int, ServiceRecord],
    hours: HoursResolver,
) -> list[ServiceUnit]:
    units: list[ServiceUnit] = []
    for selected in services:
        record = catalog.get(selected.id)
        if record is None:
            continue
        duration = int(record.duration_min or DEFAULT_SERVICE_DURATION_MIN)
        meta = hours.for_category(record.category)
        for _ in range(normalize_quantity(selected.quantity)):
            units.append(
                ServiceUnit(
                    service_id=record.id,
                    category=record.category,
                    duration_min=duration,
                    hours=meta,
                )
            )
    return units


def order_units_for_packing(units: Sequence[ServiceUnit]) -> list[ServiceUnit]:
    return sorted(
        units,
        key=lambda u: (u.hours.window_minutes, -u.duration_min, u.service_id),
    )


def compute_day_slots(
    *,
    context: BusinessContext,
    policy: BusinessPolicy,
    day: date | datetime,
    services: Sequence[SelectedService],
    catalog: Mapping[int, ServiceRecord],
    booked_segments: Sequence[BookedSegment],
    attendance: Mapping[int, Sequence[AttendanceWindow]],
    now: datetime,
    slot_interval_minutes: int | None = None,
) -> list[TimeSlot]:
    if not services or not is_within_horizon(policy, day, now):
        return []

    bounds = day_bounds(day)
    is_today = bounds.day == civil_date(now)
    strict_cutoff = now + timedelta(minutes=max(0, policy.same_day_attendance_strict_minutes))
    min_lead_start = now + timedelta(minutes=policy.min_lead_minutes)
    interval = timedelta(
        minutes=normalize_slot_interval(
            slot_interval_minutes
            if slot_interval_minutes is not None
            else policy.slot_interval_minutes
        )
    )

    hours = HoursResolver(context.hours, bounds.day)
    units = expand_service_units(services, catalog, hours)
    if not units:
        return []
    if any(u.hours.window_minutes <= 0 for u in units):
        return []
    ordered = order_units_for_packing(units)

    providers_by_category: dict[str, tuple[list[int], list[int]]] = {}
    for unit in ordered:
        key = unit.category.lower()
        if key not in providers_by_category:
            providers_by_category[key] = (
                qualified_ids(context.employees, key),
                qualified_ids(context.owners, key),
            )

    earliest = min(w.start for u in ordered for w in u.hours.windows)
    latest = max(w.end for u in ordered for w in u.hours.windows)
    candidate = max(bounds.day_start, earliest)
    limit = min(bounds.day_end, latest)

    slots: list[TimeSlot] = []
    while candidate < limit:
        if candidate >= min_lead_start:
            slot = _evaluate_candidate(
                candidate,
                ordered,
                providers_by_category,
                booked_segments,
                attendance,
                is_today=is_today,
                in_strict_window=is_today and candidate < strict_cutoff,
            )
            if slot is not None:
                slots.append(slot)
        candidate += interval
    return slots


def _evaluate_candidate(
    start: datetime,
    units: Sequence[ServiceUnit],
    providers_by_category: Mapping[str, tuple[list[int], list[int]]],
    booked_segments: Sequence[BookedSegment],
    attendance: Mapping[int, Sequence[AttendanceWindow]],
    *,
    is_today: bool,
    in_strict_window: bool,
) -> TimeSlot | None:
    cursor = start
    employee_count: int | None = None
    owner_count: int | None = None
    used_roster = not is_today

    for unit in units:
        unit_end = cursor + timedelta(minutes=unit.duration_min)
        if not is_within_windows(cursor, unit_end, unit.hours.windows):
            return None

        roster_employees, roster_owners = providers_by_category[unit.category.lower()]
        present_employees = [
            emp_id
            for emp_id in roster_employees
            if is_employee_clocked_in(attendance, emp_id, cursor, unit_end)
        ]

        roster_capacity = compute_segment_availability(
            category=unit.category,
            start=cursor,
            end=unit_end,
            booked_segments=booked_segments,
            eligible_employee_ids=roster_employees,
            eligible_owner_ids=roster_owners,
        )

        if not is_today:
            chosen = roster_capacity
        else:
            # owners do not clock in, so they count as present
            attendance_capacity = compute_segment_availability(
                category=unit.category,
                start=cursor,
                end=unit_end,
                booked_segments=booked_segments,
                eligible_employee_ids=present_employees,
                eligible_owner_ids=roster_owners,
            )
            if in_strict_window or attendance_capacity.total_available > 0:
                chosen = attendance_capacity
            else:
                chosen = roster_capacity
                used_roster = True

        if chosen.total_available <= 0:
            return None

        employee_count = (
            chosen.available_employees
            if employee_count is None
            else min(employee_count, chosen.available_employees)
        )
        owner_count = (
            chosen.available_owners
            if owner_count is None
            else min(owner_count, chosen.available_owners)
        )
        cursor = unit_end

    return TimeSlot(
        start_time=start,
        end_time=cursor,
        available_employee_count=max(0, employee_count or 0),
        available_owner_count=max(0, owner_count or 0),
        source=SlotSource.ROSTER if used_roster else SlotSource.ATTENDANCE,
        confidence=SlotConfidence.TENTATIVE if used_roster else SlotConfidence.CONFIRMED,
    )
