"""Slot listing and the point-in-time booking re-check.

``compute_slots`` answers "what can be booked on this day"; the answer may be
stale by the time a customer submits. ``validate_booking_or_throw`` is the
authoritative gate and must be called right before a booking is written.
"""

from datetime import date, datetime, timedelta
from typing import Sequence

import structlog
from sqlalchemy.orm import Session

from .config import settings
from .context import ContextLoader, DatabaseContextLoader
from .core.capacity import (
    SelectedService,
    TimeSlot,
    compute_day_slots,
    is_within_horizon,
)
from .core.civil_time import (
    business_now,
    civil_date,
    day_bounds,
    ensure_aware,
    horizon_day_diff,
)
from .errors import BookingAvailabilityError, BookingAvailabilityErrorCode
from .policy import PaymentType, get_booking_policy_by_slug, normalize_payment_type
from .repository import (
    find_attendance_windows_for_day,
    find_booked_segments_for_day,
    find_services_by_ids,
)

log = structlog.get_logger("booking.availability")


def _resolve_now(now: datetime | None) -> datetime:
    return ensure_aware(now) if now is not None else business_now()


def compute_slots(
    db: Session,
    business_slug: str,
    day: date | datetime,
    services: Sequence[SelectedService],
    now: datetime | None = None,
    slot_interval_minutes: int | None = None,
    context_loader: ContextLoader | None = None,
) -> list[TimeSlot]:
    if not services:
        return []

    now = _resolve_now(now)
    loader = context_loader or DatabaseContextLoader(db)
    context = loader.load(business_slug)
    policy = get_booking_policy_by_slug(db, business_slug)
    if not is_within_horizon(policy, day, now):
        return []

    bounds = day_bounds(day)
    catalog = find_services_by_ids(db, context.id, [s.id for s in services])
    if not catalog:
        return []

    # future days are roster-only, so attendance is only read for today
    if bounds.day == civil_date(now):
        attendance = find_attendance_windows_for_day(
            db, context.id, bounds.day_start, bounds.day_end
        )
    else:
        attendance = {}
    segments = find_booked_segments_for_day(db, context.id, bounds.day_start, bounds.day_end)

    slots = compute_day_slots(
        context=context,
        policy=policy,
        day=bounds.day,
        services=services,
        catalog=catalog,
        booked_segments=segments,
        attendance=attendance,
        now=now,
        slot_interval_minutes=slot_interval_minutes,
    )
    log.debug(
        "slots_computed",
        business_slug=context.slug,
        day=bounds.day.isoformat(),
        units=sum(s.quantity for s in services),
        booked_segments=len(segments),
        slots=len(slots),
    )
    return slots


def list_alternative_slots(
    db: Session,
    business_slug: str,
    scheduled_at: datetime,
    services: Sequence[SelectedService],
    now: datetime | None = None,
    limit: int | None = None,
    context_loader: ContextLoader | None = None,
) -> list[TimeSlot]:
    now = _resolve_now(now)
    scheduled_at = ensure_aware(scheduled_at)
    max_items = max(1, int(limit if limit is not None else settings.ALTERNATIVE_SLOTS_LIMIT))
    policy = get_booking_policy_by_slug(db, business_slug)
    loader = context_loader or DatabaseContextLoader(db)

    today = civil_date(now)
    first_offset = max(0, horizon_day_diff(scheduled_at, now))
    collected: list[TimeSlot] = []
    for offset in range(first_offset, policy.booking_horizon_days):
        day_slots = compute_slots(
            db,
            business_slug,
            today + timedelta(days=offset),
            services,
            now=now,
            context_loader=loader,
        )
        if offset == first_offset:
            day_slots = [s for s in day_slots if s.start_time > scheduled_at]
        collected.extend(day_slots)
        if len(collected) >= max_items:
            break
    return collected[:max_items]


def validate_booking_or_throw(
    db: Session,
    business_slug: str,
    scheduled_at: datetime,
    services: Sequence[SelectedService],
    payment_type: PaymentType | str,
    is_public_booking: bool,
    is_walk_in: bool = False,
    now: datetime | None = None,
    context_loader: ContextLoader | None = None,
) -> None:
    """Raise ``BookingAvailabilityError`` unless the requested start is bookable now."""
    now = _resolve_now(now)
    scheduled_at = ensure_aware(scheduled_at)
    policy = get_booking_policy_by_slug(db, business_slug)

    if is_public_booking and not policy.allows_public_payment(normalize_payment_type(payment_type)):
        _reject(
            business_slug,
            BookingAvailabilityErrorCode.PAYMENT_TYPE_NOT_ALLOWED,
            "Selected payment type is not available for this booking.",
        )

    if is_walk_in:
        return

    diff = horizon_day_diff(scheduled_at, now)
    if diff < 0 or diff >= policy.booking_horizon_days:
        _reject(
            business_slug,
            BookingAvailabilityErrorCode.DATE_OUTSIDE_HORIZON,
            "Selected date is outside the booking window.",
        )

    if scheduled_at < now + timedelta(minutes=policy.min_lead_minutes):
        _reject(
            business_slug,
            BookingAvailabilityErrorCode.LEAD_TIME_VIOLATION,
            "Selected time is too soon. Please choose a later slot.",
        )

    loader = context_loader or DatabaseContextLoader(db)
    day_slots = compute_slots(
        db,
        business_slug,
        scheduled_at,
        services,
        now=now,
        slot_interval_minutes=policy.slot_interval_minutes,
        context_loader=loader,
    )

    if not day_slots:
        _reject(
            business_slug,
            BookingAvailabilityErrorCode.NO_CAPACITY_FOR_SELECTED_SERVICES,
            "No capacity is available for the selected services.",
            list_alternative_slots(
                db, business_slug, scheduled_at, services, now=now, context_loader=loader
            ),
        )

    if not any(slot.start_time == scheduled_at for slot in day_slots):
        _reject(
            business_slug,
            BookingAvailabilityErrorCode.SLOT_JUST_TAKEN,
            "The selected slot is no longer available.",
            list_alternative_slots(
                db, business_slug, scheduled_at, services, now=now, context_loader=loader
            ),
        )


def _reject(business_slug, code, message, alternatives=None):
    log.info(
        "booking_rejected",
        business_slug=business_slug,
        code=code.value,
        alternatives=len(alternatives or []),
    )
    raise BookingAvailabilityError(code, message, alternatives)
