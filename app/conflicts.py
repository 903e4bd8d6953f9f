from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from .availability import compute_slots
from .config import settings
from .context import ContextLoader, DatabaseContextLoader
from .core.capacity import SelectedService
from .core.civil_time import business_now, civil_date, ensure_aware, start_of_day
from .models import Business
from .outbox import emit_conflict_event, list_signaled_booking_ids
from .policy import get_booking_policy_by_id, get_business_by_id, get_business_by_slug
from .repository import FutureBooking, find_future_accepted_bookings
from .schemas import ConflictSignalPayload

log = structlog.get_logger("booking.conflicts")


class ConflictTrigger(str, Enum):
    BUSINESS_HOURS_UPDATED = "BUSINESS_HOURS_UPDATED"
    ATTENDANCE_UPDATED = "ATTENDANCE_UPDATED"
    EMPLOYEE_SPECIALTIES_UPDATED = "EMPLOYEE_SPECIALTIES_UPDATED"
    OWNER_SPECIALTIES_UPDATED = "OWNER_SPECIALTIES_UPDATED"
    LEAVE_APPROVED = "LEAVE_APPROVED"
    MANUAL_REVALIDATION = "MANUAL_REVALIDATION"


@dataclass(frozen=True)
class ConflictScanResult:
    scanned: int
    conflicts: int
    failed: int = 0


def _service_inputs(booking: FutureBooking) -> list[SelectedService]:
    quantities = Counter(booking.service_ids)
    return [SelectedService(id=sid, quantity=qty) for sid, qty in quantities.items()]


def _booking_still_fits(
    db: Session,
    business_slug: str,
    booking: FutureBooking,
    now: datetime,
    loader: ContextLoader,
) -> bool:
    slots = compute_slots(
        db,
        business_slug,
        booking.scheduled_at,
        _service_inputs(booking),
        now=now,
        context_loader=loader,
    )
    return any(slot.start_time == booking.scheduled_at for slot in slots)


def detect_and_emit_future_booking_conflicts(
    db: Session,
    *,
    trigger: ConflictTrigger | str,
    business_id: int | None = None,
    business_slug: str | None = None,
    changed_date: date | datetime | None = None,
    now: datetime | None = None,
    max_bookings_to_scan: int | None = None,
    context_loader: ContextLoader | None = None,
) -> ConflictScanResult:
    """Re-check accepted future bookings and signal those that no longer fit.

    Bookings are never modified. Each affected booking gets at most one
    conflict event per civil day; a booking that fails to evaluate is logged
    and skipped so the rest of the sweep still runs. Events are written into
    the caller's transaction; the caller commits.
    """
    trigger = ConflictTrigger(trigger)
    if business_id is not None:
        business = get_business_by_id(db, business_id)
    elif business_slug:
        business = get_business_by_slug(db, business_slug)
    else:
        raise ValueError("business_id or business_slug is required")

    now = ensure_aware(now) if now is not None else business_now()
    policy = get_booking_policy_by_id(db, business.id)
    today_start = start_of_day(now)
    horizon_end = today_start + timedelta(days=policy.booking_horizon_days)
    start_at = max(start_of_day(changed_date), now) if changed_date is not None else now
    limit = max_bookings_to_scan if max_bookings_to_scan is not None else settings.CONFLICT_SCAN_LIMIT

    bookings = find_future_accepted_bookings(db, business.id, start_at, horizon_end, limit)
    if not bookings:
        return ConflictScanResult(scanned=0, conflicts=0)

    signaled = list_signaled_booking_ids(db, business.id, civil_date(now))
    loader = context_loader or DatabaseContextLoader(db)
    scanned = 0
    conflicts = 0
    failed = 0

    for booking in bookings:
        if str(booking.id) in signaled or not booking.service_ids:
            continue
        try:
            fits = _booking_still_fits(db, business.slug, booking, now, loader)
            scanned += 1
            if fits:
                continue
            event = emit_conflict_event(
                db,
                business.id,
                ConflictSignalPayload(
                    booking_id=booking.id,
                    scheduled_at=booking.scheduled_at,
                    customer_name=booking.customer_name,
                    trigger=trigger.value,
                    detected_at=now,
                ),
            )
        except Exception:
            failed += 1
            log.exception(
                "booking_conflict_check_failed",
                business_id=business.id,
                booking_id=booking.id,
                trigger=trigger.value,
            )
            continue

        signaled.add(str(booking.id))
        if event is not None:
            conflicts += 1

    log.info(
        "booking_conflicts_revalidated",
        business_id=business.id,
        business_slug=business.slug,
        trigger=trigger.value,
        scanned=scanned,
        conflicts=conflicts,
        failed=failed,
    )
    return ConflictScanResult(scanned=scanned, conflicts=conflicts, failed=failed)


def revalidate_all_businesses(
    db: Session, now: datetime | None = None, batch_size: int | None = None
) -> dict:
    """Top-level sweep over booking-v2 businesses; commits after each one."""
    size = max(1, int(batch_size if batch_size is not None else settings.CONFLICT_SWEEP_BATCH_SIZE))
    businesses = db.execute(
        select(Business.id, Business.slug)
        .where(Business.booking_v2_enabled.is_(True))
        .order_by(Business.created_at.asc(), Business.id.asc())
        .limit(size)
    ).all()

    per_business = []
    total_scanned = 0
    total_conflicts = 0
    failed_businesses = 0
    for business_id, slug in businesses:
        try:
            result = detect_and_emit_future_booking_conflicts(
                db,
                trigger=ConflictTrigger.MANUAL_REVALIDATION,
                business_id=business_id,
                now=now,
            )
            db.commit()
        except Exception:
            db.rollback()
            failed_businesses += 1
            log.exception(
                "booking_conflicts_sweep_business_failed",
                business_id=business_id,
                business_slug=slug,
            )
            per_business.append(
                {"business_id": business_id, "business_slug": slug, "error": True}
            )
            continue
        total_scanned += result.scanned
        total_conflicts += result.conflicts
        per_business.append(
            {
                "business_id": business_id,
                "business_slug": slug,
                "scanned": result.scanned,
                "conflicts": result.conflicts,
                "failed": result.failed,
            }
        )

    log.info(
        "booking_conflicts_sweep_completed",
        businesses=len(businesses),
        total_scanned=total_scanned,
        total_conflicts=total_conflicts,
        failed_businesses=failed_businesses,
    )
    return {
        "businesses": len(businesses),
        "total_scanned": total_scanned,
        "total_conflicts": total_conflicts,
        "failed_businesses": failed_businesses,
        "per_business": per_business,
    }
