import json
from datetime import date

import pytest

import app.conflicts as conflicts_module
from app.conflicts import (
    ConflictTrigger,
    detect_and_emit_future_booking_conflicts,
    revalidate_all_businesses,
)
from app.errors import BusinessNotFound
from app.models import Booking, Business
from app.outbox import CONFLICT_EVENT_TOPIC, emit_conflict_event, list_outbox_events
from app.schemas import ConflictSignalPayload
from conftest import manila

NOW = manila(2026, 2, 12, 8, 0)


def _setup(seed, slug="studio", **policy):
    business = seed.business(slug=slug, days=(4, 5), **policy)
    ana = seed.employee(business, name="Ana")
    seed.employee(business, name="Ben")
    service = seed.service(business)
    return business, ana, service


def _close_day(db, business, day_of_week):
    for row in business.business_hours:
        if row.day_of_week == day_of_week:
            row.is_closed = True
    db.commit()


def _events(db, business):
    return list_outbox_events(db, business_id=business.id, topic=CONFLICT_EVENT_TOPIC)


def test_booking_that_still_fits_is_not_signaled(db, seed):
    business, ana, service = _setup(seed)
    seed.booking(business, service, manila(2026, 2, 13, 10, 0), served_by=ana)

    result = detect_and_emit_future_booking_conflicts(
        db, trigger=ConflictTrigger.MANUAL_REVALIDATION, business_slug="studio", now=NOW
    )

    assert (result.scanned, result.conflicts, result.failed) == (1, 0, 0)
    assert _events(db, business) == []


def test_conflict_is_emitted_once_per_day_and_booking_is_untouched(db, seed):
    business, ana, service = _setup(seed)
    booking = seed.booking(
        business, service, manila(2026, 2, 13, 10, 0), served_by=ana, customer_name="Carla"
    )
    _close_day(db, business, 5)

    first = detect_and_emit_future_booking_conflicts(
        db, trigger="BUSINESS_HOURS_UPDATED", business_id=business.id, now=NOW
    )
    assert first.conflicts == 1

    events = _events(db, business)
    assert len(events) == 1
    payload = json.loads(events[0].payload_json)
    assert payload["booking_id"] == booking.id
    assert payload["customer_name"] == "Carla"
    assert payload["trigger"] == "BUSINESS_HOURS_UPDATED"
    assert payload["schema_version"] == 1
    assert events[0].aggregate_id == str(booking.id)
    assert events[0].dedup_key == f"{booking.id}:2026-02-12"

    second = detect_and_emit_future_booking_conflicts(
        db, trigger="ATTENDANCE_UPDATED", business_id=business.id, now=manila(2026, 2, 12, 15, 0)
    )
    assert (second.scanned, second.conflicts) == (0, 0)
    assert len(_events(db, business)) == 1

    db.expire_all()
    assert db.get(Booking, booking.id).status == "ACCEPTED"

    next_day = detect_and_emit_future_booking_conflicts(
        db, trigger="MANUAL_REVALIDATION", business_id=business.id, now=manila(2026, 2, 13, 8, 0)
    )
    assert next_day.conflicts == 1
    assert len(_events(db, business)) == 2


def test_only_bookings_from_changed_date_are_scanned(db, seed):
    business, ana, service = _setup(seed)
    seed.booking(business, service, manila(2026, 2, 12, 15, 0), served_by=ana)
    seed.booking(business, service, manila(2026, 2, 13, 10, 0), served_by=ana)
    _close_day(db, business, 4)
    _close_day(db, business, 5)

    result = detect_and_emit_future_booking_conflicts(
        db,
        trigger=ConflictTrigger.LEAVE_APPROVED,
        business_id=business.id,
        changed_date=date(2026, 2, 13),
        now=NOW,
    )

    assert (result.scanned, result.conflicts) == (1, 1)


def test_scan_limit_caps_bookings(db, seed):
    business, ana, service = _setup(seed)
    for hour in (10, 11, 12):
        seed.booking(business, service, manila(2026, 2, 13, hour, 0), served_by=ana)
    _close_day(db, business, 5)

    result = detect_and_emit_future_booking_conflicts(
        db, trigger="MANUAL_REVALIDATION", business_id=business.id, now=NOW, max_bookings_to_scan=2
    )

    assert result.conflicts == 2


def test_failed_booking_does_not_stop_the_sweep(db, seed, monkeypatch):
    business, ana, service = _setup(seed)
    broken = seed.booking(business, service, manila(2026, 2, 13, 10, 0), served_by=ana)
    seed.booking(business, service, manila(2026, 2, 13, 11, 0), served_by=ana)
    _close_day(db, business, 5)

    original = conflicts_module._booking_still_fits

    def flaky(db_, slug, booking, now, loader):
        if booking.id == broken.id:
            raise RuntimeError("capacity lookup failed")
        return original(db_, slug, booking, now, loader)

    monkeypatch.setattr(conflicts_module, "_booking_still_fits", flaky)

    result = detect_and_emit_future_booking_conflicts(
        db, trigger="MANUAL_REVALIDATION", business_id=business.id, now=NOW
    )

    assert (result.scanned, result.conflicts, result.failed) == (1, 1, 1)


def test_unknown_business_raises(db):
    with pytest.raises(BusinessNotFound):
        detect_and_emit_future_booking_conflicts(db, trigger="MANUAL_REVALIDATION", business_slug="nope")


def test_duplicate_signal_is_rejected_by_dedup_key(db, seed):
    business, _, _ = _setup(seed)
    payload = ConflictSignalPayload(
        booking_id=42,
        scheduled_at=manila(2026, 2, 13, 10, 0),
        trigger="MANUAL_REVALIDATION",
        detected_at=NOW,
    )

    assert emit_conflict_event(db, business.id, payload) is not None
    assert emit_conflict_event(db, business.id, payload) is None
    assert len(_events(db, business)) == 1


def test_sweep_visits_only_v2_businesses(db, seed):
    studio, ana, service = _setup(seed, slug="studio")
    seed.booking(studio, service, manila(2026, 2, 13, 10, 0), served_by=ana)
    _close_day(db, studio, 5)
    _setup(seed, slug="legacy", booking_v2_enabled=False)

    summary = revalidate_all_businesses(db, now=NOW)

    assert summary["businesses"] == 1
    assert summary["total_conflicts"] == 1
    assert summary["per_business"][0]["business_slug"] == "studio"


def test_duplicate_signal_keeps_callers_pending_changes(db, seed):
    business, _, _ = _setup(seed)
    payload = ConflictSignalPayload(
        booking_id=42,
        scheduled_at=manila(2026, 2, 13, 10, 0),
        trigger="ATTENDANCE_UPDATED",
        detected_at=NOW,
    )
    assert emit_conflict_event(db, business.id, payload) is not None

    business.name = "Renamed by caller"
    db.flush()
    assert emit_conflict_event(db, business.id, payload) is None

    db.commit()
    db.expire_all()
    assert db.get(Business, business.id).name == "Renamed by caller"
    assert len(_events(db, business)) == 1


def test_signals_are_left_for_the_caller_to_commit(db, seed):
    business, ana, service = _setup(seed)
    seed.booking(business, service, manila(2026, 2, 13, 10, 0), served_by=ana)
    _close_day(db, business, 5)

    result = detect_and_emit_future_booking_conflicts(
        db, trigger="BUSINESS_HOURS_UPDATED", business_id=business.id, now=NOW
    )
    assert result.conflicts == 1
    db.rollback()

    assert _events(db, business) == []


def test_booking_holding_the_last_seat_is_signaled_without_changes(db, seed):
    business = seed.business(days=(4, 5))
    ana = seed.employee(business, name="Ana")
    service = seed.service(business)
    seed.booking(business, service, manila(2026, 2, 13, 10, 0), served_by=ana)

    # the booking's own line item occupies the only seat on re-check
    result = detect_and_emit_future_booking_conflicts(
        db, trigger="MANUAL_REVALIDATION", business_id=business.id, now=NOW
    )

    assert (result.scanned, result.conflicts) == (1, 1)


def test_sweep_continues_past_a_failing_business(db, seed, monkeypatch):
    studio, ana, service = _setup(seed, slug="studio")
    seed.booking(studio, service, manila(2026, 2, 13, 10, 0), served_by=ana)
    _close_day(db, studio, 5)
    broken, _, _ = _setup(seed, slug="broken")
    broken_id = broken.id

    original = conflicts_module.detect_and_emit_future_booking_conflicts

    def flaky(db_, **kwargs):
        if kwargs.get("business_id") == broken_id:
            raise BusinessNotFound(broken_id)
        return original(db_, **kwargs)

    monkeypatch.setattr(conflicts_module, "detect_and_emit_future_booking_conflicts", flaky)

    summary = revalidate_all_businesses(db, now=NOW)

    assert summary["businesses"] == 2
    assert summary["failed_businesses"] == 1
    assert summary["total_conflicts"] == 1
    by_slug = {row["business_slug"]: row for row in summary["per_business"]}
    assert by_slug["broken"]["error"] is True
    assert by_slug["studio"]["conflicts"] == 1
    assert len(_events(db, studio)) == 1
