import json
from datetime import date, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .core.civil_time import civil_date, to_utc_naive
from .models import OutboxEvent, utc_now_naive
from .schemas import ConflictSignalPayload

log = structlog.get_logger("booking.outbox")

CONFLICT_EVENT_TOPIC = "BOOKING_STAFFING_CONFLICT_DETECTED"
BOOKING_AGGREGATE = "Booking"


def _json_dumps(payload: dict | None) -> str:
    return json.dumps(payload or {}, ensure_ascii=True, sort_keys=True)


def conflict_dedup_key(booking_id: int, day: date) -> str:
    return f"{int(booking_id)}:{day.isoformat()}"


def enqueue_outbox_event(
    db: Session,
    *,
    topic: str,
    payload: dict,
    business_id: int | None = None,
    aggregate_type: str | None = None,
    aggregate_id: str | None = None,
    dedup_key: str | None = None,
    created_at: datetime | None = None,
) -> OutboxEvent | None:
    """Append one pending event inside a savepoint of the caller's transaction.

    Returns None when ``dedup_key`` already exists; only the event row is
    undone then. Committing is left to the caller.
    """
    stamp = to_utc_naive(created_at) if created_at else utc_now_naive()
    row = OutboxEvent(
        business_id=business_id,
        topic=(topic or "").strip(),
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        dedup_key=(dedup_key or "").strip() or None,
        payload_json=_json_dumps(payload),
        status="pending",
        retries=0,
        created_at=stamp,
        updated_at=stamp,
    )
    try:
        with db.begin_nested():
            db.add(row)
    except IntegrityError:
        if dedup_key is None:
            raise
        log.info(
            "outbox_event_deduplicated",
            topic=topic,
            business_id=business_id,
            dedup_key=dedup_key,
        )
        return None
    return row


def list_outbox_events(
    db: Session,
    *,
    business_id: int | None = None,
    topic: str | None = None,
    status: str | None = None,
    limit: int = 200,
) -> list[OutboxEvent]:
    q = db.query(OutboxEvent)
    if business_id is not None:
        q = q.filter(OutboxEvent.business_id == business_id)
    if topic:
        q = q.filter(OutboxEvent.topic == topic.strip())
    if status:
        q = q.filter(OutboxEvent.status == status.strip().lower())
    return (
        q.order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
        .limit(max(1, min(limit, 1000)))
        .all()
    )


def list_signaled_booking_ids(db: Session, business_id: int, day: date) -> set[str]:
    suffix = f":{day.isoformat()}"
    rows = db.execute(
        select(OutboxEvent.aggregate_id).where(
            OutboxEvent.business_id == business_id,
            OutboxEvent.topic == CONFLICT_EVENT_TOPIC,
            OutboxEvent.dedup_key.like(f"%{suffix}"),
        )
    ).scalars()
    return {str(r) for r in rows if r is not None}


def emit_conflict_event(
    db: Session, business_id: int, payload: ConflictSignalPayload
) -> OutboxEvent | None:
    """Write a conflict signal at most once per booking per civil day."""
    day = civil_date(payload.detected_at)
    return enqueue_outbox_event(
        db,
        topic=CONFLICT_EVENT_TOPIC,
        payload=payload.model_dump(mode="json"),
        business_id=business_id,
        aggregate_type=BOOKING_AGGREGATE,
        aggregate_id=str(payload.booking_id),
        dedup_key=conflict_dedup_key(payload.booking_id, day),
        created_at=payload.detected_at,
    )
