import json
from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .core.civil_time import to_utc_naive
from .models import BookingMetric, utc_now_naive

log = structlog.get_logger("booking.metrics")

SLOT_LOOKUP = "BOOKING_SLOT_LOOKUP"
SUBMIT_ATTEMPT = "BOOKING_SUBMIT_ATTEMPT"
SUBMIT_SUCCESS = "BOOKING_SUBMIT_SUCCESS"
SUBMIT_REJECTION = "BOOKING_SUBMIT_REJECTION"


def record_booking_metric(
    db: Session,
    *,
    business_id: int,
    action: str,
    outcome: str,
    reason: str | None = None,
    metadata: dict | None = None,
    entity_id: str | None = None,
    actor_type: str = "SYSTEM",
    at: datetime | None = None,
) -> None:
    """Best-effort audit row; a failed write is logged and swallowed."""
    if not settings.BOOKING_METRICS_ENABLED:
        return
    try:
        db.add(
            BookingMetric(
                business_id=business_id,
                action=action,
                outcome=outcome,
                reason=reason,
                entity_id=entity_id or action,
                actor_type=actor_type,
                metadata_json=json.dumps(metadata or {}, default=str, sort_keys=True),
                created_at=to_utc_naive(at) if at else utc_now_naive(),
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log.warning(
            "booking_metric_failed",
            business_id=business_id,
            action=action,
            outcome=outcome,
            reason=reason,
            error=str(exc),
        )
