from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .availability import compute_slots, list_alternative_slots, validate_booking_or_throw
from .config import settings
from .conflicts import detect_and_emit_future_booking_conflicts
from .context import CachedContextLoader
from .core.capacity import SelectedService, TimeSlot
from .core.civil_time import localize_naive
from .db import get_db
from .errors import BookingAvailabilityError, NotFound
from .metrics import SLOT_LOOKUP, SUBMIT_ATTEMPT, SUBMIT_REJECTION, SUBMIT_SUCCESS, record_booking_metric
from .models import Business
from .policy import get_booking_policy_by_slug, get_business_by_slug, update_booking_policy
from .schemas import (
    BookingAvailabilityErrorOut,
    BookingPolicyOut,
    BookingPolicyUpdate,
    BookingValidationOut,
    BookingValidationRequest,
    ConflictRevalidateRequest,
    ConflictScanOut,
    SlotOut,
)

router = APIRouter(prefix="/api")
public_router = APIRouter(prefix="/public")


def _to_slot_out(slot: TimeSlot) -> SlotOut:
    return SlotOut(
        start_time=slot.start_time,
        end_time=slot.end_time,
        available=slot.available,
        available_employee_count=slot.available_employee_count,
        available_owner_count=slot.available_owner_count,
        source=slot.source.value,
        confidence=slot.confidence.value,
    )


def parse_services_param(raw: str) -> list[SelectedService]:
    """Parse ``"12:2,15"`` into selected services (quantity defaults to 1)."""
    out: list[SelectedService] = []
    for chunk in (raw or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        service_id, _, quantity = chunk.partition(":")
        try:
            out.append(SelectedService(id=int(service_id), quantity=int(quantity or 1)))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid service selector: {chunk}",
            )
    if not out:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="At least one service is required"
        )
    return out


def _resolve_business(db: Session, slug: Optional[str]) -> Business:
    try:
        return get_business_by_slug(db, slug or settings.DEFAULT_TENANT_SLUG)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def get_current_business(
    db: Session = Depends(get_db),
    x_tenant_slug: Optional[str] = Header(default=None),
) -> Business:
    return _resolve_business(db, x_tenant_slug)


@public_router.get("/{business_slug}/slots", response_model=List[SlotOut])
def get_available_slots(
    business_slug: str,
    day: date = Query(...),
    services: str = Query(..., description="Comma separated SERVICE_ID[:QUANTITY]"),
    db: Session = Depends(get_db),
):
    business = _resolve_business(db, business_slug)
    selected = parse_services_param(services)
    slots = compute_slots(
        db,
        business.slug,
        day,
        selected,
        context_loader=CachedContextLoader(db),
    )
    record_booking_metric(
        db,
        business_id=business.id,
        action=SLOT_LOOKUP,
        outcome="SUCCESS",
        metadata={"day": day.isoformat(), "slots": len(slots)},
    )
    return [_to_slot_out(s) for s in slots]


@public_router.get("/{business_slug}/slots/alternatives", response_model=List[SlotOut])
def get_alternative_slots(
    business_slug: str,
    scheduled_at: datetime = Query(...),
    services: str = Query(...),
    limit: int = Query(default=6, ge=1, le=50),
    db: Session = Depends(get_db),
):
    business = _resolve_business(db, business_slug)
    slots = list_alternative_slots(
        db,
        business.slug,
        localize_naive(scheduled_at),
        parse_services_param(services),
        limit=limit,
        context_loader=CachedContextLoader(db),
    )
    return [_to_slot_out(s) for s in slots]


@router.post(
    "/bookings/validate",
    response_model=BookingValidationOut,
    responses={400: {"model": BookingAvailabilityErrorOut}},
)
def validate_booking(
    payload: BookingValidationRequest,
    db: Session = Depends(get_db),
    business: Business = Depends(get_current_business),
):
    record_booking_metric(db, business_id=business.id, action=SUBMIT_ATTEMPT, outcome="STARTED")
    try:
        validate_booking_or_throw(
            db,
            business.slug,
            payload.scheduled_at,
            [SelectedService(id=s.id, quantity=s.quantity) for s in payload.services],
            payment_type=payload.payment_type,
            is_public_booking=payload.is_public_booking,
            is_walk_in=payload.is_walk_in,
        )
    except BookingAvailabilityError as exc:
        record_booking_metric(
            db,
            business_id=business.id,
            action=SUBMIT_REJECTION,
            outcome="REJECTED",
            reason=exc.code.value,
            metadata={"alternatives": len(exc.alternatives)},
        )
        body = BookingAvailabilityErrorOut(
            code=exc.code.value,
            message=exc.message,
            alternatives=[_to_slot_out(s) for s in exc.alternatives],
        )
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(mode="json"))
    record_booking_metric(db, business_id=business.id, action=SUBMIT_SUCCESS, outcome="SUCCESS")
    return BookingValidationOut(ok=True)


@router.post("/conflicts/revalidate", response_model=ConflictScanOut)
def revalidate_conflicts(
    payload: ConflictRevalidateRequest,
    db: Session = Depends(get_db),
    business: Business = Depends(get_current_business),
):
    result = detect_and_emit_future_booking_conflicts(
        db,
        trigger=payload.trigger,
        business_id=business.id,
        changed_date=payload.changed_date,
        max_bookings_to_scan=payload.max_bookings_to_scan,
    )
    db.commit()
    return ConflictScanOut(
        business_slug=business.slug,
        trigger=payload.trigger,
        scanned=result.scanned,
        conflicts=result.conflicts,
        failed=result.failed,
    )


@router.get("/policy", response_model=BookingPolicyOut)
def read_policy(
    db: Session = Depends(get_db),
    business: Business = Depends(get_current_business),
):
    return BookingPolicyOut(**get_booking_policy_by_slug(db, business.slug).to_dict())


@router.put("/policy", response_model=BookingPolicyOut)
def write_policy(
    payload: BookingPolicyUpdate,
    db: Session = Depends(get_db),
    business: Business = Depends(get_current_business),
):
    policy = update_booking_policy(db, business.slug, payload.model_dump(exclude_none=True))
    return BookingPolicyOut(**policy.to_dict())
