import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Mapping

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import BusinessNotFound
from .models import Business

log = structlog.get_logger("booking.policy")


class PaymentType(str, Enum):
    FULL = "FULL"
    DOWNPAYMENT = "DOWNPAYMENT"


@dataclass(frozen=True)
class BusinessPolicy:
    booking_horizon_days: int = 14
    min_lead_minutes: int = 30
    slot_interval_minutes: int = 30
    same_day_attendance_strict_minutes: int = 120
    allow_public_full_payment: bool = True
    allow_public_downpayment: bool = True
    default_public_payment_type: PaymentType = PaymentType.FULL
    booking_v2_enabled: bool = True

    def allows_public_payment(self, payment_type: PaymentType) -> bool:
        if payment_type == PaymentType.FULL:
            return self.allow_public_full_payment
        return self.allow_public_downpayment

    def to_dict(self) -> dict:
        data = asdict(self)
        data["default_public_payment_type"] = self.default_public_payment_type.value
        return data


DEFAULT_BOOKING_POLICY = BusinessPolicy()


def normalize_payment_type(value: Any) -> PaymentType:
    if isinstance(value, PaymentType):
        return value
    if isinstance(value, str) and value.strip().upper() == PaymentType.DOWNPAYMENT.value:
        return PaymentType.DOWNPAYMENT
    return PaymentType.FULL


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _int_at_least(value: Any, floor: int, default: int) -> int:
    if not _is_number(value):
        return default
    return max(floor, math.floor(value))


def _bool_or(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def normalize_booking_policy(raw: Mapping[str, Any] | None) -> BusinessPolicy:
    """Clamp and default a partial policy mapping into a full snapshot."""
    if not raw:
        return DEFAULT_BOOKING_POLICY
    d = DEFAULT_BOOKING_POLICY
    return BusinessPolicy(
        booking_horizon_days=_int_at_least(
            raw.get("booking_horizon_days"), 1, d.booking_horizon_days
        ),
        min_lead_minutes=_int_at_least(raw.get("min_lead_minutes"), 0, d.min_lead_minutes),
        slot_interval_minutes=_int_at_least(
            raw.get("slot_interval_minutes"), 5, d.slot_interval_minutes
        ),
        same_day_attendance_strict_minutes=_int_at_least(
            raw.get("same_day_attendance_strict_minutes"),
            0,
            d.same_day_attendance_strict_minutes,
        ),
        allow_public_full_payment=_bool_or(
            raw.get("allow_public_full_payment"), d.allow_public_full_payment
        ),
        allow_public_downpayment=_bool_or(
            raw.get("allow_public_downpayment"), d.allow_public_downpayment
        ),
        default_public_payment_type=normalize_payment_type(
            raw.get("default_public_payment_type")
        ),
        booking_v2_enabled=_bool_or(raw.get("booking_v2_enabled"), d.booking_v2_enabled),
    )


def _policy_from_business(business: Business) -> BusinessPolicy:
    return normalize_booking_policy(
        {
            "booking_horizon_days": business.booking_horizon_days,
            "min_lead_minutes": business.booking_min_lead_minutes,
            "slot_interval_minutes": business.booking_slot_interval_minutes,
            "same_day_attendance_strict_minutes": business.same_day_attendance_strict_minutes,
            "allow_public_full_payment": business.public_allow_full_payment,
            "allow_public_downpayment": business.public_allow_downpayment,
            "default_public_payment_type": business.public_default_payment_type,
            "booking_v2_enabled": business.booking_v2_enabled,
        }
    )


def get_business_by_slug(db: Session, slug: str) -> Business:
    normalized = (slug or "").strip().lower()
    business = db.execute(
        select(Business).where(Business.slug == normalized)
    ).scalar_one_or_none()
    if business is None:
        raise BusinessNotFound(normalized)
    return business


def get_business_by_id(db: Session, business_id: int) -> Business:
    business = db.get(Business, business_id)
    if business is None:
        raise BusinessNotFound(business_id)
    return business


def get_booking_policy_by_slug(db: Session, slug: str) -> BusinessPolicy:
    return _policy_from_business(get_business_by_slug(db, slug))


def get_booking_policy_by_id(db: Session, business_id: int) -> BusinessPolicy:
    return _policy_from_business(get_business_by_id(db, business_id))


def update_booking_policy(
    db: Session, slug: str, changes: Mapping[str, Any]
) -> BusinessPolicy:
    business = get_business_by_slug(db, slug)
    current = _policy_from_business(business)
    merged = current.to_dict()
    merged.update({k: v for k, v in changes.items() if v is not None})
    policy = normalize_booking_policy(merged)

    business.booking_horizon_days = policy.booking_horizon_days
    business.booking_min_lead_minutes = policy.min_lead_minutes
    business.booking_slot_interval_minutes = policy.slot_interval_minutes
    business.same_day_attendance_strict_minutes = policy.same_day_attendance_strict_minutes
    business.public_allow_full_payment = policy.allow_public_full_payment
    business.public_allow_downpayment = policy.allow_public_downpayment
    business.public_default_payment_type = policy.default_public_payment_type.value
    business.booking_v2_enabled = policy.booking_v2_enabled
    db.commit()

    log.info(
        "booking_policy_updated",
        business_slug=business.slug,
        changed=sorted(k for k, v in changes.items() if v is not None),
    )
    return policy
