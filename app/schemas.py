from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .core.civil_time import localize_naive

CONFLICT_SIGNAL_SCHEMA_VERSION = 1
CONFLICT_REASON = "Future booking no longer matches currently available staffing/capacity."


class ConflictSignalPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    schema_version: Literal[1] = CONFLICT_SIGNAL_SCHEMA_VERSION
    booking_id: int
    scheduled_at: datetime
    customer_name: str | None = None
    trigger: str
    reason: str = CONFLICT_REASON
    detected_at: datetime


class SelectedServiceIn(BaseModel):
    id: int = Field(gt=0)
    quantity: int = Field(default=1, ge=1, le=20)


class SlotOut(BaseModel):
    start_time: datetime
    end_time: datetime
    available: bool = True
    available_employee_count: int
    available_owner_count: int
    source: str
    confidence: str


class BookingValidationRequest(BaseModel):
    scheduled_at: datetime
    services: list[SelectedServiceIn] = Field(min_length=1)
    payment_type: Literal["FULL", "DOWNPAYMENT"] = "FULL"
    is_public_booking: bool = False
    is_walk_in: bool = False

    @field_validator("scheduled_at")
    @classmethod
    def _localize_scheduled_at(cls, value: datetime) -> datetime:
        return localize_naive(value)


class BookingValidationOut(BaseModel):
    ok: bool = True


class BookingAvailabilityErrorOut(BaseModel):
    code: str
    message: str
    alternatives: list[SlotOut] = []


class ConflictRevalidateRequest(BaseModel):
    trigger: Literal[
        "BUSINESS_HOURS_UPDATED",
        "ATTENDANCE_UPDATED",
        "EMPLOYEE_SPECIALTIES_UPDATED",
        "OWNER_SPECIALTIES_UPDATED",
        "LEAVE_APPROVED",
        "MANUAL_REVALIDATION",
    ] = "MANUAL_REVALIDATION"
    changed_date: date | None = None
    max_bookings_to_scan: int | None = Field(default=None, ge=1, le=1000)


class ConflictScanOut(BaseModel):
    business_slug: str
    trigger: str
    scanned: int
    conflicts: int
    failed: int = 0


class BookingPolicyOut(BaseModel):
    booking_horizon_days: int
    min_lead_minutes: int
    slot_interval_minutes: int
    same_day_attendance_strict_minutes: int
    allow_public_full_payment: bool
    allow_public_downpayment: bool
    default_public_payment_type: str
    booking_v2_enabled: bool


class BookingPolicyUpdate(BaseModel):
    booking_horizon_days: int | None = Field(default=None, ge=1, le=365)
    min_lead_minutes: int | None = Field(default=None, ge=0, le=7 * 24 * 60)
    slot_interval_minutes: int | None = Field(default=None, ge=5, le=240)
    same_day_attendance_strict_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    allow_public_full_payment: bool | None = None
    allow_public_downpayment: bool | None = None
    default_public_payment_type: Literal["FULL", "DOWNPAYMENT"] | None = None
    booking_v2_enabled: bool | None = None
