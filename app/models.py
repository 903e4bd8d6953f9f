from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


BOOKING_STATUSES = {"HOLD", "PENDING", "ACCEPTED", "COMPLETED", "CANCELLED"}
AVAILED_SERVICE_STATUSES = {"PENDING", "CLAIMED", "SERVING", "COMPLETED", "CANCELLED"}
ATTENDANCE_STATUSES = {"PRESENT", "LATE", "ABSENT", "ON_LEAVE"}


class Business(Base):
    __tablename__ = "businesses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(80), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)

    booking_horizon_days: Mapped[int] = mapped_column(Integer, default=14)
    booking_min_lead_minutes: Mapped[int] = mapped_column(Integer, default=30)
    booking_slot_interval_minutes: Mapped[int] = mapped_column(Integer, default=30)
    same_day_attendance_strict_minutes: Mapped[int] = mapped_column(Integer, default=120)
    public_allow_full_payment: Mapped[bool] = mapped_column(Boolean, default=True)
    public_allow_downpayment: Mapped[bool] = mapped_column(Boolean, default=True)
    public_default_payment_type: Mapped[str] = mapped_column(String(16), default="FULL")
    booking_v2_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    business_hours = relationship("BusinessHours", order_by="BusinessHours.id")
    employees = relationship("Employee", order_by="Employee.id")
    owners = relationship("Owner", order_by="Owner.id")


class BusinessHours(Base):
    __tablename__ = "business_hours"
    __table_args__ = (
        UniqueConstraint(
            "business_id", "day_of_week", "category", name="uq_business_hours_day_category"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id"), index=True)
    # 0 = Sunday
    day_of_week: Mapped[int] = mapped_column(Integer)
    category: Mapped[str] = mapped_column(String(60), default="general")
    open_time: Mapped[str] = mapped_column(String(5), default="09:00")
    close_time: Mapped[str] = mapped_column(String(5), default="18:00")
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False)


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id"), index=True)
    name: Mapped[str] = mapped_column(String(120))
    specialties: Mapped[list] = mapped_column(JSON, default=list)


class Owner(Base):
    __tablename__ = "owners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id"), index=True)
    name: Mapped[str] = mapped_column(String(120))
    specialties: Mapped[list] = mapped_column(JSON, default=list)


class Service(Base):
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id"), index=True)
    name: Mapped[str] = mapped_column(String(120))
    category: Mapped[str] = mapped_column(String(60), default="general")
    duration_min: Mapped[int] = mapped_column(Integer, default=30)


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id"), index=True)
    name: Mapped[str] = mapped_column(String(120))


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id"), index=True)
    customer_id: Mapped[int | None] = mapped_column(
        ForeignKey("customers.id"), nullable=True
    )
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    estimated_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="ACCEPTED", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)

    customer = relationship("Customer")
    availed_services = relationship("AvailedService", order_by="AvailedService.id")


class AvailedService(Base):
    __tablename__ = "availed_services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), index=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"))
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    estimated_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="PENDING")
    served_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id"), nullable=True
    )
    served_by_owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("owners.id"), nullable=True
    )

    service = relationship("Service")


class EmployeeAttendance(Base):
    __tablename__ = "employee_attendance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id"), index=True)
    # civil midnight of the attendance day, stored as naive UTC
    date: Mapped[datetime] = mapped_column(DateTime, index=True)
    status: Mapped[str] = mapped_column(String(32), default="PRESENT")
    time_in: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    time_out: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    employee = relationship("Employee")


class OutboxEvent(Base):
    __tablename__ = "outbox_events"
    __table_args__ = (
        UniqueConstraint("business_id", "topic", "dedup_key", name="uq_outbox_dedup"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_id: Mapped[int | None] = mapped_column(
        ForeignKey("businesses.id"), nullable=True, index=True
    )
    topic: Mapped[str] = mapped_column(String(80), index=True)
    aggregate_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    aggregate_id: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)
    dedup_key: Mapped[str | None] = mapped_column(String(120), nullable=True)
    payload_json: Mapped[str] = mapped_column(Text, default="{}")
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    retries: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)


class BookingMetric(Base):
    __tablename__ = "booking_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id"), index=True)
    action: Mapped[str] = mapped_column(String(40), index=True)
    outcome: Mapped[str] = mapped_column(String(20))
    reason: Mapped[str | None] = mapped_column(String(80), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    actor_type: Mapped[str] = mapped_column(String(16), default="SYSTEM")
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, index=True)
