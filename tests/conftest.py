from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.civil_time import to_utc_naive
from app.db import Base, configure_sqlite_engine
from app.models import (
    AvailedService,
    Booking,
    Business,
    BusinessHours,
    Customer,
    Employee,
    EmployeeAttendance,
    Owner,
    Service,
)

MANILA = timezone(timedelta(hours=8))


def manila(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=MANILA)


@pytest.fixture
def session_factory(tmp_path):
    db_path = tmp_path / "test_booking_engine.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    configure_sqlite_engine(engine, wal=False)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


class Seeder:
    def __init__(self, db):
        self.db = db

    def business(self, slug="studio", days=(4, 5), open_time="09:00", close_time="18:00", **policy):
        business = Business(slug=slug, name=slug.title(), **policy)
        self.db.add(business)
        self.db.flush()
        for dow in days:
            self.db.add(
                BusinessHours(
                    business_id=business.id,
                    day_of_week=dow,
                    category="general",
                    open_time=open_time,
                    close_time=close_time,
                )
            )
        self.db.commit()
        return business

    def hours(self, business, day_of_week, category, open_time, close_time, is_closed=False):
        row = BusinessHours(
            business_id=business.id,
            day_of_week=day_of_week,
            category=category,
            open_time=open_time,
            close_time=close_time,
            is_closed=is_closed,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def employee(self, business, name="Ana", specialties=None):
        row = Employee(business_id=business.id, name=name, specialties=specialties or [])
        self.db.add(row)
        self.db.commit()
        return row

    def owner(self, business, name="Olivia", specialties=None):
        row = Owner(business_id=business.id, name=name, specialties=specialties or [])
        self.db.add(row)
        self.db.commit()
        return row

    def service(self, business, name="Haircut", category="general", duration_min=30):
        row = Service(
            business_id=business.id, name=name, category=category, duration_min=duration_min
        )
        self.db.add(row)
        self.db.commit()
        return row

    def clock_in(self, employee, day_start, time_in, time_out=None, status="PRESENT"):
        row = EmployeeAttendance(
            employee_id=employee.id,
            date=to_utc_naive(day_start),
            status=status,
            time_in=to_utc_naive(time_in),
            time_out=to_utc_naive(time_out) if time_out else None,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def booking(
        self,
        business,
        service,
        start,
        status="ACCEPTED",
        served_by=None,
        served_by_owner=None,
        customer_name="Bea",
        quantity=1,
    ):
        customer = Customer(business_id=business.id, name=customer_name)
        self.db.add(customer)
        self.db.flush()
        end = start + timedelta(minutes=service.duration_min * quantity)
        booking = Booking(
            business_id=business.id,
            customer_id=customer.id,
            scheduled_at=to_utc_naive(start),
            estimated_end=to_utc_naive(end),
            status=status,
        )
        self.db.add(booking)
        self.db.flush()
        cursor = start
        for _ in range(quantity):
            item_end = cursor + timedelta(minutes=service.duration_min)
            self.db.add(
                AvailedService(
                    booking_id=booking.id,
                    service_id=service.id,
                    scheduled_at=to_utc_naive(cursor),
                    estimated_end=to_utc_naive(item_end),
                    served_by_id=served_by.id if served_by else None,
                    served_by_owner_id=served_by_owner.id if served_by_owner else None,
                )
            )
            cursor = item_end
        self.db.commit()
        return booking


@pytest.fixture
def seed(db):
    return Seeder(db)
