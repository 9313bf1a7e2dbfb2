# tests/conftest.py
import os

# in-memory database, no RabbitMQ thread
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RUN_CONSUMER"] = "0"

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from rental.api import get_clock, get_publisher  # noqa: E402
from rental.app import app  # noqa: E402
from rental.bookings import create_booking  # noqa: E402
from rental.db import get_session  # noqa: E402
from rental.models import Accessory, Coupon, Cycle  # noqa: E402
from rental.schemas import AccessoryRequest, BookingCreate  # noqa: E402
from rental.state_machine import transition_booking  # noqa: E402

# 12:00 in Asia/Kolkata
NOW = datetime(2026, 1, 10, 6, 30, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def set(self, when: datetime):
        self.current = when

    def advance(self, **kw):
        self.current += timedelta(**kw)


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, event_type, payload):
        self.events.append((event_type, payload))

    def types(self):
        return [t for t, _ in self.events]


class BrokenPublisher:
    def publish(self, event_type, payload):
        raise ConnectionError("broker down")


# -----------------------------
# Database
# -----------------------------
@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def publisher():
    return RecordingPublisher()


# -----------------------------
# Catalog
# -----------------------------
def _add(session, obj):
    session.add(obj)
    session.commit()
    session.refresh(obj)
    return obj


@pytest.fixture
def cycle(session):
    return _add(session, Cycle(
        name="City Cruiser",
        model="CC-26",
        price_per_day=Decimal("499"),
        price_per_week=Decimal("1999"),
        price_per_month=Decimal("4999"),
        security_deposit_day=Decimal("2000"),
        security_deposit_week=Decimal("2000"),
        security_deposit_month=Decimal("5000"),
        total_quantity=2,
        available_quantity=2,
    ))


@pytest.fixture
def helmet(session):
    return _add(session, Accessory(
        name="Helmet", price_per_day=Decimal("200"), security_deposit=Decimal("0"),
        total_quantity=3, available_quantity=3,
    ))


@pytest.fixture
def bike_lock(session):
    return _add(session, Accessory(
        name="U-Lock", price_per_day=Decimal("50"), security_deposit=Decimal("500"),
        total_quantity=1, available_quantity=1,
    ))


@pytest.fixture
def coupon(session):
    return _add(session, Coupon(
        code="RIDE10", discount_type="percentage", discount_value=Decimal("10"),
        min_order_amount=Decimal("500"), max_uses=3,
    ))


# -----------------------------
# Booking helpers
# -----------------------------
@pytest.fixture
def book(session, clock, cycle):
    def _book(pickup_in=timedelta(days=3), tier="one_day", accessories=(), coupon_code=None,
              cycle_id=None, publisher=None):
        data = BookingCreate(
            user_id=7,
            cycle_id=cycle_id or cycle.id,
            duration_tier=tier,
            pickup_at=clock.now() + pickup_in,
            accessories=[AccessoryRequest(**a) for a in accessories],
            coupon_code=coupon_code,
        )
        return create_booking(session, data, clock.now(), publisher)
    return _book


@pytest.fixture
def activate(session, clock):
    def _activate(b):
        transition_booking(session, b.id, "payment_captured", clock.now())
        return transition_booking(session, b.id, "activate", clock.now())
    return _activate


# -----------------------------
# HTTP client
# -----------------------------
@pytest.fixture
def client(engine, clock, publisher):
    def override_get_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_publisher] = lambda: publisher
    yield TestClient(app)
    app.dependency_overrides.clear()
