"""
All test-data builders in one place.
Import from here in every test file; never define dummy data inline.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from app.clock import Clock
from app.db import Database
from app.deps import CurrentUser
from app.models import (
    BlockedTimeSlot,
    Booking,
    BookingHistory,
    BookingStatus,
    PaymentStatus,
    Product,
    Service,
    ServiceLocation,
    Shop,
)
from app.scopes import BookingScope, OrderScope

# ---------------------------------------------------------------------------
# Stable IDs. Use these when a specific, repeatable UUID is needed.
# Call uuid4() inline when you need a fresh one per test.
# ---------------------------------------------------------------------------

CUSTOMER_ID: UUID = uuid4()
PROVIDER_ID: UUID = uuid4()
ADMIN_ID: UUID = uuid4()
OTHER_USER_ID: UUID = uuid4()
SHOP_OWNER_ID: UUID = uuid4()

SERVICE_ID: UUID = uuid4()
BOOKING_ID: UUID = uuid4()
SHOP_ID: UUID = uuid4()
OTHER_SHOP_ID: UUID = uuid4()

# Business timezone used throughout the tests (UTC+05:30, no DST)
BUSINESS_TZ = "Asia/Kolkata"

NOW = datetime(2026, 6, 1, 10, 0, 0, tzinfo=UTC)
TOMORROW_10 = datetime(2026, 6, 2, 10, 0, 0, tzinfo=UTC)


class FrozenClock(Clock):
    """Clock whose ``now`` only moves when a test says so."""

    def __init__(self, now: datetime = NOW, tz_name: str = BUSINESS_TZ) -> None:
        super().__init__(tz_name)
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> None:
        self._now += delta


# ---------------------------------------------------------------------------
# User factories
# ---------------------------------------------------------------------------


def make_customer(
    user_id: UUID = CUSTOMER_ID,
    scopes: list[str] | None = None,
) -> CurrentUser:
    """Customer with read/write/cancel booking scopes and orders:write."""
    if scopes is None:
        scopes = [
            BookingScope.READ,
            BookingScope.WRITE,
            BookingScope.CANCEL,
            OrderScope.WRITE,
        ]
    return CurrentUser(id=user_id, username=f"customer_{user_id}", scopes=scopes)


def make_provider(
    user_id: UUID = PROVIDER_ID,
    scopes: list[str] | None = None,
) -> CurrentUser:
    """Service provider with the manage booking scope."""
    if scopes is None:
        scopes = [BookingScope.MANAGE]
    return CurrentUser(id=user_id, username=f"provider_{user_id}", scopes=scopes)


def make_admin() -> CurrentUser:
    """Admin with all admin:bookings* scopes."""
    return CurrentUser(
        id=ADMIN_ID,
        username="admin",
        scopes=[
            BookingScope.READ,
            BookingScope.ADMIN,
            BookingScope.ADMIN_READ,
            BookingScope.ADMIN_WRITE,
        ],
    )


# ---------------------------------------------------------------------------
# Model factories (unsaved; persist with ``add``)
# ---------------------------------------------------------------------------


def service_model(**overrides) -> Service:
    base = dict(
        id=SERVICE_ID,
        provider_id=PROVIDER_ID,
        name="Home Cleaning",
        duration_minutes=30,
        buffer_minutes=0,
        max_daily_bookings=None,
        allowed_slots=["morning", "afternoon", "evening"],
        created_at=NOW,
    )
    return Service(**{**base, **overrides})


def booking_model(**overrides) -> Booking:
    status = overrides.get("status", BookingStatus.PENDING)
    base = dict(
        id=uuid4(),
        customer_id=CUSTOMER_ID,
        service_id=SERVICE_ID,
        booking_date=TOMORROW_10,
        time_slot_label=None,
        status=status,
        payment_status=PaymentStatus.PENDING,
        payment_reference=None,
        expires_at=NOW + timedelta(hours=24) if status == BookingStatus.PENDING else None,
        reschedule_date=None,
        rescheduled_by=None,
        rejection_reason=None,
        dispute_reason=None,
        comments=None,
        service_location=ServiceLocation.PROVIDER,
        created_at=NOW,
        updated_at=NOW,
    )
    return Booking(**{**base, **overrides})


def blocked_slot_model(**overrides) -> BlockedTimeSlot:
    base = dict(service_id=SERVICE_ID, reason="Day off", created_at=NOW)
    return BlockedTimeSlot(**{**base, **overrides})


def shop_model(**overrides) -> Shop:
    base = dict(
        id=SHOP_ID,
        owner_id=SHOP_OWNER_ID,
        name="Corner Store",
        catalog_mode_enabled=False,
        open_order_mode=False,
        created_at=NOW,
    )
    return Shop(**{**base, **overrides})


def product_model(**overrides) -> Product:
    base = dict(
        id=uuid4(),
        shop_id=SHOP_ID,
        name="Widget",
        price=Decimal("50.00"),
        stock=10,
        created_at=NOW,
    )
    return Product(**{**base, **overrides})


def history_model(**overrides) -> BookingHistory:
    base = dict(
        id=1,
        booking_id=BOOKING_ID,
        status=BookingStatus.PENDING,
        changed_by=CUSTOMER_ID,
        actor_role="customer",
        changed_at=NOW,
        comments="Booking created",
    )
    return BookingHistory(**{**base, **overrides})


async def add(database: Database, *objs) -> None:
    """Persist ``objs`` in one committed transaction."""
    async with database.transaction() as session:
        session.add_all(objs)


# ---------------------------------------------------------------------------
# Request payload factories
# ---------------------------------------------------------------------------


def booking_create_payload(**overrides) -> dict:
    base = dict(
        service_id=str(SERVICE_ID),
        booking_date=TOMORROW_10.isoformat(),
        time_slot_label=None,
        service_location="provider",
        comments=None,
    )
    return {**base, **overrides}


def status_update_payload(**overrides) -> dict:
    base = dict(status="accepted", actor_role="provider")
    return {**base, **overrides}


def checkout_payload(product_id: UUID, **overrides) -> dict:
    base = dict(
        shop_id=str(SHOP_ID),
        items=[{"product_id": str(product_id), "quantity": 2, "unit_price": "50.00"}],
        total="100.00",
        discount="0.00",
        delivery_method="delivery",
        payment_method="upi",
    )
    return {**base, **overrides}
