from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class BookingStatus(StrEnum):
    PENDING = "pending"  # just requested, awaiting provider response
    ACCEPTED = "accepted"  # provider accepted (legacy alias: "confirmed")
    RESCHEDULED_PENDING = "rescheduled_pending_counterpart_approval"
    EN_ROUTE = "en_route"  # provider travelling to the service location
    AWAITING_PAYMENT = "awaiting_payment"  # customer submitted payment reference
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    DISPUTED = "disputed"  # admin resolution required
    EXPIRED = "expired"  # provider never answered within the pending window


TERMINAL_STATUSES = frozenset(
    {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.REJECTED,
        BookingStatus.EXPIRED,
    }
)

# Statuses whose window occupies the provider's schedule
SCHEDULE_BLOCKING_STATUSES = frozenset(
    {
        BookingStatus.ACCEPTED,
        BookingStatus.RESCHEDULED_PENDING,
        BookingStatus.AWAITING_PAYMENT,
        BookingStatus.EN_ROUTE,
    }
)

NON_TERMINAL_STATUSES = frozenset(set(BookingStatus) - TERMINAL_STATUSES)


class PaymentStatus(StrEnum):
    PENDING = "pending"
    VERIFYING = "verifying"
    PAID = "paid"
    FAILED = "failed"


class OrderStatus(StrEnum):
    PENDING = "pending"
    CANCELLED = "cancelled"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    PACKED = "packed"
    DISPATCHED = "dispatched"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    RETURNED = "returned"


class TimeSlotLabel(StrEnum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class ServiceLocation(StrEnum):
    CUSTOMER = "customer"  # provider travels to the customer
    PROVIDER = "provider"  # customer visits the provider


class ActorRole(StrEnum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


def _enum(enum_cls: type[StrEnum], length: int = 48) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class UTCDateTime(TypeDecorator):
    """Stores UTC, always hands back aware UTC datetimes (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTC column")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class TimestampedModel(Base):
    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)


class Service(TimestampedModel):
    __tablename__ = "services"

    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    name: Mapped[str] = mapped_column(String(200))
    duration_minutes: Mapped[int] = mapped_column(Integer)
    buffer_minutes: Mapped[int] = mapped_column(Integer, default=0)
    max_daily_bookings: Mapped[int | None] = mapped_column(Integer, nullable=True)
    allowed_slots: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True, default=lambda: [s.value for s in TimeSlotLabel]
    )


class BlockedTimeSlot(TimestampedModel):
    """Provider-declared unavailability, in business-local wall-clock time."""

    __tablename__ = "blocked_time_slots"

    service_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("services.id", ondelete="CASCADE"), index=True
    )
    day: Mapped[date] = mapped_column("date", Date)
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class Booking(TimestampedModel):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint(
            "(status = 'pending' AND expires_at IS NOT NULL)"
            " OR (status <> 'pending' AND expires_at IS NULL)",
            name="ck_bookings_expires_at_only_while_pending",
        ),
        Index("ix_bookings_service_date", "service_id", "booking_date"),
        Index("ix_bookings_status_expires_at", "status", "expires_at"),
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    service_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("services.id"))

    booking_date: Mapped[datetime] = mapped_column(UTCDateTime)
    time_slot_label: Mapped[TimeSlotLabel | None] = mapped_column(
        _enum(TimeSlotLabel, 16), nullable=True
    )

    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus), default=BookingStatus.PENDING
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, 16), default=PaymentStatus.PENDING
    )
    payment_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    reschedule_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    rescheduled_by: Mapped[ActorRole | None] = mapped_column(
        _enum(ActorRole, 16), nullable=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    service_location: Mapped[ServiceLocation] = mapped_column(
        _enum(ServiceLocation, 16), default=ServiceLocation.PROVIDER
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow
    )


class BookingHistory(Base):
    """Append-only: one row per status transition."""

    __tablename__ = "booking_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("bookings.id"), index=True
    )
    status: Mapped[BookingStatus] = mapped_column(_enum(BookingStatus))
    changed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    actor_role: Mapped[ActorRole] = mapped_column(_enum(ActorRole, 16))
    changed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)


class Shop(TimestampedModel):
    __tablename__ = "shops"

    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    name: Mapped[str] = mapped_column(String(200))
    # Either mode means orders are taken without touching stock
    catalog_mode_enabled: Mapped[bool] = mapped_column(default=False)
    open_order_mode: Mapped[bool] = mapped_column(default=False)

    @property
    def is_stock_exempt(self) -> bool:
        return bool(self.catalog_mode_enabled or self.open_order_mode)


class Product(TimestampedModel):
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),)

    shop_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("shops.id"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    stock: Mapped[int] = mapped_column(Integer, default=0)


class Order(TimestampedModel):
    __tablename__ = "orders"

    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    shop_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("shops.id"), index=True)
    status: Mapped[OrderStatus] = mapped_column(
        _enum(OrderStatus, 16), default=OrderStatus.PENDING
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, 16), default=PaymentStatus.PENDING
    )
    delivery_method: Mapped[str] = mapped_column(String(32))
    payment_method: Mapped[str] = mapped_column(String(32))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    items: Mapped[list[OrderItem]] = relationship(
        lazy="selectin", cascade="all, delete-orphan"
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id"), index=True)
    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id"))
    name: Mapped[str] = mapped_column(String(200))  # snapshot at order time
    quantity: Mapped[int] = mapped_column(Integer)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))  # unit price snapshot
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2))


class OrderStatusUpdate(Base):
    """Append-only order timeline."""

    __tablename__ = "order_status_updates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id"), index=True)
    status: Mapped[OrderStatus] = mapped_column(_enum(OrderStatus, 16))
    tracking_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
