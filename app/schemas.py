from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models import (
    ActorRole,
    BookingStatus,
    OrderStatus,
    PaymentStatus,
    ServiceLocation,
    TimeSlotLabel,
)


def _aware_utc(v: datetime | None) -> datetime | None:
    if v is None:
        return None
    if v.tzinfo is None:
        raise ValueError("datetime must be timezone-aware (include UTC offset)")
    return v.astimezone(timezone.utc)


class BookingCreate(BaseModel):
    service_id: UUID
    booking_date: datetime
    time_slot_label: TimeSlotLabel | None = None
    service_location: ServiceLocation = ServiceLocation.PROVIDER
    comments: str | None = Field(default=None, max_length=1000)

    @field_validator("booking_date", mode="after")
    @classmethod
    def require_timezone(cls, v: datetime) -> datetime:
        return _aware_utc(v)


class BookingStatusUpdate(BaseModel):
    # Plain string so legacy values ("confirmed", ...) are accepted and mapped
    status: str = Field(min_length=1, max_length=64)
    actor_role: ActorRole
    reason: str | None = Field(default=None, max_length=1000)
    proposed_date: datetime | None = None
    payment_reference: str | None = Field(default=None, max_length=200)

    @field_validator("proposed_date", mode="after")
    @classmethod
    def require_timezone(cls, v: datetime | None) -> datetime | None:
        return _aware_utc(v)

    @field_validator("actor_role", mode="after")
    @classmethod
    def reject_system_role(cls, v: ActorRole) -> ActorRole:
        if v == ActorRole.SYSTEM:
            raise ValueError("the system role cannot be claimed by a caller")
        return v


class BookingResponse(BaseModel):
    id: UUID
    customer_id: UUID
    service_id: UUID
    booking_date: datetime
    time_slot_label: TimeSlotLabel | None
    status: BookingStatus
    payment_status: PaymentStatus
    payment_reference: str | None
    expires_at: datetime | None
    reschedule_date: datetime | None
    rescheduled_by: ActorRole | None
    rejection_reason: str | None
    dispute_reason: str | None
    comments: str | None
    service_location: ServiceLocation
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingHistoryResponse(BaseModel):
    id: int
    booking_id: UUID
    status: BookingStatus
    changed_by: UUID | None
    actor_role: ActorRole
    changed_at: datetime
    comments: str | None

    model_config = ConfigDict(from_attributes=True)


class AvailabilityResponse(BaseModel):
    available: bool
    reason: str | None = None
    window_start: datetime | None = None
    window_end: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ExpireResponse(BaseModel):
    expired: int


class CartLineIn(BaseModel):
    product_id: UUID
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)


class CheckoutRequest(BaseModel):
    shop_id: UUID
    items: list[CartLineIn] = Field(min_length=1)
    total: Decimal
    discount: Decimal = Field(default=Decimal("0.00"), ge=0)
    delivery_method: str = Field(min_length=1, max_length=32)
    payment_method: str = Field(min_length=1, max_length=32)


class OrderItemResponse(BaseModel):
    id: UUID
    product_id: UUID
    name: str
    quantity: int
    price: Decimal
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    id: UUID
    customer_id: UUID
    shop_id: UUID
    status: OrderStatus
    payment_status: PaymentStatus
    delivery_method: str
    payment_method: str
    subtotal: Decimal
    discount: Decimal
    platform_fee: Decimal
    total: Decimal
    created_at: datetime
    items: list[OrderItemResponse]

    model_config = ConfigDict(from_attributes=True)
