from __future__ import annotations

from collections.abc import AsyncIterator, Collection
from contextlib import asynccontextmanager
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import Database
from app.models import (
    BlockedTimeSlot,
    Booking,
    BookingHistory,
    BookingStatus,
    Order,
    OrderItem,
    OrderStatusUpdate,
    Product,
    Service,
    Shop,
)


class Repository:
    """
    Persistence operations used by the booking engine and the checkout.

    Every method takes the session of the caller's transaction so that a
    component can group several operations into one commit.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self.database.transaction() as session:
            yield session

    # -- catalog (read-only here) -------------------------------------------

    async def get_service(self, session: AsyncSession, service_id: UUID) -> Service | None:
        return await session.get(Service, service_id)

    async def get_shop(self, session: AsyncSession, shop_id: UUID) -> Shop | None:
        return await session.get(Shop, shop_id)

    async def list_blocked_slots(
        self, session: AsyncSession, service_id: UUID, day: date
    ) -> list[BlockedTimeSlot]:
        result = await session.scalars(
            select(BlockedTimeSlot).where(
                BlockedTimeSlot.service_id == service_id,
                BlockedTimeSlot.day == day,
            )
        )
        return list(result)

    # -- bookings -------------------------------------------------------------

    async def get_booking(
        self, session: AsyncSession, booking_id: UUID, *, for_update: bool = False
    ) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id)
        if for_update:
            stmt = stmt.with_for_update()
        return await session.scalar(stmt)

    async def create_booking(
        self,
        session: AsyncSession,
        booking: Booking,
        entry: BookingHistory,
    ) -> Booking:
        session.add(booking)
        await session.flush()
        entry.booking_id = booking.id
        session.add(entry)
        await session.flush()
        return booking

    async def update_booking_with_history(
        self,
        session: AsyncSession,
        booking: Booking,
        entry: BookingHistory,
    ) -> Booking:
        """Flush the booking's pending changes and its history row together."""
        entry.booking_id = booking.id
        session.add(booking)
        session.add(entry)
        await session.flush()
        return booking

    async def list_bookings_by_service(
        self,
        session: AsyncSession,
        service_id: UUID,
        start: datetime,
        end: datetime,
        statuses: Collection[BookingStatus],
        *,
        exclude_id: UUID | None = None,
    ) -> list[Booking]:
        """Bookings of a service whose ``booking_date`` falls in [start, end)."""
        stmt = select(Booking).where(
            Booking.service_id == service_id,
            Booking.booking_date >= start,
            Booking.booking_date < end,
            Booking.status.in_(list(statuses)),
        )
        if exclude_id is not None:
            stmt = stmt.where(Booking.id != exclude_id)
        result = await session.scalars(stmt.order_by(Booking.booking_date))
        return list(result)

    async def count_bookings_on_day(
        self,
        session: AsyncSession,
        service_id: UUID,
        start: datetime,
        end: datetime,
        statuses: Collection[BookingStatus],
        *,
        exclude_id: UUID | None = None,
    ) -> int:
        stmt = select(func.count(Booking.id)).where(
            Booking.service_id == service_id,
            Booking.booking_date >= start,
            Booking.booking_date < end,
            Booking.status.in_(list(statuses)),
        )
        if exclude_id is not None:
            stmt = stmt.where(Booking.id != exclude_id)
        return int(await session.scalar(stmt) or 0)

    async def list_pending_bookings_past_deadline(
        self, session: AsyncSession, now: datetime, limit: int
    ) -> list[Booking]:
        result = await session.scalars(
            select(Booking)
            .where(
                Booking.status == BookingStatus.PENDING,
                Booking.expires_at < now,
            )
            .order_by(Booking.expires_at)
            .limit(limit)
        )
        return list(result)

    async def get_booking_history(
        self, session: AsyncSession, booking_id: UUID
    ) -> list[BookingHistory]:
        result = await session.scalars(
            select(BookingHistory)
            .where(BookingHistory.booking_id == booking_id)
            .order_by(BookingHistory.id)
        )
        return list(result)

    # -- products and orders --------------------------------------------------

    async def get_products_by_ids(
        self, session: AsyncSession, product_ids: Collection[UUID]
    ) -> list[Product]:
        if not product_ids:
            return []
        result = await session.scalars(
            select(Product).where(Product.id.in_(list(product_ids)))
        )
        return list(result)

    async def conditional_decrement_stock(
        self, session: AsyncSession, product_id: UUID, quantity: int
    ) -> int:
        """Subtract ``quantity`` only where stock covers it; returns affected rows."""
        result = await session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def create_order_with_items(
        self,
        session: AsyncSession,
        order: Order,
        items: list[OrderItem],
        initial_update: OrderStatusUpdate,
    ) -> Order:
        order.items = list(items)
        session.add(order)
        await session.flush()
        initial_update.order_id = order.id
        session.add(initial_update)
        await session.flush()
        return order

    async def get_order_items(self, session: AsyncSession, order_id: UUID) -> list[OrderItem]:
        result = await session.scalars(
            select(OrderItem).where(OrderItem.order_id == order_id)
        )
        return list(result)

    async def get_order_timeline(
        self, session: AsyncSession, order_id: UUID
    ) -> list[OrderStatusUpdate]:
        result = await session.scalars(
            select(OrderStatusUpdate)
            .where(OrderStatusUpdate.order_id == order_id)
            .order_by(OrderStatusUpdate.id)
        )
        return list(result)

    async def get_product_stock(self, session: AsyncSession, product_id: UUID) -> int | None:
        return await session.scalar(select(Product.stock).where(Product.id == product_id))
