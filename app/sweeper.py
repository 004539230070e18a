"""
Periodic expiration of booking requests the provider never answered.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from app.clock import Clock
from app.job_lock import RedisJobLock
from app.models import Booking, BookingStatus
from app.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    dispatch_safely,
)
from app.repository import Repository
from app.state_machine import SYSTEM_ACTOR, BookingStateMachine

JOB_NAME = "booking-expiration"


class ExpirationSweeper:
    def __init__(
        self,
        repository: Repository,
        state_machine: BookingStateMachine,
        notifier: NotificationDispatcher,
        clock: Clock,
        batch_limit: int = 500,
        job_lock: RedisJobLock | None = None,
    ) -> None:
        self.repository = repository
        self.state_machine = state_machine
        self.notifier = notifier
        self.clock = clock
        self.batch_limit = batch_limit
        self.job_lock = job_lock

    async def run_once(self) -> int:
        """Expire every stale pending booking in one batch; returns how many were expired."""
        now = self.clock.now()
        async with self.repository.transaction() as session:
            stale = await self.repository.list_pending_bookings_past_deadline(
                session, now, self.batch_limit
            )

        if not stale:
            logger.debug("Expiration sweep: nothing to expire")
            return 0

        logger.info("Expiration sweep: {} stale booking(s) found", len(stale))
        expired = 0
        for candidate in stale:
            try:
                booking = await self.state_machine.transition(
                    candidate.id, SYSTEM_ACTOR, BookingStatus.EXPIRED
                )
            except Exception:
                logger.exception("Failed to expire booking {}", candidate.id)
                continue
            expired += 1
            try:
                await self._notify_parties(booking)
            except Exception:
                logger.exception(
                    "Failed to notify parties of expired booking {}", booking.id
                )

        logger.info("Expiration sweep: expired {} of {}", expired, len(stale))
        return expired

    async def _notify_parties(self, booking: Booking) -> None:
        async with self.repository.transaction() as session:
            service = await self.repository.get_service(session, booking.service_id)
        if service is None:
            return
        when = f"{self.clock.to_local(booking.booking_date):%Y-%m-%d %H:%M}"
        await dispatch_safely(
            self.notifier,
            NotificationEvent(
                recipient_ids=(booking.customer_id,),
                type="booking_expired",
                title="Booking Request Expired",
                message=(
                    f"Your booking request for '{service.name}' on {when} expired "
                    "because the provider did not respond in time."
                ),
                related_booking_id=booking.id,
            )
        )
        await dispatch_safely(
            self.notifier,
            NotificationEvent(
                recipient_ids=(service.provider_id,),
                type="booking_expired",
                title="Booking Request Expired",
                message=(
                    f"A booking request for '{service.name}' on {when} expired "
                    "before you responded."
                ),
                related_booking_id=booking.id,
            )
        )

    async def tick(self) -> int:
        if self.job_lock is None:
            return await self.run_once()

        acquired = await self.job_lock.acquire(JOB_NAME)
        if acquired is False:
            logger.debug("Expiration sweep already running elsewhere, skipping")
            return 0
        if acquired is None:
            logger.warning("Job lock unavailable, sweeping without it")
        try:
            return await self.run_once()
        finally:
            if acquired:
                await self.job_lock.release(JOB_NAME)

    async def run_forever(self, stop_event: asyncio.Event, interval: float = 3600.0) -> None:
        logger.info("Expiration sweeper started (interval={}s)", interval)
        while not stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Expiration sweep tick failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Expiration sweeper stopped")
