from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.clock import Clock
from app.errors import NotFound
from app.models import (
    NON_TERMINAL_STATUSES,
    SCHEDULE_BLOCKING_STATUSES,
    Booking,
    Service,
    TimeSlotLabel,
)
from app.repository import Repository

# Local wall-clock windows; an end of 00:00 means midnight at the end of the day
SLOT_WINDOWS: dict[TimeSlotLabel, tuple[time, time]] = {
    TimeSlotLabel.MORNING: (time(6, 0), time(12, 0)),
    TimeSlotLabel.AFTERNOON: (time(12, 0), time(17, 0)),
    TimeSlotLabel.EVENING: (time(17, 0), time(0, 0)),
}

BLOCKED_BY_PROVIDER = "blocked_by_provider"
OVERLAPS_EXISTING_BOOKING = "overlaps_existing_booking"
DAILY_LIMIT_REACHED = "daily_limit_reached"
SLOT_NOT_OFFERED = "slot_not_offered"


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open intervals [a_start, a_end) and [b_start, b_end)."""
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class AvailabilityDecision:
    available: bool
    reason: str | None = None
    window_start: datetime | None = None
    window_end: datetime | None = None

    def __bool__(self) -> bool:
        return self.available


class AvailabilityChecker:
    """
    Advisory pre-booking check: blocked slots, overlapping active bookings
    and the service's daily cap. It is a read-then-decide check, not a lock;
    concurrent winners are caught by the conflict audit on accept.
    """

    def __init__(self, repository: Repository, clock: Clock, default_max_daily: int = 5) -> None:
        self.repository = repository
        self.clock = clock
        self.default_max_daily = default_max_daily

    # -- windows ------------------------------------------------------------

    @staticmethod
    def span(service: Service) -> timedelta:
        return timedelta(minutes=service.duration_minutes + (service.buffer_minutes or 0))

    def label_window(self, instant: datetime, slot_label: TimeSlotLabel) -> tuple[datetime, datetime]:
        """The labelled day-part on the business-local date of ``instant``."""
        start, end = SLOT_WINDOWS[TimeSlotLabel(slot_label)]
        return self.clock.local_window(self.clock.local_date(instant), start, end)

    def reservation_window(
        self,
        service: Service,
        instant: datetime,
        slot_label: TimeSlotLabel | None = None,
    ) -> tuple[datetime, datetime]:
        if slot_label is not None:
            return self.label_window(instant, slot_label)
        start = self.clock.to_utc(instant)
        return start, start + self.span(service)

    def booking_window(self, service: Service, booking: Booking) -> tuple[datetime, datetime]:
        return self.reservation_window(service, booking.booking_date, booking.time_slot_label)

    def _lookback(self, service: Service) -> timedelta:
        return max(self.span(service), timedelta(days=1))

    # -- checks -------------------------------------------------------------

    async def check(
        self,
        service_id: UUID,
        instant: datetime,
        slot_label: TimeSlotLabel | None = None,
        *,
        exclude_booking_id: UUID | None = None,
        session: AsyncSession | None = None,
    ) -> AvailabilityDecision:
        if session is None:
            async with self.repository.transaction() as own_session:
                return await self.check(
                    service_id,
                    instant,
                    slot_label,
                    exclude_booking_id=exclude_booking_id,
                    session=own_session,
                )

        service = await self.repository.get_service(session, service_id)
        if service is None:
            raise NotFound("Service not found", {"service_id": str(service_id)})
        return await self.check_service(
            session, service, instant, slot_label, exclude_booking_id=exclude_booking_id
        )

    async def is_available(
        self,
        service_id: UUID,
        instant: datetime,
        slot_label: TimeSlotLabel | None = None,
    ) -> bool:
        return (await self.check(service_id, instant, slot_label)).available

    async def check_service(
        self,
        session: AsyncSession,
        service: Service,
        instant: datetime,
        slot_label: TimeSlotLabel | None = None,
        *,
        exclude_booking_id: UUID | None = None,
    ) -> AvailabilityDecision:
        start, end = self.reservation_window(service, instant, slot_label)

        def _no(reason: str) -> AvailabilityDecision:
            logger.debug(
                "Slot unavailable: service_id={} start={} reason={}",
                service.id,
                start.isoformat(),
                reason,
            )
            return AvailabilityDecision(False, reason, start, end)

        if slot_label is not None and service.allowed_slots is not None:
            if TimeSlotLabel(slot_label).value not in service.allowed_slots:
                return _no(SLOT_NOT_OFFERED)

        if await self._blocked(session, service, start, end):
            return _no(BLOCKED_BY_PROVIDER)

        conflicts = await self._overlapping(session, service, start, end, exclude_booking_id)
        if conflicts:
            return _no(OVERLAPS_EXISTING_BOOKING)

        day_start, day_end = self.clock.day_bounds(self.clock.local_date(start))
        booked = await self.repository.count_bookings_on_day(
            session,
            service.id,
            day_start,
            day_end,
            NON_TERMINAL_STATUSES,
            exclude_id=exclude_booking_id,
        )
        cap = service.max_daily_bookings
        if cap is None:
            cap = self.default_max_daily
        if booked >= cap:
            return _no(DAILY_LIMIT_REACHED)

        return AvailabilityDecision(True, None, start, end)

    async def find_conflicts(
        self, session: AsyncSession, service: Service, booking: Booking
    ) -> list[Booking]:
        """Schedule-blocking bookings that overlap ``booking``'s window."""
        start, end = self.booking_window(service, booking)
        return await self._overlapping(session, service, start, end, booking.id)

    async def _blocked(
        self, session: AsyncSession, service: Service, start: datetime, end: datetime
    ) -> bool:
        # The day before is included for blocks that run past midnight
        day = self.clock.local_date(start) - timedelta(days=1)
        last_day = self.clock.local_date(end - timedelta(microseconds=1))
        while day <= last_day:
            for slot in await self.repository.list_blocked_slots(session, service.id, day):
                b_start, b_end = self.clock.local_window(day, slot.start_time, slot.end_time)
                if overlaps(start, end, b_start, b_end):
                    return True
            day += timedelta(days=1)
        return False

    async def _overlapping(
        self,
        session: AsyncSession,
        service: Service,
        start: datetime,
        end: datetime,
        exclude_booking_id: UUID | None,
    ) -> list[Booking]:
        candidates = await self.repository.list_bookings_by_service(
            session,
            service.id,
            start - self._lookback(service),
            end,
            SCHEDULE_BLOCKING_STATUSES,
            exclude_id=exclude_booking_id,
        )
        return [
            b for b in candidates if overlaps(start, end, *self.booking_window(service, b))
        ]
