"""
Booking lifecycle: creation, the transition table, and who may drive it.

All legality and authorization rules live here so that every entry point
(HTTP routes, the expiration sweeper, admin tooling) agrees on them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from loguru import logger

from app.availability import AvailabilityChecker
from app.clock import Clock
from app.errors import (
    InvalidArgument,
    InvalidTransition,
    NotFound,
    SlotUnavailable,
    Unauthorized,
)
from app.models import (
    ActorRole,
    Booking,
    BookingHistory,
    BookingStatus,
    PaymentStatus,
    Service,
    ServiceLocation,
    TimeSlotLabel,
)
from app.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    dispatch_safely,
)
from app.repository import Repository


@dataclass(frozen=True)
class Actor:
    id: UUID | None
    role: ActorRole


SYSTEM_ACTOR = Actor(id=None, role=ActorRole.SYSTEM)

# Values written by older revisions of the booking flow
LEGACY_STATUS_ALIASES: dict[str, BookingStatus] = {
    "confirmed": BookingStatus.ACCEPTED,
    "rescheduled": BookingStatus.RESCHEDULED_PENDING,
    "rescheduled_by_provider": BookingStatus.RESCHEDULED_PENDING,
    "rescheduled_pending_provider_approval": BookingStatus.RESCHEDULED_PENDING,
}

_C = ActorRole.CUSTOMER
_P = ActorRole.PROVIDER
_A = ActorRole.ADMIN
_S = ActorRole.SYSTEM

# source -> {target: roles allowed to request that edge}
TRANSITIONS: dict[BookingStatus, dict[BookingStatus, frozenset[ActorRole]]] = {
    BookingStatus.PENDING: {
        BookingStatus.ACCEPTED: frozenset({_P}),
        BookingStatus.REJECTED: frozenset({_P}),
        BookingStatus.RESCHEDULED_PENDING: frozenset({_P, _C}),
        BookingStatus.EXPIRED: frozenset({_S}),
    },
    BookingStatus.ACCEPTED: {
        BookingStatus.EN_ROUTE: frozenset({_P}),
        BookingStatus.AWAITING_PAYMENT: frozenset({_C}),
        BookingStatus.CANCELLED: frozenset({_C}),
        BookingStatus.DISPUTED: frozenset({_C, _P}),
        BookingStatus.RESCHEDULED_PENDING: frozenset({_P, _C}),
    },
    BookingStatus.RESCHEDULED_PENDING: {
        # only the counterpart of whoever proposed, see _authorize_edge
        BookingStatus.ACCEPTED: frozenset({_C, _P}),
        BookingStatus.REJECTED: frozenset({_C, _P}),
    },
    BookingStatus.EN_ROUTE: {
        BookingStatus.AWAITING_PAYMENT: frozenset({_C}),
        BookingStatus.DISPUTED: frozenset({_C, _P}),
    },
    BookingStatus.AWAITING_PAYMENT: {
        BookingStatus.COMPLETED: frozenset({_P}),
        BookingStatus.DISPUTED: frozenset({_C, _P}),
    },
    BookingStatus.DISPUTED: {
        BookingStatus.COMPLETED: frozenset({_A}),
        BookingStatus.CANCELLED: frozenset({_A}),
    },
    BookingStatus.COMPLETED: {},
    BookingStatus.CANCELLED: {},
    BookingStatus.REJECTED: {},
    BookingStatus.EXPIRED: {},
}

# Every status a role may ever request, regardless of the source state
ROLE_TARGETS: dict[ActorRole, frozenset[BookingStatus]] = {
    role: frozenset(
        target
        for edges in TRANSITIONS.values()
        for target, roles in edges.items()
        if role in roles
    )
    for role in ActorRole
}

_TITLES: dict[BookingStatus, str] = {
    BookingStatus.ACCEPTED: "Booking Accepted",
    BookingStatus.REJECTED: "Booking Rejected",
    BookingStatus.RESCHEDULED_PENDING: "Reschedule Request",
    BookingStatus.EN_ROUTE: "Provider On The Way",
    BookingStatus.AWAITING_PAYMENT: "Payment Submitted",
    BookingStatus.COMPLETED: "Booking Completed",
    BookingStatus.CANCELLED: "Booking Cancelled",
    BookingStatus.DISPUTED: "Booking Disputed",
    BookingStatus.EXPIRED: "Booking Request Expired",
}


def parse_status(value: str | BookingStatus) -> BookingStatus:
    if isinstance(value, BookingStatus):
        return value
    if value in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[value]
    try:
        return BookingStatus(value)
    except ValueError:
        raise InvalidArgument(f"Unknown booking status '{value}'") from None


def _require_text(value: str | None, what: str) -> str:
    if value is None or not value.strip():
        raise InvalidArgument(f"{what} is required")
    return value.strip()


class BookingStateMachine:
    def __init__(
        self,
        repository: Repository,
        availability: AvailabilityChecker,
        notifier: NotificationDispatcher,
        clock: Clock,
        pending_ttl: timedelta = timedelta(hours=24),
    ) -> None:
        self.repository = repository
        self.availability = availability
        self.notifier = notifier
        self.clock = clock
        self.pending_ttl = pending_ttl

    # -- creation -----------------------------------------------------------

    async def request_booking(
        self,
        customer_id: UUID,
        service_id: UUID,
        booking_date: datetime,
        slot_label: TimeSlotLabel | str | None = None,
        service_location: ServiceLocation = ServiceLocation.PROVIDER,
        comments: str | None = None,
    ) -> Booking:
        now = self.clock.now()
        instant = self.clock.to_utc(booking_date)
        label = TimeSlotLabel(slot_label) if slot_label else None

        async with self.repository.transaction() as session:
            service = await self.repository.get_service(session, service_id)
            if service is None:
                raise NotFound("Service not found", {"service_id": str(service_id)})

            if label is not None:
                # Labelled bookings start at the beginning of their day-part
                instant, window_end = self.availability.reservation_window(
                    service, instant, label
                )
                if window_end <= now:
                    raise InvalidArgument("Requested time slot has already passed")
            elif instant <= now:
                raise InvalidArgument("Booking date must be in the future")

            decision = await self.availability.check_service(session, service, instant, label)
            if not decision:
                raise SlotUnavailable(
                    "Requested time is not available", {"reason": decision.reason}
                )

            booking = Booking(
                customer_id=customer_id,
                service_id=service.id,
                booking_date=instant,
                time_slot_label=label,
                status=BookingStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                expires_at=now + self.pending_ttl,
                service_location=ServiceLocation(service_location),
                comments=comments,
                created_at=now,
                updated_at=now,
            )
            entry = BookingHistory(
                status=BookingStatus.PENDING,
                changed_by=customer_id,
                actor_role=ActorRole.CUSTOMER,
                changed_at=now,
                comments="Booking created",
            )
            await self.repository.create_booking(session, booking, entry)

        logger.info("Booking {} requested for service {}", booking.id, service.id)
        await dispatch_safely(
            self.notifier,
            NotificationEvent(
                recipient_ids=(service.provider_id,),
                type="booking_request",
                title="New Booking Request",
                message=f"You have a new booking request for '{service.name}'.",
                related_booking_id=booking.id,
            )
        )
        return booking

    # -- reads ---------------------------------------------------------------

    async def get_booking(self, booking_id: UUID) -> tuple[Booking, Service]:
        async with self.repository.transaction() as session:
            booking = await self.repository.get_booking(session, booking_id)
            if booking is None:
                raise NotFound("Booking not found", {"booking_id": str(booking_id)})
            service = await self.repository.get_service(session, booking.service_id)
            if service is None:
                raise NotFound("Service not found for this booking")
            return booking, service

    async def get_history(self, booking_id: UUID) -> list[BookingHistory]:
        async with self.repository.transaction() as session:
            if await self.repository.get_booking(session, booking_id) is None:
                raise NotFound("Booking not found", {"booking_id": str(booking_id)})
            return await self.repository.get_booking_history(session, booking_id)

    # -- transitions ----------------------------------------------------------

    async def transition(
        self,
        booking_id: UUID,
        actor: Actor,
        target: BookingStatus | str,
        *,
        reason: str | None = None,
        proposed_date: datetime | None = None,
        payment_reference: str | None = None,
    ) -> Booking:
        """
        Apply one lifecycle step. Raises NotFound, Unauthorized,
        InvalidTransition or InvalidArgument and leaves the booking untouched
        when any check fails.
        """
        target = parse_status(target)
        conflicts: list[Booking] = []

        async with self.repository.transaction() as session:
            booking = await self.repository.get_booking(session, booking_id, for_update=True)
            if booking is None:
                raise NotFound("Booking not found", {"booking_id": str(booking_id)})
            service = await self.repository.get_service(session, booking.service_id)
            if service is None:
                raise NotFound("Service not found for this booking")

            source = booking.status
            self._authorize_actor(actor, booking, service)
            self._authorize_edge(actor, booking, target)

            now = self.clock.now()
            comment = self._apply(
                booking, actor, target, now, reason, proposed_date, payment_reference
            )
            entry = BookingHistory(
                status=target,
                changed_by=actor.id,
                actor_role=actor.role,
                changed_at=now,
                comments=comment,
            )
            await self.repository.update_booking_with_history(session, booking, entry)

            if target == BookingStatus.ACCEPTED:
                conflicts = await self.availability.find_conflicts(session, service, booking)

        logger.info(
            "Booking {} moved {} -> {} by {}", booking.id, source, target, actor.role
        )
        await self._notify_transition(booking, service, actor, source, target)
        if conflicts:
            await self._flag_conflicts(booking, service, conflicts)
        return booking

    def _authorize_actor(self, actor: Actor, booking: Booking, service: Service) -> None:
        if actor.role == ActorRole.CUSTOMER and actor.id != booking.customer_id:
            raise Unauthorized("Only the booking's customer may act as customer")
        if actor.role == ActorRole.PROVIDER and actor.id != service.provider_id:
            raise Unauthorized("Only the service's provider may act as provider")

    def _authorize_edge(self, actor: Actor, booking: Booking, target: BookingStatus) -> None:
        source = booking.status
        if target not in ROLE_TARGETS[actor.role]:
            raise Unauthorized(
                f"Role '{actor.role}' may not move a booking to '{target}'"
            )
        edges = TRANSITIONS[source]
        if target not in edges:
            raise InvalidTransition(
                f"Cannot transition from '{source}' to '{target}'",
                {"allowed": sorted(s.value for s in edges)},
            )
        if actor.role not in edges[target]:
            raise Unauthorized(
                f"Role '{actor.role}' may not move a '{source}' booking to '{target}'"
            )
        if source == BookingStatus.RESCHEDULED_PENDING and actor.role == booking.rescheduled_by:
            raise Unauthorized("A reschedule must be answered by the other party")

    def _apply(
        self,
        booking: Booking,
        actor: Actor,
        target: BookingStatus,
        now: datetime,
        reason: str | None,
        proposed_date: datetime | None,
        payment_reference: str | None,
    ) -> str:
        """Validate arguments, then mutate ``booking``. Returns the history comment."""
        source = booking.status

        if target == BookingStatus.REJECTED:
            reason = _require_text(reason, "A rejection reason")
        elif target == BookingStatus.DISPUTED:
            reason = _require_text(reason, "A dispute reason")
        elif target == BookingStatus.AWAITING_PAYMENT:
            payment_reference = _require_text(payment_reference, "A payment reference")
        elif target == BookingStatus.RESCHEDULED_PENDING:
            if proposed_date is None:
                raise InvalidArgument("A reschedule needs a proposed date")
            proposed_date = self.clock.to_utc(proposed_date)
            if proposed_date <= now:
                raise InvalidArgument("The proposed date must be in the future")

        comment = reason
        if target == BookingStatus.ACCEPTED:
            if source == BookingStatus.RESCHEDULED_PENDING:
                booking.booking_date = booking.reschedule_date
                comment = comment or "Reschedule approved"
            else:
                comment = comment or "Booking accepted"
            booking.reschedule_date = None
            booking.rescheduled_by = None
        elif target == BookingStatus.REJECTED:
            booking.rejection_reason = reason
            booking.reschedule_date = None
            booking.rescheduled_by = None
        elif target == BookingStatus.RESCHEDULED_PENDING:
            if booking.time_slot_label is not None:
                proposed_date, _ = self.availability.label_window(
                    proposed_date, booking.time_slot_label
                )
            booking.reschedule_date = proposed_date
            booking.rescheduled_by = actor.role
            comment = comment or f"Rescheduled by {actor.role}"
        elif target == BookingStatus.EN_ROUTE:
            comment = comment or "Provider en route"
        elif target == BookingStatus.AWAITING_PAYMENT:
            booking.payment_reference = payment_reference
            booking.payment_status = PaymentStatus.VERIFYING
            comment = comment or "Payment reference submitted"
        elif target == BookingStatus.COMPLETED:
            booking.payment_status = PaymentStatus.PAID
            comment = comment or "Booking completed"
        elif target == BookingStatus.CANCELLED:
            comment = comment or "Booking cancelled"
        elif target == BookingStatus.DISPUTED:
            booking.dispute_reason = reason
        elif target == BookingStatus.EXPIRED:
            comment = comment or "Booking expired automatically"

        booking.status = target
        if target != BookingStatus.PENDING:
            booking.expires_at = None
        booking.comments = comment
        booking.updated_at = now
        return comment

    # -- notifications ----------------------------------------------------------

    def _counterparts(
        self, actor: Actor, booking: Booking, service: Service
    ) -> tuple[UUID, ...]:
        if actor.role == ActorRole.CUSTOMER:
            return (service.provider_id,)
        if actor.role == ActorRole.PROVIDER:
            return (booking.customer_id,)
        if actor.role == ActorRole.ADMIN:
            return (booking.customer_id, service.provider_id)
        return ()

    async def _notify_transition(
        self,
        booking: Booking,
        service: Service,
        actor: Actor,
        source: BookingStatus,
        target: BookingStatus,
    ) -> None:
        recipients = self._counterparts(actor, booking, service)
        if not recipients:
            return
        message = f"Your booking for '{service.name}' is now {target.value.replace('_', ' ')}."
        if target == BookingStatus.REJECTED and booking.rejection_reason:
            message = f"Your booking for '{service.name}' was rejected. Reason: {booking.rejection_reason}"
        elif target == BookingStatus.RESCHEDULED_PENDING and booking.reschedule_date:
            message = (
                f"A new time was proposed for '{service.name}': "
                f"{self.clock.to_local(booking.reschedule_date):%Y-%m-%d %H:%M}. Please review."
            )
        elif target == BookingStatus.ACCEPTED and source == BookingStatus.RESCHEDULED_PENDING:
            message = (
                f"The reschedule of '{service.name}' was accepted. New date: "
                f"{self.clock.to_local(booking.booking_date):%Y-%m-%d %H:%M}."
            )
        await dispatch_safely(
            self.notifier,
            NotificationEvent(
                recipient_ids=recipients,
                type=f"booking_{target.value}",
                title=_TITLES.get(target, "Booking Update"),
                message=message,
                related_booking_id=booking.id,
            )
        )

    async def _flag_conflicts(
        self, booking: Booking, service: Service, conflicts: list[Booking]
    ) -> None:
        logger.warning(
            "Booking {} accepted while overlapping {} other booking(s): {}",
            booking.id,
            len(conflicts),
            [str(c.id) for c in conflicts],
        )
        await dispatch_safely(
            self.notifier,
            NotificationEvent(
                recipient_ids=(service.provider_id,),
                type="booking_conflict",
                title="Schedule Conflict",
                message=(
                    f"The booking you accepted for '{service.name}' overlaps "
                    f"{len(conflicts)} other booking(s). Please reschedule or reject one."
                ),
                related_booking_id=booking.id,
                data={"conflicting_booking_ids": [str(c.id) for c in conflicts]},
            )
        )
