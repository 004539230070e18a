from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from app.availability import AvailabilityChecker
from app.deps import (
    CurrentUser,
    can_read_or_manage_booking,
    can_write_booking,
    get_availability_checker,
    get_current_user,
    get_state_machine,
    get_sweeper,
    require_admin,
    require_role_scope,
)
from app.errors import MarketplaceError
from app.models import Booking, Service, TimeSlotLabel
from app.schemas import (
    AvailabilityResponse,
    BookingCreate,
    BookingHistoryResponse,
    BookingResponse,
    BookingStatusUpdate,
    ExpireResponse,
)
from app.scopes import BookingScope
from app.state_machine import Actor, BookingStateMachine
from app.sweeper import ExpirationSweeper

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _assert_party(booking: Booking, service: Service, current_user: CurrentUser) -> None:
    """
    Hide bookings from callers who are neither a party to them nor an admin.
    Responds 404 rather than 403 so booking ids cannot be probed.
    """
    is_admin = (
        BookingScope.ADMIN in current_user.scopes
        or BookingScope.ADMIN_READ in current_user.scopes
    )
    if is_admin:
        return
    if current_user.id in (booking.customer_id, service.provider_id):
        return
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/availability", response_model=AvailabilityResponse)
async def check_availability(
    service_id: UUID,
    booking_date: datetime,
    time_slot_label: TimeSlotLabel | None = None,
    _: CurrentUser = Depends(get_current_user),
    availability: AvailabilityChecker = Depends(get_availability_checker),
) -> AvailabilityResponse:
    """
    Any authenticated user can call this; the answer reveals no booking details.
    """
    try:
        decision = await availability.check(service_id, booking_date, time_slot_label)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return AvailabilityResponse.model_validate(decision)


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: CurrentUser = Depends(can_write_booking),
    state_machine: BookingStateMachine = Depends(get_state_machine),
) -> BookingResponse:
    try:
        booking = await state_machine.request_booking(
            customer_id=current_user.id,
            service_id=payload.service_id,
            booking_date=payload.booking_date,
            slot_label=payload.time_slot_label,
            service_location=payload.service_location,
            comments=payload.comments,
        )
    except MarketplaceError as exc:
        logger.debug("Booking request rejected: {}", exc.code)
        raise exc.to_http_exception() from exc
    return booking


@router.post(
    "/expire",
    response_model=ExpireResponse,
    dependencies=[Depends(require_admin)],
)
async def run_expiration_sweep(
    sweeper: ExpirationSweeper = Depends(get_sweeper),
) -> ExpireResponse:
    """Run one sweep now instead of waiting for the next scheduled tick."""
    expired = await sweeper.run_once()
    return ExpireResponse(expired=expired)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
    state_machine: BookingStateMachine = Depends(get_state_machine),
) -> BookingResponse:
    try:
        booking, service = await state_machine.get_booking(booking_id)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    _assert_party(booking, service, current_user)
    return booking


@router.get("/{booking_id}/history", response_model=list[BookingHistoryResponse])
async def get_booking_history(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
    state_machine: BookingStateMachine = Depends(get_state_machine),
) -> list[BookingHistoryResponse]:
    try:
        booking, service = await state_machine.get_booking(booking_id)
        _assert_party(booking, service, current_user)
        return await state_machine.get_history(booking_id)
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    payload: BookingStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    state_machine: BookingStateMachine = Depends(get_state_machine),
) -> BookingResponse:
    # The state machine checks the caller is the right party for the role
    require_role_scope(current_user, payload.actor_role)

    try:
        booking = await state_machine.transition(
            booking_id,
            Actor(id=current_user.id, role=payload.actor_role),
            payload.status,
            reason=payload.reason,
            proposed_date=payload.proposed_date,
            payment_reference=payload.payment_reference,
        )
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return booking
