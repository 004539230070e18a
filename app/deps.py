from dataclasses import dataclass, field
from urllib.parse import unquote
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from app.availability import AvailabilityChecker
from app.checkout import OrderCheckoutTransaction
from app.models import ActorRole
from app.scopes import ROLE_SCOPES, BookingScope, OrderScope
from app.state_machine import BookingStateMachine
from app.sweeper import ExpirationSweeper


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return (
            BookingScope.ADMIN in self.scopes
            or BookingScope.ADMIN_WRITE in self.scopes
        )

    def can_act_as(self, role: ActorRole) -> bool:
        return any(s in self.scopes for s in ROLE_SCOPES.get(role, ()))


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Reads the headers injected by Traefik after forwardAuth validation.
    The JWT has already been verified, we just trust these headers.
    NOTE: This only works behind Traefik. Run with that assumption.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(id=user_id, username=unquote(x_username), scopes=scopes)


def require_scopes(*required: str):
    """
    Factory that returns a dependency enforcing one or more scopes.

    Usage:
        @router.post("/orders")
        async def route(user = Depends(require_scopes("orders:write"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


async def require_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.ADMIN}' or '{BookingScope.ADMIN_WRITE}' scope."
            ),
        )
    return current_user


def require_role_scope(current_user: CurrentUser, role: ActorRole) -> None:
    """Raise 403 unless the caller's scopes back the role they claim."""
    if not current_user.can_act_as(role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Acting as '{role}' requires one of: "
                f"{', '.join(sorted(ROLE_SCOPES.get(role, ())))}"
            ),
        )


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_write_booking = require_scopes(BookingScope.WRITE)
can_place_order = require_scopes(OrderScope.WRITE)


async def can_read_or_manage_booking(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """
    Passes if the user can read bookings (customer/admin) OR manage bookings (provider).
    Whether the caller is a party to a particular booking is checked in the route.
    """
    has_read = BookingScope.READ in current_user.scopes
    has_manage = BookingScope.MANAGE in current_user.scopes
    has_admin = (
        BookingScope.ADMIN in current_user.scopes
        or BookingScope.ADMIN_READ in current_user.scopes
    )
    if not (has_read or has_manage or has_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.READ}' (customers), "
                f"'{BookingScope.MANAGE}' (providers), "
                f"or '{BookingScope.ADMIN_READ}' (admin)."
            ),
        )
    return current_user


# ---------------------------------------------------------------------------
# Core components, built once in the lifespan and kept on app.state
# ---------------------------------------------------------------------------


def get_state_machine(request: Request) -> BookingStateMachine:
    return request.app.state.state_machine


def get_availability_checker(request: Request) -> AvailabilityChecker:
    return request.app.state.availability


def get_sweeper(request: Request) -> ExpirationSweeper:
    return request.app.state.sweeper


def get_checkout(request: Request) -> OrderCheckoutTransaction:
    return request.app.state.checkout
