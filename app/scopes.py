from enum import StrEnum

from app.models import ActorRole


class BookingScope(StrEnum):
    # Customer scopes
    READ = "bookings:read"  # view own bookings
    WRITE = "bookings:write"  # request a booking, pay, reschedule, dispute
    CANCEL = "bookings:cancel"  # cancel own accepted booking

    # Provider scopes
    MANAGE = "bookings:manage"  # accept / reject / reschedule / en route / complete

    # Admin scopes
    ADMIN = "admin:bookings"
    ADMIN_READ = "admin:bookings:read"
    ADMIN_WRITE = "admin:bookings:write"


class OrderScope(StrEnum):
    WRITE = "orders:write"  # place an order


BOOKING_SCOPE_DESCRIPTIONS: dict[str, str] = {
    BookingScope.READ: "View your own bookings.",
    BookingScope.WRITE: "Request bookings and act on them as the customer.",
    BookingScope.CANCEL: "Cancel your own accepted booking.",
    BookingScope.MANAGE: "Accept, reject, reschedule and complete bookings for your services.",
    BookingScope.ADMIN_READ: "Read any booking regardless of owner (admin).",
    BookingScope.ADMIN_WRITE: "Resolve disputes and run the expiration sweep (admin).",
    OrderScope.WRITE: "Place product orders.",
}

# A caller claiming a role on a transition must hold at least one of these
ROLE_SCOPES: dict[ActorRole, frozenset[str]] = {
    ActorRole.CUSTOMER: frozenset({BookingScope.WRITE, BookingScope.CANCEL}),
    ActorRole.PROVIDER: frozenset({BookingScope.MANAGE}),
    ActorRole.ADMIN: frozenset({BookingScope.ADMIN, BookingScope.ADMIN_WRITE}),
}
