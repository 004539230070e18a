"""Tests for scope values, descriptions and the role-to-scope mapping."""

from app.models import ActorRole
from app.scopes import BOOKING_SCOPE_DESCRIPTIONS, ROLE_SCOPES, BookingScope, OrderScope


class TestBookingScopeValues:
    def test_customer_read_scope(self):
        assert BookingScope.READ == "bookings:read"

    def test_customer_write_scope(self):
        assert BookingScope.WRITE == "bookings:write"

    def test_customer_cancel_scope(self):
        assert BookingScope.CANCEL == "bookings:cancel"

    def test_provider_manage_scope(self):
        assert BookingScope.MANAGE == "bookings:manage"

    def test_admin_scopes(self):
        assert BookingScope.ADMIN == "admin:bookings"
        assert BookingScope.ADMIN_READ == "admin:bookings:read"
        assert BookingScope.ADMIN_WRITE == "admin:bookings:write"

    def test_order_write_scope(self):
        assert OrderScope.WRITE == "orders:write"


class TestScopeDescriptions:
    def test_every_scope_described(self):
        for scope in (*BookingScope, *OrderScope):
            if scope == BookingScope.ADMIN:
                continue
            assert scope in BOOKING_SCOPE_DESCRIPTIONS

    def test_all_description_values_are_non_empty_strings(self):
        for key, value in BOOKING_SCOPE_DESCRIPTIONS.items():
            assert isinstance(key, str)
            assert isinstance(value, str)
            assert len(value) > 0


class TestRoleScopes:
    def test_system_role_cannot_be_claimed(self):
        assert ActorRole.SYSTEM not in ROLE_SCOPES

    def test_caller_roles_mapped(self):
        assert ROLE_SCOPES[ActorRole.CUSTOMER] == {BookingScope.WRITE, BookingScope.CANCEL}
        assert ROLE_SCOPES[ActorRole.PROVIDER] == {BookingScope.MANAGE}
        assert ROLE_SCOPES[ActorRole.ADMIN] == {BookingScope.ADMIN, BookingScope.ADMIN_WRITE}
