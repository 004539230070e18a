"""Tests for app/notifications.py using httpx.MockTransport (no network)."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx

from app.notifications import NotificationEvent, NotificationsClient, dispatch_safely

from .factories import BOOKING_ID, CUSTOMER_ID, PROVIDER_ID


def _event(**overrides) -> NotificationEvent:
    base = dict(
        recipient_ids=(CUSTOMER_ID, PROVIDER_ID),
        type="booking_accepted",
        title="Booking Accepted",
        message="Your booking is now accepted.",
        related_booking_id=BOOKING_ID,
    )
    return NotificationEvent(**{**base, **overrides})


class TestPayload:
    def test_ids_serialised_as_strings(self):
        payload = _event().to_payload()
        assert payload["recipient_ids"] == [str(CUSTOMER_ID), str(PROVIDER_ID)]
        assert payload["related_booking_id"] == str(BOOKING_ID)
        assert payload["related_order_id"] is None
        assert payload["data"] == {}


class TestNotificationsClient:
    async def test_posts_event(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"ok": True})

        client = NotificationsClient(
            "http://notifications.test", transport=httpx.MockTransport(handler)
        )
        await client.dispatch(_event())
        await client.aclose()

        assert len(seen) == 1
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/notifications"
        body = json.loads(seen[0].content)
        assert body["type"] == "booking_accepted"

    async def test_server_error_is_swallowed(self):
        client = NotificationsClient(
            "http://notifications.test",
            transport=httpx.MockTransport(lambda r: httpx.Response(500)),
        )
        await client.dispatch(_event())
        await client.aclose()

    async def test_transport_error_is_swallowed(self, log_records):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = NotificationsClient(
            "http://notifications.test", transport=httpx.MockTransport(handler)
        )
        await client.dispatch(_event())
        await client.aclose()

        (record,) = [r for r in log_records if r["level"].name == "WARNING"]
        assert record["exception"].type is httpx.ConnectError


class TestDispatchSafely:
    async def test_dispatcher_errors_are_logged_not_raised(self, log_records):
        notifier = MagicMock()
        notifier.dispatch = AsyncMock(side_effect=RuntimeError("notifier down"))

        await dispatch_safely(notifier, _event())

        (record,) = [r for r in log_records if r["level"].name == "ERROR"]
        assert record["exception"].type is RuntimeError
