from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

import httpx
from loguru import logger


@dataclass(frozen=True)
class NotificationEvent:
    recipient_ids: tuple[UUID, ...]
    type: str
    title: str
    message: str
    related_booking_id: UUID | None = None
    related_order_id: UUID | None = None
    data: dict = field(default_factory=dict)

    def to_payload(self) -> dict:
        return {
            "recipient_ids": [str(r) for r in self.recipient_ids],
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "related_booking_id": (
                str(self.related_booking_id) if self.related_booking_id else None
            ),
            "related_order_id": str(self.related_order_id) if self.related_order_id else None,
            "data": self.data,
        }


class NotificationDispatcher(Protocol):
    async def dispatch(self, event: NotificationEvent) -> None: ...


class NotificationsClient:
    """
    Thin async wrapper around the notifications-ms internal API.
    Fire-and-forget: delivery failures are logged and swallowed so that a
    committed booking or order is never reported as failed.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, transport=None) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            transport=transport,
        )

    async def dispatch(self, event: NotificationEvent) -> None:
        try:
            resp = await self._client.post("/notifications", json=event.to_payload())
        except httpx.HTTPError:
            logger.opt(exception=True).warning(
                "Notification delivery failed: type={} recipients={}",
                event.type,
                len(event.recipient_ids),
            )
            return
        if resp.status_code >= 400:
            logger.warning(
                "notifications-ms returned {} for type={}", resp.status_code, event.type
            )

    async def aclose(self) -> None:
        await self._client.aclose()


async def dispatch_safely(
    notifier: NotificationDispatcher, event: NotificationEvent
) -> None:
    """Dispatch after a commit; a failing notifier is logged, never raised to the caller."""
    try:
        await notifier.dispatch(event)
    except Exception:
        logger.exception("Dispatch of {} notification failed", event.type)
