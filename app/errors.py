"""
Expected, caller-recoverable failures of the booking and checkout core.

Every error carries a stable machine-readable ``code`` and an HTTP-equivalent
``status_code``; the routers turn them into ``HTTPException`` at the edge.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class MarketplaceError(Exception):
    code = "marketplace_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, reason: str, details: dict[str, Any] | None = None) -> None:
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.reason, "details": self.details}

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class NotFound(MarketplaceError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransition(MarketplaceError):
    code = "invalid_transition"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidArgument(MarketplaceError):
    code = "invalid_argument"
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(MarketplaceError):
    code = "unauthorized"
    status_code = status.HTTP_403_FORBIDDEN


class SlotUnavailable(MarketplaceError):
    """The client should offer alternate slots."""

    code = "slot_unavailable"
    status_code = status.HTTP_409_CONFLICT


class InsufficientStock(MarketplaceError):
    code = "insufficient_stock"
    status_code = status.HTTP_400_BAD_REQUEST


class TotalMismatch(MarketplaceError):
    code = "total_mismatch"
    status_code = status.HTTP_400_BAD_REQUEST


class CrossShopOrder(MarketplaceError):
    code = "cross_shop_order"
    status_code = status.HTTP_400_BAD_REQUEST


class CheckoutTimeout(MarketplaceError):
    """The checkout transaction was aborted; the client may retry."""

    code = "checkout_timeout"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
