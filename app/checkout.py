"""
Single-shop checkout: reserve stock for every line and create the order in
one transaction, or change nothing at all.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from app.errors import (
    CheckoutTimeout,
    CrossShopOrder,
    InsufficientStock,
    InvalidArgument,
    NotFound,
    TotalMismatch,
)
from app.models import (
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusUpdate,
    PaymentStatus,
    Shop,
)
from app.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    dispatch_safely,
)
from app.repository import Repository

CENT = Decimal("0.01")


def to_cents(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CartLine:
    product_id: UUID
    quantity: int
    # What the client saw; the catalog price is authoritative
    unit_price: Decimal | None = None


def _is_transient(exc: DBAPIError) -> bool:
    return isinstance(exc, (OperationalError, InterfaceError)) or exc.connection_invalidated


class OrderCheckoutTransaction:
    def __init__(
        self,
        repository: Repository,
        notifier: NotificationDispatcher,
        platform_fee: Decimal = Decimal("0.00"),
        tolerance: Decimal = CENT,
        timeout: float = 10.0,
        max_attempts: int = 3,
        retry_backoff: float = 0.1,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.platform_fee = to_cents(platform_fee)
        self.tolerance = Decimal(tolerance)
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff = retry_backoff

    async def checkout(
        self,
        customer_id: UUID,
        shop_id: UUID,
        lines: Sequence[CartLine],
        declared_total: Decimal,
        delivery_method: str,
        payment_method: str,
        discount: Decimal = Decimal("0.00"),
    ) -> Order:
        if not lines:
            raise InvalidArgument("Cart is empty")
        for line in lines:
            if line.quantity <= 0:
                raise InvalidArgument(
                    "Quantity must be positive",
                    {"product_id": str(line.product_id), "quantity": line.quantity},
                )
        discount = to_cents(discount)
        if discount < 0:
            raise InvalidArgument("Discount cannot be negative")
        declared_total = Decimal(declared_total)

        # One entry per product, first-seen order kept for the item rows
        quantities: dict[UUID, int] = {}
        quoted: dict[UUID, Decimal] = {}
        for line in lines:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity
            if line.unit_price is not None:
                quoted[line.product_id] = to_cents(line.unit_price)

        try:
            order, shop = await asyncio.wait_for(
                self._run_with_retry(
                    customer_id,
                    shop_id,
                    quantities,
                    quoted,
                    declared_total,
                    delivery_method,
                    payment_method,
                    discount,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Checkout for shop {} timed out after {}s", shop_id, self.timeout
            )
            raise CheckoutTimeout(
                "Checkout did not finish in time, please retry",
                {"timeout_seconds": self.timeout},
            ) from None

        logger.info(
            "Order {} placed by customer {} at shop {} total={}",
            order.id,
            customer_id,
            shop.id,
            order.total,
        )
        await dispatch_safely(
            self.notifier,
            NotificationEvent(
                recipient_ids=(shop.owner_id,),
                type="order_created",
                title="New Order",
                message=f"New order for {order.total} with {len(order.items)} item(s).",
                related_order_id=order.id,
            )
        )
        return order

    async def _run_with_retry(self, *args) -> tuple[Order, Shop]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._attempt(*args)
            except DBAPIError as exc:
                if not _is_transient(exc) or attempt >= self.max_attempts:
                    raise
                logger.warning(
                    "Transient database error on checkout attempt {}/{}: {}",
                    attempt,
                    self.max_attempts,
                    exc.__class__.__name__,
                )
                await asyncio.sleep(self.retry_backoff * attempt)

    async def _attempt(
        self,
        customer_id: UUID,
        shop_id: UUID,
        quantities: dict[UUID, int],
        quoted: dict[UUID, Decimal],
        declared_total: Decimal,
        delivery_method: str,
        payment_method: str,
        discount: Decimal,
    ) -> tuple[Order, Shop]:
        async with self.repository.transaction() as session:
            shop = await self.repository.get_shop(session, shop_id)
            if shop is None:
                raise NotFound("Shop not found", {"shop_id": str(shop_id)})

            products = {
                p.id: p
                for p in await self.repository.get_products_by_ids(session, list(quantities))
            }
            missing = [str(pid) for pid in quantities if pid not in products]
            if missing:
                raise NotFound("Product not found", {"product_ids": missing})

            foreign = [str(p.id) for p in products.values() if p.shop_id != shop.id]
            if foreign:
                raise CrossShopOrder(
                    "All products in an order must come from the same shop",
                    {"shop_id": str(shop.id), "product_ids": foreign},
                )

            items = [
                OrderItem(
                    product_id=product_id,
                    name=products[product_id].name,
                    quantity=quantity,
                    price=to_cents(products[product_id].price),
                    total=to_cents(products[product_id].price * quantity),
                )
                for product_id, quantity in quantities.items()
            ]
            for item in items:
                if item.product_id in quoted and quoted[item.product_id] != item.price:
                    logger.warning(
                        "Client price {} for product {} differs from catalog price {}",
                        quoted[item.product_id],
                        item.product_id,
                        item.price,
                    )
            subtotal = sum((item.total for item in items), Decimal("0.00"))
            if discount > subtotal:
                raise InvalidArgument(
                    "Discount cannot exceed the order subtotal",
                    {"discount": str(discount), "subtotal": str(subtotal)},
                )

            if not shop.is_stock_exempt:
                for product_id, quantity in quantities.items():
                    affected = await self.repository.conditional_decrement_stock(
                        session, product_id, quantity
                    )
                    if affected == 0:
                        raise InsufficientStock(
                            f"Insufficient stock for '{products[product_id].name}'",
                            {"product_id": str(product_id), "requested": quantity},
                        )

            total = to_cents(subtotal - discount + self.platform_fee)
            if abs(total - declared_total) > self.tolerance:
                raise TotalMismatch(
                    "Order total does not match the cart",
                    {"expected": str(total), "declared": str(declared_total)},
                )

            order = Order(
                customer_id=customer_id,
                shop_id=shop.id,
                status=OrderStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                delivery_method=delivery_method,
                payment_method=payment_method,
                subtotal=subtotal,
                discount=discount,
                platform_fee=self.platform_fee,
                total=total,
            )
            await self.repository.create_order_with_items(
                session,
                order,
                items,
                OrderStatusUpdate(status=OrderStatus.PENDING, tracking_info="Order placed"),
            )
        return order, shop
