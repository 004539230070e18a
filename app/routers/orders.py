from fastapi import APIRouter, Depends, status

from app.checkout import CartLine, OrderCheckoutTransaction
from app.deps import CurrentUser, can_place_order, get_checkout
from app.errors import MarketplaceError
from app.schemas import CheckoutRequest, OrderResponse

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: CheckoutRequest,
    current_user: CurrentUser = Depends(can_place_order),
    checkout: OrderCheckoutTransaction = Depends(get_checkout),
) -> OrderResponse:
    lines = [
        CartLine(product_id=i.product_id, quantity=i.quantity, unit_price=i.unit_price)
        for i in payload.items
    ]
    try:
        order = await checkout.checkout(
            customer_id=current_user.id,
            shop_id=payload.shop_id,
            lines=lines,
            declared_total=payload.total,
            delivery_method=payload.delivery_method,
            payment_method=payload.payment_method,
            discount=payload.discount,
        )
    except MarketplaceError as exc:
        raise exc.to_http_exception() from exc
    return order
