"""
api/routes/v1/orders.py -- Order placement and fulfilment REST endpoints.

Routes:
  POST /api/v1/orders               -- place an order (verified customer)
  GET  /api/v1/orders               -- all orders (admin)
  GET  /api/v1/orders/myorders      -- caller's orders (requires auth)
  GET  /api/v1/orders/{id}          -- single order (owner or admin)
  PUT  /api/v1/orders/{id}/pay      -- mark paid (owner or admin)
  PUT  /api/v1/orders/{id}/deliver  -- mark delivered (admin)

GET /orders/myorders must be registered before GET /orders/{order_id}.

Stock checks, the order insert and the stock decrement all happen in one
transaction inside ShopStore.place_order().
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import OrderCreate, PaymentResultIn, envelope
from auth.dependencies import authorize, get_current_user, require_verified
from auth.models import ROLE_ADMIN, ROLE_CUSTOMER, User
from core.errors import Forbidden, NotFound
from shop.models import Order, PaymentResult, ShippingAddress

logger = logging.getLogger("storefront.shop")

# Auth policy:
# - POST /orders: verified customer
# - GET /orders, PUT /orders/{id}/deliver: admin
# - GET /orders/myorders: requires auth
# - GET /orders/{id}, PUT /orders/{id}/pay: owner or admin
router = APIRouter()


def _get_visible_order(request: Request, order_id: int, user: User, action: str) -> Order:
    order = request.app.state.shop_store.get_order(order_id)
    if order is None:
        raise NotFound(f"Order not found with id of {order_id}")
    if order.user_id != user.id and user.role != ROLE_ADMIN:
        raise Forbidden(f"User {user.id} is not authorized to {action} this order")
    return order


@router.post("/orders", status_code=201, dependencies=[Depends(require_verified)])
def create_order(
    request: Request,
    body: OrderCreate,
    current_user: User = Depends(authorize(ROLE_CUSTOMER)),
) -> JSONResponse:
    """Place an order. Verification is checked before the role, so an
    unverified caller of any role is told to verify first."""
    addr = body.shipping_address
    order = request.app.state.shop_store.place_order(
        current_user.id,
        [(item.product, item.qty) for item in body.order_items],
        ShippingAddress(address=addr.address, city=addr.city, postal_code=addr.postal_code, country=addr.country),
        body.payment_method,
    )
    logger.info("Order id=%s placed by user_id=%s total=%.2f", order.id, current_user.id, order.total_price)
    return JSONResponse(status_code=201, content=envelope({"order": order.public_dict()}))


@router.get("/orders")
def list_orders(request: Request, admin: User = Depends(authorize(ROLE_ADMIN))) -> dict:
    orders = request.app.state.shop_store.list_orders()
    return envelope({"orders": [o.public_dict() for o in orders]}, count=len(orders))


@router.get("/orders/myorders")
def my_orders(request: Request, current_user: User = Depends(get_current_user)) -> dict:
    orders = request.app.state.shop_store.list_orders(user_id=current_user.id)
    return envelope({"orders": [o.public_dict() for o in orders]}, count=len(orders))


@router.get("/orders/{order_id}")
def get_order(request: Request, order_id: int, current_user: User = Depends(get_current_user)) -> dict:
    order = _get_visible_order(request, order_id, current_user, "view")
    return envelope({"order": order.public_dict()})


@router.put("/orders/{order_id}/pay")
def pay_order(
    request: Request,
    order_id: int,
    body: PaymentResultIn,
    current_user: User = Depends(get_current_user),
) -> dict:
    _get_visible_order(request, order_id, current_user, "update")
    order = request.app.state.shop_store.mark_paid(order_id, PaymentResult(**body.model_dump()))
    logger.info("Order id=%s marked paid by user_id=%s", order_id, current_user.id)
    return envelope({"order": order.public_dict()})


@router.put("/orders/{order_id}/deliver")
def deliver_order(request: Request, order_id: int, admin: User = Depends(authorize(ROLE_ADMIN))) -> dict:
    order = request.app.state.shop_store.mark_delivered(order_id)
    logger.info("Order id=%s marked delivered by user_id=%s", order_id, admin.id)
    return envelope({"order": order.public_dict()})
