"""HTTP routes for carts and orders.

Routes stay thin: Pydantic validates the body, the handler calls one service
method and returns its read DTO. Identity is resolved upstream and arrives in
``X-User-Id`` / ``X-User-Role`` headers; this module trusts them.

Domain errors are not caught here; the exception handlers installed by
``checkout.main`` map them to HTTP responses.
"""

import uuid
from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .cart import CartStore
from .domain import Forbidden, OrderStatus, Principal, Role, owner_scope
from .lifecycle import OrderLifecycleManager
from .orders import OrderFactory
from .schemas import (
    AddToCartDTO,
    CartLineOut,
    CartOut,
    CartSummary,
    CartValidation,
    CreateOrderDTO,
    MergeGuestCartDTO,
    OrderHeaderOut,
    OrderOut,
    OrderPage,
    OrderStats,
    UpdateCartLineDTO,
    UpdateOrderDTO,
    UpdateOrderStatusDTO,
    UpdatePaymentStatusDTO,
)
from .validator import CartValidator

router = APIRouter()


# ---- Dependencies ----
def get_principal(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
    x_user_role: Annotated[str | None, Header(alias="X-User-Role")] = None,
) -> Principal:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="UNAUTHENTICATED")
    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="UNAUTHENTICATED")
    role = Role.ADMIN if (x_user_role or "").lower() == Role.ADMIN.value else Role.CUSTOMER
    return Principal(id=user_id, role=role)


def require_admin(principal: Annotated[Principal, Depends(get_principal)]) -> Principal:
    if not principal.is_admin:
        raise Forbidden("Admin access required")
    return principal


def get_cart_store(request: Request) -> CartStore:
    return request.app.state.cart


def get_validator(request: Request) -> CartValidator:
    return request.app.state.validator


def get_order_factory(request: Request) -> OrderFactory:
    return request.app.state.orders


def get_lifecycle(request: Request) -> OrderLifecycleManager:
    return request.app.state.lifecycle


CurrentPrincipal = Annotated[Principal, Depends(get_principal)]
AdminPrincipal = Annotated[Principal, Depends(require_admin)]
Cart = Annotated[CartStore, Depends(get_cart_store)]
Validator = Annotated[CartValidator, Depends(get_validator)]
Factory = Annotated[OrderFactory, Depends(get_order_factory)]
Lifecycle = Annotated[OrderLifecycleManager, Depends(get_lifecycle)]


# ---- Health ----
@router.get("/health")
def health(request: Request):
    """Liveness probe that also checks the database connection."""
    db_ok = False
    try:
        db_ok = request.app.state.db.ping()
    except SQLAlchemyError:
        db_ok = False
    code = 200 if db_ok else 503
    return JSONResponse({"ok": db_ok, "components": {"db": {"ok": db_ok}}}, status_code=code)


# ---- Cart ----
@router.get("/api/cart", response_model=CartOut)
def get_cart(principal: CurrentPrincipal, cart: Cart):
    return cart.get_cart(principal.id)


@router.delete("/api/cart")
def clear_cart(principal: CurrentPrincipal, cart: Cart):
    return {"removed": cart.clear(principal.id)}


@router.post("/api/cart/items", response_model=CartLineOut, status_code=status.HTTP_201_CREATED)
def add_to_cart(req: AddToCartDTO, principal: CurrentPrincipal, cart: Cart):
    return cart.add_line(principal.id, req.product_id, req.quantity)


@router.patch("/api/cart/items/{line_id}", response_model=CartLineOut)
def update_cart_line(line_id: uuid.UUID, req: UpdateCartLineDTO, principal: CurrentPrincipal, cart: Cart):
    return cart.set_line_quantity(principal.id, line_id, req.quantity)


@router.delete("/api/cart/items/{line_id}")
def remove_cart_line(line_id: uuid.UUID, principal: CurrentPrincipal, cart: Cart):
    cart.remove_line(principal.id, line_id)
    return {"removed": True}


@router.get("/api/cart/summary", response_model=CartSummary)
def cart_summary(principal: CurrentPrincipal, cart: Cart):
    return cart.summarize(principal.id)


@router.get("/api/cart/count")
def cart_count(principal: CurrentPrincipal, cart: Cart):
    return {"count": cart.count(principal.id)}


@router.get("/api/cart/validate", response_model=CartValidation)
def validate_cart(principal: CurrentPrincipal, validator: Validator):
    return validator.validate(principal.id)


@router.post("/api/cart/merge")
def merge_guest_cart(req: MergeGuestCartDTO, principal: CurrentPrincipal, cart: Cart):
    merged = cart.merge_guest_cart(principal.id, req.guest_cart_items)
    summary = cart.summarize(principal.id)
    return {"merged_items_count": len(merged), "summary": summary.model_dump(mode="json")}


# ---- Orders ----
@router.post("/api/orders", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
def create_order(req: CreateOrderDTO, principal: CurrentPrincipal, orders: Factory):
    return orders.create_order(
        principal.id,
        shipping_address=req.shipping_address,
        billing_address=req.billing_address,
        payment_method=req.payment_method,
        notes=req.notes,
    )


@router.get("/api/orders", response_model=OrderPage)
def list_orders(
    principal: CurrentPrincipal,
    lifecycle: Lifecycle,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    order_status: Annotated[OrderStatus | None, Query(alias="status")] = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    sort_order: Literal["asc", "desc"] = "desc",
    user_id: uuid.UUID | None = None,
):
    # Admins list every order (optionally one user's); customers only their own.
    scope = user_id if principal.is_admin else principal.id
    return lifecycle.list_orders(
        user_id=scope,
        status=order_status,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
        sort_order=sort_order,
    )


@router.get("/api/orders/recent", response_model=list[OrderHeaderOut])
def recent_orders(principal: CurrentPrincipal, lifecycle: Lifecycle, limit: Annotated[int, Query(ge=1, le=50)] = 5):
    return lifecycle.recent_orders(principal.id, limit=limit)


@router.get("/api/orders/stats", response_model=OrderStats)
def order_stats(
    principal: CurrentPrincipal,
    lifecycle: Lifecycle,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    user_id: uuid.UUID | None = None,
):
    scope = user_id if principal.is_admin else principal.id
    return lifecycle.stats(user_id=scope, date_from=date_from, date_to=date_to)


@router.get("/api/orders/number/{order_number}", response_model=OrderOut)
def get_order_by_number(order_number: str, principal: CurrentPrincipal, lifecycle: Lifecycle):
    return lifecycle.find_by_number(order_number, owner_scope(principal))


@router.get("/api/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: uuid.UUID, principal: CurrentPrincipal, lifecycle: Lifecycle):
    return lifecycle.get_order(order_id, owner_scope(principal))


@router.patch("/api/orders/{order_id}", response_model=OrderOut)
def update_order(order_id: uuid.UUID, req: UpdateOrderDTO, principal: CurrentPrincipal, lifecycle: Lifecycle):
    return lifecycle.update_details(order_id, principal, req)


@router.post("/api/orders/{order_id}/cancel", response_model=OrderOut)
def cancel_order(order_id: uuid.UUID, principal: CurrentPrincipal, lifecycle: Lifecycle):
    return lifecycle.cancel(order_id, owner_scope(principal))


@router.patch("/api/orders/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: uuid.UUID, req: UpdateOrderStatusDTO, _admin: AdminPrincipal, lifecycle: Lifecycle
):
    return lifecycle.update_status(order_id, req.status)


@router.patch("/api/orders/{order_id}/payment-status", response_model=OrderOut)
def update_payment_status(
    order_id: uuid.UUID, req: UpdatePaymentStatusDTO, _admin: AdminPrincipal, lifecycle: Lifecycle
):
    return lifecycle.update_payment_status(order_id, req.payment_status)


@router.get("/api/orders/{order_id}/can-review")
def can_review(order_id: uuid.UUID, principal: CurrentPrincipal, lifecycle: Lifecycle):
    return {"can_review": lifecycle.can_review(principal.id, order_id)}
