"""Pydantic schemas for the checkout service.

Request DTOs validate payload shape at the boundary (addresses are structured
records, never opaque blobs). Read DTOs are what every service returns: they
are built from ORM rows with ``from_attributes`` while the session is still
open, so callers never hold live ORM objects.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain import OrderStatus, PaymentStatus


# ---- Request DTOs ----
class Address(BaseModel):
    """Postal address snapshot stored on an order.

    Attributes:
        full_name: Recipient name.
        street: Street line.
        city: City.
        state: State, province or region.
        postal_code: Postal or ZIP code.
        country: Country name or ISO code.
        phone: Optional contact phone.
    """

    full_name: str = Field(min_length=1, max_length=100)
    street: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=1, max_length=100)
    phone: str | None = Field(default=None, max_length=20)

    @field_validator("full_name", "street", "city", "state", "postal_code", "country")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("Field must not be blank")
        return v2


class AddToCartDTO(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(default=1, gt=0)


class UpdateCartLineDTO(BaseModel):
    quantity: int = Field(gt=0)


class GuestCartItem(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(gt=0)


class MergeGuestCartDTO(BaseModel):
    guest_cart_items: list[GuestCartItem] = Field(min_length=1)


class CreateOrderDTO(BaseModel):
    """Checkout request.

    Attributes:
        shipping_address: Where the order ships to.
        billing_address: Billing address; defaults to the shipping address.
        payment_method: Free-form payment method label (payment is handled
            upstream).
        notes: Customer notes.
    """

    shipping_address: Address
    billing_address: Address | None = None
    payment_method: str | None = Field(default=None, max_length=50)
    notes: str | None = Field(default=None, max_length=2000)


class UpdateOrderStatusDTO(BaseModel):
    status: OrderStatus


class UpdatePaymentStatusDTO(BaseModel):
    payment_status: PaymentStatus


class UpdateOrderDTO(BaseModel):
    """Editable order fields; ``payment_method`` is honoured for admins only.

    Address snapshots are fixed at checkout and rejected here.
    """

    model_config = ConfigDict(extra="forbid")

    notes: str | None = Field(default=None, max_length=2000)
    payment_method: str | None = Field(default=None, max_length=50)


# ---- Read DTOs ----
class ProductSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    sku: str | None = None
    price: Decimal
    stock_quantity: int
    is_active: bool


class CartLineOut(BaseModel):
    """A cart line joined with the live product state."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    created_at: datetime
    updated_at: datetime
    product: ProductSnapshot


class CartSummary(BaseModel):
    line_count: int = 0
    total_quantity: int = 0
    total_amount: Decimal = Decimal("0.00")


class CartOut(BaseModel):
    items: list[CartLineOut]
    summary: CartSummary


class ValidCartLine(BaseModel):
    cart_line_id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    quantity: int
    price: Decimal


class InvalidCartLine(BaseModel):
    """A cart line that cannot be checked out, with human-readable reasons."""

    cart_line_id: uuid.UUID
    product_id: uuid.UUID
    product_name: str | None = None
    requested_quantity: int
    available_quantity: int | None = None
    issues: list[str]


class CartValidation(BaseModel):
    is_valid: bool = True
    valid_lines: list[ValidCartLine] = Field(default_factory=list)
    invalid_lines: list[InvalidCartLine] = Field(default_factory=list)


class OrderLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID | None = None
    product_name: str
    product_sku: str | None = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderHeaderOut(BaseModel):
    """Order without its lines, used for listings."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    total_amount: Decimal
    currency: str
    created_at: datetime
    updated_at: datetime


class OrderOut(OrderHeaderOut):
    shipping_address: Address
    billing_address: Address | None = None
    payment_method: str | None = None
    notes: str | None = None
    lines: list[OrderLineOut]


class OrderPage(BaseModel):
    results: list[OrderHeaderOut]
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class OverallStats(BaseModel):
    total_orders: int = 0
    total_revenue: Decimal = Decimal("0.00")
    average_order_value: Decimal = Decimal("0.00")


class StatusStats(BaseModel):
    status: OrderStatus
    count: int
    total_value: Decimal


class OrderStats(BaseModel):
    overall: OverallStats
    by_status: list[StatusStats]
