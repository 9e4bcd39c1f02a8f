"""Domain enums, the acting principal and the checkout error taxonomy.

Errors follow the convention of the orders domain service: each one is a
``ValueError`` whose string form is a short upper-case code, so callers can
branch on ``str(exc)`` while richer context travels on attributes.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle states of an order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_cancellable(self) -> bool:
        return self in CANCELLABLE_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})
CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})
# Orders whose notes and payment method may still be edited.
EDITABLE_STATUSES = CANCELLABLE_STATUSES


class PaymentStatus(str, Enum):
    """Payment state, tracked independently of the order status."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


# ---- Identity ----
@dataclass(frozen=True)
class Principal:
    """Authenticated caller resolved by the upstream gateway.

    Attributes:
        id: User identifier.
        role: Caller role; admins bypass order ownership checks.
    """

    id: uuid.UUID
    role: Role = Role.CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def owner_scope(principal: Principal) -> uuid.UUID | None:
    """Return the user id order lookups must be restricted to.

    Admins get ``None`` (no restriction); everybody else is limited to the
    orders they own.
    """
    return None if principal.is_admin else principal.id


# ---- Errors ----
class CheckoutError(ValueError):
    """Base class for expected, user-facing checkout outcomes."""

    code = "CHECKOUT_ERROR"

    def __init__(self, message: str | None = None):
        super().__init__(self.code)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.code}
        if self.message:
            body["message"] = self.message
        return body


class NotFound(CheckoutError):
    """The resource is absent or not owned by the caller."""

    code = "NOT_FOUND"


class Unavailable(CheckoutError):
    """The product exists but is not active."""

    code = "PRODUCT_UNAVAILABLE"


class InvalidQuantity(CheckoutError):
    code = "INVALID_QUANTITY"


class Forbidden(CheckoutError):
    code = "FORBIDDEN"


class NoChanges(CheckoutError):
    code = "NO_VALID_FIELDS"


class EmptyCart(CheckoutError):
    code = "EMPTY_CART"


class InsufficientStock(CheckoutError):
    """Not enough stock to satisfy the requested quantity.

    Attributes:
        product_id: The offending product.
        available: Stock count observed when the request was refused.
        requested: Quantity that was asked for.
    """

    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: uuid.UUID, available: int, requested: int):
        super().__init__(f"Insufficient stock. Available: {available}, Requested: {requested}")
        self.product_id = product_id
        self.available = available
        self.requested = requested

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body.update(
            product_id=str(self.product_id),
            available=self.available,
            requested=self.requested,
        )
        return body


class CartValidationFailed(CheckoutError):
    """Checkout refused because some cart lines are not purchasable.

    Attributes:
        issues: ``InvalidCartLine`` records describing each rejected line.
    """

    code = "CART_VALIDATION_FAILED"

    def __init__(self, issues: list):
        super().__init__("Some items in the cart are no longer available or have insufficient stock")
        self.issues = issues

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["issues"] = [issue.model_dump(mode="json") for issue in self.issues]
        return body


class InvalidTransition(CheckoutError):
    """Illegal status change or cancel request."""

    code = "INVALID_TRANSITION"

    def __init__(self, current: OrderStatus, target: OrderStatus, message: str | None = None):
        super().__init__(message or f"Order cannot move from {current.value} to {target.value}")
        self.current = current
        self.target = target

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body.update(current=self.current.value, target=self.target.value)
        return body


class ConflictRetry(CheckoutError):
    """The generated order number collided with an existing one."""

    code = "CONFLICT_RETRY"
