"""Order factory: turns a validated cart into an order in one transaction.

Checkout runs in two phases. A cheap pre-flight pass (cart not empty, cart
validator clean) rejects obviously bad requests without opening a write
transaction. The commit phase then re-reads the cart inside the transaction,
inserts the order and its line snapshots, takes stock through the ledger's
conditional decrement and deletes the consumed cart lines. Any failure in the
commit phase rolls the whole transaction back: no order, no stock change, and
the cart left as it was.
"""

import logging
import secrets
import time
import uuid
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .cart import CENT, cart_lines
from .domain import (
    CartValidationFailed,
    ConflictRetry,
    EmptyCart,
    InsufficientStock,
    OrderStatus,
    PaymentStatus,
)
from .repo import CartLine, Database, Order, OrderLine
from .schemas import Address, OrderOut
from .stock import StockLedger
from .validator import PRODUCT_UNAVAILABLE, CartValidator, check_lines

logger = logging.getLogger("checkout.orders")

CURRENCY = "USD"
DEFAULT_PAYMENT_METHOD = "pending"


def generate_order_number() -> str:
    """Build a human-readable order number ``ORD-<8 digits>-<3 digits>``.

    The first group is the tail of the millisecond clock and the second a
    random suffix. Uniqueness is not guaranteed; the unique index on
    ``orders.order_number`` catches collisions.
    """
    timestamp = str(int(time.time() * 1000))
    return f"ORD-{timestamp[-8:]}-{secrets.randbelow(1000):03d}"


def load_order(session: Session, order_id: uuid.UUID, user_id: uuid.UUID | None = None) -> Order | None:
    """Fetch an order with its lines, optionally restricted to one owner."""
    stmt = select(Order).where(Order.id == order_id)
    if user_id is not None:
        stmt = stmt.where(Order.user_id == user_id)
    return session.scalars(stmt.execution_options(populate_existing=True)).first()


class OrderFactory:
    """Creates orders from carts.

    Args:
        db: Persistence handle.
        validator: Pre-flight cart validator.
        ledger: Stock ledger used for the conditional decrement.
        max_attempts: Commit attempts when the order number collides.
        number_factory: Callable producing order numbers.
    """

    def __init__(
        self,
        db: Database,
        validator: CartValidator | None = None,
        ledger: StockLedger | None = None,
        max_attempts: int = 2,
        number_factory=generate_order_number,
    ):
        self.db = db
        self.validator = validator or CartValidator(db)
        self.ledger = ledger or StockLedger()
        self.max_attempts = max(1, max_attempts)
        self.number_factory = number_factory

    def create_order(
        self,
        user_id: uuid.UUID,
        shipping_address: Address,
        billing_address: Address | None = None,
        payment_method: str | None = None,
        notes: str | None = None,
    ) -> OrderOut:
        """Check out the user's cart.

        Args:
            user_id: Cart owner placing the order.
            shipping_address: Shipping address snapshot.
            billing_address: Billing address; the shipping address is used
                when omitted.
            payment_method: Payment method label.
            notes: Customer notes.

        Returns:
            OrderOut: The committed order with its lines.

        Raises:
            EmptyCart: If the cart has no lines.
            CartValidationFailed: If a line refers to an inactive product or
                asks for more than the stock shown by the pre-flight check.
            InsufficientStock: If the conditional decrement fails for a line
                inside the transaction.
            ConflictRetry: If the order number collided on every attempt.
        """
        with self.db.session() as s:
            if not cart_lines(s, user_id):
                raise EmptyCart("Cannot create order with empty cart")

        report = self.validator.validate(user_id)
        if not report.is_valid:
            raise CartValidationFailed(report.invalid_lines)

        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._commit(user_id, shipping_address, billing_address, payment_method, notes)
            except ConflictRetry:
                if attempt >= self.max_attempts:
                    logger.error("order number collision, giving up", extra={"user_id": str(user_id)})
                    raise
                logger.warning(
                    "order number collision, retrying",
                    extra={"user_id": str(user_id), "attempt": attempt},
                )
        raise ConflictRetry("Order number already in use")

    def _commit(self, user_id, shipping_address, billing_address, payment_method, notes) -> OrderOut:
        with self.db.transaction() as s:
            lines = cart_lines(s, user_id)
            if not lines:
                raise EmptyCart("Cannot create order with empty cart")
            # Deactivation can race the pre-flight check; stock is left to
            # the conditional decrement below.
            unavailable = [
                issue for issue in check_lines(lines).invalid_lines if PRODUCT_UNAVAILABLE in issue.issues
            ]
            if unavailable:
                raise CartValidationFailed(unavailable)

            total = sum((line.product.price * line.quantity for line in lines), Decimal("0"))
            order = Order(
                user_id=user_id,
                order_number=self.number_factory(),
                status=OrderStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                total_amount=total.quantize(CENT),
                currency=CURRENCY,
                shipping_address=shipping_address.model_dump(),
                billing_address=(billing_address or shipping_address).model_dump(),
                payment_method=payment_method or DEFAULT_PAYMENT_METHOD,
                notes=notes,
            )
            s.add(order)
            try:
                s.flush()
            except IntegrityError as exc:
                if "order_number" not in str(exc.orig):
                    raise
                raise ConflictRetry("Order number already in use") from exc

            for line in lines:
                product = line.product
                order.lines.append(
                    OrderLine(
                        product_id=product.id,
                        product_name=product.name,
                        product_sku=product.sku,
                        quantity=line.quantity,
                        unit_price=product.price,
                        line_total=(product.price * line.quantity).quantize(CENT),
                    )
                )
                if not self.ledger.decrement(s, product.id, line.quantity):
                    available = self.ledger.available(s, product.id) or 0
                    logger.info(
                        "checkout rejected, stock guard failed",
                        extra={"user_id": str(user_id), "product_id": str(product.id), "available": available},
                    )
                    raise InsufficientStock(product.id, available, line.quantity)

            s.execute(
                delete(CartLine).where(
                    CartLine.user_id == user_id,
                    CartLine.id.in_([line.id for line in lines]),
                )
            )
            s.flush()
            out = OrderOut.model_validate(order)

        logger.info(
            "order created",
            extra={
                "order_id": str(out.id),
                "order_number": out.order_number,
                "user_id": str(user_id),
                "total_amount": str(out.total_amount),
            },
        )
        return out
