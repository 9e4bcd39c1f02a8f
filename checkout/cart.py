"""Cart store: per-user working cart of (product, quantity) lines.

Stock is only checked here, never reserved: two customers can each put the
last unit in their cart and only one of them will get through checkout. The
cart never writes to the stock ledger.

Repeat adds of the same product merge into the existing line with a single
conditional ``UPDATE ... SET quantity = quantity + :n`` guarded by the live
stock count, so concurrent adds cannot lose an increment.
"""

import logging
import uuid
from decimal import Decimal

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .domain import CheckoutError, InsufficientStock, InvalidQuantity, NotFound, Unavailable
from .repo import CartLine, Database, Product, utcnow
from .schemas import CartLineOut, CartOut, CartSummary, GuestCartItem

logger = logging.getLogger("checkout.cart")

CENT = Decimal("0.01")


def cart_lines(session: Session, user_id: uuid.UUID) -> list[CartLine]:
    """Load a user's cart lines with their products, newest first."""
    stmt = (
        select(CartLine)
        .where(CartLine.user_id == user_id)
        .order_by(CartLine.created_at.desc())
        .execution_options(populate_existing=True)
    )
    return list(session.scalars(stmt))


def summarize_lines(lines: list[CartLine]) -> CartSummary:
    """Totals over lines whose product is still active, at the current price."""
    active = [line for line in lines if line.product is not None and line.product.is_active]
    total = sum((line.product.price * line.quantity for line in active), Decimal("0"))
    return CartSummary(
        line_count=len(active),
        total_quantity=sum(line.quantity for line in active),
        total_amount=Decimal(total).quantize(CENT),
    )


class CartStore:
    """Cart operations for a single store.

    Args:
        db: Persistence handle.
        max_line_quantity: Largest quantity accepted by one add or set call.
    """

    def __init__(self, db: Database, max_line_quantity: int = 100):
        self.db = db
        self.max_line_quantity = max_line_quantity

    def _check_quantity(self, quantity: int) -> None:
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidQuantity("Quantity must be an integer")
        if not 0 < quantity <= self.max_line_quantity:
            raise InvalidQuantity(f"Quantity must be between 1 and {self.max_line_quantity}")

    def add_line(self, user_id: uuid.UUID, product_id: uuid.UUID, quantity: int = 1) -> CartLineOut:
        """Add ``quantity`` units of a product to the user's cart.

        Args:
            user_id: Cart owner.
            product_id: Product to add.
            quantity: Units to add; merged into an existing line if present.

        Returns:
            CartLineOut: The resulting line.

        Raises:
            InvalidQuantity: If quantity is not in ``1..max_line_quantity``.
            NotFound: If the product does not exist.
            Unavailable: If the product is inactive.
            InsufficientStock: If the line would exceed the current stock.
        """
        self._check_quantity(quantity)
        with self.db.transaction() as s:
            product = s.get(Product, product_id)
            if product is None:
                raise NotFound("Product not found")
            if not product.is_active:
                raise Unavailable("Product is not available")
            if quantity > product.stock_quantity:
                raise InsufficientStock(product.id, product.stock_quantity, quantity)
            line = self._merge(s, user_id, product, quantity)
            logger.info(
                "cart line added",
                extra={"user_id": str(user_id), "product_id": str(product.id), "quantity": line.quantity},
            )
            return CartLineOut.model_validate(line)

    def _line_for(self, s: Session, user_id: uuid.UUID, product_id: uuid.UUID) -> CartLine | None:
        stmt = (
            select(CartLine)
            .where(CartLine.user_id == user_id, CartLine.product_id == product_id)
            .execution_options(populate_existing=True)
        )
        return s.scalars(stmt).first()

    def _merge(self, s: Session, user_id, product: Product, quantity: int, retry: bool = True) -> CartLine:
        now = utcnow()
        stock = select(Product.stock_quantity).where(Product.id == product.id).scalar_subquery()
        result = s.execute(
            update(CartLine)
            .where(
                CartLine.user_id == user_id,
                CartLine.product_id == product.id,
                CartLine.quantity + quantity <= stock,
            )
            .values(quantity=CartLine.quantity + quantity, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return self._line_for(s, user_id, product.id)

        existing = self._line_for(s, user_id, product.id)
        if existing is not None:
            raise InsufficientStock(product.id, product.stock_quantity, existing.quantity + quantity)

        try:
            with s.begin_nested():
                line = CartLine(
                    user_id=user_id,
                    product_id=product.id,
                    quantity=quantity,
                    created_at=now,
                    updated_at=now,
                )
                s.add(line)
        except IntegrityError:
            # A concurrent add created the line first; fold into it instead.
            if not retry:
                raise
            return self._merge(s, user_id, product, quantity, retry=False)
        return line

    def set_line_quantity(self, user_id: uuid.UUID, line_id: uuid.UUID, quantity: int) -> CartLineOut:
        """Overwrite the quantity of one of the caller's lines.

        Raises:
            InvalidQuantity: If quantity is not in ``1..max_line_quantity``.
            NotFound: If the line does not exist or belongs to someone else.
            Unavailable: If the product was deactivated.
            InsufficientStock: If quantity exceeds the current stock.
        """
        self._check_quantity(quantity)
        with self.db.transaction() as s:
            line = self._owned_line(s, user_id, line_id)
            product = line.product
            if not product.is_active:
                raise Unavailable("Product is not available")
            if quantity > product.stock_quantity:
                raise InsufficientStock(product.id, product.stock_quantity, quantity)
            line.quantity = quantity
            line.updated_at = utcnow()
            s.flush()
            return CartLineOut.model_validate(line)

    def _owned_line(self, s: Session, user_id: uuid.UUID, line_id: uuid.UUID) -> CartLine:
        line = s.scalars(
            select(CartLine).where(CartLine.id == line_id, CartLine.user_id == user_id)
        ).first()
        if line is None:
            raise NotFound("Cart item not found")
        return line

    def remove_line(self, user_id: uuid.UUID, line_id: uuid.UUID) -> None:
        with self.db.transaction() as s:
            result = s.execute(
                delete(CartLine).where(CartLine.id == line_id, CartLine.user_id == user_id)
            )
            if result.rowcount == 0:
                raise NotFound("Cart item not found")

    def remove_product(self, user_id: uuid.UUID, product_id: uuid.UUID) -> bool:
        with self.db.transaction() as s:
            result = s.execute(
                delete(CartLine).where(CartLine.user_id == user_id, CartLine.product_id == product_id)
            )
            return result.rowcount > 0

    def clear(self, user_id: uuid.UUID) -> int:
        """Delete every line of the user's cart.

        Returns:
            int: Number of lines removed; 0 for an already empty cart.
        """
        with self.db.transaction() as s:
            result = s.execute(delete(CartLine).where(CartLine.user_id == user_id))
            return result.rowcount

    def list_lines(self, user_id: uuid.UUID) -> list[CartLineOut]:
        with self.db.session() as s:
            return [CartLineOut.model_validate(line) for line in cart_lines(s, user_id)]

    def summarize(self, user_id: uuid.UUID) -> CartSummary:
        with self.db.session() as s:
            return summarize_lines(cart_lines(s, user_id))

    def get_cart(self, user_id: uuid.UUID) -> CartOut:
        with self.db.session() as s:
            lines = cart_lines(s, user_id)
            return CartOut(
                items=[CartLineOut.model_validate(line) for line in lines],
                summary=summarize_lines(lines),
            )

    def count(self, user_id: uuid.UUID) -> int:
        """Total quantity across the user's purchasable lines."""
        with self.db.session() as s:
            total = s.scalar(
                select(func.coalesce(func.sum(CartLine.quantity), 0))
                .join(Product, CartLine.product_id == Product.id)
                .where(CartLine.user_id == user_id, Product.is_active.is_(True))
            )
            return int(total or 0)

    def merge_guest_cart(self, user_id: uuid.UUID, items: list[GuestCartItem]) -> list[CartLineOut]:
        """Fold an anonymous cart into the user's cart after sign-in.

        Items that cannot be added (missing, inactive, out of stock) are
        logged and skipped; the rest are merged.
        """
        merged = []
        for item in items:
            try:
                merged.append(self.add_line(user_id, item.product_id, item.quantity))
            except CheckoutError as exc:
                logger.warning(
                    "guest cart item skipped",
                    extra={"user_id": str(user_id), "product_id": str(item.product_id), "reason": str(exc)},
                )
        return merged
