"""Stock ledger: the only code path that writes ``products.stock_quantity``.

Every mutation is a single conditional UPDATE evaluated by the database, so
the guard and the write happen atomically. There is no read-then-write on the
counter anywhere in the service.
"""

import uuid

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .repo import Product, utcnow


class StockLedger:
    """Conditional decrement and restore of product stock.

    Methods take the caller's session so the stock write joins the caller's
    transaction and rolls back with it.
    """

    def decrement(self, session: Session, product_id: uuid.UUID, quantity: int) -> bool:
        """Subtract ``quantity`` if at least that much stock is left.

        Args:
            session: Session bound to the open transaction.
            product_id: Product to decrement.
            quantity: Units to take.

        Returns:
            bool: True if the row was updated, False if the guard
                ``stock_quantity >= quantity`` did not hold (or the product
                is gone). Nothing is written in the False case.
        """
        result = session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= quantity)
            .values(stock_quantity=Product.stock_quantity - quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def restore(self, session: Session, product_id: uuid.UUID, quantity: int) -> bool:
        """Add ``quantity`` back to an existing, active product.

        Returns:
            bool: True if stock was restored, False when the product was
                deleted or deactivated since the order was placed.
        """
        result = session.execute(
            update(Product)
            .where(Product.id == product_id, Product.is_active.is_(True))
            .values(stock_quantity=Product.stock_quantity + quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def available(self, session: Session, product_id: uuid.UUID) -> int | None:
        """Read the current counter straight from the database."""
        return session.scalar(select(Product.stock_quantity).where(Product.id == product_id))
