"""Cart validator: read-only reconciliation of cart lines with live products.

The report is advisory. It lets checkout turn away obviously bad carts before
paying for a write transaction, but it can be stale by the time that
transaction opens; the conditional stock decrement in the order factory is
what actually enforces availability.
"""

import uuid

from .cart import cart_lines
from .repo import CartLine, Database
from .schemas import CartValidation, InvalidCartLine, ValidCartLine

PRODUCT_UNAVAILABLE = "Product is no longer available"


def check_lines(lines: list[CartLine]) -> CartValidation:
    """Classify already-loaded cart lines as valid or invalid.

    Args:
        lines: Cart lines with their ``product`` relationship loaded.

    Returns:
        CartValidation: ``is_valid`` is False as soon as one line has an
            issue. An empty list yields a valid, empty report.
    """
    report = CartValidation()
    for line in lines:
        product = line.product
        issues = []
        if product is None or not product.is_active:
            issues.append(PRODUCT_UNAVAILABLE)
        if product is not None and line.quantity > product.stock_quantity:
            issues.append(
                f"Insufficient stock. Available: {product.stock_quantity}, Requested: {line.quantity}"
            )

        if issues:
            report.is_valid = False
            report.invalid_lines.append(
                InvalidCartLine(
                    cart_line_id=line.id,
                    product_id=line.product_id,
                    product_name=product.name if product is not None else None,
                    requested_quantity=line.quantity,
                    available_quantity=product.stock_quantity if product is not None else None,
                    issues=issues,
                )
            )
        else:
            report.valid_lines.append(
                ValidCartLine(
                    cart_line_id=line.id,
                    product_id=line.product_id,
                    product_name=product.name,
                    quantity=line.quantity,
                    price=product.price,
                )
            )
    return report


class CartValidator:
    def __init__(self, db: Database):
        self.db = db

    def validate(self, user_id: uuid.UUID) -> CartValidation:
        """Re-read every line of the user's cart and report what can be bought."""
        with self.db.session() as s:
            return check_lines(cart_lines(s, user_id))
