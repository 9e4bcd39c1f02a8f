"""Order lifecycle: status changes, cancellation and order queries.

States: pending, confirmed, processing, shipped, delivered, cancelled.
Delivered and cancelled are terminal. Any move between non-terminal states is
accepted; nothing may leave a terminal state. Customers may cancel only while
an order is pending or confirmed.

Status writes are conditional UPDATEs guarded by the allowed source states, so
two racing requests cannot both apply. Cancelling restores stock in the same
transaction for every line whose product still exists and is active; lines
whose product was deleted or deactivated are skipped and logged.
"""

import logging
import math
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, lazyload

from .cart import CENT
from .domain import (
    CANCELLABLE_STATUSES,
    EDITABLE_STATUSES,
    TERMINAL_STATUSES,
    InvalidTransition,
    NoChanges,
    NotFound,
    OrderStatus,
    PaymentStatus,
    Principal,
    owner_scope,
)
from .orders import load_order
from .repo import Database, Order, utcnow
from .schemas import (
    OrderHeaderOut,
    OrderOut,
    OrderPage,
    OrderStats,
    OverallStats,
    StatusStats,
    UpdateOrderDTO,
)
from .stock import StockLedger

logger = logging.getLogger("checkout.lifecycle")

NON_TERMINAL_STATUSES = frozenset(OrderStatus) - TERMINAL_STATUSES
MAX_PAGE_SIZE = 100


def _money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT)


class OrderLifecycleManager:
    """Advances, cancels and reads orders.

    Methods that take ``user_id`` restrict the lookup to orders owned by that
    user; pass ``None`` for admin callers (see ``owner_scope``).
    """

    def __init__(self, db: Database, ledger: StockLedger | None = None):
        self.db = db
        self.ledger = ledger or StockLedger()

    def _get(self, s: Session, order_id: uuid.UUID, user_id: uuid.UUID | None = None) -> Order:
        order = load_order(s, order_id, user_id)
        if order is None:
            raise NotFound("Order not found")
        return order

    # ---- Reads ----
    def get_order(self, order_id: uuid.UUID, user_id: uuid.UUID | None = None) -> OrderOut:
        with self.db.session() as s:
            return OrderOut.model_validate(self._get(s, order_id, user_id))

    def find_by_number(self, order_number: str, user_id: uuid.UUID | None = None) -> OrderOut:
        with self.db.session() as s:
            stmt = select(Order).where(Order.order_number == order_number)
            if user_id is not None:
                stmt = stmt.where(Order.user_id == user_id)
            order = s.scalars(stmt).first()
            if order is None:
                raise NotFound("Order not found")
            return OrderOut.model_validate(order)

    def list_orders(
        self,
        user_id: uuid.UUID | None = None,
        status: OrderStatus | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        limit: int = 20,
        sort_order: str = "desc",
    ) -> OrderPage:
        """Page through orders, newest first unless ``sort_order`` is "asc"."""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        conditions = []
        if user_id is not None:
            conditions.append(Order.user_id == user_id)
        if status is not None:
            conditions.append(Order.status == OrderStatus(status))
        if date_from is not None:
            conditions.append(Order.created_at >= date_from)
        if date_to is not None:
            conditions.append(Order.created_at <= date_to)

        ordering = Order.created_at.asc() if sort_order == "asc" else Order.created_at.desc()
        with self.db.session() as s:
            total = s.scalar(select(func.count(Order.id)).where(*conditions)) or 0
            rows = s.scalars(
                select(Order)
                .options(lazyload(Order.lines))
                .where(*conditions)
                .order_by(ordering)
                .offset((page - 1) * limit)
                .limit(limit)
            )
            results = [OrderHeaderOut.model_validate(o) for o in rows]

        total_pages = math.ceil(total / limit)
        return OrderPage(
            results=results,
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )

    def recent_orders(self, user_id: uuid.UUID, limit: int = 5) -> list[OrderHeaderOut]:
        return self.list_orders(user_id=user_id, limit=limit).results

    def stats(
        self,
        user_id: uuid.UUID | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> OrderStats:
        """Order count and revenue, overall and per status."""
        conditions = []
        if user_id is not None:
            conditions.append(Order.user_id == user_id)
        if date_from is not None:
            conditions.append(Order.created_at >= date_from)
        if date_to is not None:
            conditions.append(Order.created_at <= date_to)

        with self.db.session() as s:
            count, revenue, average = s.execute(
                select(func.count(Order.id), func.sum(Order.total_amount), func.avg(Order.total_amount)).where(
                    *conditions
                )
            ).one()
            by_status = s.execute(
                select(Order.status, func.count(Order.id), func.sum(Order.total_amount))
                .where(*conditions)
                .group_by(Order.status)
                .order_by(Order.status)
            ).all()

        return OrderStats(
            overall=OverallStats(
                total_orders=count or 0,
                total_revenue=_money(revenue),
                average_order_value=_money(average),
            ),
            by_status=[
                StatusStats(status=status, count=n, total_value=_money(value)) for status, n, value in by_status
            ],
        )

    def can_review(self, user_id: uuid.UUID, order_id: uuid.UUID) -> bool:
        """Only the owner of a delivered order may review it."""
        with self.db.session() as s:
            status = s.scalar(select(Order.status).where(Order.id == order_id, Order.user_id == user_id))
        return status == OrderStatus.DELIVERED

    # ---- Writes ----
    def update_status(self, order_id: uuid.UUID, status: OrderStatus) -> OrderOut:
        """Set the status directly (admin operation).

        Any non-terminal order may move to any status. Moving to cancelled
        goes through the cancellation path so stock is restored.

        Raises:
            NotFound: If the order does not exist.
            InvalidTransition: If the order is already delivered or cancelled.
        """
        status = OrderStatus(status)
        with self.db.transaction() as s:
            order = self._get(s, order_id)
            if order.status.is_terminal:
                raise InvalidTransition(order.status, status)
            if status == OrderStatus.CANCELLED:
                self._cancel(s, order, NON_TERMINAL_STATUSES)
            else:
                self._transition(s, order, status, NON_TERMINAL_STATUSES)
            out = OrderOut.model_validate(self._get(s, order_id))

        logger.info("order status updated", extra={"order_id": str(order_id), "status": status.value})
        return out

    def cancel(self, order_id: uuid.UUID, user_id: uuid.UUID | None = None) -> OrderOut:
        """Cancel a pending or confirmed order and put its stock back.

        Args:
            order_id: Order to cancel.
            user_id: Acting user; ``None`` for admins.

        Raises:
            NotFound: If the order does not exist or is not the caller's.
            InvalidTransition: If the order is past the confirmed stage.
        """
        with self.db.transaction() as s:
            order = self._get(s, order_id, user_id)
            if not order.status.is_cancellable:
                raise InvalidTransition(
                    order.status,
                    OrderStatus.CANCELLED,
                    "Order cannot be cancelled at this stage",
                )
            self._cancel(s, order, CANCELLABLE_STATUSES)
            out = OrderOut.model_validate(self._get(s, order_id))

        logger.info("order cancelled", extra={"order_id": str(order_id), "order_number": out.order_number})
        return out

    def _transition(self, s: Session, order: Order, target: OrderStatus, allowed_from) -> None:
        result = s.execute(
            update(Order)
            .where(Order.id == order.id, Order.status.in_(list(allowed_from)))
            .values(status=target, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = s.scalar(select(Order.status).where(Order.id == order.id))
            if current is None:
                raise NotFound("Order not found")
            raise InvalidTransition(current, target)

    def _cancel(self, s: Session, order: Order, allowed_from) -> None:
        self._transition(s, order, OrderStatus.CANCELLED, allowed_from)
        skipped = []
        for line in order.lines:
            if line.product_id is None or not self.ledger.restore(s, line.product_id, line.quantity):
                skipped.append(line)
        if skipped:
            logger.warning(
                "stock not restored for deleted or inactive products",
                extra={
                    "order_id": str(order.id),
                    "order_line_ids": [str(line.id) for line in skipped],
                },
            )

    def update_payment_status(
        self, order_id: uuid.UUID, payment_status: PaymentStatus, user_id: uuid.UUID | None = None
    ) -> OrderOut:
        """Record the payment state reported upstream.

        Independent of the order status: a cancelled order may still be marked
        refunded, for example.
        """
        payment_status = PaymentStatus(payment_status)
        with self.db.transaction() as s:
            order = self._get(s, order_id, user_id)
            order.payment_status = payment_status
            order.updated_at = utcnow()
            s.flush()
            out = OrderOut.model_validate(order)

        logger.info(
            "payment status updated",
            extra={"order_id": str(order_id), "payment_status": payment_status.value},
        )
        return out

    def update_details(self, order_id: uuid.UUID, principal: Principal, changes: UpdateOrderDTO) -> OrderOut:
        """Edit notes while the order is still pending or confirmed.

        Customers may change the notes of their own orders. Admins may also
        change the payment method. Addresses stay as captured at checkout.

        Raises:
            NotFound: If the order does not exist or is not the caller's.
            InvalidTransition: If the order is past the confirmed stage.
            NoChanges: If the request carries no field the caller may edit.
        """
        with self.db.transaction() as s:
            order = self._get(s, order_id, owner_scope(principal))
            if order.status not in EDITABLE_STATUSES:
                raise InvalidTransition(
                    order.status,
                    order.status,
                    "Order can only be updated when status is pending or confirmed",
                )

            changed = False
            if changes.notes is not None:
                order.notes = changes.notes
                changed = True
            if changes.payment_method is not None and principal.is_admin:
                order.payment_method = changes.payment_method
                changed = True
            if not changed:
                raise NoChanges("No valid fields to update")

            order.updated_at = utcnow()
            s.flush()
            return OrderOut.model_validate(order)
