"""SQLAlchemy persistence for products, carts and orders.

This module declares the relational schema the checkout core works on and the
``Database`` handle that owns an engine and hands out sessions. Services never
reach for a module-level engine: they are constructed with a ``Database`` and
open their own session or transaction per operation.

Tables:
    products     catalog rows; only ``stock_quantity`` is written here.
    cart_items   one row per (user, product) with the requested quantity.
    orders       order header with frozen total and address snapshots.
    order_items  immutable line snapshots of name, sku and unit price.
"""

import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    create_engine,
    event,
    text,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, mapped_column, relationship, sessionmaker

from .domain import OrderStatus, PaymentStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    pass


class Product(Base):
    """Catalog item as seen by checkout.

    Attributes:
        id: Product UUID.
        name: Display name, snapshotted into order lines.
        sku: Stock keeping unit, snapshotted into order lines.
        price: Current unit price.
        stock_quantity: Available units; never negative.
        is_active: Whether the product can be bought.
    """

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    )

    id = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name = mapped_column(String(200), nullable=False)
    sku = mapped_column(String(100), unique=True, nullable=True)
    price = mapped_column(Numeric(10, 2), nullable=False)
    stock_quantity = mapped_column(Integer, nullable=False, default=0)
    is_active = mapped_column(Boolean, nullable=False, default=True)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CartLine(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="ux_cart_items_user_product"),
        CheckConstraint("quantity > 0", name="ck_cart_items_quantity_positive"),
    )

    id = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = mapped_column(Uuid, nullable=False, index=True)
    product_id = mapped_column(
        Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity = mapped_column(Integer, nullable=False, default=1)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    product = relationship(Product, lazy="joined")


class Order(Base):
    """Order header.

    ``total_amount`` and both address columns are snapshots taken when the
    order is created and are never recomputed.
    """

    __tablename__ = "orders"
    __table_args__ = (CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),)

    id = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = mapped_column(Uuid, nullable=False, index=True)
    order_number = mapped_column(String(50), unique=True, nullable=False)
    status = mapped_column(
        SAEnum(OrderStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
    )
    payment_status = mapped_column(
        SAEnum(PaymentStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    total_amount = mapped_column(Numeric(10, 2), nullable=False)
    currency = mapped_column(String(3), nullable=False, default="USD")
    shipping_address = mapped_column(JSON, nullable=False)
    billing_address = mapped_column(JSON, nullable=True)
    payment_method = mapped_column(String(50), nullable=True)
    notes = mapped_column(Text, nullable=True)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    lines = relationship(
        "OrderLine",
        back_populates="order",
        order_by="OrderLine.created_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class OrderLine(Base):
    """Immutable snapshot of one purchased product.

    ``product_id`` is nulled if the product row is later deleted; the name,
    sku and price columns keep the historical record intact.
    """

    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_price_non_negative"),
    )

    id = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = mapped_column(
        Uuid, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True
    )
    product_name = mapped_column(String(200), nullable=False)
    product_sku = mapped_column(String(100), nullable=True)
    quantity = mapped_column(Integer, nullable=False)
    unit_price = mapped_column(Numeric(10, 2), nullable=False)
    line_total = mapped_column(Numeric(10, 2), nullable=False)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    order = relationship(Order, back_populates="lines")


def _install_sqlite_pragmas(engine) -> None:
    # pysqlite defers BEGIN until the first write; take the write lock up front
    # so concurrent writers queue on the busy timeout instead of deadlocking.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Persistence handle injected into every checkout service.

    Args:
        url: SQLAlchemy database URL.
        echo: Log emitted SQL.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        kwargs = {"pool_pre_ping": True, "echo": echo}
        is_sqlite = url.startswith("sqlite")
        if is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        self.engine = create_engine(url, **kwargs)
        if is_sqlite:
            _install_sqlite_pragmas(self.engine)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self):
        """Yield a plain session for read-only work; closed on exit."""
        with self._sessions() as s:
            yield s

    @contextmanager
    def transaction(self):
        """Yield a session inside one transaction.

        The transaction commits when the block exits normally and rolls back
        in full when any exception escapes it.

        Yields:
            Session: Session bound to the open transaction.
        """
        with self._sessions.begin() as s:
            yield s

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("select 1"))
        return True

    def wait_until_ready(self, timeout: float) -> None:
        """Block until the database accepts connections or ``timeout`` elapses."""
        deadline = time.time() + timeout
        while True:
            try:
                self.ping()
                return
            except OperationalError:
                if time.time() > deadline:
                    raise
                time.sleep(1)
