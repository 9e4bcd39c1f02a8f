import uuid
from decimal import Decimal

import pytest
from sqlalchemy import delete, select, update

from checkout.cart import CartStore
from checkout.lifecycle import OrderLifecycleManager
from checkout.orders import OrderFactory
from checkout.repo import Database, Order, Product
from checkout.schemas import Address
from checkout.validator import CartValidator


@pytest.fixture
def db(tmp_path):
    # file-backed so worker threads share one database
    database = Database(f"sqlite:///{tmp_path / 'checkout.db'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def make_product(db):
    """Insert a product and return its id."""

    def _make(name="Widget", price="10.00", stock=10, active=True, sku=None):
        with db.transaction() as s:
            product = Product(
                name=name,
                sku=sku or f"SKU-{uuid.uuid4().hex[:8].upper()}",
                price=Decimal(price),
                stock_quantity=stock,
                is_active=active,
            )
            s.add(product)
            s.flush()
            return product.id

    return _make


@pytest.fixture
def edit_product(db):
    """Change catalog fields of a product behind the checkout's back."""

    def _edit(product_id, **values):
        with db.transaction() as s:
            s.execute(update(Product).where(Product.id == product_id).values(**values))

    return _edit


@pytest.fixture
def delete_product(db):
    def _delete(product_id):
        with db.transaction() as s:
            s.execute(delete(Product).where(Product.id == product_id))

    return _delete


@pytest.fixture
def stock_of(db):
    def _stock(product_id):
        with db.session() as s:
            return s.scalar(select(Product.stock_quantity).where(Product.id == product_id))

    return _stock


@pytest.fixture
def order_count(db):
    def _count():
        with db.session() as s:
            return len(s.scalars(select(Order.id)).all())

    return _count


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def cart(db):
    return CartStore(db, max_line_quantity=100)


@pytest.fixture
def validator(db):
    return CartValidator(db)


@pytest.fixture
def factory(db, validator):
    return OrderFactory(db, validator)


@pytest.fixture
def lifecycle(db):
    return OrderLifecycleManager(db)


@pytest.fixture
def address():
    return Address(
        full_name="Ada Lovelace",
        street="12 St James's Square",
        city="London",
        state="Greater London",
        postal_code="SW1Y 4JH",
        country="GB",
    )


@pytest.fixture
def place_order(cart, factory, address):
    """Fill a cart with ``(product_id, quantity)`` pairs and check it out."""

    def _place(user, *lines):
        for product_id, quantity in lines:
            cart.add_line(user, product_id, quantity)
        return factory.create_order(user, address)

    return _place
