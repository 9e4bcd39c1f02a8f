"""Unit tests for the cart store.

Covers merge-on-repeat-add semantics, the stock and quantity checks on add
and set, ownership of lines, clearing, and the live-price summary.
"""

import uuid
from decimal import Decimal

import pytest

from checkout.domain import InsufficientStock, InvalidQuantity, NotFound, Unavailable
from checkout.schemas import GuestCartItem


def test_add_creates_line(cart, make_product, user_id):
    pid = make_product(name="Lamp", price="25.00", stock=4)
    line = cart.add_line(user_id, pid, 2)
    assert line.product_id == pid
    assert line.quantity == 2
    assert line.product.name == "Lamp"
    assert line.product.price == Decimal("25.00")


def test_repeat_adds_merge_into_one_line(cart, make_product, user_id):
    """N adds of the same product sum their quantities on a single line."""
    pid = make_product(stock=50)
    for qty in (1, 4, 2, 3):
        line = cart.add_line(user_id, pid, qty)
    assert line.quantity == 10
    lines = cart.list_lines(user_id)
    assert len(lines) == 1
    assert lines[0].quantity == 10


def test_add_up_to_stock_then_refuse(cart, make_product, user_id):
    """Stock 5: add 2, add 3 -> 5; one more unit is refused."""
    pid = make_product(stock=5)
    cart.add_line(user_id, pid, 2)
    assert cart.add_line(user_id, pid, 3).quantity == 5

    with pytest.raises(InsufficientStock) as e:
        cart.add_line(user_id, pid, 1)
    assert str(e.value) == "INSUFFICIENT_STOCK"
    assert e.value.available == 5
    assert e.value.requested == 6
    assert cart.list_lines(user_id)[0].quantity == 5


def test_first_add_above_stock_is_refused(cart, make_product, user_id):
    pid = make_product(stock=3)
    with pytest.raises(InsufficientStock):
        cart.add_line(user_id, pid, 4)
    assert cart.list_lines(user_id) == []


def test_add_unknown_product(cart, user_id):
    with pytest.raises(NotFound):
        cart.add_line(user_id, uuid.uuid4(), 1)


def test_add_inactive_product(cart, make_product, user_id):
    pid = make_product(active=False)
    with pytest.raises(Unavailable) as e:
        cart.add_line(user_id, pid, 1)
    assert str(e.value) == "PRODUCT_UNAVAILABLE"


@pytest.mark.parametrize("qty", [0, -1, 101])
def test_add_rejects_quantity_outside_bounds(cart, make_product, user_id, qty):
    pid = make_product(stock=500)
    with pytest.raises(InvalidQuantity):
        cart.add_line(user_id, pid, qty)


def test_add_never_touches_stock(cart, make_product, stock_of, user_id):
    pid = make_product(stock=7)
    cart.add_line(user_id, pid, 5)
    assert stock_of(pid) == 7


def test_two_users_can_both_hold_the_last_unit(cart, make_product):
    """Stock is checked on add, not reserved."""
    pid = make_product(stock=1)
    cart.add_line(uuid.uuid4(), pid, 1)
    cart.add_line(uuid.uuid4(), pid, 1)


def test_set_line_quantity(cart, make_product, user_id):
    pid = make_product(stock=10)
    line = cart.add_line(user_id, pid, 2)
    updated = cart.set_line_quantity(user_id, line.id, 7)
    assert updated.quantity == 7
    assert cart.list_lines(user_id)[0].quantity == 7


def test_set_line_quantity_above_stock(cart, make_product, user_id):
    pid = make_product(stock=3)
    line = cart.add_line(user_id, pid, 1)
    with pytest.raises(InsufficientStock) as e:
        cart.set_line_quantity(user_id, line.id, 4)
    assert e.value.available == 3
    assert cart.list_lines(user_id)[0].quantity == 1


def test_set_line_quantity_on_inactive_product(cart, make_product, edit_product, user_id):
    pid = make_product(stock=3)
    line = cart.add_line(user_id, pid, 1)
    edit_product(pid, is_active=False)
    with pytest.raises(Unavailable):
        cart.set_line_quantity(user_id, line.id, 2)


def test_set_line_quantity_of_someone_elses_line(cart, make_product, user_id):
    pid = make_product()
    line = cart.add_line(user_id, pid, 1)
    with pytest.raises(NotFound):
        cart.set_line_quantity(uuid.uuid4(), line.id, 2)


def test_remove_line(cart, make_product, user_id):
    pid = make_product()
    line = cart.add_line(user_id, pid, 1)
    cart.remove_line(user_id, line.id)
    assert cart.list_lines(user_id) == []


def test_remove_line_of_someone_else(cart, make_product, user_id):
    pid = make_product()
    line = cart.add_line(user_id, pid, 1)
    with pytest.raises(NotFound):
        cart.remove_line(uuid.uuid4(), line.id)
    assert len(cart.list_lines(user_id)) == 1


def test_remove_product(cart, make_product, user_id):
    keep, drop = make_product(), make_product()
    cart.add_line(user_id, keep, 1)
    cart.add_line(user_id, drop, 1)
    assert cart.remove_product(user_id, drop) is True
    assert cart.remove_product(user_id, drop) is False
    assert [line.product_id for line in cart.list_lines(user_id)] == [keep]


def test_clear_is_idempotent(cart, make_product, user_id):
    pid = make_product()
    cart.add_line(user_id, pid, 2)
    assert cart.clear(user_id) == 1
    assert cart.clear(user_id) == 0
    assert cart.list_lines(user_id) == []


def test_clear_only_affects_owner(cart, make_product, user_id):
    pid = make_product()
    other = uuid.uuid4()
    cart.add_line(user_id, pid, 1)
    cart.add_line(other, pid, 1)
    cart.clear(user_id)
    assert len(cart.list_lines(other)) == 1


def test_list_lines_newest_first(cart, make_product, user_id):
    first, second, third = make_product(name="A"), make_product(name="B"), make_product(name="C")
    for pid in (first, second, third):
        cart.add_line(user_id, pid, 1)
    assert [line.product.name for line in cart.list_lines(user_id)] == ["C", "B", "A"]


def test_summary_uses_live_price_and_skips_inactive(cart, make_product, edit_product, user_id):
    lamp = make_product(price="10.00", stock=10)
    desk = make_product(price="99.50", stock=10)
    gone = make_product(price="5.00", stock=10)
    cart.add_line(user_id, lamp, 3)
    cart.add_line(user_id, desk, 1)
    cart.add_line(user_id, gone, 2)

    edit_product(lamp, price=Decimal("12.00"))
    edit_product(gone, is_active=False)

    summary = cart.summarize(user_id)
    assert summary.line_count == 2
    assert summary.total_quantity == 4
    assert summary.total_amount == Decimal("135.50")
    assert cart.count(user_id) == 4


def test_summary_of_empty_cart(cart, user_id):
    summary = cart.summarize(user_id)
    assert summary.line_count == 0
    assert summary.total_quantity == 0
    assert summary.total_amount == Decimal("0")
    assert cart.count(user_id) == 0


def test_get_cart_returns_lines_and_summary(cart, make_product, user_id):
    pid = make_product(price="4.25", stock=10)
    cart.add_line(user_id, pid, 2)
    view = cart.get_cart(user_id)
    assert len(view.items) == 1
    assert view.summary.total_amount == Decimal("8.50")


def test_merge_guest_cart_skips_unavailable_items(cart, make_product, user_id):
    ok = make_product(stock=5)
    inactive = make_product(active=False)
    scarce = make_product(stock=1)
    cart.add_line(user_id, ok, 1)

    merged = cart.merge_guest_cart(
        user_id,
        [
            GuestCartItem(product_id=ok, quantity=2),
            GuestCartItem(product_id=inactive, quantity=1),
            GuestCartItem(product_id=scarce, quantity=3),
            GuestCartItem(product_id=uuid.uuid4(), quantity=1),
        ],
    )
    assert len(merged) == 1
    lines = {line.product_id: line.quantity for line in cart.list_lines(user_id)}
    assert lines == {ok: 3}
