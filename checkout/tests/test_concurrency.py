"""Concurrency tests: racing checkouts and racing cart adds.

Threads share one file-backed SQLite database. Writers serialize on the
database lock, so these tests check the guarded UPDATEs, not timing luck:
stock never goes negative, exactly as many checkouts succeed as there are
units, and concurrent adds to one line never lose an increment.
"""

import threading
import uuid

from checkout.domain import InsufficientStock
from checkout.orders import OrderFactory
from checkout.validator import CartValidator


class GatedValidator(CartValidator):
    """Real validator that holds every caller until all of them have validated.

    This lines the racers up after the pre-flight check so they all reach the
    commit phase believing the stock is there.
    """

    def __init__(self, db, barrier):
        super().__init__(db)
        self.barrier = barrier

    def validate(self, user_id):
        report = super().validate(user_id)
        self.barrier.wait()
        return report


def run_all(fns):
    results = [None] * len(fns)

    def worker(i, fn):
        try:
            results[i] = fn()
        except Exception as exc:  # collected and asserted by the test
            results[i] = exc

    threads = [threading.Thread(target=worker, args=(i, fn)) for i, fn in enumerate(fns)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


def test_last_unit_goes_to_exactly_one_buyer(db, cart, address, make_product, stock_of, order_count):
    pid = make_product(stock=1)
    buyers = [uuid.uuid4(), uuid.uuid4()]
    for buyer in buyers:
        cart.add_line(buyer, pid, 1)

    factory = OrderFactory(db, GatedValidator(db, threading.Barrier(2, timeout=30)))
    results = run_all([lambda b=b: factory.create_order(b, address) for b in buyers])

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientStock)
    assert stock_of(pid) == 0
    assert order_count() == 1

    loser = buyers[results.index(failures[0])]
    assert cart.list_lines(loser)[0].quantity == 1


def test_stock_never_goes_negative(db, cart, address, make_product, stock_of, order_count):
    pid = make_product(stock=3)
    buyers = [uuid.uuid4() for _ in range(6)]
    for buyer in buyers:
        cart.add_line(buyer, pid, 1)

    factory = OrderFactory(db, GatedValidator(db, threading.Barrier(len(buyers), timeout=30)))
    results = run_all([lambda b=b: factory.create_order(b, address) for b in buyers])

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 3
    assert all(isinstance(f, InsufficientStock) for f in failures)
    assert stock_of(pid) == 0
    assert order_count() == 3


def test_concurrent_adds_merge_without_losing_increments(cart, make_product, user_id):
    pid = make_product(stock=100)
    results = run_all([lambda: cart.add_line(user_id, pid, 1) for _ in range(8)])

    assert not [r for r in results if isinstance(r, Exception)]
    [line] = cart.list_lines(user_id)
    assert line.quantity == 8
