"""
Concurrent placement and cancellation tests.

Verifies:
- Two placements racing for the same scarce stock: exactly one succeeds and
  stock never goes negative
- Concurrent place/cancel round trips return stock to its starting value
- Placements on disjoint products do not block each other
- Concurrently allocated order numbers are unique

Against SQLite the writers serialize on the database write lock; run with
DATABASE_URL pointing at PostgreSQL for truly parallel transactions.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

from fulfillment_kernel.domain.actor import Actor
from fulfillment_kernel.domain.dtos import CancelOrder, PlaceOrder
from fulfillment_kernel.exceptions import InsufficientStockError


def _run_together(fns):
    """Start every fn at the same moment; return (results, errors)."""
    barrier = threading.Barrier(len(fns))
    results, errors = [], []
    guard = threading.Lock()

    def _runner(fn):
        barrier.wait()
        try:
            value = fn()
        except Exception as exc:
            with guard:
                errors.append(exc)
        else:
            with guard:
                results.append(value)

    with ThreadPoolExecutor(max_workers=len(fns)) as pool:
        for future in [pool.submit(_runner, fn) for fn in fns]:
            future.result()
    return results, errors


class TestStockRace:

    def test_exactly_one_of_two_wins(self, engine, user_id, product_id, stock_of):
        results, errors = _run_together([
            lambda: engine.place_order(user_id, [(product_id, 3)]),
            lambda: engine.place_order(user_id, [(product_id, 3)]),
        ])

        assert len(results) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], InsufficientStockError)
        assert stock_of(product_id) == 2

    def test_many_buyers_never_oversell(self, engine, create_user, create_product, stock_of):
        product = create_product("1.00", 3)
        buyers = [create_user() for _ in range(6)]

        results, errors = _run_together([
            (lambda buyer=buyer: engine.place_order(buyer, [(product, 1)]))
            for buyer in buyers
        ])

        assert len(results) == 3
        assert all(isinstance(exc, InsufficientStockError) for exc in errors)
        assert stock_of(product) == 0

    def test_place_cancel_round_trips(self, service, user_id, create_product, stock_of):
        product = create_product("4.00", 10)

        def _round_trip():
            placed = service.handle(PlaceOrder(user_id, [(product, 1)]))
            service.handle(CancelOrder(placed.order_id, "round trip", Actor.system()))
            return placed.order_id

        results, errors = _run_together([_round_trip for _ in range(8)])

        assert errors == []
        assert len(set(results)) == 8
        assert stock_of(product) == 10

    def test_disjoint_products(self, engine, user_id, create_product, stock_of):
        a = create_product("1.00", 1)
        b = create_product("1.00", 1)

        results, errors = _run_together([
            lambda: engine.place_order(user_id, [(a, 1)]),
            lambda: engine.place_order(user_id, [(b, 1)]),
        ])

        assert errors == []
        assert len(results) == 2
        assert (stock_of(a), stock_of(b)) == (0, 0)

    def test_order_numbers_unique(self, engine, user_id, create_product):
        product = create_product("1.00", 20)

        results, errors = _run_together([
            lambda: engine.place_order(user_id, [(product, 1)]) for _ in range(10)
        ])

        assert errors == []
        assert len({placed.order_number for placed in results}) == 10
