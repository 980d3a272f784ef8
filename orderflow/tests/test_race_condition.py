"""
Concurrent order placement against a shared stock level.

Each test starts several requests at once on a thread pool, each with its
own session, so that they really race for the same inventory rows.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func, select

from orderflow.core.exceptions import InsufficientStockError, InvalidOrderStateError
from orderflow.models.database import Order, OrderStatus
from orderflow.models.schemas import Order as OrderSnapshot

ADDRESS = "12 Booth Street, Berlin"


def place_concurrently(order_service, user_id, line_sets):
    def place(lines):
        try:
            return order_service.create_order(user_id, lines, ADDRESS, "card")
        except Exception as e:
            return e

    with ThreadPoolExecutor(max_workers=len(line_sets)) as pool:
        return list(pool.map(place, line_sets))


def split_results(results):
    orders = [r for r in results if isinstance(r, OrderSnapshot)]
    errors = [r for r in results if isinstance(r, Exception)]
    return orders, errors


class TestConcurrentOrderPlacement:
    """Concurrent orders must never oversell the available stock"""

    def test_race_condition_prevented(self, order_service, ledger, customer, mixer):
        """
        Two concurrent orders for 3 units each against a stock of 5.
        Only one of them can be fulfilled.
        """
        results = place_concurrently(order_service, customer.id, [[(mixer.id, 3)], [(mixer.id, 3)]])

        orders, errors = split_results(results)
        final_quantity = ledger.get_by_product(mixer.id).quantity_in_stock

        print(f"Successful orders: {len(orders)}")
        print(f"Errors: {len(errors)}")
        print(f"Final inventory quantity: {final_quantity}")

        assert len(orders) == 1, f"Expected 1 successful order, got {len(orders)}"
        assert len(errors) == 1, f"Expected 1 error, got {len(errors)}"
        assert isinstance(errors[0], InsufficientStockError), f"Unexpected error: {errors[0]!r}"

        # 5 - 3 = 2, never negative
        assert final_quantity == 2, f"Expected final quantity 2, got {final_quantity}"

    def test_multiple_concurrent_orders(self, order_service, ledger, test_db, customer, mixer):
        """
        Five concurrent orders for 2 units each against a stock of 5.
        Exactly two fit, leaving one unit behind.
        """
        results = place_concurrently(order_service, customer.id, [[(mixer.id, 2)]] * 5)

        orders, errors = split_results(results)
        final_quantity = ledger.get_by_product(mixer.id).quantity_in_stock

        assert len(orders) == 2, f"Expected 2 successful orders, got {len(orders)}"
        assert final_quantity == 1, f"Expected final quantity 1, got {final_quantity}"
        for error in errors:
            assert "Insufficient stock" in str(error), f"Unexpected error: {error}"

        # Only the successful orders were persisted
        assert test_db.scalar(select(func.count()).select_from(Order)) == 2

    def test_stock_is_conserved_across_products(self, order_service, ledger, customer, mixer, headphones):
        """Reserved plus remaining stock always equals the starting stock"""
        line_sets = [[(mixer.id, 1), (headphones.id, 2)]] * 8

        orders, _ = split_results(place_concurrently(order_service, customer.id, line_sets))

        mixer_left = ledger.get_by_product(mixer.id).quantity_in_stock
        headphones_left = ledger.get_by_product(headphones.id).quantity_in_stock

        # 10 headphones allow 5 orders, 5 mixers allow 5 orders
        assert len(orders) == 5
        assert mixer_left == 5 - len(orders)
        assert headphones_left == 10 - 2 * len(orders)

    @pytest.mark.parametrize("workers", [2, 6])
    def test_concurrent_cancellation_releases_once(self, order_service, ledger, customer, mixer, workers):
        order = order_service.create_order(customer.id, [(mixer.id, 4)], ADDRESS, "card")
        assert ledger.get_by_product(mixer.id).quantity_in_stock == 1

        def cancel(_):
            try:
                return order_service.cancel_order(order.id)
            except Exception as e:
                return e

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(cancel, range(workers)))

        cancelled, errors = split_results(results)

        assert len(cancelled) == 1, f"Expected exactly one cancellation, got {len(cancelled)}"
        assert all(isinstance(e, InvalidOrderStateError) for e in errors), f"Unexpected errors: {errors}"
        assert order_service.get_order(order.id).status == OrderStatus.CANCELLED
        assert ledger.get_by_product(mixer.id).quantity_in_stock == 5
