from __future__ import annotations

import unittest
from decimal import Decimal

from app.errors import InvalidQuantity
from app.models import OrderItem, OrderItemStatus
from app.services.order_status_service import (
    apply_shipped_quantity,
    compute_item_status,
    compute_order_status,
    derive_order_progress,
    increment_shipped,
)


def _item(quantity: int, shipped: int = 0, status: OrderItemStatus = OrderItemStatus.WAITING) -> OrderItem:
    return OrderItem(
        id=1,
        order_id=1,
        product_id=1,
        store_id=1,
        quantity=quantity,
        unit_price=Decimal('4.00'),
        shipped_quantity=shipped,
        status=status,
    )


class ComputeItemStatusTests(unittest.TestCase):
    def test_quantity_driven_statuses(self) -> None:
        self.assertEqual(compute_item_status(10, 0, OrderItemStatus.WAITING), OrderItemStatus.WAITING)
        self.assertEqual(compute_item_status(10, 4, OrderItemStatus.WAITING), OrderItemStatus.PARTIAL)
        self.assertEqual(compute_item_status(10, 10, OrderItemStatus.PARTIAL), OrderItemStatus.SHIPPED)

    def test_rollback_to_zero_returns_to_waiting(self) -> None:
        self.assertEqual(compute_item_status(10, 0, OrderItemStatus.SHIPPED), OrderItemStatus.WAITING)

    def test_exception_statuses_are_sticky(self) -> None:
        for status in (OrderItemStatus.OUT_OF_STOCK, OrderItemStatus.DISCONTINUED):
            self.assertEqual(compute_item_status(10, 10, status), status)
            self.assertEqual(compute_item_status(10, 0, status), status)


class ComputeOrderStatusTests(unittest.TestCase):
    def test_all_shipped(self) -> None:
        self.assertTrue(compute_order_status([OrderItemStatus.SHIPPED, OrderItemStatus.SHIPPED]))

    def test_any_other_status_is_not_fully_shipped(self) -> None:
        self.assertFalse(compute_order_status([OrderItemStatus.SHIPPED, OrderItemStatus.PARTIAL]))
        self.assertFalse(compute_order_status([OrderItemStatus.SHIPPED, OrderItemStatus.OUT_OF_STOCK]))

    def test_empty_order_is_not_fully_shipped(self) -> None:
        self.assertFalse(compute_order_status([]))

    def test_progress_label(self) -> None:
        self.assertEqual(derive_order_progress([]), 'waiting')
        self.assertEqual(derive_order_progress([(OrderItemStatus.WAITING, 0)]), 'waiting')
        self.assertEqual(
            derive_order_progress([(OrderItemStatus.SHIPPED, 3), (OrderItemStatus.WAITING, 0)]),
            'partial',
        )
        self.assertEqual(derive_order_progress([(OrderItemStatus.SHIPPED, 3)]), 'shipped')


class ShippedQuantityTests(unittest.TestCase):
    def test_increment_updates_status(self) -> None:
        item = _item(10)
        self.assertEqual(increment_shipped(item, 4), OrderItemStatus.PARTIAL)
        self.assertEqual(increment_shipped(item, 6), OrderItemStatus.SHIPPED)
        self.assertEqual(item.shipped_quantity, 10)

    def test_increment_rejects_non_positive_delta(self) -> None:
        item = _item(10)
        with self.assertRaises(InvalidQuantity):
            increment_shipped(item, 0)
        with self.assertRaises(InvalidQuantity):
            increment_shipped(item, -2)

    def test_increment_past_ordered_quantity_is_rejected(self) -> None:
        item = _item(10, shipped=8, status=OrderItemStatus.PARTIAL)
        with self.assertRaises(InvalidQuantity):
            increment_shipped(item, 3)
        self.assertEqual(item.shipped_quantity, 8)

    def test_apply_rejects_negative_shipped(self) -> None:
        item = _item(10, shipped=2, status=OrderItemStatus.PARTIAL)
        with self.assertRaises(InvalidQuantity):
            apply_shipped_quantity(item, -1)

    def test_apply_keeps_exception_status(self) -> None:
        item = _item(10, shipped=5, status=OrderItemStatus.DISCONTINUED)
        self.assertEqual(apply_shipped_quantity(item, 0), OrderItemStatus.DISCONTINUED)
        self.assertEqual(item.shipped_quantity, 0)


if __name__ == '__main__':
    unittest.main()
