from __future__ import annotations

import unittest

import pydantic

from app.schemas import (
    CreateDraftNotesRequest,
    DraftSelectionRequest,
    OrderItemQuantityRequest,
    OrderLineRequest,
    PoolEntryRequest,
    ShipStoresRequest,
)


class QuantityFieldTests(unittest.TestCase):
    def test_quantities_must_be_positive_everywhere(self) -> None:
        for model, fields in (
            (OrderLineRequest, {'product_id': 1}),
            (OrderItemQuantityRequest, {}),
            (PoolEntryRequest, {'order_item_id': 1}),
            (DraftSelectionRequest, {'order_item_id': 1}),
        ):
            for quantity in (0, -3):
                with self.subTest(model=model.__name__, quantity=quantity):
                    with self.assertRaises(pydantic.ValidationError):
                        model(quantity=quantity, **fields)

    def test_positive_quantity_is_accepted(self) -> None:
        self.assertEqual(PoolEntryRequest(order_item_id=1, quantity=4).quantity, 4)

    def test_batch_requests_need_at_least_one_entry(self) -> None:
        with self.assertRaises(pydantic.ValidationError):
            ShipStoresRequest(store_ids=[])
        with self.assertRaises(pydantic.ValidationError):
            CreateDraftNotesRequest(selections=[])


if __name__ == '__main__':
    unittest.main()
