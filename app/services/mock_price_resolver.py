from __future__ import annotations

from decimal import Decimal

from app.services.price_resolver import ResolvedPrice


class MockPriceResolver:
    def __init__(self, prices: dict[tuple[int, int | None], ResolvedPrice] | None = None) -> None:
        self.prices = dict(prices or {})

    def resolve_price(self, *, product_id: int, variant_id: int | None, store_id: int) -> ResolvedPrice:
        price = self.prices.get((product_id, variant_id)) or self.prices.get((product_id, None))
        if price is not None:
            return price
        # Stable made-up prices so development orders have non-zero totals.
        wholesale = Decimal(10 + (product_id * 7 + (variant_id or 0) * 3) % 40)
        return ResolvedPrice(wholesale=wholesale, retail=wholesale * 2)
