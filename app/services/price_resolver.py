from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol


@dataclass(frozen=True)
class ResolvedPrice:
    wholesale: Decimal
    retail: Decimal


class PriceResolver(Protocol):
    def resolve_price(self, *, product_id: int, variant_id: int | None, store_id: int) -> ResolvedPrice: ...
