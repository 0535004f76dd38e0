from __future__ import annotations

from sqlalchemy.orm import Session

from app.config import settings
from app.services.catalog_price_resolver import CatalogPriceResolver
from app.services.mock_price_resolver import MockPriceResolver
from app.services.price_resolver import PriceResolver


def get_price_resolver(db: Session) -> PriceResolver:
    provider = settings.price_resolver.strip().lower()
    if provider == 'mock':
        return MockPriceResolver()
    return CatalogPriceResolver(db)
