from __future__ import annotations

import unittest
from decimal import Decimal

from app.errors import NotFoundError
from app.models import BrandPrice, ProductStatus, ProductVariant
from app.services.catalog_price_resolver import CatalogPriceResolver
from app.services.mock_price_resolver import MockPriceResolver
from app.services.price_resolver import ResolvedPrice
from db_fixtures import add_product, add_store, make_session


class CatalogPriceResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.branded = add_store(self.db, 'branded', brand='northwind')
        self.plain = add_store(self.db, 'plain')
        self.product = add_product(self.db, 'TEE', wholesale='8.00', retail='16.00')
        self.variant = ProductVariant(
            product_id=self.product.id,
            sku='TEE-L',
            name='Tee L',
            wholesale_price=Decimal('9.00'),
            retail_price=Decimal('18.00'),
        )
        self.db.add(self.variant)
        self.db.flush()
        self.resolver = CatalogPriceResolver(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def _resolve(self, store, variant_id=None) -> ResolvedPrice:
        return self.resolver.resolve_price(product_id=self.product.id, variant_id=variant_id, store_id=store.id)

    def test_base_and_variant_prices(self) -> None:
        self.assertEqual(self._resolve(self.plain).wholesale, Decimal('8.00'))
        self.assertEqual(self._resolve(self.plain, self.variant.id).wholesale, Decimal('9.00'))

    def test_brand_override_applies_per_field(self) -> None:
        self.db.add(BrandPrice(brand='northwind', product_id=self.product.id, variant_id=None, wholesale_price=Decimal('7.00')))
        self.db.flush()

        price = self._resolve(self.branded)
        self.assertEqual(price.wholesale, Decimal('7.00'))
        self.assertEqual(price.retail, Decimal('16.00'))
        self.assertEqual(self._resolve(self.plain).wholesale, Decimal('8.00'))

    def test_variant_brand_override_wins(self) -> None:
        self.db.add_all(
            [
                BrandPrice(brand='northwind', product_id=self.product.id, variant_id=None, wholesale_price=Decimal('7.00')),
                BrandPrice(
                    brand='northwind',
                    product_id=self.product.id,
                    variant_id=self.variant.id,
                    wholesale_price=Decimal('8.50'),
                ),
            ]
        )
        self.db.flush()
        self.assertEqual(self._resolve(self.branded, self.variant.id).wholesale, Decimal('8.50'))

    def test_discontinued_product_is_not_orderable(self) -> None:
        self.product.status = ProductStatus.DISCONTINUED
        self.db.flush()
        with self.assertRaises(NotFoundError):
            self._resolve(self.plain)

    def test_unknown_variant(self) -> None:
        with self.assertRaises(NotFoundError):
            self._resolve(self.plain, self.variant.id + 100)


class MockPriceResolverTests(unittest.TestCase):
    def test_configured_price_falls_back_to_product(self) -> None:
        resolver = MockPriceResolver({(1, None): ResolvedPrice(wholesale=Decimal('3'), retail=Decimal('6'))})
        self.assertEqual(resolver.resolve_price(product_id=1, variant_id=5, store_id=1).wholesale, Decimal('3'))

    def test_unconfigured_price_is_stable(self) -> None:
        resolver = MockPriceResolver()
        first = resolver.resolve_price(product_id=4, variant_id=None, store_id=1)
        second = resolver.resolve_price(product_id=4, variant_id=None, store_id=2)
        self.assertEqual(first, second)
        self.assertEqual(first.retail, first.wholesale * 2)


if __name__ == '__main__':
    unittest.main()
