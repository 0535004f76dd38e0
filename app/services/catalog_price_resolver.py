from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFoundError
from app.models import BrandPrice, Product, ProductStatus, ProductVariant, Store
from app.services.price_resolver import ResolvedPrice


class CatalogPriceResolver:
    """Wholesale/retail price for a store, brand overrides first.

    Precedence per field: brand override for the variant, the variant's own
    price, brand override for the product, then the product base price.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def _brand_override(self, *, brand: str | None, product_id: int, variant_id: int | None) -> BrandPrice | None:
        if not brand:
            return None
        query = select(BrandPrice).where(BrandPrice.brand == brand, BrandPrice.product_id == product_id)
        if variant_id is None:
            query = query.where(BrandPrice.variant_id.is_(None))
        else:
            query = query.where(BrandPrice.variant_id == variant_id)
        return self.db.execute(query).scalar_one_or_none()

    def resolve_price(self, *, product_id: int, variant_id: int | None, store_id: int) -> ResolvedPrice:
        product = self.db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()
        if product is None or product.status != ProductStatus.ACTIVE:
            raise NotFoundError(f'Product {product_id} is not available', entity_type='product', entity_id=product_id)
        brand = self.db.execute(select(Store.brand).where(Store.id == store_id)).scalar_one_or_none()

        wholesale = product.base_wholesale_price
        retail = product.base_retail_price
        product_override = self._brand_override(brand=brand, product_id=product_id, variant_id=None)
        if product_override is not None:
            wholesale = product_override.wholesale_price if product_override.wholesale_price is not None else wholesale
            retail = product_override.retail_price if product_override.retail_price is not None else retail

        if variant_id is not None:
            variant = self.db.execute(
                select(ProductVariant).where(ProductVariant.id == variant_id, ProductVariant.product_id == product_id)
            ).scalar_one_or_none()
            if variant is None or variant.status != ProductStatus.ACTIVE:
                raise NotFoundError(
                    f'Variant {variant_id} of product {product_id} is not available',
                    entity_type='product_variant',
                    entity_id=variant_id,
                )
            wholesale = variant.wholesale_price
            retail = variant.retail_price
            variant_override = self._brand_override(brand=brand, product_id=product_id, variant_id=variant_id)
            if variant_override is not None:
                wholesale = variant_override.wholesale_price if variant_override.wholesale_price is not None else wholesale
                retail = variant_override.retail_price if variant_override.retail_price is not None else retail

        return ResolvedPrice(wholesale=wholesale, retail=retail)
