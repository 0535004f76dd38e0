from decimal import Decimal

from sqlalchemy import select

from app.db import SessionLocal
from app.models import (
    BrandPrice,
    Principal,
    Product,
    ProductVariant,
    Store,
    StoreMember,
    StoreRole,
    SystemRole,
)
from app.security.passwords import hash_password


DEMO_STORES = [
    ('Downtown', 'DT-001', 'northwind'),
    ('Harbor', 'HB-002', 'northwind'),
]

DEMO_PRODUCTS = [
    ('TEE-BASIC', 'Basic Tee', Decimal('8.50'), Decimal('19.00')),
    ('HOOD-ZIP', 'Zip Hoodie', Decimal('21.00'), Decimal('45.00')),
    ('CAP-LOGO', 'Logo Cap', Decimal('6.00'), Decimal('15.00')),
]


def _get_or_create_principal(db, username: str, password: str, system_role: SystemRole | None = None) -> Principal:
    principal = db.execute(select(Principal).where(Principal.username == username)).scalar_one_or_none()
    if not principal:
        principal = Principal(
            username=username,
            password_hash=hash_password(password),
            system_role=system_role,
            active=True,
        )
        db.add(principal)
        db.flush()
    return principal


def seed() -> None:
    with SessionLocal() as db:
        stores = []
        for name, code, brand in DEMO_STORES:
            store = db.execute(select(Store).where(Store.code == code)).scalar_one_or_none()
            if not store:
                store = Store(name=name, code=code, brand=brand, active=True)
                db.add(store)
                db.flush()
            stores.append(store)

        for sku, name, wholesale, retail in DEMO_PRODUCTS:
            product = db.execute(select(Product).where(Product.sku == sku)).scalar_one_or_none()
            if product:
                continue
            product = Product(sku=sku, name=name, base_wholesale_price=wholesale, base_retail_price=retail)
            db.add(product)
            db.flush()
            if sku == 'TEE-BASIC':
                for size in ('S', 'M', 'L'):
                    db.add(
                        ProductVariant(
                            product_id=product.id,
                            sku=f'{sku}-{size}',
                            name=f'{name} {size}',
                            wholesale_price=wholesale,
                            retail_price=retail,
                        )
                    )
            if sku == 'HOOD-ZIP':
                db.add(BrandPrice(brand='northwind', product_id=product.id, variant_id=None, wholesale_price=Decimal('19.50')))

        _get_or_create_principal(db, 'admin', 'adminpass', SystemRole.ADMIN)

        for store, username in zip(stores, ('downtown_owner', 'harbor_owner')):
            owner = _get_or_create_principal(db, username, 'storepass')
            membership = db.get(StoreMember, (store.id, owner.id))
            if not membership:
                db.add(StoreMember(store_id=store.id, principal_id=owner.id, role=StoreRole.FOUNDER))

        clerk = _get_or_create_principal(db, 'downtown_clerk', 'storepass')
        if not db.get(StoreMember, (stores[0].id, clerk.id)):
            db.add(StoreMember(store_id=stores[0].id, principal_id=clerk.id, role=StoreRole.EMPLOYEE))

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
