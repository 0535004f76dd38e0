from __future__ import annotations

from decimal import Decimal

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import Principal
from app.models import Base, OrderItem, Principal as PrincipalModel, Product, Store, StoreMember, StoreRole, SystemRole
from app.services.mock_price_resolver import MockPriceResolver
from app.services.order_service import OrderLineInput, create_order


def make_session() -> Session:
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


def add_store(db: Session, name: str, *, brand: str | None = None) -> Store:
    store = Store(name=name, code=name.upper(), brand=brand, active=True)
    db.add(store)
    db.flush()
    return store


def add_product(db: Session, sku: str, *, wholesale: str = '5.00', retail: str = '10.00') -> Product:
    product = Product(sku=sku, name=f'Product {sku}', base_wholesale_price=Decimal(wholesale), base_retail_price=Decimal(retail))
    db.add(product)
    db.flush()
    return product


def add_principal(
    db: Session,
    username: str,
    *,
    admin: bool = False,
    store_roles: dict[int, StoreRole] | None = None,
) -> Principal:
    row = PrincipalModel(
        username=username,
        password_hash='not-a-real-hash',
        system_role=SystemRole.ADMIN if admin else None,
        active=True,
    )
    db.add(row)
    db.flush()
    for store_id, role in (store_roles or {}).items():
        db.add(StoreMember(store_id=store_id, principal_id=row.id, role=role))
    db.flush()
    return Principal(
        id=row.id,
        username=username,
        system_role=row.system_role,
        store_roles=dict(store_roles or {}),
    )


def place_order(db: Session, principal: Principal, store: Store, *lines: tuple[Product, int]):
    order = create_order(
        db,
        principal=principal,
        store_id=store.id,
        lines=[OrderLineInput(product_id=product.id, quantity=quantity) for product, quantity in lines],
        price_resolver=MockPriceResolver(),
    )
    db.commit()
    return order


def order_items(db: Session, order) -> list[OrderItem]:
    return db.execute(select(OrderItem).where(OrderItem.order_id == order.id).order_by(OrderItem.id.asc())).scalars().all()
