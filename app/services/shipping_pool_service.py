from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.auth import Principal, assert_admin
from app.errors import NotFoundError
from app.models import OrderItem, Product, ProductVariant, ShippingPoolEntry, Store
from app.services.audit_service import PoolEntrySnapshot, log_audit
from app.services.order_service import assert_can_allocate, get_order_item

logger = logging.getLogger(__name__)


@dataclass
class StoreGroup:
    store_id: int
    entry_ids: list[int] = field(default_factory=list)
    total_quantity: int = 0

    @property
    def line_count(self) -> int:
        return len(self.entry_ids)


def group_entries_by_store(entries: Iterable[ShippingPoolEntry]) -> list[StoreGroup]:
    """Partition pool entries by destination store, preserving first-seen order."""
    groups: dict[int, StoreGroup] = {}
    for entry in entries:
        group = groups.get(entry.store_id)
        if group is None:
            group = StoreGroup(store_id=entry.store_id)
            groups[entry.store_id] = group
        group.entry_ids.append(entry.id)
        group.total_quantity += entry.quantity
    return list(groups.values())


def list_pool_entries(db: Session, *, store_id: int | None = None) -> list[ShippingPoolEntry]:
    query = select(ShippingPoolEntry).order_by(ShippingPoolEntry.created_at.asc(), ShippingPoolEntry.id.asc())
    if store_id is not None:
        query = query.where(ShippingPoolEntry.store_id == store_id)
    return db.execute(query).scalars().all()


def add_to_pool(
    db: Session,
    *,
    principal: Principal,
    order_item_id: int,
    quantity: int,
    ip: str | None = None,
) -> ShippingPoolEntry:
    assert_admin(principal, action='manage the shipping pool')
    # Row lock serializes concurrent allocations against the same item.
    item = get_order_item(db, order_item_id=order_item_id, for_update=True)
    assert_can_allocate(db, item=item, quantity=quantity)

    entry = ShippingPoolEntry(
        order_item_id=item.id,
        store_id=item.store_id,
        quantity=quantity,
        created_by_principal_id=principal.id,
    )
    db.add(entry)
    db.flush()
    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='shipping_pool',
        entity_id=entry.id,
        action='POOL_ENTRY_ADDED',
        store_id=entry.store_id,
        new_value=PoolEntrySnapshot.of(entry),
        ip=ip,
    )
    logger.info('Pooled %s units of order item %s for store %s', quantity, item.id, item.store_id)
    return entry


def remove_from_pool(db: Session, *, principal: Principal, pool_entry_id: int, ip: str | None = None) -> None:
    assert_admin(principal, action='manage the shipping pool')
    entry = db.execute(select(ShippingPoolEntry).where(ShippingPoolEntry.id == pool_entry_id)).scalar_one_or_none()
    if entry is None:
        raise NotFoundError(
            f'Shipping pool entry {pool_entry_id} not found; it may already have shipped',
            entity_type='shipping_pool',
            entity_id=pool_entry_id,
        )
    before = PoolEntrySnapshot.of(entry)
    db.delete(entry)
    db.flush()
    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='shipping_pool',
        entity_id=pool_entry_id,
        action='POOL_ENTRY_REMOVED',
        store_id=before.store_id,
        old_value=before,
        ip=ip,
    )
    logger.info('Removed shipping pool entry %s', pool_entry_id)


def get_pool_overview(db: Session, *, store_id: int | None = None) -> list[dict]:
    """Pool entries grouped per store with product and progress details."""
    entries = list_pool_entries(db, store_id=store_id)
    if not entries:
        return []
    rows = db.execute(
        select(ShippingPoolEntry, OrderItem, Product.name, Product.sku, ProductVariant.name)
        .join(OrderItem, OrderItem.id == ShippingPoolEntry.order_item_id)
        .join(Product, Product.id == OrderItem.product_id)
        .outerjoin(ProductVariant, ProductVariant.id == OrderItem.variant_id)
        .where(ShippingPoolEntry.id.in_([entry.id for entry in entries]))
    ).all()
    lines_by_entry_id = {
        entry.id: {
            'id': entry.id,
            'order_item_id': entry.order_item_id,
            'order_id': item.order_id,
            'quantity': entry.quantity,
            'ordered_quantity': item.quantity,
            'shipped_quantity': item.shipped_quantity,
            'unit_price': item.unit_price,
            'product_name': product_name,
            'sku': sku,
            'variant_name': variant_name,
            'created_at': entry.created_at,
        }
        for entry, item, product_name, sku, variant_name in rows
    }
    groups = group_entries_by_store(entries)
    store_rows = db.execute(
        select(Store.id, Store.name, Store.code).where(Store.id.in_([group.store_id for group in groups]))
    ).all()
    stores = {row.id: row for row in store_rows}
    return [
        {
            'store_id': group.store_id,
            'store_name': stores[group.store_id].name if group.store_id in stores else None,
            'store_code': stores[group.store_id].code if group.store_id in stores else None,
            'total_quantity': group.total_quantity,
            'line_count': group.line_count,
            'entries': [lines_by_entry_id[entry_id] for entry_id in group.entry_ids],
        }
        for group in groups
    ]
