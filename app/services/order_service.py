from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.auth import Principal, assert_admin, assert_store_scope
from app.errors import InvalidQuantity, NotFoundError, OverAllocation, PermissionDenied, ValidationError
from app.models import (
    Order,
    OrderItem,
    OrderItemStatus,
    OrderSourceType,
    OrderStatus,
    SalesNote,
    SalesNoteItem,
    SalesNoteStatus,
    ShippingPoolEntry,
    Store,
)
from app.services.audit_service import OrderItemSnapshot, OrderSnapshot, log_audit
from app.services.order_status_service import (
    EXCEPTION_STATUSES,
    apply_shipped_quantity,
    compute_order_status,
    derive_order_progress,
    quantity_status,
)
from app.services.price_resolver import PriceResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderLineInput:
    product_id: int
    quantity: int
    variant_id: int | None = None


@dataclass(frozen=True)
class ItemAllocation:
    quantity: int
    shipped: int
    pooled: int
    drafted: int

    @property
    def remaining(self) -> int:
        return self.quantity - self.shipped - self.pooled - self.drafted


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_order(db: Session, *, order_id: int, for_update: bool = False) -> Order:
    query = select(Order).where(Order.id == order_id)
    if for_update:
        query = query.with_for_update()
    order = db.execute(query).scalar_one_or_none()
    if order is None:
        raise NotFoundError(f'Order {order_id} not found', entity_type='order', entity_id=order_id)
    return order


def get_order_item(db: Session, *, order_item_id: int, for_update: bool = False) -> OrderItem:
    query = select(OrderItem).where(OrderItem.id == order_item_id)
    if for_update:
        query = query.with_for_update()
    item = db.execute(query).scalar_one_or_none()
    if item is None:
        raise NotFoundError(f'Order item {order_item_id} not found', entity_type='order_item', entity_id=order_item_id)
    return item


def pooled_quantities(db: Session, *, order_item_ids: list[int]) -> dict[int, int]:
    if not order_item_ids:
        return {}
    rows = db.execute(
        select(ShippingPoolEntry.order_item_id, func.sum(ShippingPoolEntry.quantity))
        .where(ShippingPoolEntry.order_item_id.in_(order_item_ids))
        .group_by(ShippingPoolEntry.order_item_id)
    ).all()
    return {int(order_item_id): int(total) for order_item_id, total in rows}


def drafted_quantities(db: Session, *, order_item_ids: list[int]) -> dict[int, int]:
    if not order_item_ids:
        return {}
    rows = db.execute(
        select(SalesNoteItem.order_item_id, func.sum(SalesNoteItem.quantity))
        .join(SalesNote, SalesNote.id == SalesNoteItem.sales_note_id)
        .where(
            SalesNoteItem.order_item_id.in_(order_item_ids),
            SalesNote.status == SalesNoteStatus.DRAFT,
        )
        .group_by(SalesNoteItem.order_item_id)
    ).all()
    return {int(order_item_id): int(total) for order_item_id, total in rows}


def item_allocations(db: Session, *, items: list[OrderItem]) -> dict[int, ItemAllocation]:
    db.flush()
    item_ids = [item.id for item in items]
    pooled = pooled_quantities(db, order_item_ids=item_ids)
    drafted = drafted_quantities(db, order_item_ids=item_ids)
    return {
        item.id: ItemAllocation(
            quantity=item.quantity,
            shipped=item.shipped_quantity,
            pooled=pooled.get(item.id, 0),
            drafted=drafted.get(item.id, 0),
        )
        for item in items
    }


def assert_can_allocate(db: Session, *, item: OrderItem, quantity: int) -> ItemAllocation:
    """Reject a new pool or draft allocation that would exceed the ordered quantity."""
    if quantity <= 0:
        raise InvalidQuantity(
            f'Quantity for order item {item.id} must be positive, got {quantity}',
            entity_type='order_item',
            entity_id=item.id,
        )
    if item.status in EXCEPTION_STATUSES:
        raise ValidationError(
            f'Order item {item.id} is marked {item.status.value} and cannot be shipped',
            entity_type='order_item',
            entity_id=item.id,
        )
    allocation = item_allocations(db, items=[item])[item.id]
    if quantity > allocation.remaining:
        if allocation.remaining <= 0:
            message = f'Order item {item.id} is already fully allocated ({allocation.quantity} ordered)'
        else:
            message = (
                f'Order item {item.id} has only {allocation.remaining} of {allocation.quantity} units left to '
                f'allocate (shipped {allocation.shipped}, pooled {allocation.pooled}, drafted {allocation.drafted}); '
                f'requested {quantity}'
            )
        raise OverAllocation(message, entity_type='order_item', entity_id=item.id)
    return allocation


def _assert_order_editable(principal: Principal, order: Order) -> None:
    assert_store_scope(principal, order.store_id)
    if principal.is_admin:
        return
    if order.status != OrderStatus.PENDING:
        raise PermissionDenied(f'Order {order.id} is locked for processing', entity_type='order', entity_id=order.id)


def _new_order_item(
    *,
    order: Order,
    line: OrderLineInput,
    price_resolver: PriceResolver,
) -> OrderItem:
    if line.quantity <= 0:
        raise InvalidQuantity(
            f'Quantity for product {line.product_id} must be positive, got {line.quantity}',
            entity_type='product',
            entity_id=line.product_id,
        )
    price = price_resolver.resolve_price(product_id=line.product_id, variant_id=line.variant_id, store_id=order.store_id)
    return OrderItem(
        order_id=order.id,
        product_id=line.product_id,
        variant_id=line.variant_id,
        store_id=order.store_id,
        quantity=line.quantity,
        unit_price=Decimal(price.wholesale),
        shipped_quantity=0,
        status=OrderItemStatus.WAITING,
    )


def create_order(
    db: Session,
    *,
    principal: Principal,
    store_id: int,
    lines: list[OrderLineInput],
    price_resolver: PriceResolver,
    notes: str | None = None,
    ip: str | None = None,
) -> Order:
    assert_store_scope(principal, store_id)
    if not lines:
        raise ValidationError('Cannot create an empty order')
    store_exists = db.execute(select(Store.id).where(Store.id == store_id, Store.active.is_(True))).scalar_one_or_none()
    if not store_exists:
        raise NotFoundError(f'Store {store_id} not found', entity_type='store', entity_id=store_id)

    order = Order(
        store_id=store_id,
        created_by_principal_id=principal.id,
        source_type=OrderSourceType.ADMIN_PROXY if principal.is_admin else OrderSourceType.FRONTEND,
        status=OrderStatus.PENDING,
        notes=(notes or '').strip() or None,
    )
    db.add(order)
    db.flush()
    for line in lines:
        db.add(_new_order_item(order=order, line=line, price_resolver=price_resolver))
    db.flush()

    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='order',
        entity_id=order.id,
        action='ORDER_CREATED',
        store_id=store_id,
        new_value=OrderSnapshot.of(order),
        ip=ip,
    )
    logger.info('Order %s created for store %s with %s lines', order.id, store_id, len(lines))
    return order


def toggle_order_lock(db: Session, *, principal: Principal, order_id: int, ip: str | None = None) -> Order:
    assert_admin(principal, action='lock or unlock orders')
    order = get_order(db, order_id=order_id, for_update=True)
    before = OrderSnapshot.of(order)
    order.status = OrderStatus.PROCESSING if order.status == OrderStatus.PENDING else OrderStatus.PENDING
    order.updated_at = _now()
    db.flush()
    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='order',
        entity_id=order.id,
        action='ORDER_LOCK_TOGGLED',
        store_id=order.store_id,
        old_value=before,
        new_value=OrderSnapshot.of(order),
        ip=ip,
    )
    logger.info('Order %s is now %s', order.id, order.status.value)
    return order


def update_order_notes(db: Session, *, principal: Principal, order_id: int, notes: str | None) -> Order:
    order = get_order(db, order_id=order_id, for_update=True)
    _assert_order_editable(principal, order)
    order.notes = (notes or '').strip() or None
    order.updated_at = _now()
    db.flush()
    return order


def add_order_item(
    db: Session,
    *,
    principal: Principal,
    order_id: int,
    line: OrderLineInput,
    price_resolver: PriceResolver,
    ip: str | None = None,
) -> OrderItem:
    order = get_order(db, order_id=order_id, for_update=True)
    _assert_order_editable(principal, order)
    item = _new_order_item(order=order, line=line, price_resolver=price_resolver)
    db.add(item)
    db.flush()
    refresh_order_fully_shipped(db, order_ids=[order.id], actor_principal_id=principal.id, ip=ip)
    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='order_item',
        entity_id=item.id,
        action='ORDER_ITEM_ADDED',
        store_id=order.store_id,
        new_value=OrderItemSnapshot.of(item),
        ip=ip,
    )
    return item


def update_order_item_quantity(
    db: Session,
    *,
    principal: Principal,
    order_item_id: int,
    quantity: int,
    ip: str | None = None,
) -> OrderItem:
    item = get_order_item(db, order_item_id=order_item_id, for_update=True)
    order = get_order(db, order_id=item.order_id)
    _assert_order_editable(principal, order)
    if quantity <= 0:
        raise InvalidQuantity(
            f'Quantity for order item {item.id} must be positive, got {quantity}',
            entity_type='order_item',
            entity_id=item.id,
        )
    allocation = item_allocations(db, items=[item])[item.id]
    committed = allocation.shipped + allocation.pooled + allocation.drafted
    if quantity < committed:
        raise OverAllocation(
            f'Order item {item.id} already has {committed} units shipped or allocated; quantity cannot drop to {quantity}',
            entity_type='order_item',
            entity_id=item.id,
        )

    before = OrderItemSnapshot.of(item)
    item.quantity = quantity
    apply_shipped_quantity(item, item.shipped_quantity)
    db.flush()
    refresh_order_fully_shipped(db, order_ids=[order.id], actor_principal_id=principal.id, ip=ip)
    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='order_item',
        entity_id=item.id,
        action='ORDER_ITEM_QUANTITY_CHANGED',
        store_id=item.store_id,
        old_value=before,
        new_value=OrderItemSnapshot.of(item),
        ip=ip,
    )
    return item


def remove_order_item(db: Session, *, principal: Principal, order_item_id: int, ip: str | None = None) -> None:
    item = get_order_item(db, order_item_id=order_item_id, for_update=True)
    order = get_order(db, order_id=item.order_id)
    _assert_order_editable(principal, order)
    noted = db.execute(
        select(func.count()).select_from(SalesNoteItem).where(SalesNoteItem.order_item_id == item.id)
    ).scalar_one()
    allocation = item_allocations(db, items=[item])[item.id]
    if allocation.shipped or allocation.pooled or noted:
        raise ValidationError(
            f'Order item {item.id} has shipments or allocations and cannot be removed',
            entity_type='order_item',
            entity_id=item.id,
        )
    before = OrderItemSnapshot.of(item)
    db.delete(item)
    db.flush()
    refresh_order_fully_shipped(db, order_ids=[order.id], actor_principal_id=principal.id, ip=ip)
    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='order_item',
        entity_id=order_item_id,
        action='ORDER_ITEM_REMOVED',
        store_id=order.store_id,
        old_value=before,
        ip=ip,
    )


def set_order_item_exception_status(
    db: Session,
    *,
    principal: Principal,
    order_item_id: int,
    status: OrderItemStatus | None,
    ip: str | None = None,
) -> OrderItem:
    """Mark an item out of stock / discontinued, or clear the mark with ``None``."""
    assert_admin(principal, action='change order item status')
    if status is not None and status not in EXCEPTION_STATUSES:
        raise ValidationError(
            f'Status {status.value} is derived from shipped quantity and cannot be set directly',
            entity_type='order_item',
            entity_id=order_item_id,
        )
    item = get_order_item(db, order_item_id=order_item_id, for_update=True)
    before = OrderItemSnapshot.of(item)
    if status is None:
        item.status = quantity_status(item.quantity, item.shipped_quantity)
    else:
        item.status = status
    item.updated_at = _now()
    db.flush()
    refresh_order_fully_shipped(db, order_ids=[item.order_id], actor_principal_id=principal.id, ip=ip)
    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='order_item',
        entity_id=item.id,
        action='ORDER_ITEM_STATUS_SET',
        store_id=item.store_id,
        old_value=before,
        new_value=OrderItemSnapshot.of(item),
        ip=ip,
    )
    logger.info('Order item %s status set to %s', item.id, item.status.value)
    return item


def refresh_order_fully_shipped(
    db: Session,
    *,
    order_ids: list[int],
    actor_principal_id: int | None,
    ip: str | None = None,
) -> list[int]:
    """Stamp or clear ``fully_shipped_at`` and return the orders that just completed."""
    db.flush()
    completed: list[int] = []
    for order_id in sorted(set(order_ids)):
        order = get_order(db, order_id=order_id)
        statuses = db.execute(select(OrderItem.status).where(OrderItem.order_id == order_id)).scalars().all()
        all_shipped = compute_order_status(statuses)
        if all_shipped == (order.fully_shipped_at is not None):
            continue
        before = OrderSnapshot.of(order)
        order.fully_shipped_at = _now() if all_shipped else None
        order.updated_at = _now()
        log_audit(
            db,
            actor_principal_id=actor_principal_id,
            entity_type='order',
            entity_id=order.id,
            action='ORDER_FULLY_SHIPPED' if all_shipped else 'ORDER_SHIPMENT_REOPENED',
            store_id=order.store_id,
            old_value=before,
            new_value=OrderSnapshot.of(order),
            ip=ip,
        )
        if all_shipped:
            completed.append(order.id)
    db.flush()
    return completed


def _serialize_item(item: OrderItem, allocation: ItemAllocation) -> dict:
    return {
        'id': item.id,
        'order_id': item.order_id,
        'product_id': item.product_id,
        'variant_id': item.variant_id,
        'store_id': item.store_id,
        'quantity': item.quantity,
        'unit_price': item.unit_price,
        'shipped_quantity': item.shipped_quantity,
        'pooled_quantity': allocation.pooled,
        'drafted_quantity': allocation.drafted,
        'remaining_quantity': max(allocation.remaining, 0),
        'status': item.status.value,
    }


def _serialize_order(order: Order, items: list[OrderItem]) -> dict:
    return {
        'id': order.id,
        'store_id': order.store_id,
        'created_by': order.created_by_principal_id,
        'source_type': order.source_type.value,
        'status': order.status.value,
        'notes': order.notes,
        'progress': derive_order_progress((item.status, item.shipped_quantity) for item in items),
        'fully_shipped_at': order.fully_shipped_at,
        'total': sum((item.unit_price * item.quantity for item in items), Decimal('0')),
        'created_at': order.created_at,
        'updated_at': order.updated_at,
    }


def list_orders(
    db: Session,
    *,
    principal: Principal,
    store_id: int | None = None,
    status: OrderStatus | None = None,
    limit: int = 200,
) -> list[dict]:
    query = select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit)
    if store_id is not None:
        assert_store_scope(principal, store_id)
        query = query.where(Order.store_id == store_id)
    elif not principal.is_admin:
        query = query.where(Order.store_id.in_(list(principal.store_roles)))
    if status is not None:
        query = query.where(Order.status == status)
    orders = db.execute(query).scalars().all()

    items_by_order: dict[int, list[OrderItem]] = {}
    if orders:
        items = db.execute(
            select(OrderItem).where(OrderItem.order_id.in_([order.id for order in orders])).order_by(OrderItem.id.asc())
        ).scalars().all()
        for item in items:
            items_by_order.setdefault(item.order_id, []).append(item)

    rows = []
    for order in orders:
        row = _serialize_order(order, items_by_order.get(order.id, []))
        row['item_count'] = len(items_by_order.get(order.id, []))
        rows.append(row)
    return rows


def get_order_detail(db: Session, *, principal: Principal, order_id: int) -> dict:
    order = get_order(db, order_id=order_id)
    assert_store_scope(principal, order.store_id)
    items = db.execute(
        select(OrderItem).where(OrderItem.order_id == order.id).order_by(OrderItem.id.asc())
    ).scalars().all()
    allocations = item_allocations(db, items=items)
    detail = _serialize_order(order, items)
    detail['items'] = [_serialize_item(item, allocations[item.id]) for item in items]
    return detail
