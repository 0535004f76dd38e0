from __future__ import annotations

import logging
import secrets
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth import Principal, assert_admin, assert_can_receive, assert_store_scope
from app.config import settings
from app.errors import (
    ConcurrencyConflict,
    InvalidQuantity,
    NotFoundError,
    OrderingError,
    RollbackConflict,
    ValidationError,
)
from app.models import (
    OrderItem,
    Product,
    ProductVariant,
    SalesNote,
    SalesNoteItem,
    SalesNoteStatus,
    ShippingPoolEntry,
    Store,
)
from app.services.audit_service import OrderItemSnapshot, SalesNoteSnapshot, log_audit
from app.services.notification_service import notify_sales_note_received, notify_sales_note_shipped
from app.services.order_service import assert_can_allocate, refresh_order_fully_shipped
from app.services.order_status_service import EXCEPTION_STATUSES, apply_shipped_quantity, increment_shipped

logger = logging.getLogger(__name__)

STORE_LOCK_NAMESPACE = 0x53484950 << 32


@dataclass
class StoreShipmentResult:
    store_id: int
    ok: bool
    sales_note_id: int | None = None
    line_count: int = 0
    total_quantity: int = 0
    fully_shipped_order_ids: list[int] = field(default_factory=list)
    error: dict | None = None


@dataclass(frozen=True)
class DraftSelection:
    order_item_id: int
    quantity: int


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _new_access_token() -> str:
    return secrets.token_urlsafe(24)


def _lock_store(db: Session, *, store_id: int) -> None:
    """Serialize store-group commits for one store until the transaction ends."""
    if not settings.store_lock_advisory or db.get_bind().dialect.name != 'postgresql':
        return
    db.execute(text('SELECT pg_advisory_xact_lock(:key)'), {'key': STORE_LOCK_NAMESPACE + store_id})


def get_sales_note(db: Session, *, sales_note_id: int, for_update: bool = False) -> SalesNote:
    query = select(SalesNote).where(SalesNote.id == sales_note_id)
    if for_update:
        query = query.with_for_update()
    note = db.execute(query).scalar_one_or_none()
    if note is None:
        raise NotFoundError(f'Sales note {sales_note_id} not found', entity_type='sales_note', entity_id=sales_note_id)
    return note


def _note_lines(db: Session, *, sales_note_id: int) -> list[SalesNoteItem]:
    return db.execute(
        select(SalesNoteItem).where(SalesNoteItem.sales_note_id == sales_note_id).order_by(SalesNoteItem.id.asc())
    ).scalars().all()


def _locked_items(db: Session, *, order_item_ids: list[int]) -> dict[int, OrderItem]:
    # Fixed lock order keeps two concurrent commits from deadlocking.
    ids = sorted(set(order_item_ids))
    items = db.execute(
        select(OrderItem).where(OrderItem.id.in_(ids)).order_by(OrderItem.id.asc()).with_for_update()
    ).scalars().all()
    by_id = {item.id: item for item in items}
    missing = [item_id for item_id in ids if item_id not in by_id]
    if missing:
        raise NotFoundError(f'Order item {missing[0]} no longer exists', entity_type='order_item', entity_id=missing[0])
    return by_id


def _apply_shipment(
    db: Session,
    *,
    principal: Principal,
    quantity_by_item: dict[int, int],
    items: dict[int, OrderItem],
    ip: str | None,
) -> list[int]:
    for order_item_id, quantity in quantity_by_item.items():
        item = items[order_item_id]
        before = OrderItemSnapshot.of(item)
        increment_shipped(item, quantity)
        log_audit(
            db,
            actor_principal_id=principal.id,
            entity_type='order_item',
            entity_id=item.id,
            action='ORDER_ITEM_SHIPPED',
            store_id=item.store_id,
            old_value=before,
            new_value=OrderItemSnapshot.of(item),
            ip=ip,
        )
    db.flush()
    order_ids = [items[order_item_id].order_id for order_item_id in quantity_by_item]
    return refresh_order_fully_shipped(db, order_ids=order_ids, actor_principal_id=principal.id, ip=ip)


def commit_store_group(
    db: Session,
    *,
    principal: Principal,
    store_id: int,
    notes: str | None = None,
    expected_entry_ids: list[int] | None = None,
    ip: str | None = None,
) -> StoreShipmentResult:
    """Turn one store's pooled entries into a shipped sales note.

    Runs inside the caller's transaction; the caller commits or rolls back.
    When ``expected_entry_ids`` is given, exactly those entries are shipped and
    any of them having vanished raises ``ConcurrencyConflict``.
    """
    assert_admin(principal, action='ship pooled items')
    _lock_store(db, store_id=store_id)

    entries = db.execute(
        select(ShippingPoolEntry)
        .where(ShippingPoolEntry.store_id == store_id)
        .order_by(ShippingPoolEntry.id.asc())
        .with_for_update()
    ).scalars().all()
    if expected_entry_ids is not None:
        present = {entry.id for entry in entries}
        missing = sorted(set(expected_entry_ids) - present)
        if missing:
            raise ConcurrencyConflict(
                f'Shipping pool entry {missing[0]} for store {store_id} was already shipped or removed; refresh the pool',
                entity_type='shipping_pool',
                entity_id=missing[0],
            )
        wanted = set(expected_entry_ids)
        entries = [entry for entry in entries if entry.id in wanted]
    if not entries:
        raise ValidationError(f'Store {store_id} has nothing in the shipping pool', entity_type='store', entity_id=store_id)

    quantity_by_item: dict[int, int] = defaultdict(int)
    for entry in entries:
        quantity_by_item[entry.order_item_id] += entry.quantity
    items = _locked_items(db, order_item_ids=list(quantity_by_item))
    for item in items.values():
        if item.store_id != store_id:
            raise ValidationError(
                f'Order item {item.id} belongs to store {item.store_id}, not {store_id}',
                entity_type='order_item',
                entity_id=item.id,
            )

    note = SalesNote(
        store_id=store_id,
        created_by_principal_id=principal.id,
        status=SalesNoteStatus.SHIPPED,
        shipped_at=_now(),
        notes=(notes or '').strip() or None,
        access_token=_new_access_token(),
    )
    db.add(note)
    db.flush()
    for entry in entries:
        db.add(SalesNoteItem(sales_note_id=note.id, order_item_id=entry.order_item_id, quantity=entry.quantity))

    completed = _apply_shipment(db, principal=principal, quantity_by_item=quantity_by_item, items=items, ip=ip)

    lines = [(entry.order_item_id, entry.quantity) for entry in entries]
    entry_ids = [entry.id for entry in entries]
    deleted = db.execute(
        delete(ShippingPoolEntry).where(ShippingPoolEntry.id.in_(entry_ids)).execution_options(synchronize_session=False)
    )
    if deleted.rowcount != len(entry_ids):
        raise ConcurrencyConflict(
            f'Shipping pool for store {store_id} changed during shipment; refresh the pool',
            entity_type='store',
            entity_id=store_id,
        )
    for entry in entries:
        db.expunge(entry)

    total_quantity = sum(quantity for _, quantity in lines)
    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='sales_note',
        entity_id=note.id,
        action='SALES_NOTE_SHIPPED_FROM_POOL',
        store_id=store_id,
        new_value=SalesNoteSnapshot.of(note, lines),
        ip=ip,
    )
    notify_sales_note_shipped(db, note=note, line_count=len(lines), total_quantity=total_quantity)
    logger.info('Sales note %s shipped %s units in %s lines to store %s', note.id, total_quantity, len(lines), store_id)
    return StoreShipmentResult(
        store_id=store_id,
        ok=True,
        sales_note_id=note.id,
        line_count=len(lines),
        total_quantity=total_quantity,
        fully_shipped_order_ids=completed,
    )


def ship_store_groups(
    db: Session,
    *,
    principal: Principal,
    store_ids: list[int],
    notes: str | None = None,
    expected_entry_ids_by_store: dict[int, list[int]] | None = None,
    ip: str | None = None,
) -> list[StoreShipmentResult]:
    """Commit each selected store group in its own transaction.

    A failing store is rolled back and reported; stores committed before it
    stay committed.
    """
    assert_admin(principal, action='ship pooled items')
    if not store_ids:
        raise ValidationError('Select at least one store to ship')

    results: list[StoreShipmentResult] = []
    for store_id in dict.fromkeys(store_ids):
        expected = (expected_entry_ids_by_store or {}).get(store_id)
        try:
            result = commit_store_group(
                db,
                principal=principal,
                store_id=store_id,
                notes=notes,
                expected_entry_ids=expected,
                ip=ip,
            )
            db.commit()
        except OrderingError as exc:
            db.rollback()
            logger.warning('Shipment for store %s rejected: %s', store_id, exc.message)
            result = StoreShipmentResult(store_id=store_id, ok=False, error=exc.as_detail())
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception('Shipment for store %s failed in the database', store_id)
            result = StoreShipmentResult(
                store_id=store_id,
                ok=False,
                error={
                    'error': type(exc).__name__,
                    'message': f'Database error while shipping store {store_id}',
                    'entity_type': 'store',
                    'entity_id': store_id,
                },
            )
        results.append(result)
    return results


def create_draft_sales_notes(
    db: Session,
    *,
    principal: Principal,
    selections: list[DraftSelection],
    notes: str | None = None,
    ip: str | None = None,
) -> list[SalesNote]:
    """Order-list path: one draft note per store, shipped quantities untouched."""
    assert_admin(principal, action='create sales notes')
    if not selections:
        raise ValidationError('Select at least one order item')

    quantity_by_item: dict[int, int] = defaultdict(int)
    for selection in selections:
        if selection.quantity <= 0:
            raise InvalidQuantity(
                f'Quantity for order item {selection.order_item_id} must be positive, got {selection.quantity}',
                entity_type='order_item',
                entity_id=selection.order_item_id,
            )
        quantity_by_item[selection.order_item_id] += selection.quantity
    items = _locked_items(db, order_item_ids=list(quantity_by_item))
    for order_item_id, quantity in quantity_by_item.items():
        assert_can_allocate(db, item=items[order_item_id], quantity=quantity)

    lines_by_store: dict[int, list[tuple[int, int]]] = defaultdict(list)
    for order_item_id, quantity in quantity_by_item.items():
        lines_by_store[items[order_item_id].store_id].append((order_item_id, quantity))

    created: list[SalesNote] = []
    for store_id in sorted(lines_by_store):
        note = SalesNote(
            store_id=store_id,
            created_by_principal_id=principal.id,
            status=SalesNoteStatus.DRAFT,
            notes=(notes or '').strip() or None,
            access_token=_new_access_token(),
        )
        db.add(note)
        db.flush()
        for order_item_id, quantity in lines_by_store[store_id]:
            db.add(SalesNoteItem(sales_note_id=note.id, order_item_id=order_item_id, quantity=quantity))
        log_audit(
            db,
            actor_principal_id=principal.id,
            entity_type='sales_note',
            entity_id=note.id,
            action='SALES_NOTE_DRAFTED',
            store_id=store_id,
            new_value=SalesNoteSnapshot.of(note, lines_by_store[store_id]),
            ip=ip,
        )
        created.append(note)
    db.flush()
    logger.info('Drafted %s sales notes for %s order items', len(created), len(quantity_by_item))
    return created


def ship_sales_note(db: Session, *, principal: Principal, sales_note_id: int, ip: str | None = None) -> StoreShipmentResult:
    assert_admin(principal, action='ship sales notes')
    note = get_sales_note(db, sales_note_id=sales_note_id, for_update=True)
    if note.status != SalesNoteStatus.DRAFT:
        raise ValidationError(
            f'Sales note {note.id} is {note.status.value}; only drafts can be shipped',
            entity_type='sales_note',
            entity_id=note.id,
        )
    _lock_store(db, store_id=note.store_id)
    lines = _note_lines(db, sales_note_id=note.id)
    if not lines:
        raise ValidationError(f'Sales note {note.id} has no lines', entity_type='sales_note', entity_id=note.id)

    quantity_by_item: dict[int, int] = defaultdict(int)
    for line in lines:
        quantity_by_item[line.order_item_id] += line.quantity
    items = _locked_items(db, order_item_ids=list(quantity_by_item))
    before = SalesNoteSnapshot.of(note, [(line.order_item_id, line.quantity) for line in lines])
    completed = _apply_shipment(db, principal=principal, quantity_by_item=quantity_by_item, items=items, ip=ip)
    note.status = SalesNoteStatus.SHIPPED
    note.shipped_at = _now()
    note.updated_at = _now()
    db.flush()

    total_quantity = sum(quantity_by_item.values())
    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='sales_note',
        entity_id=note.id,
        action='SALES_NOTE_SHIPPED',
        store_id=note.store_id,
        old_value=before,
        new_value=SalesNoteSnapshot.of(note, [(line.order_item_id, line.quantity) for line in lines]),
        ip=ip,
    )
    notify_sales_note_shipped(db, note=note, line_count=len(lines), total_quantity=total_quantity)
    logger.info('Draft sales note %s shipped %s units to store %s', note.id, total_quantity, note.store_id)
    return StoreShipmentResult(
        store_id=note.store_id,
        ok=True,
        sales_note_id=note.id,
        line_count=len(lines),
        total_quantity=total_quantity,
        fully_shipped_order_ids=completed,
    )


def delete_sales_note(
    db: Session,
    *,
    principal: Principal,
    sales_note_id: int,
    restore_to_pool: bool = False,
    ip: str | None = None,
) -> dict:
    """Delete a sales note and undo its shipment.

    Shipped quantities are decremented only for notes that actually shipped;
    drafts never touched them. With ``restore_to_pool`` each line is queued in
    the shipping pool again.
    """
    assert_admin(principal, action='delete sales notes')
    note = get_sales_note(db, sales_note_id=sales_note_id, for_update=True)
    if note.status == SalesNoteStatus.RECEIVED:
        raise ValidationError(
            f'Sales note {note.id} was received by the store and cannot be deleted',
            entity_type='sales_note',
            entity_id=note.id,
        )
    lines = _note_lines(db, sales_note_id=note.id)
    line_pairs = [(line.order_item_id, line.quantity) for line in lines]
    quantity_by_item: dict[int, int] = defaultdict(int)
    for order_item_id, quantity in line_pairs:
        quantity_by_item[order_item_id] += quantity
    items = _locked_items(db, order_item_ids=list(quantity_by_item)) if quantity_by_item else {}

    was_shipped = note.status == SalesNoteStatus.SHIPPED
    if was_shipped:
        other_shipped = dict(
            db.execute(
                select(SalesNoteItem.order_item_id, func.sum(SalesNoteItem.quantity))
                .join(SalesNote, SalesNote.id == SalesNoteItem.sales_note_id)
                .where(
                    SalesNoteItem.order_item_id.in_(list(quantity_by_item)),
                    SalesNote.id != note.id,
                    SalesNote.status != SalesNoteStatus.DRAFT,
                )
                .group_by(SalesNoteItem.order_item_id)
            ).all()
        )
        # Validate every line before touching any item.
        for order_item_id, quantity in quantity_by_item.items():
            item = items[order_item_id]
            restored = item.shipped_quantity - quantity
            if restored < 0 or restored < int(other_shipped.get(order_item_id) or 0):
                raise RollbackConflict(
                    f'Order item {item.id} shows {item.shipped_quantity} shipped; removing {quantity} from sales '
                    f'note {note.id} would not match its other shipments',
                    entity_type='order_item',
                    entity_id=item.id,
                )
        for order_item_id, quantity in quantity_by_item.items():
            item = items[order_item_id]
            before = OrderItemSnapshot.of(item)
            apply_shipped_quantity(item, item.shipped_quantity - quantity)
            log_audit(
                db,
                actor_principal_id=principal.id,
                entity_type='order_item',
                entity_id=item.id,
                action='ORDER_ITEM_SHIPMENT_ROLLED_BACK',
                store_id=item.store_id,
                old_value=before,
                new_value=OrderItemSnapshot.of(item),
                ip=ip,
            )

    before = SalesNoteSnapshot.of(note, line_pairs)
    db.execute(
        delete(SalesNoteItem).where(SalesNoteItem.sales_note_id == note.id).execution_options(synchronize_session=False)
    )
    for line in lines:
        db.expunge(line)
    db.delete(note)
    db.flush()

    skipped_item_ids: list[int] = []
    if restore_to_pool:
        for order_item_id, quantity in line_pairs:
            # Marked items stay out of the pool until the mark is cleared.
            if items[order_item_id].status in EXCEPTION_STATUSES:
                skipped_item_ids.append(order_item_id)
                continue
            db.add(
                ShippingPoolEntry(
                    order_item_id=order_item_id,
                    store_id=items[order_item_id].store_id,
                    quantity=quantity,
                    created_by_principal_id=principal.id,
                )
            )
        db.flush()

    reopened_orders = sorted({item.order_id for item in items.values()})
    if was_shipped:
        refresh_order_fully_shipped(db, order_ids=reopened_orders, actor_principal_id=principal.id, ip=ip)
    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='sales_note',
        entity_id=sales_note_id,
        action='SALES_NOTE_DELETED',
        store_id=before.store_id,
        old_value=before,
        ip=ip,
    )
    logger.info(
        'Sales note %s deleted (%s lines, shipment rolled back: %s, restored to pool: %s)',
        sales_note_id,
        len(line_pairs),
        was_shipped,
        restore_to_pool,
    )
    return {
        'sales_note_id': sales_note_id,
        'rolled_back': was_shipped,
        'restored_to_pool': restore_to_pool,
        'order_item_ids': sorted(quantity_by_item),
        'skipped_order_item_ids': sorted(set(skipped_item_ids)),
    }


def mark_received(db: Session, *, principal: Principal, sales_note_id: int, ip: str | None = None) -> SalesNote:
    note = get_sales_note(db, sales_note_id=sales_note_id, for_update=True)
    assert_can_receive(principal, note.store_id)
    if note.status != SalesNoteStatus.SHIPPED:
        raise ValidationError(
            f'Sales note {note.id} is {note.status.value}; only shipped notes can be received',
            entity_type='sales_note',
            entity_id=note.id,
        )
    before = SalesNoteSnapshot.of(note)
    note.status = SalesNoteStatus.RECEIVED
    note.received_at = _now()
    note.received_by_principal_id = principal.id
    note.updated_at = _now()
    db.flush()
    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='sales_note',
        entity_id=note.id,
        action='SALES_NOTE_RECEIVED',
        store_id=note.store_id,
        old_value=before,
        new_value=SalesNoteSnapshot.of(note),
        ip=ip,
    )
    notify_sales_note_received(db, note=note)
    logger.info('Sales note %s received by principal %s', note.id, principal.id)
    return note


def _serialize_note(note: SalesNote, *, item_count: int, total_quantity: int) -> dict:
    return {
        'id': note.id,
        'store_id': note.store_id,
        'status': note.status.value,
        'notes': note.notes,
        'item_count': item_count,
        'total_quantity': total_quantity,
        'created_by': note.created_by_principal_id,
        'shipped_at': note.shipped_at,
        'received_at': note.received_at,
        'received_by': note.received_by_principal_id,
        'created_at': note.created_at,
    }


def list_sales_notes(
    db: Session,
    *,
    principal: Principal,
    store_id: int | None = None,
    status: SalesNoteStatus | None = None,
    limit: int = 200,
) -> list[dict]:
    query = select(SalesNote).order_by(SalesNote.created_at.desc(), SalesNote.id.desc()).limit(limit)
    if store_id is not None:
        assert_store_scope(principal, store_id)
        query = query.where(SalesNote.store_id == store_id)
    elif not principal.is_admin:
        query = query.where(SalesNote.store_id.in_(list(principal.store_roles)))
    if status is not None:
        query = query.where(SalesNote.status == status)
    notes = db.execute(query).scalars().all()
    totals: dict[int, tuple[int, int]] = {}
    if notes:
        rows = db.execute(
            select(SalesNoteItem.sales_note_id, func.count(), func.sum(SalesNoteItem.quantity))
            .where(SalesNoteItem.sales_note_id.in_([note.id for note in notes]))
            .group_by(SalesNoteItem.sales_note_id)
        ).all()
        totals = {int(note_id): (int(count), int(total or 0)) for note_id, count, total in rows}
    return [
        _serialize_note(note, item_count=totals.get(note.id, (0, 0))[0], total_quantity=totals.get(note.id, (0, 0))[1])
        for note in notes
    ]


def _note_detail(db: Session, note: SalesNote) -> dict:
    rows = db.execute(
        select(SalesNoteItem, OrderItem, Product.name, Product.sku, ProductVariant.name)
        .join(OrderItem, OrderItem.id == SalesNoteItem.order_item_id)
        .join(Product, Product.id == OrderItem.product_id)
        .outerjoin(ProductVariant, ProductVariant.id == OrderItem.variant_id)
        .where(SalesNoteItem.sales_note_id == note.id)
        .order_by(SalesNoteItem.id.asc())
    ).all()
    store = db.execute(select(Store.name, Store.code).where(Store.id == note.store_id)).one_or_none()
    lines = [
        {
            'id': line.id,
            'order_item_id': line.order_item_id,
            'order_id': item.order_id,
            'quantity': line.quantity,
            'unit_price': item.unit_price,
            'line_total': item.unit_price * line.quantity,
            'product_name': product_name,
            'sku': sku,
            'variant_name': variant_name,
        }
        for line, item, product_name, sku, variant_name in rows
    ]
    detail = _serialize_note(note, item_count=len(lines), total_quantity=sum(line['quantity'] for line in lines))
    detail['store_name'] = store.name if store else None
    detail['store_code'] = store.code if store else None
    detail['lines'] = lines
    return detail


def get_sales_note_detail(db: Session, *, principal: Principal, sales_note_id: int) -> dict:
    note = get_sales_note(db, sales_note_id=sales_note_id)
    assert_store_scope(principal, note.store_id)
    detail = _note_detail(db, note)
    if principal.is_admin:
        detail['access_token'] = note.access_token
    return detail


def get_shared_sales_note(db: Session, *, access_token: str) -> dict:
    note = db.execute(select(SalesNote).where(SalesNote.access_token == access_token)).scalar_one_or_none()
    if note is None or note.status == SalesNoteStatus.DRAFT:
        raise NotFoundError('Shared sales note not found', entity_type='sales_note')
    return _note_detail(db, note)


def _month_window(month: str) -> tuple[datetime, datetime]:
    try:
        start = datetime.strptime(month, '%Y-%m').replace(tzinfo=timezone.utc)
    except ValueError as exc:
        raise ValidationError(f'Month must look like YYYY-MM, got {month!r}') from exc
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def accounting_summary(db: Session, *, principal: Principal, month: str, store_id: int | None = None) -> dict:
    """Received sales notes for one calendar month (UTC), valued at order prices."""
    start, end = _month_window(month)
    query = (
        select(SalesNote)
        .where(
            SalesNote.status == SalesNoteStatus.RECEIVED,
            SalesNote.received_at >= start,
            SalesNote.received_at < end,
        )
        .order_by(SalesNote.received_at.desc(), SalesNote.id.desc())
    )
    if store_id is not None:
        assert_store_scope(principal, store_id)
        query = query.where(SalesNote.store_id == store_id)
    elif not principal.is_admin:
        query = query.where(SalesNote.store_id.in_(list(principal.store_roles)))
    notes = db.execute(query).scalars().all()

    totals_by_note: dict[int, tuple[int, Decimal]] = {}
    if notes:
        rows = db.execute(
            select(SalesNoteItem.sales_note_id, SalesNoteItem.quantity, OrderItem.unit_price)
            .join(OrderItem, OrderItem.id == SalesNoteItem.order_item_id)
            .where(SalesNoteItem.sales_note_id.in_([note.id for note in notes]))
        ).all()
        for note_id, quantity, unit_price in rows:
            items, amount = totals_by_note.get(note_id, (0, Decimal('0')))
            totals_by_note[note_id] = (items + quantity, amount + Decimal(unit_price) * quantity)

    store_rows = db.execute(
        select(Store.id, Store.name, Store.code).where(Store.id.in_(sorted({note.store_id for note in notes})))
    ).all()
    store_names = {row.id: row for row in store_rows}

    by_store: dict[int, dict] = {}
    note_rows = []
    for note in notes:
        items, amount = totals_by_note.get(note.id, (0, Decimal('0')))
        note_rows.append(
            {
                'id': note.id,
                'store_id': note.store_id,
                'received_at': note.received_at,
                'total_quantity': items,
                'amount': amount,
            }
        )
        store = by_store.get(note.store_id)
        if store is None:
            info = store_names.get(note.store_id)
            store = {
                'store_id': note.store_id,
                'store_name': info.name if info else None,
                'store_code': info.code if info else None,
                'notes': 0,
                'items': 0,
                'amount': Decimal('0'),
            }
            by_store[note.store_id] = store
        store['notes'] += 1
        store['items'] += items
        store['amount'] += amount

    return {
        'month': month,
        'store_id': store_id,
        'total_notes': len(note_rows),
        'total_items': sum(row['total_quantity'] for row in note_rows),
        'total_amount': sum((row['amount'] for row in note_rows), Decimal('0')),
        'stores': sorted(by_store.values(), key=lambda row: row['amount'], reverse=True),
        'notes': note_rows,
    }
