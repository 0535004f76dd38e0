from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import ClassVar

from sqlalchemy.orm import Session

from app.models import AuditLog, Order, OrderItem, SalesNote, ShippingPoolEntry


@dataclass(frozen=True)
class OrderItemSnapshot:
    kind: ClassVar[str] = 'order_item'

    quantity: int
    shipped_quantity: int
    status: str

    @classmethod
    def of(cls, item: OrderItem) -> OrderItemSnapshot:
        return cls(quantity=item.quantity, shipped_quantity=item.shipped_quantity, status=item.status.value)


@dataclass(frozen=True)
class OrderSnapshot:
    kind: ClassVar[str] = 'order'

    status: str
    fully_shipped: bool

    @classmethod
    def of(cls, order: Order) -> OrderSnapshot:
        return cls(status=order.status.value, fully_shipped=order.fully_shipped_at is not None)


@dataclass(frozen=True)
class SalesNoteSnapshot:
    kind: ClassVar[str] = 'sales_note'

    status: str
    store_id: int
    lines: tuple[tuple[int, int], ...] = ()

    @classmethod
    def of(cls, note: SalesNote, lines: list[tuple[int, int]] | None = None) -> SalesNoteSnapshot:
        return cls(status=note.status.value, store_id=note.store_id, lines=tuple(tuple(line) for line in lines or []))


@dataclass(frozen=True)
class PoolEntrySnapshot:
    kind: ClassVar[str] = 'shipping_pool'

    order_item_id: int
    store_id: int
    quantity: int

    @classmethod
    def of(cls, entry: ShippingPoolEntry) -> PoolEntrySnapshot:
        return cls(order_item_id=entry.order_item_id, store_id=entry.store_id, quantity=entry.quantity)


AuditSnapshot = OrderItemSnapshot | OrderSnapshot | SalesNoteSnapshot | PoolEntrySnapshot

SNAPSHOT_TYPES: dict[str, type] = {
    snapshot_type.kind: snapshot_type
    for snapshot_type in (OrderItemSnapshot, OrderSnapshot, SalesNoteSnapshot, PoolEntrySnapshot)
}


def snapshot_payload(snapshot: AuditSnapshot | None) -> dict | None:
    if snapshot is None:
        return None
    payload = asdict(snapshot)
    if 'lines' in payload:
        payload['lines'] = [list(line) for line in payload['lines']]
    return {'kind': snapshot.kind, **payload}


def snapshot_from_payload(payload: dict | None) -> AuditSnapshot | None:
    if payload is None:
        return None
    data = dict(payload)
    kind = data.pop('kind', None)
    snapshot_type = SNAPSHOT_TYPES.get(kind)
    if snapshot_type is None:
        raise ValueError(f'Unknown audit snapshot kind: {kind!r}')
    if 'lines' in data:
        data['lines'] = tuple(tuple(line) for line in data['lines'])
    return snapshot_type(**data)


def log_audit(
    db: Session,
    *,
    actor_principal_id: int | None,
    entity_type: str,
    entity_id: int,
    action: str,
    store_id: int | None = None,
    old_value: AuditSnapshot | None = None,
    new_value: AuditSnapshot | None = None,
    ip: str | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_principal_id=actor_principal_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            old_value=snapshot_payload(old_value),
            new_value=snapshot_payload(new_value),
            store_id=store_id,
            ip=ip,
        )
    )
