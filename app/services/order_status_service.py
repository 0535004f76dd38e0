from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from app.errors import InvalidQuantity
from app.models import OrderItem, OrderItemStatus

EXCEPTION_STATUSES = frozenset({OrderItemStatus.OUT_OF_STOCK, OrderItemStatus.DISCONTINUED})


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def compute_item_status(quantity: int, shipped_quantity: int, current_status: OrderItemStatus) -> OrderItemStatus:
    """Derive an order item's status from its quantities.

    ``out_of_stock`` and ``discontinued`` are set by staff and survive any
    recompute; only an explicit status change moves an item out of them.
    """
    if current_status in EXCEPTION_STATUSES:
        return current_status
    return quantity_status(quantity, shipped_quantity)


def quantity_status(quantity: int, shipped_quantity: int) -> OrderItemStatus:
    if shipped_quantity >= quantity:
        return OrderItemStatus.SHIPPED
    if shipped_quantity > 0:
        return OrderItemStatus.PARTIAL
    return OrderItemStatus.WAITING


def compute_order_status(item_statuses: Iterable[OrderItemStatus]) -> bool:
    """True when the order has items and every one of them is shipped."""
    statuses = list(item_statuses)
    if not statuses:
        return False
    return all(item_status == OrderItemStatus.SHIPPED for item_status in statuses)


def derive_order_progress(items: Iterable[tuple[OrderItemStatus, int]]) -> str:
    """Order-level progress label from ``(status, shipped_quantity)`` pairs."""
    rows = list(items)
    if not rows:
        return OrderItemStatus.WAITING.value
    if compute_order_status(item_status for item_status, _ in rows):
        return OrderItemStatus.SHIPPED.value
    if any(shipped > 0 for _, shipped in rows):
        return OrderItemStatus.PARTIAL.value
    return OrderItemStatus.WAITING.value


def apply_shipped_quantity(item: OrderItem, shipped_quantity: int) -> OrderItemStatus:
    if shipped_quantity < 0 or shipped_quantity > item.quantity:
        raise InvalidQuantity(
            f'Order item {item.id} shipped quantity {shipped_quantity} is outside 0..{item.quantity}',
            entity_type='order_item',
            entity_id=item.id,
        )
    item.shipped_quantity = shipped_quantity
    item.status = compute_item_status(item.quantity, shipped_quantity, item.status)
    item.updated_at = _now()
    return item.status


def increment_shipped(item: OrderItem, delta: int) -> OrderItemStatus:
    if delta <= 0:
        raise InvalidQuantity(
            f'Shipped quantity increment for order item {item.id} must be positive, got {delta}',
            entity_type='order_item',
            entity_id=item.id,
        )
    new_shipped = item.shipped_quantity + delta
    if new_shipped > item.quantity:
        raise InvalidQuantity(
            f'Order item {item.id} would ship {new_shipped} of {item.quantity} ordered',
            entity_type='order_item',
            entity_id=item.id,
        )
    return apply_shipped_quantity(item, new_shipped)
