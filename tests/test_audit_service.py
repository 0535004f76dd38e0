from __future__ import annotations

import unittest

from sqlalchemy import select

from app.models import AuditLog, OrderItemStatus, StoreRole
from app.services.audit_service import (
    OrderItemSnapshot,
    SalesNoteSnapshot,
    log_audit,
    snapshot_from_payload,
    snapshot_payload,
)
from app.services.shipping_pool_service import add_to_pool
from db_fixtures import add_principal, add_product, add_store, make_session, order_items, place_order


class AuditSnapshotTests(unittest.TestCase):
    def test_payload_is_tagged_with_kind(self) -> None:
        payload = snapshot_payload(OrderItemSnapshot(quantity=10, shipped_quantity=4, status='partial'))
        self.assertEqual(payload, {'kind': 'order_item', 'quantity': 10, 'shipped_quantity': 4, 'status': 'partial'})

    def test_sales_note_lines_survive_json(self) -> None:
        snapshot = SalesNoteSnapshot(status='shipped', store_id=3, lines=((11, 4), (12, 6)))
        payload = snapshot_payload(snapshot)
        self.assertEqual(payload['lines'], [[11, 4], [12, 6]])
        self.assertEqual(snapshot_from_payload(payload), snapshot)

    def test_unknown_kind_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            snapshot_from_payload({'kind': 'invoice', 'total': 1})

    def test_missing_snapshot(self) -> None:
        self.assertIsNone(snapshot_payload(None))
        self.assertIsNone(snapshot_from_payload(None))


class AuditLogTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.store = add_store(self.db, 'north')
        self.admin = add_principal(self.db, 'admin', admin=True)
        self.founder = add_principal(self.db, 'founder', store_roles={self.store.id: StoreRole.FOUNDER})
        self.product = add_product(self.db, 'TEE')
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_log_audit_stores_typed_snapshots(self) -> None:
        log_audit(
            self.db,
            actor_principal_id=self.admin.id,
            entity_type='order_item',
            entity_id=7,
            action='ORDER_ITEM_STATUS_SET',
            store_id=self.store.id,
            old_value=OrderItemSnapshot(quantity=5, shipped_quantity=0, status=OrderItemStatus.WAITING.value),
            new_value=OrderItemSnapshot(quantity=5, shipped_quantity=0, status=OrderItemStatus.OUT_OF_STOCK.value),
            ip='10.0.0.1',
        )
        self.db.commit()

        row = self.db.execute(select(AuditLog)).scalar_one()
        self.assertEqual(snapshot_from_payload(row.new_value).status, 'out_of_stock')
        self.assertEqual(row.ip, '10.0.0.1')

    def test_order_and_pool_changes_leave_a_trail(self) -> None:
        order = place_order(self.db, self.founder, self.store, (self.product, 3))
        item = order_items(self.db, order)[0]
        add_to_pool(self.db, principal=self.admin, order_item_id=item.id, quantity=2, ip='10.0.0.2')
        self.db.commit()

        rows = self.db.execute(select(AuditLog).order_by(AuditLog.id.asc())).scalars().all()
        self.assertEqual([row.action for row in rows], ['ORDER_CREATED', 'POOL_ENTRY_ADDED'])
        pooled = snapshot_from_payload(rows[1].new_value)
        self.assertEqual((pooled.order_item_id, pooled.quantity), (item.id, 2))
        self.assertEqual(rows[1].actor_principal_id, self.admin.id)


if __name__ == '__main__':
    unittest.main()
