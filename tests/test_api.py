from __future__ import annotations

import unittest
from datetime import datetime, timezone
from unittest import mock

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import get_db
from app.main import app
from app.models import Base, Principal, Product, Store, StoreMember, StoreRole, SystemRole
from app.security import sessions
from app.security.csrf import CSRF_COOKIE_NAME
from app.security.passwords import hash_password


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
        Base.metadata.create_all(engine)
        self.SessionTesting = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

        with self.SessionTesting() as db:
            store = Store(name='North', code='N-1', active=True)
            product = Product(sku='TEE', name='Tee')
            db.add_all([store, product])
            db.flush()
            admin = Principal(username='admin', password_hash=hash_password('adminpass'), system_role=SystemRole.ADMIN)
            owner = Principal(username='owner', password_hash=hash_password('ownerpass'))
            db.add_all([admin, owner])
            db.flush()
            db.add(StoreMember(store_id=store.id, principal_id=owner.id, role=StoreRole.FOUNDER))
            db.commit()
            self.store_id = store.id
            self.product_id = product.id

        def override_get_db():
            db = self.SessionTesting()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        patcher = mock.patch.object(sessions, 'SessionLocal', self.SessionTesting)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(app.dependency_overrides.clear)

    def _client(self, username: str | None = None, password: str | None = None) -> TestClient:
        client = TestClient(app)
        client.get('/healthz')
        client.headers['X-CSRF-Token'] = client.cookies.get(CSRF_COOKIE_NAME)
        if username:
            response = client.post('/login', json={'username': username, 'password': password})
            self.assertEqual(response.status_code, 200, response.text)
        return client


class OrderingApiTests(ApiTestCase):
    def test_requires_a_session(self) -> None:
        response = self._client().get('/store/orders')
        self.assertEqual(response.status_code, 401)

    def test_bad_password(self) -> None:
        client = self._client()
        response = client.post('/login', json={'username': 'owner', 'password': 'wrong'})
        self.assertEqual(response.status_code, 401)

    def test_mutations_require_csrf_header(self) -> None:
        client = self._client('owner', 'ownerpass')
        del client.headers['X-CSRF-Token']
        response = client.post(
            '/store/orders',
            json={'store_id': self.store_id, 'lines': [{'product_id': self.product_id, 'quantity': 2}]},
        )
        self.assertEqual(response.status_code, 403)

    def test_order_to_shipment_round_trip(self) -> None:
        owner = self._client('owner', 'ownerpass')
        admin = self._client('admin', 'adminpass')

        created = owner.post(
            '/store/orders',
            json={'store_id': self.store_id, 'lines': [{'product_id': self.product_id, 'quantity': 10}]},
        )
        self.assertEqual(created.status_code, 201, created.text)
        order = created.json()
        self.assertEqual(order['source_type'], 'frontend')
        item_id = order['items'][0]['id']

        over = admin.post('/management/shipping-pool', json={'order_item_id': item_id, 'quantity': 11})
        self.assertEqual(over.status_code, 409)
        self.assertEqual(over.json()['detail']['error'], 'OverAllocation')
        self.assertEqual(over.json()['detail']['entity_id'], item_id)

        pooled = admin.post('/management/shipping-pool', json={'order_item_id': item_id, 'quantity': 10})
        self.assertEqual(pooled.status_code, 201, pooled.text)

        forbidden = owner.post('/management/shipping-pool/ship', json={'store_ids': [self.store_id]})
        self.assertEqual(forbidden.status_code, 403)

        shipped = admin.post('/management/shipping-pool/ship', json={'store_ids': [self.store_id]})
        self.assertEqual(shipped.status_code, 200, shipped.text)
        body = shipped.json()
        self.assertEqual((body['shipped'], body['failed']), (1, 0))
        note_id = body['results'][0]['sales_note_id']

        detail = owner.get(f'/store/orders/{order["id"]}').json()
        self.assertEqual(detail['items'][0]['status'], 'shipped')
        self.assertEqual(detail['progress'], 'shipped')
        self.assertIsNotNone(detail['fully_shipped_at'])

        token = admin.get(f'/management/sales-notes/{note_id}').json()['access_token']
        shared = TestClient(app).get(f'/share/sales-notes/{token}')
        self.assertEqual(shared.status_code, 200)
        self.assertEqual(shared.headers['Referrer-Policy'], 'no-referrer')

        received = owner.post(f'/store/sales-notes/{note_id}/receive')
        self.assertEqual(received.status_code, 200, received.text)
        self.assertEqual(received.json()['status'], 'received')

        blocked = admin.delete(f'/management/sales-notes/{note_id}')
        self.assertEqual(blocked.status_code, 400)

        month = datetime.now(timezone.utc).strftime('%Y-%m')
        books = owner.get('/store/accounting', params={'month': month})
        self.assertEqual(books.status_code, 200, books.text)
        self.assertEqual((books.json()['total_notes'], books.json()['total_items']), (1, 10))
        self.assertEqual(admin.get('/management/accounting', params={'month': month}).json()['total_notes'], 1)

    def test_accounting_rejects_bad_month_and_non_admins(self) -> None:
        owner = self._client('owner', 'ownerpass')
        bad = owner.get('/store/accounting', params={'month': 'March'})
        self.assertEqual(bad.status_code, 400)
        self.assertEqual(bad.json()['detail']['error'], 'ValidationError')
        forbidden = owner.get('/management/accounting', params={'month': '2026-03'})
        self.assertEqual(forbidden.status_code, 403)


if __name__ == '__main__':
    unittest.main()
