from __future__ import annotations

import unittest

from app.auth import Principal, assert_admin, assert_can_receive, assert_store_scope
from app.errors import (
    ConcurrencyConflict,
    InvalidQuantity,
    NotFoundError,
    OverAllocation,
    PermissionDenied,
    RollbackConflict,
    ValidationError,
)
from app.models import StoreRole, SystemRole
from app.security.csrf import csrf_tokens_match


class CsrfTests(unittest.TestCase):
    def test_matching_tokens(self) -> None:
        self.assertTrue(csrf_tokens_match('abc123', 'abc123'))

    def test_missing_or_mismatched_tokens(self) -> None:
        self.assertFalse(csrf_tokens_match(None, 'abc123'))
        self.assertFalse(csrf_tokens_match('abc123', None))
        self.assertFalse(csrf_tokens_match('abc123', 'abc124'))


class RoleGateTests(unittest.TestCase):
    def setUp(self) -> None:
        self.admin = Principal(id=1, username='admin', system_role=SystemRole.ADMIN)
        self.manager = Principal(id=2, username='manager', system_role=None, store_roles={10: StoreRole.MANAGER})
        self.employee = Principal(id=3, username='clerk', system_role=None, store_roles={10: StoreRole.EMPLOYEE})

    def test_admin_gate(self) -> None:
        assert_admin(self.admin, action='ship pooled items')
        with self.assertRaises(PermissionDenied):
            assert_admin(self.manager, action='ship pooled items')

    def test_store_scope(self) -> None:
        assert_store_scope(self.admin, 99)
        assert_store_scope(self.employee, 10)
        with self.assertRaises(PermissionDenied) as ctx:
            assert_store_scope(self.employee, 11)
        self.assertEqual(ctx.exception.entity_id, 11)

    def test_receiving_roles(self) -> None:
        assert_can_receive(self.admin, 10)
        assert_can_receive(self.manager, 10)
        with self.assertRaises(PermissionDenied):
            assert_can_receive(self.employee, 10)
        with self.assertRaises(PermissionDenied):
            assert_can_receive(self.manager, 11)


class ErrorMappingTests(unittest.TestCase):
    def test_status_codes(self) -> None:
        expected = {
            ValidationError: 400,
            InvalidQuantity: 400,
            PermissionDenied: 403,
            NotFoundError: 404,
            OverAllocation: 409,
            RollbackConflict: 409,
            ConcurrencyConflict: 409,
        }
        for error_type, status_code in expected.items():
            self.assertEqual(error_type('boom').status_code, status_code)

    def test_detail_names_the_entity(self) -> None:
        detail = OverAllocation('too many', entity_type='order_item', entity_id=5).as_detail()
        self.assertEqual(
            detail,
            {'error': 'OverAllocation', 'message': 'too many', 'entity_type': 'order_item', 'entity_id': 5},
        )


if __name__ == '__main__':
    unittest.main()
