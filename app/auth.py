from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, Request, status

from app.errors import PermissionDenied
from app.models import StoreRole, SystemRole

RECEIVING_ROLES = {StoreRole.FOUNDER, StoreRole.MANAGER}


@dataclass
class Principal:
    id: int
    username: str
    system_role: SystemRole | None
    store_roles: dict[int, StoreRole] = field(default_factory=dict)
    active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.system_role == SystemRole.ADMIN

    def is_member_of(self, store_id: int) -> bool:
        return store_id in self.store_roles


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_store_member(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin and not principal.store_roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def assert_admin(principal: Principal, *, action: str) -> None:
    if not principal.is_admin:
        raise PermissionDenied(f'Only admins may {action}')


def assert_store_scope(principal: Principal, target_store_id: int) -> None:
    if principal.is_admin:
        return
    if not principal.is_member_of(target_store_id):
        raise PermissionDenied(f'Not a member of store {target_store_id}', entity_type='store', entity_id=target_store_id)


def assert_can_receive(principal: Principal, target_store_id: int) -> None:
    if principal.is_admin:
        return
    # Employees can view their store's notes but not confirm receipt.
    if principal.store_roles.get(target_store_id) not in RECEIVING_ROLES:
        raise PermissionDenied(
            f'Only a founder or manager of store {target_store_id} may confirm receipt',
            entity_type='store',
            entity_id=target_store_id,
        )
