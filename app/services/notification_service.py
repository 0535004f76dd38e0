from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.models import Notification, Principal, SalesNote, StoreMember, SystemRole

logger = logging.getLogger(__name__)


def _store_member_ids(db: Session, *, store_id: int) -> list[int]:
    return db.execute(
        select(StoreMember.principal_id)
        .join(Principal, Principal.id == StoreMember.principal_id)
        .where(StoreMember.store_id == store_id, Principal.active.is_(True))
        .order_by(StoreMember.principal_id.asc())
    ).scalars().all()


def _admin_ids(db: Session) -> list[int]:
    return db.execute(
        select(Principal.id)
        .where(Principal.system_role == SystemRole.ADMIN, Principal.active.is_(True))
        .order_by(Principal.id.asc())
    ).scalars().all()


def _notify(db: Session, *, principal_ids: list[int], store_id: int, title: str, message: str, link: str) -> int:
    for principal_id in principal_ids:
        db.add(
            Notification(
                principal_id=principal_id,
                store_id=store_id,
                title=title,
                message=message,
                link=link,
            )
        )
    return len(principal_ids)


def notify_sales_note_shipped(db: Session, *, note: SalesNote, line_count: int, total_quantity: int) -> int:
    if not settings.notify_on_shipment:
        return 0
    sent = _notify(
        db,
        principal_ids=_store_member_ids(db, store_id=note.store_id),
        store_id=note.store_id,
        title='New shipment',
        message=f'Sales note #{note.id} shipped {total_quantity} units across {line_count} lines.',
        link=f'/store/sales-notes/{note.id}',
    )
    logger.info('Queued %s shipment notifications for sales note %s', sent, note.id)
    return sent


def notify_sales_note_received(db: Session, *, note: SalesNote) -> int:
    if not settings.notify_on_receipt:
        return 0
    sent = _notify(
        db,
        principal_ids=_admin_ids(db),
        store_id=note.store_id,
        title='Shipment received',
        message=f'Store {note.store_id} confirmed receipt of sales note #{note.id}.',
        link=f'/management/sales-notes/{note.id}',
    )
    logger.info('Queued %s receipt notifications for sales note %s', sent, note.id)
    return sent
