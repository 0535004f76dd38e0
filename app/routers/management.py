from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.auth import Principal, require_admin
from app.db import get_db
from app.dependencies import get_client_ip, http_error
from app.errors import OrderingError
from app.models import OrderStatus, SalesNoteStatus
from app.schemas import CreateDraftNotesRequest, OrderItemStatusRequest, PoolEntryRequest, ShipStoresRequest
from app.security.csrf import verify_csrf
from app.services.order_service import get_order_detail, list_orders, set_order_item_exception_status, toggle_order_lock
from app.services.sales_note_service import (
    DraftSelection,
    accounting_summary,
    create_draft_sales_notes,
    delete_sales_note,
    get_sales_note_detail,
    list_sales_notes,
    ship_sales_note,
    ship_store_groups,
)
from app.services.shipping_pool_service import add_to_pool, get_pool_overview, remove_from_pool

router = APIRouter(prefix='/management', tags=['management'])
admin_access = require_admin


@router.get('/orders')
def orders_list(
    store_id: int | None = None,
    status: OrderStatus | None = None,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return list_orders(db, principal=principal, store_id=store_id, status=status)


@router.post('/orders/{order_id}/lock')
def order_lock_toggle(
    order_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        toggle_order_lock(db, principal=principal, order_id=order_id, ip=get_client_ip(request))
        db.commit()
        return get_order_detail(db, principal=principal, order_id=order_id)
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc


@router.post('/order-items/{order_item_id}/status')
def order_item_status_set(
    order_item_id: int,
    payload: OrderItemStatusRequest,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        item = set_order_item_exception_status(
            db,
            principal=principal,
            order_item_id=order_item_id,
            status=payload.status,
            ip=get_client_ip(request),
        )
        db.commit()
        return get_order_detail(db, principal=principal, order_id=item.order_id)
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc


@router.get('/shipping-pool')
def shipping_pool_page(
    store_id: int | None = None,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return get_pool_overview(db, store_id=store_id)


@router.post('/shipping-pool', status_code=201)
def shipping_pool_add(
    payload: PoolEntryRequest,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        entry = add_to_pool(
            db,
            principal=principal,
            order_item_id=payload.order_item_id,
            quantity=payload.quantity,
            ip=get_client_ip(request),
        )
        db.commit()
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return {
        'id': entry.id,
        'order_item_id': entry.order_item_id,
        'store_id': entry.store_id,
        'quantity': entry.quantity,
    }


@router.delete('/shipping-pool/{pool_entry_id}', status_code=204)
def shipping_pool_remove(
    pool_entry_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        remove_from_pool(db, principal=principal, pool_entry_id=pool_entry_id, ip=get_client_ip(request))
        db.commit()
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc


@router.post('/shipping-pool/ship')
def shipping_pool_ship(
    payload: ShipStoresRequest,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    # Each store commits on its own; the response reports every store.
    try:
        results = ship_store_groups(
            db,
            principal=principal,
            store_ids=payload.store_ids,
            notes=payload.notes,
            expected_entry_ids_by_store=payload.expected_entry_ids,
            ip=get_client_ip(request),
        )
    except OrderingError as exc:
        raise http_error(exc) from exc
    return {
        'shipped': sum(1 for result in results if result.ok),
        'failed': sum(1 for result in results if not result.ok),
        'results': [asdict(result) for result in results],
    }


@router.get('/sales-notes')
def sales_notes_list(
    store_id: int | None = None,
    status: SalesNoteStatus | None = None,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return list_sales_notes(db, principal=principal, store_id=store_id, status=status)


@router.get('/sales-notes/{sales_note_id}')
def sales_note_detail(
    sales_note_id: int,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    try:
        return get_sales_note_detail(db, principal=principal, sales_note_id=sales_note_id)
    except OrderingError as exc:
        raise http_error(exc) from exc


@router.post('/sales-notes/drafts', status_code=201)
def sales_note_drafts_create(
    payload: CreateDraftNotesRequest,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        notes = create_draft_sales_notes(
            db,
            principal=principal,
            selections=[
                DraftSelection(order_item_id=selection.order_item_id, quantity=selection.quantity)
                for selection in payload.selections
            ],
            notes=payload.notes,
            ip=get_client_ip(request),
        )
        db.commit()
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return [{'id': note.id, 'store_id': note.store_id, 'status': note.status.value} for note in notes]


@router.post('/sales-notes/{sales_note_id}/ship')
def sales_note_ship(
    sales_note_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        result = ship_sales_note(db, principal=principal, sales_note_id=sales_note_id, ip=get_client_ip(request))
        db.commit()
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return asdict(result)


@router.delete('/sales-notes/{sales_note_id}')
def sales_note_delete(
    sales_note_id: int,
    request: Request,
    restore_to_pool: bool = False,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        summary = delete_sales_note(
            db,
            principal=principal,
            sales_note_id=sales_note_id,
            restore_to_pool=restore_to_pool,
            ip=get_client_ip(request),
        )
        db.commit()
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return summary


@router.get('/accounting')
def accounting(
    month: str,
    store_id: int | None = None,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    try:
        return accounting_summary(db, principal=principal, month=month, store_id=store_id)
    except OrderingError as exc:
        raise http_error(exc) from exc
