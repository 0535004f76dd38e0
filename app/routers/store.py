from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.auth import Principal, require_store_member
from app.db import get_db
from app.dependencies import get_client_ip, get_request_price_resolver, http_error
from app.errors import OrderingError
from app.models import OrderStatus, SalesNoteStatus
from app.schemas import CreateOrderRequest, OrderItemQuantityRequest, OrderLineRequest, OrderNotesRequest
from app.security.csrf import verify_csrf
from app.services.order_service import (
    OrderLineInput,
    add_order_item,
    create_order,
    get_order_detail,
    list_orders,
    remove_order_item,
    update_order_item_quantity,
    update_order_notes,
)
from app.services.price_resolver import PriceResolver
from app.services.sales_note_service import accounting_summary, get_sales_note_detail, list_sales_notes, mark_received

router = APIRouter(prefix='/store', tags=['store'])


@router.get('/orders')
def orders_list(
    store_id: int | None = None,
    status: OrderStatus | None = None,
    principal: Principal = Depends(require_store_member),
    db: Session = Depends(get_db),
):
    try:
        return list_orders(db, principal=principal, store_id=store_id, status=status)
    except OrderingError as exc:
        raise http_error(exc) from exc


@router.post('/orders', status_code=201)
def orders_create(
    payload: CreateOrderRequest,
    request: Request,
    principal: Principal = Depends(require_store_member),
    db: Session = Depends(get_db),
    price_resolver: PriceResolver = Depends(get_request_price_resolver),
    _: None = Depends(verify_csrf),
):
    try:
        order = create_order(
            db,
            principal=principal,
            store_id=payload.store_id,
            lines=[
                OrderLineInput(product_id=line.product_id, variant_id=line.variant_id, quantity=line.quantity)
                for line in payload.lines
            ],
            price_resolver=price_resolver,
            notes=payload.notes,
            ip=get_client_ip(request),
        )
        db.commit()
        return get_order_detail(db, principal=principal, order_id=order.id)
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc


@router.get('/orders/{order_id}')
def order_detail(
    order_id: int,
    principal: Principal = Depends(require_store_member),
    db: Session = Depends(get_db),
):
    try:
        return get_order_detail(db, principal=principal, order_id=order_id)
    except OrderingError as exc:
        raise http_error(exc) from exc


@router.post('/orders/{order_id}/notes')
def order_notes_update(
    order_id: int,
    payload: OrderNotesRequest,
    principal: Principal = Depends(require_store_member),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        update_order_notes(db, principal=principal, order_id=order_id, notes=payload.notes)
        db.commit()
        return get_order_detail(db, principal=principal, order_id=order_id)
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc


@router.post('/orders/{order_id}/items', status_code=201)
def order_item_add(
    order_id: int,
    payload: OrderLineRequest,
    request: Request,
    principal: Principal = Depends(require_store_member),
    db: Session = Depends(get_db),
    price_resolver: PriceResolver = Depends(get_request_price_resolver),
    _: None = Depends(verify_csrf),
):
    try:
        add_order_item(
            db,
            principal=principal,
            order_id=order_id,
            line=OrderLineInput(product_id=payload.product_id, variant_id=payload.variant_id, quantity=payload.quantity),
            price_resolver=price_resolver,
            ip=get_client_ip(request),
        )
        db.commit()
        return get_order_detail(db, principal=principal, order_id=order_id)
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc


@router.patch('/order-items/{order_item_id}')
def order_item_quantity_update(
    order_item_id: int,
    payload: OrderItemQuantityRequest,
    request: Request,
    principal: Principal = Depends(require_store_member),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        item = update_order_item_quantity(
            db,
            principal=principal,
            order_item_id=order_item_id,
            quantity=payload.quantity,
            ip=get_client_ip(request),
        )
        db.commit()
        return get_order_detail(db, principal=principal, order_id=item.order_id)
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc


@router.delete('/order-items/{order_item_id}', status_code=204)
def order_item_remove(
    order_item_id: int,
    request: Request,
    principal: Principal = Depends(require_store_member),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        remove_order_item(db, principal=principal, order_item_id=order_item_id, ip=get_client_ip(request))
        db.commit()
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc


@router.get('/sales-notes')
def sales_notes_list(
    store_id: int | None = None,
    status: SalesNoteStatus | None = None,
    principal: Principal = Depends(require_store_member),
    db: Session = Depends(get_db),
):
    try:
        return list_sales_notes(db, principal=principal, store_id=store_id, status=status)
    except OrderingError as exc:
        raise http_error(exc) from exc


@router.get('/sales-notes/{sales_note_id}')
def sales_note_detail(
    sales_note_id: int,
    principal: Principal = Depends(require_store_member),
    db: Session = Depends(get_db),
):
    try:
        return get_sales_note_detail(db, principal=principal, sales_note_id=sales_note_id)
    except OrderingError as exc:
        raise http_error(exc) from exc


@router.post('/sales-notes/{sales_note_id}/receive')
def sales_note_receive(
    sales_note_id: int,
    request: Request,
    principal: Principal = Depends(require_store_member),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        mark_received(db, principal=principal, sales_note_id=sales_note_id, ip=get_client_ip(request))
        db.commit()
        return get_sales_note_detail(db, principal=principal, sales_note_id=sales_note_id)
    except OrderingError as exc:
        db.rollback()
        raise http_error(exc) from exc


@router.get('/accounting')
def accounting(
    month: str,
    store_id: int | None = None,
    principal: Principal = Depends(require_store_member),
    db: Session = Depends(get_db),
):
    try:
        return accounting_summary(db, principal=principal, month=month, store_id=store_id)
    except OrderingError as exc:
        raise http_error(exc) from exc
