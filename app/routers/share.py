from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.dependencies import http_error
from app.errors import OrderingError
from app.services.sales_note_service import get_shared_sales_note

router = APIRouter(prefix='/share', tags=['share'])


@router.get('/sales-notes/{access_token}')
def shared_sales_note(access_token: str, db: Session = Depends(get_db)):
    try:
        return get_shared_sales_note(db, access_token=access_token)
    except OrderingError as exc:
        raise http_error(exc) from exc
