import logging

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import OrderingError
from app.services.price_resolver import PriceResolver
from app.services.provider_factory import get_price_resolver

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_request_price_resolver(db: Session = Depends(get_db)) -> PriceResolver:
    return get_price_resolver(db)


def http_error(exc: OrderingError) -> HTTPException:
    logger.warning('%s on %s %s: %s', type(exc).__name__, exc.entity_type, exc.entity_id, exc.message)
    return HTTPException(status_code=exc.status_code, detail=exc.as_detail())
