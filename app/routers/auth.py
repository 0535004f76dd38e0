from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db
from app.dependencies import get_client_ip
from app.models import Principal as PrincipalModel
from app.schemas import LoginRequest
from app.security.csrf import verify_csrf
from app.security.passwords import verify_and_upgrade
from app.security.sessions import build_principal, create_web_session, revoke_web_session
from app.services.audit_service import log_audit

logger = logging.getLogger(__name__)

router = APIRouter(tags=['auth'])


@router.get('/healthz')
def healthz():
    return {'status': 'ok'}


@router.post('/login')
def login_submit(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    username = payload.username.strip()
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    principal = db.execute(select(PrincipalModel).where(PrincipalModel.username == username)).scalar_one_or_none()
    valid = False
    if principal and principal.active:
        valid, upgraded_hash = verify_and_upgrade(payload.password, principal.password_hash)
        if valid and upgraded_hash:
            principal.password_hash = upgraded_hash
    if not valid:
        logger.warning('Failed login for %r from %s', username, ip)
        raise HTTPException(status_code=401, detail='Invalid username or password')

    token = create_web_session(db, principal.id, ip=ip, user_agent=user_agent)
    log_audit(
        db,
        actor_principal_id=principal.id,
        entity_type='principal',
        entity_id=principal.id,
        action='AUTH_LOGIN',
        ip=ip,
    )
    current = build_principal(db, principal)
    db.commit()

    response = JSONResponse(
        {
            'id': current.id,
            'username': current.username,
            'system_role': current.system_role.value if current.system_role else None,
            'store_roles': {str(store_id): role.value for store_id, role in current.store_roles.items()},
        }
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/logout')
def logout(request: Request, db: Session = Depends(get_db), _: None = Depends(verify_csrf)):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)

    if principal:
        log_audit(
            db,
            actor_principal_id=principal.id,
            entity_type='principal',
            entity_id=principal.id,
            action='AUTH_LOGOUT',
            ip=get_client_ip(request),
        )
    db.commit()

    response = JSONResponse({'status': 'logged_out'})
    response.delete_cookie(settings.session_cookie_name)
    return response
