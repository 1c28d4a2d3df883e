from dataclasses import replace
from typing import Optional
import uuid

from fastapi import Cookie, Depends, Header, Request

from .config import settings
from .errors import Forbidden, ServerMisconfigured, Unauthorized
from .logs import json_log
from .roles import can_access_pos, can_move_stock, derive_role, is_admin
from .security import SessionPrincipal, decode_session_token


SESSION_COOKIE_NAME = "session_token"


def get_request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", "")
    if rid:
        return rid
    return (
        (request.headers.get("x-request-id") or "").strip()
        or (request.headers.get("x-correlation-id") or "").strip()
        or uuid.uuid4().hex
    )


def _extract_session_token(authorization: Optional[str], cookie_token: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        if token:
            return token
    if cookie_token:
        return cookie_token
    raise Unauthorized("Missing or invalid Authorization")


def require_signing_secret() -> str:
    secret = settings.signing_secret()
    if not secret:
        json_log("error", "auth.secret_missing", env=settings.env)
        raise ServerMisconfigured("Server configuration error. Please contact the administrator.")
    return secret


def get_principal(
    authorization: Optional[str] = Header(None),
    cookie_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
) -> SessionPrincipal:
    secret = require_signing_secret()
    token = _extract_session_token(authorization, cookie_token)
    principal = decode_session_token(token, secret)
    if principal is None:
        raise Unauthorized("Invalid token")
    # The role claim in the token is informational only.
    return replace(principal, role=derive_role(principal.email))


def require_admin(principal: SessionPrincipal = Depends(get_principal)) -> SessionPrincipal:
    if not is_admin(principal.role):
        raise Forbidden("Admin required")
    return principal


def require_pos_role(principal: SessionPrincipal = Depends(get_principal)) -> SessionPrincipal:
    if not can_access_pos(principal.role):
        raise Forbidden("POS access required")
    return principal


def require_stock_role(principal: SessionPrincipal = Depends(get_principal)) -> SessionPrincipal:
    if not can_move_stock(principal.role):
        raise Forbidden("Stock access required")
    return principal


def bound_warehouse_id(principal: SessionPrincipal) -> Optional[str]:
    """Warehouse a non-admin terminal session is pinned to, if any."""
    if principal.warehouse_id and not is_admin(principal.role):
        return principal.warehouse_id
    return None


def resolve_warehouse_id(principal: SessionPrincipal, requested: Optional[str]) -> Optional[str]:
    """
    A session bound to a warehouse (POS terminal login) always wins for
    non-admins; admins may target any warehouse.
    """
    wanted = (requested or "").strip() or None
    return bound_warehouse_id(principal) or wanted or principal.warehouse_id
