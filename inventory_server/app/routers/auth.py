from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional

from ..config import settings
from ..deps import SESSION_COOKIE_NAME, get_principal, require_signing_secret
from ..errors import Unauthorized, ValidationFailed
from ..logs import json_log
from ..pos_passwords import is_pos_restricted_email, verify_pos_password
from ..roles import derive_role
from ..security import SessionPrincipal, issue_session_token

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginIn(BaseModel):
    email: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    warehouse_id: Optional[str] = None
    store_id: Optional[str] = None
    device_id: Optional[str] = None


def _set_session_cookie(resp: Response, token: str) -> None:
    resp.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=not settings.is_local,
        max_age=settings.session_hours * 60 * 60,
        path="/",
    )


@router.post("/login")
def login(data: LoginIn):
    email = (data.email or data.username or "").strip().lower()
    if not email:
        raise ValidationFailed("Email is required")
    secret = require_signing_secret()

    if is_pos_restricted_email(email) and not verify_pos_password(email, data.password or ""):
        json_log("warning", "auth.login_denied", email=email, reason="pos_password")
        raise Unauthorized("Invalid email or password")

    role = derive_role(email)
    binding = {
        "warehouse_id": data.warehouse_id,
        "store_id": data.store_id,
        "device_id": data.device_id,
    }
    token = issue_session_token(email, role, secret, hours=settings.session_hours, binding=binding)
    user = {"email": email, "role": role}
    wid = (data.warehouse_id or "").strip()
    if wid:
        user["warehouse_id"] = wid

    json_log("info", "auth.login", email=email, role=role, warehouse_id=wid or None)
    resp = JSONResponse({"user": user, "token": token})
    _set_session_cookie(resp, token)
    return resp


@router.post("/logout", status_code=204)
def logout():
    resp = Response(status_code=204)
    resp.delete_cookie(key=SESSION_COOKIE_NAME, path="/")
    return resp


@router.get("/user")
def current_user(principal: SessionPrincipal = Depends(get_principal)):
    return principal.to_json()
