import hmac
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import jwt
from passlib.context import CryptContext

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SESSION_ALGORITHM = "HS256"
# Tolerate small clock drift between app instances.
SESSION_LEEWAY_SECONDS = 60
BINDING_CLAIMS = ("warehouse_id", "store_id", "device_id")


@dataclass(frozen=True)
class SessionPrincipal:
    email: str
    role: str
    exp: int
    warehouse_id: Optional[str] = None
    store_id: Optional[str] = None
    device_id: Optional[str] = None

    def to_json(self) -> Dict[str, str]:
        out = {"email": self.email, "role": self.role}
        if self.warehouse_id:
            out["warehouse_id"] = self.warehouse_id
        return out

    def as_dict(self) -> dict:
        return asdict(self)


def _clean_binding(binding: Optional[Dict[str, Optional[str]]]) -> Dict[str, str]:
    out = {}
    for k in BINDING_CLAIMS:
        v = str((binding or {}).get(k) or "").strip()
        if v:
            out[k] = v
    return out


def issue_session_token(
    email: str,
    role: str,
    secret: str,
    *,
    hours: int,
    binding: Optional[Dict[str, Optional[str]]] = None,
    now: Optional[datetime] = None,
) -> str:
    issued = now or datetime.now(timezone.utc)
    payload = {
        "sub": email,
        "email": email,
        "role": role,
        "exp": int((issued + timedelta(hours=hours)).timestamp()),
        **_clean_binding(binding),
    }
    return jwt.encode(payload, secret, algorithm=SESSION_ALGORITHM)


def decode_session_token(token: str, secret: str) -> Optional[SessionPrincipal]:
    """
    Verify signature and expiry. Any tampered, expired or malformed token yields None.
    """
    if not token or not secret:
        return None
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[SESSION_ALGORITHM],
            leeway=SESSION_LEEWAY_SECONDS,
            options={"require": ["exp"]},
        )
    except jwt.InvalidTokenError:
        return None
    email = payload.get("email") or payload.get("sub")
    if not isinstance(email, str) or not email.strip():
        return None
    role = payload.get("role")
    return SessionPrincipal(
        email=email.strip().lower(),
        role=role if isinstance(role, str) else "viewer",
        exp=int(payload["exp"]),
        **{k: payload[k] for k in BINDING_CLAIMS if isinstance(payload.get(k), str)},
    )


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest((a or "").encode("utf-8"), (b or "").encode("utf-8"))


def is_password_hash(value: Optional[str]) -> bool:
    return bool(value) and value.startswith("$2")


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_secret(candidate: str, configured: Optional[str]) -> bool:
    """
    Compare a submitted password against an operator-configured secret.
    The secret may be stored as a bcrypt hash or as plaintext.
    """
    if not configured:
        return False
    if is_password_hash(configured):
        try:
            return _pwd_context.verify(candidate or "", configured)
        except ValueError:
            return False
    return constant_time_equals(candidate or "", configured)
