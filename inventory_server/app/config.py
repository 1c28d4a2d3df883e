import os
import secrets
from typing import Dict, List, Optional

# Shared POS accounts that must present the operator-configured password at login.
# Each maps to the env var holding its secret (plaintext or a bcrypt hash).
POS_PASSWORD_ENV_KEYS: Dict[str, str] = {
    "cashier@extremedeptkidz.com": "POS_PASSWORD_CASHIER_MAIN_STORE",
    "maintown_cashier@extremedeptkidz.com": "POS_PASSWORD_MAIN_TOWN",
}

MIN_SESSION_SECRET_LENGTH = 16

# "Main Store", seeded by the initial migration.
DEFAULT_WAREHOUSE_ID = "00000000-0000-0000-0000-000000000001"


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = (os.getenv("APP_ENV", "local").strip() or "local").lower()
        self.db_url = os.getenv("DATABASE_URL", "postgresql://localhost/inventory")
        self.db_pool_min_size = _env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max_size = _env_int("DB_POOL_MAX_SIZE", 10)

        # SESSION_SECRET wins; JWT_SECRET is accepted for older deployments.
        raw_secret = (os.getenv("SESSION_SECRET") or os.getenv("JWT_SECRET") or "").strip()
        self.session_secret: Optional[str] = raw_secret if len(raw_secret) >= MIN_SESSION_SECRET_LENGTH else None
        self.session_hours = max(1, _env_int("SESSION_HOURS", 24 * 7))

        admin_raw = ",".join(
            os.getenv(k, "") for k in ("ADMIN_EMAILS", "SUPER_ADMIN_EMAILS", "ALLOWED_ADMIN_EMAILS")
        )
        self.admin_emails = {e.lower() for e in self._split_csv(admin_raw, default=[])}

        self.pos_passwords: Dict[str, Optional[str]] = {
            email: os.getenv(env_key) for email, env_key in POS_PASSWORD_ENV_KEYS.items()
        }

        self.idempotency_ttl_seconds = max(1, _env_int("IDEMPOTENCY_TTL_SECONDS", 5 * 60))
        self.idempotency_max_entries = max(1, _env_int("IDEMPOTENCY_MAX_ENTRIES", 500))

        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        self._dev_secret: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.env in {"production", "prod"}

    @property
    def is_local(self) -> bool:
        return self.env in {"local", "dev"}

    def signing_secret(self) -> Optional[str]:
        """
        Key used to sign and verify session tokens.

        Production never falls back: None means the server is misconfigured and
        callers must answer 503. Elsewhere an ephemeral per-process key keeps local
        development working; sessions then do not survive a restart.
        """
        if self.session_secret:
            return self.session_secret
        if self.is_production:
            return None
        if self._dev_secret is None:
            self._dev_secret = secrets.token_urlsafe(32)
        return self._dev_secret

    def validate(self) -> List[str]:
        problems = []
        if not self.session_secret:
            problems.append(
                f"SESSION_SECRET (or JWT_SECRET) missing or shorter than {MIN_SESSION_SECRET_LENGTH} chars"
            )
        for email, env_key in POS_PASSWORD_ENV_KEYS.items():
            if not (self.pos_passwords.get(email) or "").strip():
                problems.append(f"{env_key} not set; login for {email} is disabled")
        if self.db_pool_min_size > self.db_pool_max_size:
            problems.append("DB_POOL_MIN_SIZE exceeds DB_POOL_MAX_SIZE")
        return problems


settings = Settings()
