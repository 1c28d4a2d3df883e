from .config import POS_PASSWORD_ENV_KEYS, settings
from .security import verify_secret


def _normalize(email: str) -> str:
    return (email or "").strip().lower()


def is_pos_restricted_email(email: str) -> bool:
    return _normalize(email) in POS_PASSWORD_ENV_KEYS


def verify_pos_password(email: str, password: str) -> bool:
    """
    Only the configured password is accepted for a restricted POS account.
    An unset secret denies the login; unrestricted accounts pass without a check.
    """
    normalized = _normalize(email)
    if normalized not in POS_PASSWORD_ENV_KEYS:
        return True
    expected = (settings.pos_passwords.get(normalized) or "").strip()
    if not expected:
        return False
    return verify_secret(password or "", expected)
