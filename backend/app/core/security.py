from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import jwt
from passlib.context import CryptContext

from app.core.settings import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# bcrypt ignores everything past 72 bytes
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError("Password exceeds bcrypt 72-byte limit")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if len(plain_password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def _signing_key() -> str:
    return settings.secret_key or settings.jwt_secret or ""


def create_access_token(
    user_id: int,
    *,
    email: str,
    role: str,
    facility_id: int | None,
    expires_minutes: int | None = None,
) -> str:
    """Staff session token; ``sub`` is the user id, the facility claim is informational only."""
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or settings.access_token_expire_minutes)
    claims: Dict[str, Any] = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "facility_id": facility_id,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(claims, _signing_key(), algorithm=settings.jwt_alg)


def decode_access_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, _signing_key(), algorithms=[settings.jwt_alg])
