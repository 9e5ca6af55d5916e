"""
Password hashing and JWT issuing for CRM users.

Tokens carry the user id in ``sub`` and a ``type`` claim (``access`` or
``refresh``). HS* algorithms sign with JWT_SECRET_KEY; RS*/ES* read a PEM
key pair from the configured paths.
"""

from datetime import datetime, timedelta, timezone
from functools import lru_cache

from jose import jwt, JWTError
from passlib.context import CryptContext

from crm.config import settings

ACCESS = "access"
REFRESH = "refresh"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


@lru_cache(maxsize=2)
def _read_pem(path: str) -> str:
    with open(path, "r") as f:
        return f.read()


def _key(for_signing: bool) -> str:
    if not settings.JWT_ALGORITHM.startswith(("RS", "ES")):
        return settings.JWT_SECRET_KEY
    path = settings.JWT_PRIVATE_KEY_PATH if for_signing else settings.JWT_PUBLIC_KEY_PATH
    if not path:
        raise RuntimeError(f"{settings.JWT_ALGORITHM} requires a PEM key path")
    return _read_pem(path)


def _issue(subject: str, token_type: str, lifetime: timedelta, **claims) -> str:
    now = datetime.now(timezone.utc)
    claims.update(sub=str(subject), type=token_type, iat=now, exp=now + lifetime)
    return jwt.encode(claims, _key(for_signing=True), algorithm=settings.JWT_ALGORITHM)


def create_access_token(user_id: str, role: str, email: str) -> str:
    return _issue(
        user_id,
        ACCESS,
        timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        role=role,
        email=email,
    )


def create_refresh_token(user_id: str) -> str:
    return _issue(user_id, REFRESH, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))


def decode_token(token: str, expected_type: str) -> dict:
    """Verify signature, expiry and token type. Raises JWTError on failure."""
    payload = jwt.decode(token, _key(for_signing=False), algorithms=[settings.JWT_ALGORITHM])
    if payload.get("type") != expected_type:
        raise JWTError(f"Not an {expected_type} token")
    return payload


def verify_access_token(token: str) -> dict:
    return decode_token(token, ACCESS)


def verify_refresh_token(token: str) -> dict:
    return decode_token(token, REFRESH)
