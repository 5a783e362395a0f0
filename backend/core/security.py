"""
StockLevels Security Utilities

Client secret hashing and bearer token issuance/validation.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from core.config import get_settings

# pbkdf2 keeps hashing pure-python; secrets are machine generated, not passwords
secret_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_client_secret(secret: str) -> str:
    """Hash a client secret for storage."""
    return secret_context.hash(secret)


def verify_client_secret(plain_secret: str, hashed_secret: str) -> bool:
    """Verify a client secret against its hash."""
    return secret_context.verify(plain_secret, hashed_secret)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    runtime_settings = get_settings()
    to_encode = data.copy()
    if expires_delta is None:
        expires_delta = timedelta(minutes=runtime_settings.access_token_expire_minutes)
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, runtime_settings.jwt_secret, algorithm=runtime_settings.jwt_algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate an access token. Returns None when invalid or expired."""
    runtime_settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            runtime_settings.jwt_secret,
            algorithms=[runtime_settings.jwt_algorithm],
        )
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload


def token_scopes(payload: dict) -> set[str]:
    return set(str(payload.get("scope", "")).split())
