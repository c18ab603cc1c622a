"""Bearer tokens. The auth service signs them with the shared SECRET_KEY; this API only verifies them."""
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from .config import settings

ALGORITHM = "HS256"
TOKEN_TTL = timedelta(days=7)
# Older clients carry the user id as userId instead of sub
SUBJECT_CLAIMS = ("sub", "userId")


def create_access_token(claims: dict, ttl: timedelta = TOKEN_TTL) -> str:
    payload = {**claims, "exp": datetime.now(timezone.utc) + ttl}
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None


def token_subject(token: str) -> str | None:
    """Owner id of a valid token; None for a bad signature, an expired token or a token without a subject."""
    payload = decode_access_token(token) or {}
    for claim in SUBJECT_CLAIMS:
        if payload.get(claim):
            return str(payload[claim])
    return None
