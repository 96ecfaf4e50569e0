from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import jwt

from tablebook.core.config import get_settings

STAFF_ROLES = {"staff", "admin"}


def create_access_token(subject: str, role: str, *, expires_minutes: int | None = None) -> str:
    """Sign a staff bearer token carrying a ``role`` claim.

    Staff identities live outside this service; the token is the whole contract.
    """
    settings = get_settings()
    issued = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or settings.access_token_exp_minutes)
    claims = {"sub": subject, "role": role, "iat": issued, "exp": issued + lifetime}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    settings = get_settings()
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


def hash_client_ip(ip: str) -> str:
    settings = get_settings()
    return hashlib.sha256((settings.secret_key + "|" + (ip or "unknown")).encode("utf-8")).hexdigest()[:32]


def pos_signature(secret: str, notification_url: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), notification_url.encode("utf-8") + body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_pos_signature(secret: str, notification_url: str, body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(pos_signature(secret, notification_url, body), signature)
