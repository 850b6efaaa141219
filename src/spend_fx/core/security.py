from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from spend_fx.core.config import settings

# Tokens are minted by the identity service; this service only verifies them.
ALGORITHM = "HS256"


def create_access_token(
    *,
    subject: str,
    tenant_id: str | None,
    role: str,
    expires_minutes: int = 60,
) -> str:
    expire = datetime.now(UTC) + timedelta(minutes=expires_minutes)
    payload: dict[str, Any] = {"sub": subject, "tenant_id": tenant_id, "role": role, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any] | None:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if not isinstance(payload.get("sub"), str):
        return None
    return payload
