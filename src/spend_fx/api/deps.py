from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from spend_fx.core.logging import set_principal_context
from spend_fx.core.security import decode_access_token

bearer_scheme = HTTPBearer(auto_error=False)


class PrincipalRole(str, enum.Enum):
    EMPLOYEE = "employee"
    APPROVER = "approver"
    FINANCE = "finance"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


@dataclass(frozen=True)
class Principal:
    user_id: str
    tenant_id: uuid.UUID | None
    role: PrincipalRole


def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    token = credentials.credentials if credentials else None
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    claims = decode_access_token(token)
    if not claims:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        role = PrincipalRole(str(claims.get("role") or "").lower())
        raw_tenant = claims.get("tenant_id")
        tenant_id = uuid.UUID(str(raw_tenant)) if raw_tenant else None
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from e

    set_principal_context(user_id=claims["sub"], tenant_id=str(tenant_id) if tenant_id else None)
    return Principal(user_id=claims["sub"], tenant_id=tenant_id, role=role)


def require_role(*roles: PrincipalRole):
    def _checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions"
            )
        return principal

    return _checker


# Rule and manual-rate mutations.
require_finance = require_role(
    PrincipalRole.FINANCE, PrincipalRole.ADMIN, PrincipalRole.SUPER_ADMIN
)
