from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from spend_fx.core.config import settings
from spend_fx.core.currencies import normalize_currency
from spend_fx.modules.fx.errors import InvalidCurrencyCodeError
from spend_fx.modules.tenants.models import Tenant


def create_tenant(session: Session, *, name: str, base_currency: str | None = None) -> Tenant:
    raw = base_currency or settings.default_base_currency
    code = normalize_currency(raw)
    if not code:
        raise InvalidCurrencyCodeError(str(raw))
    tenant = Tenant(name=name, base_currency=code)
    session.add(tenant)
    session.commit()
    session.refresh(tenant)
    return tenant


def get_base_currency(session: Session, *, tenant_id: uuid.UUID | None) -> str:
    """The tenant's accounting currency, used as the pivot for derived rates."""
    if tenant_id is not None:
        base = session.scalar(select(Tenant.base_currency).where(Tenant.id == tenant_id))
        if base:
            return base.upper()
    return settings.default_base_currency.upper()
