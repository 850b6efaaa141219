from __future__ import annotations

from sqlalchemy import select

from spend_fx.core.config import settings
from spend_fx.core.db import SessionLocal, engine
from spend_fx.core.logging import get_logger, log_event
from spend_fx.core.models import Base
from spend_fx.modules.fx.errors import InvalidCurrencyCodeError
from spend_fx.modules.tenants.models import Tenant
from spend_fx.modules.tenants.service import create_tenant

logger = get_logger(__name__)


def bootstrap() -> None:
    import spend_fx.models  # noqa: F401

    if settings.environment == "dev" and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)

    if settings.environment != "dev":
        return

    with SessionLocal() as session:
        if session.scalar(select(Tenant.id).limit(1)) is not None:
            return
        try:
            tenant = create_tenant(session, name="Default")
        except InvalidCurrencyCodeError:
            log_event(
                logger,
                "bootstrap.tenant.skipped",
                base_currency=settings.default_base_currency,
            )
            return
        log_event(logger, "bootstrap.tenant.created", tenant_id=str(tenant.id))
