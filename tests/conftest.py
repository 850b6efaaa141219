from __future__ import annotations

import os

import pytest

# Set env before any spend_fx imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.spend_fx_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("DEFAULT_BASE_CURRENCY", "CNY")


@pytest.fixture(autouse=True)
def _reset_db_and_provider() -> None:
    import spend_fx.models  # noqa: F401
    from spend_fx.core.db import engine
    from spend_fx.core.models import Base
    from spend_fx.modules.fx import provider as provider_mod

    provider_mod._provider = None

    # Reset DB schema
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield

    provider_mod._provider = None
