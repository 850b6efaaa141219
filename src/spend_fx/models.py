"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

from spend_fx.modules.fx.models import ExchangeRateRule, MonthlyExchangeRate  # noqa: F401
from spend_fx.modules.tenants.models import Tenant  # noqa: F401
