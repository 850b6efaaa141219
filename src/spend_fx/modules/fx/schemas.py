from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from spend_fx.modules.fx.models import RateSource, RuleSource, RuleStatus


class RuleCreate(BaseModel):
    # Required fields are checked by the service so every failure is a RuleValidationError.
    description: str | None = None
    source: str | None = None
    currencies: list[str] = Field(default_factory=list)
    fixed_rates: dict[str, Decimal] | None = None
    effective_from: date | None = None
    effective_to: date | None = None
    fallback_rule_id: uuid.UUID | None = None
    status: str = RuleStatus.DRAFT.value
    priority: int = 0
    global_rule: bool = False


class RuleUpdate(BaseModel):
    description: str | None = None
    source: str | None = None
    currencies: list[str] | None = None
    fixed_rates: dict[str, Decimal] | None = None
    effective_from: date | None = None
    effective_to: date | None = None
    fallback_rule_id: uuid.UUID | None = None
    status: str | None = None
    priority: int | None = None


class RuleOut(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID | None
    description: str
    source: RuleSource
    currencies: list[str]
    fixed_rates: dict[str, str] | None
    effective_from: date
    effective_to: date | None
    fallback_rule_id: uuid.UUID | None
    status: RuleStatus
    priority: int
    created_by: str | None
    created_at: datetime
    updated_at: datetime


class ResolvedRateOut(BaseModel):
    from_currency: str
    to_currency: str
    rate: Decimal
    source: str
    timestamp: datetime
    year_month: str
    rule_id: uuid.UUID | None = None


class BatchEntryOut(BaseModel):
    rate: Decimal
    source: str


class BatchRatesOut(BaseModel):
    target: str
    date: date
    rates: dict[str, BatchEntryOut]
    timestamp: datetime


class CurrencyOut(BaseModel):
    code: str
    symbol: str
    display_name: str
    decimal_precision: int


class ManualRateUpsert(BaseModel):
    from_currency: str
    to_currency: str
    rate: Decimal
    year_month: str | None = Field(default=None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")


class CustomCurrencyRates(BaseModel):
    currency: str
    rate_to_base: Decimal
    rate_to_usd: Decimal | None = None
    year_month: str | None = Field(default=None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")


class MonthlyRateOut(BaseModel):
    id: uuid.UUID
    from_currency: str
    to_currency: str
    year_month: str
    source: RateSource
    rate: Decimal
    rate_date: date | None
    created_at: datetime
    updated_at: datetime
