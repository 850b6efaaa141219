from __future__ import annotations

import enum
import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    Enum,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from spend_fx.core.models import Base, OptionalTenantOwned, Timestamped, UUIDPrimaryKey


class RuleSource(str, enum.Enum):
    FIXED = "fixed"
    MANUAL = "manual"
    API = "api"


class RuleStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class RateSource(str, enum.Enum):
    MANUAL = "manual"
    API = "api"
    MANUAL_CALCULATED = "manual_calculated"


class ExchangeRateRule(UUIDPrimaryKey, OptionalTenantOwned, Timestamped, Base):
    __tablename__ = "fx_rate_rule"
    __table_args__ = (
        CheckConstraint(
            "effective_to IS NULL OR effective_from <= effective_to",
            name="ck_fx_rate_rule_window",
        ),
    )

    description: Mapped[str] = mapped_column(Text)
    source: Mapped[RuleSource] = mapped_column(Enum(RuleSource, native_enum=False))
    currencies: Mapped[list] = mapped_column(JSON, default=list)
    # "FROM/TO" -> decimal string
    fixed_rates: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    effective_from: Mapped[date] = mapped_column(Date, index=True)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    fallback_rule_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    status: Mapped[RuleStatus] = mapped_column(
        Enum(RuleStatus, native_enum=False), index=True, default=RuleStatus.DRAFT
    )
    priority: Mapped[int] = mapped_column(Integer, default=0)
    created_by: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def covers(self, currency: str) -> bool:
        return currency in {str(c).upper() for c in (self.currencies or [])}

    def is_effective_on(self, day: date) -> bool:
        if self.effective_from > day:
            return False
        return self.effective_to is None or day <= self.effective_to

    def fixed_rate_for(self, from_currency: str, to_currency: str) -> Decimal | None:
        if self.source != RuleSource.FIXED or not self.fixed_rates:
            return None
        raw = self.fixed_rates.get(pair_key(from_currency, to_currency))
        if raw is None:
            return None
        return Decimal(str(raw))


class MonthlyExchangeRate(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "fx_monthly_rate"
    __table_args__ = (
        UniqueConstraint(
            "from_currency",
            "to_currency",
            "year_month",
            "source",
            name="uq_fx_monthly_rate_key",
        ),
    )

    from_currency: Mapped[str] = mapped_column(String(3), index=True)
    to_currency: Mapped[str] = mapped_column(String(3), index=True)
    year_month: Mapped[str] = mapped_column(String(7), index=True)
    source: Mapped[RateSource] = mapped_column(Enum(RateSource, native_enum=False))
    rate: Mapped[Decimal] = mapped_column(Numeric(24, 12))
    rate_date: Mapped[date | None] = mapped_column(Date, nullable=True)


def pair_key(from_currency: str, to_currency: str) -> str:
    return f"{from_currency.upper()}/{to_currency.upper()}"


def year_month_of(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"
