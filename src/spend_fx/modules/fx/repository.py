from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from spend_fx.modules.fx.models import (
    ExchangeRateRule,
    MonthlyExchangeRate,
    RateSource,
    RuleStatus,
)


class RuleRepository:
    def __init__(self, session: Session):
        self._session = session

    def find_candidate_rules(
        self, *, tenant_id: uuid.UUID | None, currency_code: str, day: date
    ) -> list[ExchangeRateRule]:
        stmt = select(ExchangeRateRule).where(
            ExchangeRateRule.status == RuleStatus.ACTIVE,
            ExchangeRateRule.effective_from <= day,
            or_(ExchangeRateRule.effective_to.is_(None), ExchangeRateRule.effective_to >= day),
        )
        if tenant_id is None:
            stmt = stmt.where(ExchangeRateRule.tenant_id.is_(None))
        else:
            stmt = stmt.where(
                or_(ExchangeRateRule.tenant_id == tenant_id, ExchangeRateRule.tenant_id.is_(None))
            )
        # JSON containment is not portable across backends; filter the (small) set here.
        code = currency_code.upper()
        return [r for r in self._session.scalars(stmt) if r.covers(code)]

    def get(self, rule_id: uuid.UUID) -> ExchangeRateRule | None:
        return self._session.scalar(select(ExchangeRateRule).where(ExchangeRateRule.id == rule_id))

    def list_rules(
        self, *, tenant_id: uuid.UUID | None, status: RuleStatus | None = None
    ) -> list[ExchangeRateRule]:
        stmt = select(ExchangeRateRule)
        if status is not None:
            stmt = stmt.where(ExchangeRateRule.status == status)
        if tenant_id is not None:
            stmt = stmt.where(
                or_(ExchangeRateRule.tenant_id == tenant_id, ExchangeRateRule.tenant_id.is_(None))
            )
        else:
            stmt = stmt.where(ExchangeRateRule.tenant_id.is_(None))
        return list(self._session.scalars(stmt.order_by(ExchangeRateRule.created_at.desc())))


class RateCacheRepository:
    def __init__(self, session: Session):
        self._session = session

    def get(
        self, from_currency: str, to_currency: str, year_month: str, source: RateSource
    ) -> MonthlyExchangeRate | None:
        return self._session.scalar(
            select(MonthlyExchangeRate).where(
                MonthlyExchangeRate.from_currency == from_currency,
                MonthlyExchangeRate.to_currency == to_currency,
                MonthlyExchangeRate.year_month == year_month,
                MonthlyExchangeRate.source == source,
            )
        )

    def upsert(
        self,
        *,
        from_currency: str,
        to_currency: str,
        year_month: str,
        source: RateSource,
        rate: Decimal,
        rate_date: date | None,
    ) -> MonthlyExchangeRate:
        """Insert or overwrite the row for a key; the last writer's rate is kept."""
        row = self.get(from_currency, to_currency, year_month, source)
        if row is None:
            row = MonthlyExchangeRate(
                from_currency=from_currency,
                to_currency=to_currency,
                year_month=year_month,
                source=source,
                rate=rate,
                rate_date=rate_date,
            )
            self._session.add(row)
            try:
                self._session.commit()
            except IntegrityError:
                # Another session inserted the key first; overwrite its row instead.
                self._session.rollback()
                row = self.get(from_currency, to_currency, year_month, source)
                if row is None:
                    raise
                row.rate = rate
                row.rate_date = rate_date
                self._session.commit()
        else:
            row.rate = rate
            row.rate_date = rate_date
            self._session.commit()
        self._session.refresh(row)
        return row

    def insert_if_absent(
        self,
        *,
        from_currency: str,
        to_currency: str,
        year_month: str,
        source: RateSource,
        rate: Decimal,
        rate_date: date | None,
    ) -> tuple[MonthlyExchangeRate, bool]:
        """Insert a row unless the key exists. Returns ``(row, created)``; first writer wins."""
        existing = self.get(from_currency, to_currency, year_month, source)
        if existing:
            return existing, False
        row = MonthlyExchangeRate(
            from_currency=from_currency,
            to_currency=to_currency,
            year_month=year_month,
            source=source,
            rate=rate,
            rate_date=rate_date,
        )
        self._session.add(row)
        try:
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            winner = self.get(from_currency, to_currency, year_month, source)
            if winner is None:
                raise
            return winner, False
        self._session.refresh(row)
        return row, True

    def list_rows(
        self, *, year_month: str, source: RateSource | None = None
    ) -> list[MonthlyExchangeRate]:
        stmt = select(MonthlyExchangeRate).where(MonthlyExchangeRate.year_month == year_month)
        if source is not None:
            stmt = stmt.where(MonthlyExchangeRate.source == source)
        return list(
            self._session.scalars(
                stmt.order_by(MonthlyExchangeRate.from_currency, MonthlyExchangeRate.to_currency)
            )
        )

    def manual_from_currencies(self, *, year_month: str) -> list[str]:
        rows = self._session.scalars(
            select(MonthlyExchangeRate.from_currency)
            .where(
                MonthlyExchangeRate.year_month == year_month,
                MonthlyExchangeRate.source == RateSource.MANUAL,
            )
            .distinct()
        )
        return sorted({r.upper() for r in rows})
