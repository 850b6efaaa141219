from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from spend_fx.core.currencies import is_system_currency, normalize_currency
from spend_fx.core.logging import get_logger, log_event, monotonic_ms
from spend_fx.modules.fx.errors import (
    InvalidCurrencyCodeError,
    RateUnavailableForPeriodError,
    RuleNotFoundError,
)
from spend_fx.modules.fx.models import (
    ExchangeRateRule,
    MonthlyExchangeRate,
    RateSource,
    year_month_of,
)
from spend_fx.modules.fx.provider import MarketRateProvider, get_provider
from spend_fx.modules.fx.repository import RateCacheRepository, RuleRepository
from spend_fx.modules.fx.resolver import RuleResolver
from spend_fx.modules.tenants.service import get_base_currency

logger = get_logger(__name__)

# Derived rates keep 12 fractional digits; display rounding happens elsewhere.
RATE_QUANTUM = Decimal("0.000000000001")

SOURCE_IDENTITY = "identity"
SOURCE_FIXED = "fixed"


@dataclass(frozen=True)
class ResolvedRate:
    from_currency: str
    to_currency: str
    rate: Decimal
    source: str
    timestamp: datetime
    year_month: str
    rule_id: uuid.UUID | None = None


def quantize_rate(value: Decimal) -> Decimal:
    return value.quantize(RATE_QUANTUM)


def require_currency(raw: str) -> str:
    code = normalize_currency(raw)
    if not code:
        raise InvalidCurrencyCodeError(str(raw))
    return code


class ConversionEngine:
    def __init__(
        self,
        *,
        rules: RuleRepository,
        cache: RateCacheRepository,
        provider: MarketRateProvider,
        base_currency: str,
        tenant_id: uuid.UUID | None = None,
        max_fallback_depth: int | None = None,
    ):
        self._cache = cache
        self._provider = provider
        self._base_currency = base_currency.upper()
        self._tenant_id = tenant_id
        self._resolver = RuleResolver(rules, max_fallback_depth=max_fallback_depth)

    @property
    def base_currency(self) -> str:
        return self._base_currency

    def resolve(self, from_currency: str, to_currency: str, day: date) -> ResolvedRate:
        src = require_currency(from_currency)
        dst = require_currency(to_currency)
        year_month = year_month_of(day)
        start = time.monotonic()

        if src == dst:
            return self._result(src, dst, Decimal("1"), SOURCE_IDENTITY, year_month)

        try:
            rule = self._resolver.select_rule(
                tenant_id=self._tenant_id, from_currency=src, to_currency=dst, day=day
            )
        except RuleNotFoundError:
            rule = None

        resolved = self._resolve_through_rules(rule, src, dst, day, year_month)
        if resolved is None:
            resolved = self._try_market(src, dst, day, year_month)
        if resolved is None:
            log_event(
                logger,
                "fx.resolve.unavailable",
                from_currency=src,
                to_currency=dst,
                year_month=year_month,
                rule_id=str(rule.id) if rule else None,
                duration_ms=monotonic_ms(start),
            )
            raise RateUnavailableForPeriodError(src, dst, year_month)

        log_event(
            logger,
            "fx.resolve.success",
            from_currency=src,
            to_currency=dst,
            year_month=year_month,
            source=resolved.source,
            rule_id=str(resolved.rule_id) if resolved.rule_id else None,
            duration_ms=monotonic_ms(start),
        )
        return resolved

    def _resolve_through_rules(
        self,
        rule: ExchangeRateRule | None,
        src: str,
        dst: str,
        day: date,
        year_month: str,
    ) -> ResolvedRate | None:
        if rule is None:
            return self._try_manual(src, dst, day, year_month, rule_id=None)

        # Manual rows do not depend on the rule, so one lookup serves the whole chain.
        manual_checked = False
        for candidate in self._resolver.iter_chain(rule, tenant_id=self._tenant_id, day=day):
            fixed = candidate.fixed_rate_for(src, dst)
            if fixed is not None:
                return self._result(
                    src, dst, fixed, SOURCE_FIXED, year_month, rule_id=candidate.id
                )
            if not manual_checked:
                manual = self._try_manual(src, dst, day, year_month, rule_id=candidate.id)
                if manual is not None:
                    return manual
                manual_checked = True
        return None

    def _try_manual(
        self,
        src: str,
        dst: str,
        day: date,
        year_month: str,
        *,
        rule_id: uuid.UUID | None,
    ) -> ResolvedRate | None:
        direct = self._cache.get(src, dst, year_month, RateSource.MANUAL)
        if direct is not None:
            return self._from_row(direct, rule_id=rule_id)

        pivot = self._base_currency
        if pivot in (src, dst):
            return None
        first = self._cache.get(src, pivot, year_month, RateSource.MANUAL)
        if first is None:
            return None
        second = self._cache.get(pivot, dst, year_month, RateSource.MANUAL)
        if second is None:
            return None

        rate = quantize_rate(Decimal(first.rate) * Decimal(second.rate))
        self._cache.upsert(
            from_currency=src,
            to_currency=dst,
            year_month=year_month,
            source=RateSource.MANUAL_CALCULATED,
            rate=rate,
            rate_date=day,
        )
        log_event(
            logger,
            "fx.resolve.pivot",
            from_currency=src,
            to_currency=dst,
            pivot=pivot,
            year_month=year_month,
            rate=str(rate),
        )
        return self._result(
            src, dst, rate, RateSource.MANUAL_CALCULATED.value, year_month, rule_id=rule_id
        )

    def _try_market(
        self, src: str, dst: str, day: date, year_month: str
    ) -> ResolvedRate | None:
        if not (is_system_currency(src) and is_system_currency(dst)):
            return None

        cached = self._cache.get(src, dst, year_month, RateSource.API)
        if cached is not None:
            log_event(
                logger,
                "fx.resolve.cache_hit",
                from_currency=src,
                to_currency=dst,
                year_month=year_month,
            )
            return self._from_row(cached, rule_id=None)

        quote = self._provider.fetch(src, dst, day)
        row, created = self._cache.insert_if_absent(
            from_currency=src,
            to_currency=dst,
            year_month=year_month,
            source=RateSource.API,
            rate=quantize_rate(quote.rate),
            rate_date=quote.as_of,
        )
        if not created:
            log_event(
                logger,
                "fx.resolve.cache_write_lost",
                from_currency=src,
                to_currency=dst,
                year_month=year_month,
            )
        return self._from_row(row, rule_id=None)

    def _from_row(self, row: MonthlyExchangeRate, *, rule_id: uuid.UUID | None) -> ResolvedRate:
        return self._result(
            row.from_currency,
            row.to_currency,
            Decimal(row.rate),
            row.source.value,
            row.year_month,
            rule_id=rule_id,
        )

    def _result(
        self,
        src: str,
        dst: str,
        rate: Decimal,
        source: str,
        year_month: str,
        *,
        rule_id: uuid.UUID | None = None,
    ) -> ResolvedRate:
        return ResolvedRate(
            from_currency=src,
            to_currency=dst,
            rate=rate,
            source=source,
            timestamp=datetime.now(UTC),
            year_month=year_month,
            rule_id=rule_id,
        )


def build_engine(
    session: Session,
    *,
    tenant_id: uuid.UUID | None,
    provider: MarketRateProvider | None = None,
) -> ConversionEngine:
    return ConversionEngine(
        rules=RuleRepository(session),
        cache=RateCacheRepository(session),
        provider=provider or get_provider(),
        base_currency=get_base_currency(session, tenant_id=tenant_id),
        tenant_id=tenant_id,
    )
