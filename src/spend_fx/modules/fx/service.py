from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session

from spend_fx.core.config import settings
from spend_fx.core.currencies import is_system_currency, normalize_currency, system_currency_codes
from spend_fx.core.logging import get_logger, log_event
from spend_fx.modules.fx.engine import (
    ResolvedRate,
    build_engine,
    quantize_rate,
    require_currency,
)
from spend_fx.modules.fx.errors import FxError, RuleNotFoundError, RuleValidationError
from spend_fx.modules.fx.models import (
    ExchangeRateRule,
    MonthlyExchangeRate,
    RateSource,
    RuleSource,
    RuleStatus,
    pair_key,
    year_month_of,
)
from spend_fx.modules.fx.provider import MarketRateProvider, get_provider
from spend_fx.modules.fx.repository import RateCacheRepository, RuleRepository
from spend_fx.modules.fx.schemas import RuleCreate, RuleUpdate
from spend_fx.modules.tenants.service import get_base_currency

logger = get_logger(__name__)

_RULE_FIELDS = (
    "description",
    "source",
    "currencies",
    "fixed_rates",
    "effective_from",
    "effective_to",
    "fallback_rule_id",
    "status",
    "priority",
)


def resolve_rate(
    session: Session,
    *,
    tenant_id: uuid.UUID | None,
    from_currency: str,
    to_currency: str,
    day: date | None = None,
    provider: MarketRateProvider | None = None,
) -> ResolvedRate:
    engine = build_engine(session, tenant_id=tenant_id, provider=provider)
    return engine.resolve(from_currency, to_currency, day or date.today())


def list_rules(
    session: Session, *, tenant_id: uuid.UUID | None, status: str | None = None
) -> list[ExchangeRateRule]:
    status_filter = None
    if status and status != "all":
        try:
            status_filter = RuleStatus(status)
        except ValueError as e:
            raise RuleValidationError([f"unknown status {status!r}"]) from e
    return RuleRepository(session).list_rules(tenant_id=tenant_id, status=status_filter)


def _is_visible(rule: ExchangeRateRule | None, tenant_id: uuid.UUID | None) -> bool:
    return rule is not None and (rule.tenant_id is None or rule.tenant_id == tenant_id)


def get_rule(
    session: Session, *, rule_id: uuid.UUID, tenant_id: uuid.UUID | None
) -> ExchangeRateRule:
    rule = RuleRepository(session).get(rule_id)
    if not _is_visible(rule, tenant_id):
        raise RuleNotFoundError(rule_id=rule_id)
    return rule


def _parse_fixed_rates(raw: dict[str, Any] | None, errors: list[str]) -> dict[str, str] | None:
    if raw is None:
        return None
    out: dict[str, str] = {}
    for key, value in raw.items():
        parts = str(key).split("/")
        codes = [normalize_currency(p) for p in parts]
        if len(parts) != 2 or not all(codes):
            errors.append(f"fixed_rates key {key!r} must look like 'USD/CNY'")
            continue
        try:
            rate = Decimal(str(value))
        except (InvalidOperation, ValueError):
            errors.append(f"fixed_rates[{key!r}] is not a number")
            continue
        if not rate.is_finite() or rate <= 0:
            errors.append(f"fixed_rates[{key!r}] must be positive")
            continue
        out[pair_key(codes[0], codes[1])] = str(rate)
    return out


def _validate_rule_values(
    session: Session,
    values: dict[str, Any],
    *,
    owner_id: uuid.UUID | None,
    rule_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    errors: list[str] = []
    clean: dict[str, Any] = {}

    description = (values.get("description") or "").strip()
    if not description:
        errors.append("description is required")
    clean["description"] = description

    source = values.get("source")
    if not source:
        errors.append("source is required")
    else:
        try:
            clean["source"] = RuleSource(str(source).lower())
        except ValueError:
            errors.append(f"source must be one of {[s.value for s in RuleSource]}")

    try:
        clean["status"] = RuleStatus(str(values.get("status") or RuleStatus.DRAFT.value).lower())
    except ValueError:
        errors.append(f"status must be one of {[s.value for s in RuleStatus]}")

    effective_from = values.get("effective_from")
    effective_to = values.get("effective_to")
    if effective_from is None:
        errors.append("effective_from is required")
    elif effective_to is not None and effective_to < effective_from:
        errors.append("effective_to must not be earlier than effective_from")
    clean["effective_from"] = effective_from
    clean["effective_to"] = effective_to

    currencies: list[str] = []
    for raw in values.get("currencies") or []:
        code = normalize_currency(raw)
        if not code:
            errors.append(f"invalid currency code {raw!r}")
        elif code not in currencies:
            currencies.append(code)
    clean["currencies"] = currencies

    fixed_rates = _parse_fixed_rates(values.get("fixed_rates"), errors)
    if clean.get("source") == RuleSource.FIXED and not fixed_rates:
        errors.append("fixed_rates is required when source is 'fixed'")
    clean["fixed_rates"] = fixed_rates or None

    fallback_rule_id = values.get("fallback_rule_id")
    if fallback_rule_id is not None:
        if rule_id is not None and fallback_rule_id == rule_id:
            errors.append("a rule cannot fall back to itself")
        elif not _is_visible(RuleRepository(session).get(fallback_rule_id), owner_id):
            errors.append(f"fallback rule {fallback_rule_id} does not exist")
    clean["fallback_rule_id"] = fallback_rule_id

    clean["priority"] = int(values.get("priority") or 0)

    if errors:
        raise RuleValidationError(errors)
    return clean


def create_rule(
    session: Session,
    *,
    tenant_id: uuid.UUID | None,
    payload: RuleCreate,
    created_by: str | None = None,
) -> ExchangeRateRule:
    owner_id = None if payload.global_rule else tenant_id
    values = _validate_rule_values(session, payload.model_dump(), owner_id=owner_id)
    rule = ExchangeRateRule(
        tenant_id=owner_id,
        created_by=created_by,
        **values,
    )
    session.add(rule)
    session.commit()
    session.refresh(rule)
    log_event(
        logger,
        "fx.rules.created",
        rule_id=str(rule.id),
        source=rule.source.value,
        status=rule.status.value,
        global_rule=rule.tenant_id is None,
    )
    return rule


def update_rule(
    session: Session,
    *,
    rule_id: uuid.UUID,
    tenant_id: uuid.UUID | None,
    payload: RuleUpdate,
) -> ExchangeRateRule:
    rule = get_rule(session, rule_id=rule_id, tenant_id=tenant_id)
    merged = {field: getattr(rule, field) for field in _RULE_FIELDS}
    merged["source"] = rule.source.value
    merged["status"] = rule.status.value
    merged.update(payload.model_dump(exclude_unset=True))

    values = _validate_rule_values(session, merged, owner_id=rule.tenant_id, rule_id=rule.id)
    for field, value in values.items():
        setattr(rule, field, value)
    session.add(rule)
    session.commit()
    session.refresh(rule)
    log_event(logger, "fx.rules.updated", rule_id=str(rule.id), status=rule.status.value)
    return rule


def archive_rule(
    session: Session, *, rule_id: uuid.UUID, tenant_id: uuid.UUID | None
) -> ExchangeRateRule:
    rule = get_rule(session, rule_id=rule_id, tenant_id=tenant_id)
    if rule.status == RuleStatus.ARCHIVED:
        return rule
    rule.status = RuleStatus.ARCHIVED
    session.add(rule)
    session.commit()
    session.refresh(rule)
    log_event(logger, "fx.rules.archived", rule_id=str(rule.id))
    return rule


def _check_year_month(year_month: str | None) -> str:
    if year_month is None:
        return year_month_of(date.today())
    try:
        datetime.strptime(year_month, "%Y-%m")
    except ValueError as e:
        raise RuleValidationError([f"year_month {year_month!r} must look like 'YYYY-MM'"]) from e
    return year_month


def upsert_manual_rate(
    session: Session,
    *,
    from_currency: str,
    to_currency: str,
    rate: Decimal,
    year_month: str | None = None,
) -> MonthlyExchangeRate:
    """Create or overwrite a manual rate for a month. Callers are authorized upstream."""
    src = require_currency(from_currency)
    dst = require_currency(to_currency)
    if src == dst:
        raise RuleValidationError(["manual rate needs two different currencies"])
    if not rate.is_finite() or rate <= 0:
        raise RuleValidationError(["rate must be positive"])
    ym = _check_year_month(year_month)

    row = RateCacheRepository(session).upsert(
        from_currency=src,
        to_currency=dst,
        year_month=ym,
        source=RateSource.MANUAL,
        rate=quantize_rate(rate),
        rate_date=datetime.now(UTC).date(),
    )
    log_event(
        logger,
        "fx.manual_rate.upserted",
        from_currency=src,
        to_currency=dst,
        year_month=ym,
        rate=str(row.rate),
    )
    return row


def upsert_custom_currency_rates(
    session: Session,
    *,
    tenant_id: uuid.UUID | None,
    currency: str,
    rate_to_base: Decimal,
    rate_to_usd: Decimal | None = None,
    year_month: str | None = None,
) -> list[MonthlyExchangeRate]:
    """Record a custom currency's monthly rate into the tenant base currency (and USD)."""
    code = require_currency(currency)
    base = get_base_currency(session, tenant_id=tenant_id)
    rows = [
        upsert_manual_rate(
            session, from_currency=code, to_currency=base, rate=rate_to_base, year_month=year_month
        )
    ]
    if rate_to_usd is not None and base != "USD":
        rows.append(
            upsert_manual_rate(
                session,
                from_currency=code,
                to_currency="USD",
                rate=rate_to_usd,
                year_month=year_month,
            )
        )
    return rows


def list_manual_rates(session: Session, *, year_month: str | None = None) -> list[MonthlyExchangeRate]:
    ym = _check_year_month(year_month)
    return RateCacheRepository(session).list_rows(year_month=ym, source=RateSource.MANUAL)


def refresh_monthly_rates(
    session: Session,
    *,
    base_currency: str | None = None,
    today: date | None = None,
    provider: MarketRateProvider | None = None,
) -> dict[str, Any]:
    """
    Prime this month's api rates for every system currency into ``base_currency``.

    Keys that already hold an api row are left alone, so re-running the job never
    refetches or rewrites a month.
    """
    base = require_currency(base_currency or settings.default_base_currency)
    if not is_system_currency(base):
        raise RuleValidationError([f"{base} is not quoted by the market provider"])
    day = today or date.today()
    ym = year_month_of(day)
    provider = provider or get_provider()
    cache = RateCacheRepository(session)

    results: list[dict[str, Any]] = []
    for code in system_currency_codes():
        if code == base:
            continue
        existing = cache.get(code, base, ym, RateSource.API)
        if existing is not None:
            results.append({"currency": code, "rate": existing.rate, "status": "cached"})
            continue
        try:
            quote = provider.fetch(code, base, day)
        except FxError as e:
            log_event(
                logger,
                "fx.refresh.currency_error",
                currency=code,
                base_currency=base,
                year_month=ym,
                error_code=e.code,
            )
            results.append({"currency": code, "rate": None, "status": "error", "error": str(e)})
            continue
        row, created = cache.insert_if_absent(
            from_currency=code,
            to_currency=base,
            year_month=ym,
            source=RateSource.API,
            rate=quantize_rate(quote.rate),
            rate_date=quote.as_of,
        )
        results.append(
            {"currency": code, "rate": row.rate, "status": "fetched" if created else "cached"}
        )

    summary = {
        "year_month": ym,
        "base_currency": base,
        "fetched": sum(1 for r in results if r["status"] == "fetched"),
        "cached": sum(1 for r in results if r["status"] == "cached"),
        "errors": sum(1 for r in results if r["status"] == "error"),
        "rates": results,
    }
    log_event(
        logger,
        "fx.refresh.finish",
        year_month=ym,
        base_currency=base,
        fetched=summary["fetched"],
        cached=summary["cached"],
        errors=summary["errors"],
    )
    return summary
