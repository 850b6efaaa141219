from __future__ import annotations

import uuid
from datetime import UTC, date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from spend_fx.api.deps import (
    Principal,
    PrincipalRole,
    get_current_principal,
    require_finance,
)
from spend_fx.core.currencies import list_currencies
from spend_fx.core.db import db_session
from spend_fx.modules.fx.batch import resolve_batch
from spend_fx.modules.fx.schemas import (
    BatchEntryOut,
    BatchRatesOut,
    CurrencyOut,
    CustomCurrencyRates,
    ManualRateUpsert,
    MonthlyRateOut,
    ResolvedRateOut,
    RuleCreate,
    RuleOut,
    RuleUpdate,
)
from spend_fx.modules.fx.service import (
    archive_rule,
    create_rule,
    get_rule,
    list_manual_rates,
    list_rules,
    resolve_rate,
    update_rule,
    upsert_custom_currency_rates,
    upsert_manual_rate,
)

router = APIRouter(tags=["fx"])


@router.get("/fx/currencies", response_model=list[CurrencyOut])
def list_currencies_endpoint() -> list[CurrencyOut]:
    return [
        CurrencyOut(
            code=c.code,
            symbol=c.symbol,
            display_name=c.display_name,
            decimal_precision=c.decimal_precision,
        )
        for c in list_currencies()
    ]


@router.get("/fx/rates", response_model=ResolvedRateOut | BatchRatesOut)
def get_rates_endpoint(
    from_currency: str | None = Query(default=None, alias="from"),
    to_currency: str | None = Query(default=None, alias="to"),
    target: str | None = None,
    on: date | None = Query(default=None, alias="date"),
    session: Session = Depends(db_session),
    principal: Principal = Depends(get_current_principal),
) -> ResolvedRateOut | BatchRatesOut:
    day = on or date.today()
    if from_currency and to_currency:
        resolved = resolve_rate(
            session,
            tenant_id=principal.tenant_id,
            from_currency=from_currency,
            to_currency=to_currency,
            day=day,
        )
        return ResolvedRateOut(
            from_currency=resolved.from_currency,
            to_currency=resolved.to_currency,
            rate=resolved.rate,
            source=resolved.source,
            timestamp=resolved.timestamp,
            year_month=resolved.year_month,
            rule_id=resolved.rule_id,
        )
    if target:
        entries = resolve_batch(target, day, tenant_id=principal.tenant_id)
        return BatchRatesOut(
            target=target.strip().upper(),
            date=day,
            rates={
                code: BatchEntryOut(rate=entry.rate, source=entry.source)
                for code, entry in entries.items()
            },
            timestamp=datetime.now(UTC),
        )
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Pass either 'from' and 'to', or 'target'",
    )


@router.get("/fx/rules", response_model=list[RuleOut])
def list_rules_endpoint(
    rule_status: str | None = Query(default=None, alias="status"),
    session: Session = Depends(db_session),
    principal: Principal = Depends(get_current_principal),
) -> list[RuleOut]:
    rules = list_rules(session, tenant_id=principal.tenant_id, status=rule_status)
    return [RuleOut.model_validate(r, from_attributes=True) for r in rules]


@router.get("/fx/rules/{rule_id}", response_model=RuleOut)
def get_rule_endpoint(
    rule_id: uuid.UUID,
    session: Session = Depends(db_session),
    principal: Principal = Depends(get_current_principal),
) -> RuleOut:
    rule = get_rule(session, rule_id=rule_id, tenant_id=principal.tenant_id)
    return RuleOut.model_validate(rule, from_attributes=True)


@router.post("/fx/rules", response_model=RuleOut)
def create_rule_endpoint(
    payload: RuleCreate,
    session: Session = Depends(db_session),
    principal: Principal = Depends(require_finance),
) -> RuleOut:
    if payload.global_rule and principal.role not in {
        PrincipalRole.ADMIN,
        PrincipalRole.SUPER_ADMIN,
    }:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Only admins may create global rules"
        )
    rule = create_rule(
        session, tenant_id=principal.tenant_id, payload=payload, created_by=principal.user_id
    )
    return RuleOut.model_validate(rule, from_attributes=True)


@router.patch("/fx/rules/{rule_id}", response_model=RuleOut)
def update_rule_endpoint(
    rule_id: uuid.UUID,
    payload: RuleUpdate,
    session: Session = Depends(db_session),
    principal: Principal = Depends(require_finance),
) -> RuleOut:
    rule = update_rule(session, rule_id=rule_id, tenant_id=principal.tenant_id, payload=payload)
    return RuleOut.model_validate(rule, from_attributes=True)


@router.post("/fx/rules/{rule_id}/archive", response_model=RuleOut)
def archive_rule_endpoint(
    rule_id: uuid.UUID,
    session: Session = Depends(db_session),
    principal: Principal = Depends(require_finance),
) -> RuleOut:
    rule = archive_rule(session, rule_id=rule_id, tenant_id=principal.tenant_id)
    return RuleOut.model_validate(rule, from_attributes=True)


@router.get("/fx/manual-rates", response_model=list[MonthlyRateOut])
def list_manual_rates_endpoint(
    year_month: str | None = None,
    session: Session = Depends(db_session),
    principal: Principal = Depends(get_current_principal),
) -> list[MonthlyRateOut]:
    rows = list_manual_rates(session, year_month=year_month)
    return [MonthlyRateOut.model_validate(r, from_attributes=True) for r in rows]


@router.put("/fx/manual-rates", response_model=MonthlyRateOut)
def upsert_manual_rate_endpoint(
    payload: ManualRateUpsert,
    session: Session = Depends(db_session),
    principal: Principal = Depends(require_finance),
) -> MonthlyRateOut:
    row = upsert_manual_rate(
        session,
        from_currency=payload.from_currency,
        to_currency=payload.to_currency,
        rate=payload.rate,
        year_month=payload.year_month,
    )
    return MonthlyRateOut.model_validate(row, from_attributes=True)


@router.post("/fx/custom-currencies", response_model=list[MonthlyRateOut])
def upsert_custom_currency_endpoint(
    payload: CustomCurrencyRates,
    session: Session = Depends(db_session),
    principal: Principal = Depends(require_finance),
) -> list[MonthlyRateOut]:
    rows = upsert_custom_currency_rates(
        session,
        tenant_id=principal.tenant_id,
        currency=payload.currency,
        rate_to_base=payload.rate_to_base,
        rate_to_usd=payload.rate_to_usd,
        year_month=payload.year_month,
    )
    return [MonthlyRateOut.model_validate(r, from_attributes=True) for r in rows]
