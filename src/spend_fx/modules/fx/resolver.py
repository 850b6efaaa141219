from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Iterator
from datetime import UTC, date

from spend_fx.core.config import settings
from spend_fx.core.logging import get_logger, log_event
from spend_fx.modules.fx.errors import (
    FallbackChainTooDeepError,
    FallbackCycleDetectedError,
    RuleNotFoundError,
)
from spend_fx.modules.fx.models import ExchangeRateRule, RuleStatus
from spend_fx.modules.fx.repository import RuleRepository

logger = get_logger(__name__)


def _created_ts(rule: ExchangeRateRule) -> float:
    created = rule.created_at
    if created is None:
        return 0.0
    if created.tzinfo is None:
        # SQLite hands back naive values for timezone-aware columns.
        created = created.replace(tzinfo=UTC)
    return created.timestamp()


def rule_sort_key(rule: ExchangeRateRule, *, tenant_id: uuid.UUID | None) -> tuple:
    """Ascending key: lower priority value, then tenant-owned, then newest, then id."""
    tenant_rank = 0 if tenant_id is not None and rule.tenant_id == tenant_id else 1
    return (rule.priority or 0, tenant_rank, -_created_ts(rule), str(rule.id))


def order_rules(
    rules: Iterable[ExchangeRateRule], *, tenant_id: uuid.UUID | None
) -> list[ExchangeRateRule]:
    return sorted(rules, key=lambda r: rule_sort_key(r, tenant_id=tenant_id))


def is_rule_usable(rule: ExchangeRateRule, *, tenant_id: uuid.UUID | None, day: date) -> bool:
    if rule.status != RuleStatus.ACTIVE:
        return False
    if rule.tenant_id is not None and rule.tenant_id != tenant_id:
        return False
    return rule.is_effective_on(day)


class RuleResolver:
    def __init__(self, rules: RuleRepository, *, max_fallback_depth: int | None = None):
        self._rules = rules
        self._max_depth = (
            max_fallback_depth if max_fallback_depth is not None else settings.fx_max_fallback_depth
        )

    def candidates(
        self,
        *,
        tenant_id: uuid.UUID | None,
        from_currency: str,
        to_currency: str,
        day: date,
    ) -> list[ExchangeRateRule]:
        by_id: dict[uuid.UUID, ExchangeRateRule] = {}
        for code in (from_currency, to_currency):
            for rule in self._rules.find_candidate_rules(
                tenant_id=tenant_id, currency_code=code, day=day
            ):
                by_id[rule.id] = rule
        return order_rules(by_id.values(), tenant_id=tenant_id)

    def select_rule(
        self,
        *,
        tenant_id: uuid.UUID | None,
        from_currency: str,
        to_currency: str,
        day: date,
    ) -> ExchangeRateRule:
        ranked = self.candidates(
            tenant_id=tenant_id, from_currency=from_currency, to_currency=to_currency, day=day
        )
        if not ranked:
            raise RuleNotFoundError(from_currency=from_currency, to_currency=to_currency, day=day)
        selected = ranked[0]
        log_event(
            logger,
            "fx.rules.selected",
            rule_id=str(selected.id),
            from_currency=from_currency,
            to_currency=to_currency,
            day=day.isoformat(),
            candidates_count=len(ranked),
        )
        return selected

    def iter_chain(
        self, rule: ExchangeRateRule, *, tenant_id: uuid.UUID | None, day: date
    ) -> Iterator[ExchangeRateRule]:
        """
        Yield ``rule`` and then each usable rule reached through ``fallback_rule_id``.

        Traversal is lazy: a cycle or an over-long chain only raises once resolution
        actually needs to walk that far.
        """
        chain: list[uuid.UUID] = [rule.id]
        visited: set[uuid.UUID] = {rule.id}
        yield rule

        current = rule
        while current.fallback_rule_id is not None:
            next_id = current.fallback_rule_id
            if next_id in visited:
                raise FallbackCycleDetectedError(chain, next_id)
            if len(chain) > self._max_depth:
                raise FallbackChainTooDeepError(chain, self._max_depth)

            nxt = self._rules.get(next_id)
            if nxt is None:
                log_event(
                    logger,
                    "fx.rules.fallback_missing",
                    level=logging.WARNING,
                    rule_id=str(current.id),
                    fallback_rule_id=str(next_id),
                )
                return
            chain.append(nxt.id)
            visited.add(nxt.id)
            if is_rule_usable(nxt, tenant_id=tenant_id, day=day):
                yield nxt
            else:
                log_event(
                    logger,
                    "fx.rules.fallback_skipped",
                    rule_id=str(nxt.id),
                    status=nxt.status.value,
                    day=day.isoformat(),
                )
            current = nxt
