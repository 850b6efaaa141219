from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from typing import Protocol, runtime_checkable

import httpx

from spend_fx.core.config import settings
from spend_fx.core.currencies import is_system_currency
from spend_fx.core.logging import get_logger, log_event, monotonic_ms
from spend_fx.modules.fx.errors import InvalidCurrencyCodeError, ProviderUnavailableError

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderQuote:
    rate: Decimal
    as_of: date
    timestamp: datetime


@runtime_checkable
class MarketRateProvider(Protocol):
    """Anything that can quote a live rate for a system-currency pair on a date.

    Implementations raise ProviderUnavailableError when the upstream cannot answer.
    """

    name: str

    def fetch(self, from_currency: str, to_currency: str, day: date) -> ProviderQuote: ...


class FrankfurterProvider:
    """ECB reference rates from frankfurter.app; weekends resolve to the prior business day."""

    name = "frankfurter.app"

    def __init__(self, *, base_url: str | None = None, timeout_s: float | None = None):
        self._base_url = (base_url or settings.fx_provider_url).rstrip("/")
        self._timeout_s = timeout_s if timeout_s is not None else settings.fx_provider_timeout_s

    def fetch(self, from_currency: str, to_currency: str, day: date) -> ProviderQuote:
        for code in (from_currency, to_currency):
            if not is_system_currency(code):
                raise InvalidCurrencyCodeError(code, "not quoted by the market provider")

        start = time.monotonic()
        # Future dates are not published; ask for the latest instead.
        path = "latest" if day >= date.today() else day.isoformat()
        try:
            resp = httpx.get(
                f"{self._base_url}/{path}",
                params={"from": from_currency, "to": to_currency},
                timeout=self._timeout_s,
                follow_redirects=True,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log_event(
                logger,
                "fx.provider.failure",
                provider=self.name,
                from_currency=from_currency,
                to_currency=to_currency,
                day=day.isoformat(),
                error_type=type(e).__name__,
                duration_ms=monotonic_ms(start),
            )
            raise ProviderUnavailableError(from_currency, to_currency, str(e) or type(e).__name__) from e

        raw_rate = (data.get("rates") or {}).get(to_currency)
        raw_date = data.get("date")
        if raw_rate is None or not raw_date:
            raise ProviderUnavailableError(from_currency, to_currency, "unexpected response shape")
        try:
            rate = Decimal(str(raw_rate))
            as_of = date.fromisoformat(str(raw_date))
        except (InvalidOperation, ValueError) as e:
            raise ProviderUnavailableError(from_currency, to_currency, "unparseable rate") from e
        if rate <= 0:
            raise ProviderUnavailableError(from_currency, to_currency, f"non-positive rate {rate}")

        log_event(
            logger,
            "fx.provider.success",
            provider=self.name,
            from_currency=from_currency,
            to_currency=to_currency,
            day=day.isoformat(),
            as_of=as_of.isoformat(),
            duration_ms=monotonic_ms(start),
        )
        return ProviderQuote(rate=rate, as_of=as_of, timestamp=datetime.now(UTC))


_provider: MarketRateProvider | None = None


def get_provider() -> MarketRateProvider:
    global _provider  # noqa: PLW0603
    if _provider is None:
        _provider = FrankfurterProvider()
    return _provider
