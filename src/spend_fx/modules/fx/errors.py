"""
Typed errors raised by exchange-rate resolution.

Every error carries a machine-readable ``code`` plus the structured values that caused it,
so callers (the HTTP layer, the batch resolver) branch on type rather than message text.
"""

from __future__ import annotations

import uuid
from datetime import date


class FxError(RuntimeError):
    code: str = "FX_ERROR"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self)}


class InvalidCurrencyCodeError(FxError):
    code = "INVALID_CURRENCY_CODE"

    def __init__(self, currency: str, reason: str = "must be a three-letter code"):
        self.currency = currency
        self.reason = reason
        super().__init__(f"Invalid currency code {currency!r}: {reason}")


class RuleNotFoundError(FxError):
    code = "RULE_NOT_FOUND"

    def __init__(
        self,
        *,
        rule_id: uuid.UUID | None = None,
        from_currency: str | None = None,
        to_currency: str | None = None,
        day: date | None = None,
    ):
        self.rule_id = rule_id
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.day = day
        if rule_id is not None:
            message = f"Exchange rate rule {rule_id} not found"
        else:
            message = f"No active exchange rate rule covers {from_currency}/{to_currency} on {day}"
        super().__init__(message)


class FallbackCycleDetectedError(FxError):
    code = "FALLBACK_CYCLE_DETECTED"

    def __init__(self, chain: list[uuid.UUID], repeated: uuid.UUID):
        self.chain = list(chain)
        self.repeated = repeated
        path = " -> ".join(str(r) for r in [*chain, repeated])
        super().__init__(f"Fallback rule cycle detected: {path}")


class FallbackChainTooDeepError(FxError):
    code = "FALLBACK_CHAIN_TOO_DEEP"

    def __init__(self, chain: list[uuid.UUID], max_depth: int):
        self.chain = list(chain)
        self.max_depth = max_depth
        super().__init__(
            f"Fallback chain starting at {chain[0]} exceeds {max_depth} hops"
            if chain
            else f"Fallback chain exceeds {max_depth} hops"
        )


class RateUnavailableForPeriodError(FxError):
    code = "RATE_UNAVAILABLE_FOR_PERIOD"

    def __init__(self, from_currency: str, to_currency: str, year_month: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.year_month = year_month
        super().__init__(f"No exchange rate available for {from_currency}/{to_currency} in {year_month}")


class ProviderUnavailableError(FxError):
    code = "PROVIDER_UNAVAILABLE"

    def __init__(self, from_currency: str, to_currency: str, reason: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.reason = reason
        super().__init__(f"Market rate provider failed for {from_currency}/{to_currency}: {reason}")


class RuleValidationError(FxError):
    code = "VALIDATION_ERROR"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self), "errors": self.errors}
