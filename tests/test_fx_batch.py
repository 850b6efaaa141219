from __future__ import annotations

import threading
import time
from datetime import UTC, date, datetime
from decimal import Decimal

from spend_fx.core.currencies import system_currency_codes
from spend_fx.core.db import SessionLocal
from spend_fx.modules.fx.batch import (
    ERROR_ENTRY,
    _effective_task_timeout,
    batch_currencies,
    resolve_batch,
)
from spend_fx.modules.fx.errors import ProviderUnavailableError
from spend_fx.modules.fx.provider import ProviderQuote
from spend_fx.modules.fx.service import upsert_manual_rate

DAY = date(2024, 3, 10)


class _FlatProvider:
    name = "flat"

    def fetch(self, from_currency, to_currency, day):
        return ProviderQuote(rate=Decimal("0.5"), as_of=day, timestamp=datetime.now(UTC))


class _StuckProvider(_FlatProvider):
    """Blocks one currency until released, then fails it."""

    def __init__(self, stuck_currency: str):
        self.stuck_currency = stuck_currency
        self.release = threading.Event()
        self.finished = threading.Event()

    def fetch(self, from_currency, to_currency, day):
        if from_currency != self.stuck_currency:
            return super().fetch(from_currency, to_currency, day)
        try:
            self.release.wait(30)
            raise ProviderUnavailableError(from_currency, to_currency, "released")
        finally:
            self.finished.set()


def test_batch_covers_every_system_currency_and_includes_target():
    result = resolve_batch("cny", DAY, tenant_id=None, provider=_FlatProvider())

    assert list(result)[0] == "CNY"
    assert result["CNY"].rate == Decimal("1")
    assert result["CNY"].source == "identity"
    assert set(result) == set(system_currency_codes())
    for code in system_currency_codes():
        if code == "CNY":
            continue
        assert result[code].source == "api"
        assert result[code].rate == Decimal("0.5")


def test_one_slow_currency_does_not_stall_the_batch():
    provider = _StuckProvider("JPY")
    try:
        start = time.monotonic()
        result = resolve_batch(
            "CNY",
            DAY,
            tenant_id=None,
            provider=provider,
            task_timeout_s=3,
            deadline_s=5,
        )
        elapsed = time.monotonic() - start
    finally:
        provider.release.set()
        provider.finished.wait(5)

    assert elapsed < 5
    assert result["JPY"] == ERROR_ENTRY
    assert result["JPY"].rate == Decimal("1")
    assert result["USD"].source == "api"
    assert result["EUR"].rate == Decimal("0.5")


def test_failed_currency_is_reported_as_error_entry():
    class _NoEuro(_FlatProvider):
        def fetch(self, from_currency, to_currency, day):
            if from_currency == "EUR":
                raise ProviderUnavailableError(from_currency, to_currency, "boom")
            return super().fetch(from_currency, to_currency, day)

    result = resolve_batch("CNY", DAY, tenant_id=None, provider=_NoEuro())

    assert result["EUR"].source == "error"
    assert result["EUR"].rate == Decimal("1")
    assert result["GBP"].source == "api"


def test_unexpected_exception_is_contained():
    class _Broken(_FlatProvider):
        def fetch(self, from_currency, to_currency, day):
            if from_currency == "GBP":
                raise KeyError("rates")
            return super().fetch(from_currency, to_currency, day)

    result = resolve_batch("CNY", DAY, tenant_id=None, provider=_Broken())

    assert result["GBP"] == ERROR_ENTRY
    assert result["USD"].source == "api"


def test_custom_currencies_with_manual_rates_join_the_batch():
    with SessionLocal() as session:
        upsert_manual_rate(
            session, from_currency="THB", to_currency="CNY", rate=Decimal("0.2"), year_month="2024-03"
        )
        upsert_manual_rate(
            session, from_currency="XYZ", to_currency="EUR", rate=Decimal("3"), year_month="2024-03"
        )
        # Other months do not count.
        upsert_manual_rate(
            session, from_currency="MYR", to_currency="CNY", rate=Decimal("1.5"), year_month="2024-02"
        )

    result = resolve_batch("CNY", DAY, tenant_id=None, provider=_FlatProvider())

    assert result["THB"].source == "manual"
    assert result["THB"].rate == Decimal("0.2")
    assert result["XYZ"] == ERROR_ENTRY
    assert "MYR" not in result


def test_batch_currencies_excludes_target():
    with SessionLocal() as session:
        upsert_manual_rate(
            session, from_currency="THB", to_currency="USD", rate=Decimal("0.03"), year_month="2024-03"
        )
        codes = batch_currencies(session, target="USD", year_month="2024-03")

    assert "USD" not in codes
    assert codes[-1] == "THB"
    assert codes[: len(system_currency_codes()) - 1] == [
        c for c in system_currency_codes() if c != "USD"
    ]


def test_task_timeout_never_exceeds_deadline():
    assert _effective_task_timeout(8, 10) == 8
    assert _effective_task_timeout(10, 10) == 9
    assert _effective_task_timeout(30, 10) == 9


def test_queued_tasks_get_their_own_timeout():
    class _Slow(_FlatProvider):
        def fetch(self, from_currency, to_currency, day):
            time.sleep(0.3)
            return super().fetch(from_currency, to_currency, day)

    # Nine currencies on two workers take well over one task timeout in total.
    result = resolve_batch(
        "CNY",
        DAY,
        tenant_id=None,
        provider=_Slow(),
        task_timeout_s=1.0,
        deadline_s=30,
        max_workers=2,
    )

    assert [code for code, entry in result.items() if entry.source == "error"] == []
    assert len(result) == len(system_currency_codes())


def test_tasks_still_queued_at_the_deadline_are_errors():
    class _Slow(_FlatProvider):
        def fetch(self, from_currency, to_currency, day):
            time.sleep(0.3)
            return super().fetch(from_currency, to_currency, day)

    result = resolve_batch(
        "CNY",
        DAY,
        tenant_id=None,
        provider=_Slow(),
        task_timeout_s=0.5,
        deadline_s=1.0,
        max_workers=1,
    )

    assert result["USD"].source == "api"
    assert result["KRW"] == ERROR_ENTRY
