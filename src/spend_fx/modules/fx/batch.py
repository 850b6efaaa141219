from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from spend_fx.core.config import settings
from spend_fx.core.currencies import system_currency_codes
from spend_fx.core.db import SessionLocal
from spend_fx.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    snapshot_context,
)
from spend_fx.modules.fx.engine import (
    SOURCE_IDENTITY,
    ResolvedRate,
    build_engine,
    require_currency,
)
from spend_fx.modules.fx.errors import FxError
from spend_fx.modules.fx.models import year_month_of
from spend_fx.modules.fx.provider import MarketRateProvider
from spend_fx.modules.fx.repository import RateCacheRepository

logger = get_logger(__name__)

SOURCE_ERROR = "error"


@dataclass(frozen=True)
class BatchEntry:
    rate: Decimal
    source: str


ERROR_ENTRY = BatchEntry(rate=Decimal("1"), source=SOURCE_ERROR)


def batch_currencies(session: Session, *, target: str, year_month: str) -> list[str]:
    """System currencies plus custom currencies with manual rates this month, minus ``target``."""
    system = system_currency_codes()
    known = set(system)
    custom = [
        c
        for c in RateCacheRepository(session).manual_from_currencies(year_month=year_month)
        if c not in known
    ]
    return [c for c in [*system, *custom] if c != target]


def _effective_task_timeout(task_timeout_s: float, deadline_s: float) -> float:
    # A task may never outlive the batch it belongs to.
    if task_timeout_s < deadline_s:
        return task_timeout_s
    return deadline_s * 0.9


def resolve_batch(
    target_currency: str,
    day: date | None = None,
    *,
    tenant_id: uuid.UUID | None,
    session_factory: Callable[[], Session] = SessionLocal,
    provider: MarketRateProvider | None = None,
    task_timeout_s: float | None = None,
    deadline_s: float | None = None,
    max_workers: int | None = None,
) -> dict[str, BatchEntry]:
    """
    Resolve every known currency into ``target_currency``.

    Each currency runs on its own worker with its own DB session. A failure or timeout for
    one currency is recorded as ``{rate: 1, source: "error"}`` and never fails the batch.
    """
    target = require_currency(target_currency)
    day = day or date.today()
    year_month = year_month_of(day)
    deadline_s = deadline_s if deadline_s is not None else settings.fx_batch_deadline_s
    task_timeout_s = _effective_task_timeout(
        task_timeout_s if task_timeout_s is not None else settings.fx_batch_task_timeout_s,
        deadline_s,
    )

    with session_factory() as session:
        codes = batch_currencies(session, target=target, year_month=year_month)

    log_event(
        logger,
        "fx.batch.start",
        target=target,
        year_month=year_month,
        currencies_count=len(codes),
        task_timeout_s=task_timeout_s,
        deadline_s=deadline_s,
    )

    # Per-task timeouts run from when a worker picks the task up, not from submission.
    started: dict[str, threading.Event] = {code: threading.Event() for code in codes}
    started_at: dict[str, float] = {}

    def _resolve_one(code: str) -> ResolvedRate:
        started_at[code] = time.monotonic()
        started[code].set()
        with session_factory() as task_session:
            engine = build_engine(task_session, tenant_id=tenant_id, provider=provider)
            return engine.resolve(code, target, day)

    results: dict[str, BatchEntry] = {target: BatchEntry(rate=Decimal("1"), source=SOURCE_IDENTITY)}
    if not codes:
        return results

    workers = max(1, min(max_workers or settings.fx_batch_max_workers, len(codes)))
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fx-batch")
    start = time.monotonic()
    futures: dict[str, Future] = {}
    try:
        for code in codes:
            futures[code] = executor.submit(snapshot_context().run, _resolve_one, code)

        batch_deadline = start + deadline_s
        for code, future in futures.items():
            try:
                if not started[code].wait(max(0.0, batch_deadline - time.monotonic())):
                    raise TimeoutError
                task_deadline = min(started_at[code] + task_timeout_s, batch_deadline)
                resolved = future.result(timeout=max(0.0, task_deadline - time.monotonic()))
            except TimeoutError:
                future.cancel()
                results[code] = ERROR_ENTRY
                log_event(
                    logger,
                    "fx.batch.task_timeout",
                    currency=code,
                    target=target,
                    timeout_s=task_timeout_s,
                )
            except FxError as e:
                results[code] = ERROR_ENTRY
                log_event(
                    logger,
                    "fx.batch.task_error",
                    currency=code,
                    target=target,
                    error_code=e.code,
                    error=str(e),
                )
            except Exception:  # noqa: BLE001
                results[code] = ERROR_ENTRY
                log_exception(logger, "fx.batch.task_error", currency=code, target=target)
            else:
                results[code] = BatchEntry(rate=resolved.rate, source=resolved.source)
    finally:
        # Stragglers are abandoned, not awaited; their results are never read.
        executor.shutdown(wait=False, cancel_futures=True)

    errors = sum(1 for entry in results.values() if entry.source == SOURCE_ERROR)
    log_event(
        logger,
        "fx.batch.finish",
        target=target,
        year_month=year_month,
        currencies_count=len(codes),
        errors_count=errors,
        duration_ms=monotonic_ms(start),
    )
    return results
