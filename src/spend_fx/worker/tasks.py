from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import spend_fx.models  # noqa: F401
# isort: on

import time
from typing import Any

from spend_fx.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_task_context,
    set_task_context,
)
from spend_fx.worker.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task(name="refresh_monthly_rates", bind=True)
def refresh_monthly_rates_task(self, base_currency: str | None = None) -> dict[str, Any]:
    from spend_fx.core.db import SessionLocal
    from spend_fx.modules.fx.service import refresh_monthly_rates

    task_id = getattr(self.request, "id", None)
    token = set_task_context(task_id)
    start = time.monotonic()
    log_event(
        logger,
        "celery.task.start",
        task_name="refresh_monthly_rates",
        celery_task_id=task_id,
        base_currency=base_currency,
    )
    try:
        with SessionLocal() as session:
            summary = refresh_monthly_rates(session, base_currency=base_currency)
        log_event(
            logger,
            "celery.task.finish",
            task_name="refresh_monthly_rates",
            celery_task_id=task_id,
            year_month=summary["year_month"],
            errors=summary["errors"],
            duration_ms=monotonic_ms(start),
        )
    except Exception:
        log_exception(
            logger,
            "celery.task.error",
            task_name="refresh_monthly_rates",
            celery_task_id=task_id,
            duration_ms=monotonic_ms(start),
        )
        raise
    finally:
        reset_task_context(token)
    # Celery results are JSON-serialized.
    return {
        **summary,
        "rates": [
            {**r, "rate": str(r["rate"]) if r["rate"] is not None else None}
            for r in summary["rates"]
        ],
    }
