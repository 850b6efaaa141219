from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from spend_fx.core.config import settings


def make_celery() -> Celery:
    app = Celery("spend_fx", broker=settings.redis_url, backend=settings.redis_url)
    app.conf.update(
        task_always_eager=settings.environment == "dev",
        task_eager_propagates=True,
        task_track_started=True,
        timezone="UTC",
    )
    if settings.fx_refresh_enabled:
        app.conf.beat_schedule = {
            "refresh-monthly-rates": {
                "task": "refresh_monthly_rates",
                "schedule": crontab(minute=5, hour=0, day_of_month=1),
            }
        }
    app.autodiscover_tasks(["spend_fx.worker.tasks"])
    return app


celery_app = make_celery()
