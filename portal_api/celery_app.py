from __future__ import annotations

import os
import logging
from datetime import datetime, timezone
from typing import Optional

from celery import Celery
from celery.schedules import crontab

from portal_api.config import get_settings

logger = logging.getLogger("celery.quotes")


def _parse_iso(s: str) -> datetime:
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        # stored datetimes are naive UTC
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


settings = get_settings()

app = Celery(
    "portal_api",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

# JSON serializer only; pass ISO strings for datetimes
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
)

task_always_eager_env = os.getenv("CELERY_TASK_ALWAYS_EAGER", "false").lower() in {"1", "true", "yes"}
if task_always_eager_env or settings.ENVIRONMENT.lower() == "test":
    app.conf.task_always_eager = True
    app.conf.task_eager_propagates = True


@app.task(bind=True)
def check_expiring_quotes(self, now_iso: Optional[str] = None) -> dict:
    """Expire overdue quotes and send reminders for the ones about to lapse."""
    from portal_api.src.quotes.service import QuoteService

    now = _parse_iso(now_iso) if now_iso else None
    result = QuoteService().check_expiring_quotes(now=now)
    logger.info("quote_check_done", extra={
        "task_id": getattr(self.request, "id", None),
        "expired": result["expired_count"],
        "expiring_soon": result["expiring_soon_count"],
    })
    return result


@app.task(bind=True)
def refresh_tracking(self) -> dict:
    """Pull carrier tracking for shipments still in transit."""
    from portal_api.src.shipping.controller import ShippingController

    result = ShippingController().refresh_tracking()
    logger.info("tracking_refresh_done", extra={
        "task_id": getattr(self.request, "id", None),
        "updated": result["updated"],
        "errors": result["errors"],
    })
    return result


beat_schedule = {}
if settings.QUOTE_CHECK_ENABLED:
    beat_schedule["check-expiring-quotes"] = {
        "task": "portal_api.celery_app.check_expiring_quotes",
        "schedule": crontab(hour=settings.QUOTE_CHECK_HOUR_UTC, minute=0),
        "args": (),
    }
if settings.TRACKING_REFRESH_ENABLED and settings.UPS_CLIENT_ID:
    beat_schedule["refresh-tracking"] = {
        "task": "portal_api.celery_app.refresh_tracking",
        "schedule": crontab(hour=f"*/{settings.TRACKING_REFRESH_EVERY_HOURS}", minute=30),
        "args": (),
    }
app.conf.beat_schedule = beat_schedule
logger.info("celery_beat_configured", extra={"jobs": sorted(beat_schedule)})
