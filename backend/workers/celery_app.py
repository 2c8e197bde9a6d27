"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "sentry",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.low_stock"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.low_stock.*": {"queue": "replenishment"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        "scan-low-stock": {
            "task": "workers.low_stock.scan_low_stock",
            "schedule": crontab(minute=f"*/{settings.low_stock_scan_minutes}"),
            "options": {"queue": "replenishment"},
        },
    },
)
