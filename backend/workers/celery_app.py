"""
Celery Application Configuration
"""

from datetime import timedelta

from celery import Celery

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "doseops",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.reservations"],
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
        "workers.reservations.*": {"queue": "capacity"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # ── Capacity ───────────────────────────────────────────────
        "expire-tentative-reservations": {
            "task": "workers.reservations.sweep_expired_reservations",
            "schedule": timedelta(minutes=settings.reservation_sweep_minutes),
            "options": {"queue": "capacity"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
