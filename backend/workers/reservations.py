"""
Reservation Workers: expiry sweep.

Capacity is already released the moment a TENTATIVE hold passes expires_at
(the ledger filters on it). The sweep only rewrites the stored status to
EXPIRED so reports and listings agree with the ledger.

Schedule: See celery_app.py beat_schedule
"""

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.reservations.sweep_expired_reservations",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
)
def sweep_expired_reservations(self):
    """Mark every lapsed TENTATIVE reservation EXPIRED. Safe to run any number of times."""
    from capacity.reservations import ReservationStateMachine
    from core.config import get_settings

    run_id = self.request.id or "manual"

    async def _sweep():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                expired = await ReservationStateMachine(db).sweep_expired()

            return {
                "status": "success",
                "expired_count": expired,
                "completed_at": datetime.now(timezone.utc).isoformat(),
                "run_id": run_id,
            }
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_sweep())
    except Exception as exc:
        logger.error("reservation.sweep_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
