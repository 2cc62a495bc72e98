"""
Capacity Ledger: authoritative answer to "how full is this window".

Consumption is derived, never counted:

  committed(W) = Σ estimated_minutes over reservations on W that are
                 CONFIRMED or CONVERTED, or TENTATIVE with expires_at not
                 yet passed

A lapsed TENTATIVE hold stops counting the instant it expires, whether or
not the sweep has marked it EXPIRED yet. CANCELLED and EXPIRED reservations
fall out of the sum. A CONVERTED reservation keeps its minutes: the order it
became still has to be produced in that window.

Admission (try_admit) is the only path that adds consumption. The capacity
check and the insert of the new reservation run in one transaction while
holding, per window:
  1. an in-process asyncio.Lock (serializes coroutines in this worker)
  2. a row lock on the window (SELECT ... FOR UPDATE; serializes workers)
Different windows never contend. A lock that cannot be taken in time, or a
database failure mid-admission, is reported as a rejection (fail closed).
"""

import asyncio
import uuid
import weakref
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import CapacityWindow, DeliverySlot, Reservation, ReservationStatus, utcnow
from scheduling.decay import InvalidParameter

logger = structlog.get_logger()

# Statuses whose minutes stay committed regardless of expires_at
COMMITTED_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.CONVERTED)


class CapacityRejected(ValueError):
    """Not enough minutes left. Never retried automatically; the caller picks another window."""

    def __init__(
        self,
        *,
        window_id,
        requested_minutes: int,
        available_minutes: int,
        reason: str = "insufficient_capacity",
        slot_id=None,
    ):
        self.window_id = window_id
        self.slot_id = slot_id
        self.requested_minutes = requested_minutes
        self.available_minutes = max(0, available_minutes)
        self.shortfall_minutes = max(0, requested_minutes - self.available_minutes)
        self.reason = reason
        super().__init__(
            f"Window {window_id}: {self.available_minutes} min available, "
            f"{requested_minutes} min requested ({reason})"
        )


class CapacityLockTimeout(CapacityRejected):
    """The admission lock could not be taken or the database failed. Treated as a rejection."""

    def __init__(self, *, window_id, requested_minutes: int = 0):
        super().__init__(
            window_id=window_id,
            requested_minutes=requested_minutes,
            available_minutes=0,
            reason="lock_unavailable",
        )


class WindowNotFound(LookupError):
    pass


@dataclass(frozen=True)
class Admission:
    window_id: uuid.UUID
    slot_id: uuid.UUID | None
    admitted_minutes: int
    capacity_minutes: int
    committed_minutes: int  # After admission

    @property
    def available_minutes(self) -> int:
        return max(0, self.capacity_minutes - self.committed_minutes)


@dataclass(frozen=True)
class WindowUsage:
    tentative_minutes: int = 0
    confirmed_minutes: int = 0  # CONFIRMED and CONVERTED

    @property
    def committed_minutes(self) -> int:
        return self.tentative_minutes + self.confirmed_minutes


class WindowLocks:
    """Per-window asyncio locks for this process, weakly held so idle windows cost nothing."""

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, window_id) -> asyncio.Lock:
        key = str(window_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


_window_locks = WindowLocks()


def live_hold_filter(now: datetime):
    """SQL predicate for reservations that consume capacity at `now`."""
    return or_(
        Reservation.status.in_(COMMITTED_STATUSES),
        and_(
            Reservation.status == ReservationStatus.TENTATIVE,
            or_(Reservation.expires_at.is_(None), Reservation.expires_at >= now),
        ),
    )


class CapacityLedger:
    """Derived window/slot consumption plus the serialized admission path."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        clock: Callable[[], datetime] = utcnow,
        lock_timeout_seconds: float | None = None,
        locks: WindowLocks | None = None,
    ):
        self.db = db
        self._clock = clock
        if lock_timeout_seconds is None:
            lock_timeout_seconds = get_settings().capacity_lock_timeout_seconds
        self._lock_timeout = lock_timeout_seconds
        self._locks = locks or _window_locks

    # ── Reads ────────────────────────────────────────────────────────

    async def committed_minutes(self, window_id: uuid.UUID, now: datetime | None = None) -> int:
        now = now or self._clock()
        result = await self.db.execute(
            select(func.coalesce(func.sum(Reservation.estimated_minutes), 0)).where(
                Reservation.window_id == window_id,
                live_hold_filter(now),
            )
        )
        return int(result.scalar() or 0)

    async def available_minutes(self, window_id: uuid.UUID, now: datetime | None = None) -> int:
        window = await self.get_window(window_id)
        committed = await self.committed_minutes(window_id, now)
        return max(0, window.capacity_minutes - committed)

    async def slot_committed_minutes(self, slot_id: uuid.UUID, now: datetime | None = None) -> int:
        now = now or self._clock()
        result = await self.db.execute(
            select(func.coalesce(func.sum(Reservation.estimated_minutes), 0)).where(
                Reservation.slot_id == slot_id,
                live_hold_filter(now),
            )
        )
        return int(result.scalar() or 0)

    async def slot_available_minutes(self, slot_id: uuid.UUID, now: datetime | None = None) -> int:
        slot = await self.db.get(DeliverySlot, slot_id)
        if slot is None:
            raise WindowNotFound(f"Delivery slot {slot_id} not found")
        committed = await self.slot_committed_minutes(slot_id, now)
        return max(0, slot.capacity_minutes - committed)

    async def usage_by_window(
        self, window_ids: Iterable[uuid.UUID], now: datetime | None = None
    ) -> dict[uuid.UUID, WindowUsage]:
        """Tentative vs confirmed minutes per window, one query for a whole calendar."""
        ids = list(window_ids)
        if not ids:
            return {}
        now = now or self._clock()
        tentative = case((Reservation.status == ReservationStatus.TENTATIVE, Reservation.estimated_minutes), else_=0)
        confirmed = case((Reservation.status.in_(COMMITTED_STATUSES), Reservation.estimated_minutes), else_=0)
        result = await self.db.execute(
            select(
                Reservation.window_id,
                func.coalesce(func.sum(tentative), 0),
                func.coalesce(func.sum(confirmed), 0),
            )
            .where(Reservation.window_id.in_(ids), live_hold_filter(now))
            .group_by(Reservation.window_id)
        )
        usage = {window_id: WindowUsage() for window_id in ids}
        for window_id, tentative_minutes, confirmed_minutes in result.all():
            usage[window_id] = WindowUsage(int(tentative_minutes), int(confirmed_minutes))
        return usage

    async def get_window(self, window_id: uuid.UUID) -> CapacityWindow:
        window = await self.db.get(CapacityWindow, window_id)
        if window is None:
            raise WindowNotFound(f"Capacity window {window_id} not found")
        return window

    # ── Serialization ────────────────────────────────────────────────

    @asynccontextmanager
    async def window_lock(self, window_id: uuid.UUID) -> AsyncIterator[CapacityWindow]:
        """
        Hold the window exclusively and yield its row.

        Callers must commit before leaving the block; anything that escapes
        with the transaction still open is rolled back.
        """
        lock = self._locks.get(window_id)
        try:
            # Acquired in this task; a timeout never leaves the lock held
            async with asyncio.timeout(self._lock_timeout):
                await lock.acquire()
        except TimeoutError:
            logger.warning("capacity.lock_timeout", window_id=str(window_id), timeout_seconds=self._lock_timeout)
            raise CapacityLockTimeout(window_id=window_id) from None

        try:
            result = await self.db.execute(
                select(CapacityWindow)
                .where(CapacityWindow.window_id == window_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            window = result.scalar_one_or_none()
            if window is None:
                raise WindowNotFound(f"Capacity window {window_id} not found")
            yield window
        except BaseException:
            if self.db.in_transaction():
                await self.db.rollback()
            raise
        finally:
            lock.release()

    # ── Mutations ────────────────────────────────────────────────────

    async def try_admit(
        self,
        window_id: uuid.UUID,
        minutes: int,
        *,
        slot_id: uuid.UUID | None = None,
        claim: Reservation | None = None,
    ) -> Admission:
        """
        Admit `minutes` against the window (and slot), inserting `claim` in
        the same transaction. Raises CapacityRejected when it does not fit.
        """
        if minutes <= 0:
            raise InvalidParameter(f"minutes must be positive, got {minutes}")

        try:
            async with self.window_lock(window_id) as window:
                now = self._clock()
                if not window.is_active:
                    await self._reject(window_id, minutes, 0, reason="window_inactive", slot_id=slot_id)

                capacity = window.capacity_minutes
                committed = await self.committed_minutes(window_id, now)
                available = max(0, capacity - committed)

                if slot_id is not None:
                    slot = await self.db.get(DeliverySlot, slot_id, populate_existing=True)
                    if slot is None or slot.window_id != window.window_id:
                        await self.db.commit()
                        raise WindowNotFound(f"Delivery slot {slot_id} not found in window {window_id}")
                    if not slot.is_available:
                        await self._reject(window_id, minutes, 0, reason="slot_unavailable", slot_id=slot_id)
                    slot_committed = await self.slot_committed_minutes(slot_id, now)
                    available = min(available, max(0, slot.capacity_minutes - slot_committed))

                if minutes > available:
                    await self._reject(window_id, minutes, available, slot_id=slot_id)

                if claim is not None:
                    self.db.add(claim)
                await self.db.commit()
        except DBAPIError as exc:
            logger.error(
                "capacity.admission_failed",
                window_id=str(window_id),
                requested_minutes=minutes,
                error=str(exc),
            )
            raise CapacityLockTimeout(window_id=window_id, requested_minutes=minutes) from exc

        admission = Admission(
            window_id=window_id,
            slot_id=slot_id,
            admitted_minutes=minutes,
            capacity_minutes=capacity,
            committed_minutes=committed + minutes,
        )
        logger.info(
            "capacity.admitted",
            window_id=str(window_id),
            slot_id=str(slot_id) if slot_id else None,
            admitted_minutes=minutes,
            committed_minutes=admission.committed_minutes,
            capacity_minutes=admission.capacity_minutes,
        )
        return admission

    async def resize(self, window_id: uuid.UUID, capacity_minutes: int) -> CapacityWindow:
        """Change a window's budget. Shrinking below what is already committed is refused."""
        if capacity_minutes <= 0:
            raise InvalidParameter(f"capacity_minutes must be positive, got {capacity_minutes}")

        async with self.window_lock(window_id) as window:
            committed = await self.committed_minutes(window_id)
            if capacity_minutes < committed:
                await self._reject(window_id, committed, capacity_minutes, reason="below_committed")
            window.capacity_minutes = capacity_minutes
            await self.db.commit()

        logger.info("capacity.resized", window_id=str(window_id), capacity_minutes=capacity_minutes)
        return window

    async def _reject(self, window_id, requested: int, available: int, *, reason="insufficient_capacity", slot_id=None):
        # Nothing was written; committing ends the transaction and drops the row lock.
        await self.db.commit()
        exc = CapacityRejected(
            window_id=window_id,
            requested_minutes=requested,
            available_minutes=available,
            reason=reason,
            slot_id=slot_id,
        )
        logger.info(
            "capacity.rejected",
            window_id=str(window_id),
            slot_id=str(slot_id) if slot_id else None,
            requested_minutes=requested,
            available_minutes=exc.available_minutes,
            shortfall_minutes=exc.shortfall_minutes,
            reason=reason,
        )
        raise exc
