"""
Reservation State Machine: lifecycle of a single capacity hold.

  TENTATIVE ──confirm──▶ CONFIRMED ──convert──▶ CONVERTED
      │
      ├──cancel──▶ CANCELLED
      └──(expires_at passes)──▶ EXPIRED

Every status write goes through `transition()`. Reservations are only born
TENTATIVE, through a successful CapacityLedger.try_admit. Expiry is
time-driven: a hold stops counting against its window the moment
`expires_at` passes; confirm re-checks the clock under the window lock
instead of trusting the stored status, and the sweep only brings the stored
status up to date for reporting.
"""

import secrets
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from capacity.ledger import Admission, CapacityLedger
from core.config import get_settings
from db.models import Reservation, ReservationStatus, utcnow
from scheduling.decay import InvalidParameter

logger = structlog.get_logger()

ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.TENTATIVE: frozenset(
        {ReservationStatus.CONFIRMED, ReservationStatus.EXPIRED, ReservationStatus.CANCELLED}
    ),
    ReservationStatus.CONFIRMED: frozenset({ReservationStatus.CONVERTED}),
    ReservationStatus.EXPIRED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.CONVERTED: frozenset(),
}


class ReservationNotFound(LookupError):
    pass


class ReservationExpired(ValueError):
    """The hold lapsed before it was confirmed. The user has to rebook."""

    def __init__(self, reservation_id, expired_at: datetime | None):
        self.reservation_id = reservation_id
        self.expired_at = expired_at
        when = expired_at.isoformat() if expired_at else "unknown"
        super().__init__(f"Reservation {reservation_id} expired at {when}")


class InvalidReservationState(ValueError):
    def __init__(self, reservation_id, current: ReservationStatus, action: str):
        self.reservation_id = reservation_id
        self.current_status = current
        self.action = action
        super().__init__(f"Cannot {action} reservation {reservation_id} in status {current.value}")


def can_transition(current: ReservationStatus, new: ReservationStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_lapsed(reservation: Reservation, now: datetime) -> bool:
    """TENTATIVE and past its hold, whatever the stored status says about it."""
    return (
        reservation.status == ReservationStatus.TENTATIVE
        and reservation.expires_at is not None
        and now > reservation.expires_at
    )


def expires_in_seconds(reservation: Reservation, now: datetime) -> int:
    if reservation.status != ReservationStatus.TENTATIVE or reservation.expires_at is None:
        return 0
    return max(0, int((reservation.expires_at - now).total_seconds()))


def generate_reservation_number(now: datetime) -> str:
    return f"RES-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def transition(reservation: Reservation, new_status: ReservationStatus, now: datetime, action: str) -> None:
    current = reservation.status
    if not can_transition(current, new_status):
        raise InvalidReservationState(reservation.reservation_id, current, action)

    reservation.status = new_status
    reservation.updated_at = now
    # expires_at only means something while the hold is TENTATIVE
    reservation.expires_at = None
    if new_status == ReservationStatus.CONFIRMED:
        reservation.confirmed_at = now
    elif new_status == ReservationStatus.CANCELLED:
        reservation.cancelled_at = now


class ReservationStateMachine:
    def __init__(
        self,
        db: AsyncSession,
        *,
        ledger: CapacityLedger | None = None,
        clock: Callable[[], datetime] = utcnow,
        hold: timedelta | None = None,
    ):
        self.db = db
        self._clock = clock
        self.ledger = ledger or CapacityLedger(db, clock=clock)
        self.hold = hold or timedelta(minutes=get_settings().reservation_hold_minutes)

    async def get(self, reservation_id: uuid.UUID) -> Reservation:
        reservation = await self.db.get(Reservation, reservation_id, populate_existing=True)
        if reservation is None:
            raise ReservationNotFound(f"Reservation {reservation_id} not found")
        return reservation

    async def create(
        self,
        window_id: uuid.UUID,
        estimated_minutes: int,
        *,
        hold: timedelta | None = None,
        slot_id: uuid.UUID | None = None,
        requested_date: datetime | None = None,
        **attrs,
    ) -> Reservation:
        """Place a TENTATIVE hold. Raises CapacityRejected when the window is full."""
        if estimated_minutes <= 0:
            raise InvalidParameter(f"estimated_minutes must be positive, got {estimated_minutes}")
        if requested_date is None:
            window = await self.ledger.get_window(window_id)
            requested_date = window.start_time

        now = self._clock()
        reservation = Reservation(
            reservation_id=uuid.uuid4(),
            reservation_number=generate_reservation_number(now),
            window_id=window_id,
            slot_id=slot_id,
            requested_date=requested_date,
            estimated_minutes=estimated_minutes,
            status=ReservationStatus.TENTATIVE,
            expires_at=now + (hold or self.hold),
            created_at=now,
            updated_at=now,
            **attrs,
        )
        admission: Admission = await self.ledger.try_admit(
            window_id, estimated_minutes, slot_id=slot_id, claim=reservation
        )
        logger.info(
            "reservation.created",
            reservation_id=str(reservation.reservation_id),
            window_id=str(window_id),
            estimated_minutes=estimated_minutes,
            available_minutes=admission.available_minutes,
            expires_at=reservation.expires_at.isoformat(),
        )
        return reservation

    async def confirm(self, reservation_id: uuid.UUID) -> Reservation:
        """
        TENTATIVE → CONFIRMED. Confirming an already-confirmed reservation is a
        no-op so that duplicate submits are harmless.
        """
        reservation = await self.get(reservation_id)
        if reservation.status == ReservationStatus.CONFIRMED:
            return reservation
        if reservation.status != ReservationStatus.TENTATIVE:
            raise InvalidReservationState(reservation_id, reservation.status, "confirm")

        # Under the window lock so an admission that already counted this
        # hold as lapsed cannot be followed by a late confirm.
        async with self.ledger.window_lock(reservation.window_id):
            reservation = await self.get(reservation_id)
            now = self._clock()
            if reservation.status == ReservationStatus.CONFIRMED:
                await self.db.commit()
                return reservation
            if is_lapsed(reservation, now):
                await self._expire(reservation, now)
            transition(reservation, ReservationStatus.CONFIRMED, now, "confirm")
            await self.db.commit()

        logger.info("reservation.confirmed", reservation_id=str(reservation_id))
        return reservation

    async def cancel(self, reservation_id: uuid.UUID, reason: str | None = None) -> Reservation:
        """TENTATIVE → CANCELLED. Confirmed capacity is released through its downstream order instead."""
        reservation = await self.get(reservation_id)
        if reservation.status != ReservationStatus.TENTATIVE:
            raise InvalidReservationState(reservation_id, reservation.status, "cancel")

        async with self.ledger.window_lock(reservation.window_id):
            reservation = await self.get(reservation_id)
            now = self._clock()
            if is_lapsed(reservation, now):
                await self._expire(reservation, now)
            transition(reservation, ReservationStatus.CANCELLED, now, "cancel")
            if reason:
                reservation.notes = f"{reservation.notes or ''}\nCancelled: {reason}".strip()
            await self.db.commit()

        logger.info("reservation.cancelled", reservation_id=str(reservation_id), reason=reason)
        return reservation

    async def convert(self, reservation_id: uuid.UUID, order_id: uuid.UUID) -> Reservation:
        """CONFIRMED → CONVERTED, recording the order that now owns the commitment."""
        reservation = await self.get(reservation_id)
        transition(reservation, ReservationStatus.CONVERTED, self._clock(), "convert")
        reservation.converted_order_id = order_id
        await self.db.commit()

        logger.info("reservation.converted", reservation_id=str(reservation_id), order_id=str(order_id))
        return reservation

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """Mark every lapsed TENTATIVE hold EXPIRED. Idempotent."""
        now = now or self._clock()
        result = await self.db.execute(
            update(Reservation)
            .where(
                Reservation.status == ReservationStatus.TENTATIVE,
                Reservation.expires_at < now,
            )
            .values(status=ReservationStatus.EXPIRED, expires_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        expired = int(result.rowcount or 0)
        logger.info("reservation.sweep_complete", expired_count=expired, swept_at=now.isoformat())
        return expired

    async def _expire(self, reservation: Reservation, now: datetime) -> None:
        expired_at = reservation.expires_at
        transition(reservation, ReservationStatus.EXPIRED, now, "expire")
        await self.db.commit()
        logger.info("reservation.expired", reservation_id=str(reservation.reservation_id))
        raise ReservationExpired(reservation.reservation_id, expired_at)
