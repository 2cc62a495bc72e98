"""
Domain exception → HTTP response mapping.

Every handled error renders the same body:

  {"detail": {"code", "message", "user_message", "details", "trace_id"}}

and is logged once with its trace id so a support ticket can be matched to
the server log.
"""

import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from capacity.ledger import CapacityLockTimeout, CapacityRejected, WindowNotFound
from capacity.reservations import InvalidReservationState, ReservationExpired, ReservationNotFound
from orders.intake import CustomerNotFound, OrderRejected, ProductNotFound
from scheduling.decay import InvalidParameter
from scheduling.feasibility import ScheduleInfeasible

logger = structlog.get_logger()

USER_MESSAGES = {
    "VALIDATION_ERROR": "Please check the form for errors and try again.",
    "NOT_FOUND": "The requested item could not be found.",
    "LICENSE_EXPIRED": "Customer license has expired. Please renew to continue.",
    "PRODUCT_NOT_PERMITTED": "This customer is not authorized to order this product.",
    "ORDER_TIME_NOT_FEASIBLE": "The selected delivery time is not feasible for this product.",
    "CAPACITY_FULL": "Production capacity is full for the selected time. Please try another slot.",
    "RESERVATION_NOT_FOUND": "The reservation could not be found.",
    "RESERVATION_EXPIRED": "This reservation has expired. Please rebook.",
    "RESERVATION_INVALID_STATUS": "This action is not allowed for the reservation's current status.",
}


def error_response(
    status_code: int,
    code: str,
    message: str,
    *,
    details: dict | None = None,
    user_message: str | None = None,
) -> JSONResponse:
    trace_id = str(uuid.uuid4())
    log = logger.warning if status_code >= 409 else logger.info
    log("api.domain_error", trace_id=trace_id, code=code, status_code=status_code, message=message)
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": {
                "code": code,
                "message": message,
                "user_message": user_message or USER_MESSAGES.get(code, "An error occurred."),
                "details": details or {},
                "trace_id": trace_id,
            }
        },
    )


async def _invalid_parameter(request: Request, exc: InvalidParameter):
    return error_response(400, "VALIDATION_ERROR", str(exc))


async def _schedule_infeasible(request: Request, exc: ScheduleInfeasible):
    return error_response(
        400,
        "ORDER_TIME_NOT_FEASIBLE",
        str(exc),
        details={"reason": exc.reason, **exc.details},
    )


async def _order_rejected(request: Request, exc: OrderRejected):
    return error_response(400, exc.code, str(exc), details=exc.details)


async def _capacity_rejected(request: Request, exc: CapacityRejected):
    user_message = None
    if isinstance(exc, CapacityLockTimeout):
        user_message = "Capacity is busy right now. Please try again."
    return error_response(
        409,
        "CAPACITY_FULL",
        str(exc),
        details={
            "reason": exc.reason,
            "window_id": str(exc.window_id),
            "slot_id": str(exc.slot_id) if exc.slot_id else None,
            "requested_minutes": exc.requested_minutes,
            "available_minutes": exc.available_minutes,
            "shortfall_minutes": exc.shortfall_minutes,
        },
        user_message=user_message,
    )


async def _reservation_expired(request: Request, exc: ReservationExpired):
    return error_response(
        409,
        "RESERVATION_EXPIRED",
        str(exc),
        details={
            "reservation_id": str(exc.reservation_id),
            "expired_at": exc.expired_at.isoformat() if exc.expired_at else None,
        },
    )


async def _invalid_reservation_state(request: Request, exc: InvalidReservationState):
    return error_response(
        409,
        "RESERVATION_INVALID_STATUS",
        str(exc),
        details={
            "reservation_id": str(exc.reservation_id),
            "current_status": exc.current_status.value,
            "attempted_action": exc.action,
        },
    )


async def _reservation_not_found(request: Request, exc: ReservationNotFound):
    return error_response(404, "RESERVATION_NOT_FOUND", str(exc))


async def _not_found(request: Request, exc: LookupError):
    return error_response(404, "NOT_FOUND", str(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InvalidParameter, _invalid_parameter)
    app.add_exception_handler(ScheduleInfeasible, _schedule_infeasible)
    app.add_exception_handler(OrderRejected, _order_rejected)
    app.add_exception_handler(CapacityRejected, _capacity_rejected)
    app.add_exception_handler(ReservationExpired, _reservation_expired)
    app.add_exception_handler(InvalidReservationState, _invalid_reservation_state)
    app.add_exception_handler(ReservationNotFound, _reservation_not_found)
    for exc_class in (WindowNotFound, CustomerNotFound, ProductNotFound):
        app.add_exception_handler(exc_class, _not_found)
