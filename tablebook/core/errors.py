"""
Error taxonomy for booking, lock and reconciliation failures.

Services raise BookingError subclasses; the handlers installed by
install_error_handlers render them as {"ok": false, "code", "message", "request_id"}.
Anything else is logged server-side and reported as an opaque server_error.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

MSG_SERVER_ERROR = "Something went wrong. Please try again."


class BookingError(Exception):
    code = "server_error"
    status_code = 500
    default_message = MSG_SERVER_ERROR

    def __init__(self, message: str | None = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)


class InvalidInput(BookingError):
    code = "invalid_input"
    status_code = 400
    default_message = "Invalid request."


class Unauthorized(BookingError):
    code = "unauthorized"
    status_code = 401
    default_message = "Authentication required."


class Forbidden(BookingError):
    code = "forbidden"
    status_code = 403
    default_message = "This venue is not accepting bookings."


class NotFound(BookingError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class VenueNotFound(NotFound):
    code = "venue_not_found"
    default_message = "Venue not found."


class ServiceNotFound(NotFound):
    code = "service_not_found"
    default_message = "Service not found."


class SlotConflict(BookingError):
    code = "slot_conflict"
    status_code = 409
    default_message = "That time is no longer available. Please choose another time."


class SlotUnavailable(SlotConflict):
    code = "slot_unavailable"
    default_message = "That time is not available. Please choose another time."


class SlotLocked(SlotConflict):
    code = "slot_locked"
    default_message = "Someone else is booking that time. Please choose another time."


class InvalidStateTransition(BookingError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Illegal state transition attempted: {from_state} -> {to_state}")


class LockExpired(BookingError):
    code = "lock_expired"
    status_code = 410
    default_message = "Your hold on this time has expired. Please select a time again."


class RateLimited(BookingError):
    code = "rate_limited"
    status_code = 429
    default_message = "Too many requests. Please try again shortly."


def request_id_of(request: Request) -> str:
    return getattr(request.state, "request_id", "")


def error_body(request: Request, code: str, message: str, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"ok": False, "code": code, "message": message, "request_id": request_id_of(request)}
    body.update(extra)
    return body


async def _booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_id=%s %s: %s", request_id_of(request), exc.code, exc.message)
    else:
        logger.info("request_id=%s rejected %s: %s", request_id_of(request), exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(request, exc.code, exc.message, **exc.extra))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content=error_body(request, InvalidInput.code, InvalidInput.default_message, details=details))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request_id=%s unhandled error on %s %s", request_id_of(request), request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body(request, "server_error", MSG_SERVER_ERROR))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, _booking_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
