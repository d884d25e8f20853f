import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

# Load environment variables
load_dotenv()

from ryderx.booking.models import AddOns, ApiModel, CarFilter, Hirer, ReservationDraft, ReservationHold
from ryderx.booking.refund import refund_applicable
from ryderx.booking.session import BookingSession
from ryderx.config import Config, setup_logging
from ryderx.errors import (
    ActionInProgressError,
    DraftValidationError,
    RyderXError,
    ServiceRejectedError,
    ServiceUnavailableError,
    UnauthorizedError,
)

setup_logging(Config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="RyderX Booking")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class LoginRequest(ApiModel):
    email: str
    password: str


class BookingRequest(ApiModel):
    car_id: str
    pickup_location: str
    dropoff_location: str
    pickup_at: datetime
    dropoff_at: datetime
    add_ons: AddOns = AddOns()
    hirer: Hirer


class StatusRequest(ApiModel):
    status: str


def get_session(request: Request) -> BookingSession:
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise ServiceUnavailableError("Booking service is not configured.")
    return session


def booking_view(session: BookingSession, hold: ReservationHold) -> Dict[str, Any]:
    view = hold.model_dump(mode="json", by_alias=True)
    view["countdown"] = {
        "state": session.monitor.state(hold.key).value,
        "remainingSeconds": session.monitor.remaining(hold.key),
        "display": session.monitor.display(hold.key),
    }
    view["canPay"] = hold.is_pending and not session.monitor.is_settled(hold.key)
    view["refundEstimate"] = session.refund_estimate(hold.key) if refund_applicable(hold) else None
    return view


def _status_code(exc: RyderXError) -> int:
    if isinstance(exc, UnauthorizedError):
        return 401
    if isinstance(exc, ActionInProgressError):
        return 409
    if isinstance(exc, ServiceUnavailableError):
        return 503
    if isinstance(exc, ServiceRejectedError):
        return exc.status_code if exc.status_code and exc.status_code >= 400 else 502
    return 400


@app.exception_handler(RyderXError)
async def ryderx_error_handler(request: Request, exc: RyderXError):
    content = {"detail": exc.message}
    if isinstance(exc, DraftValidationError):
        content["step"] = exc.step
    return JSONResponse(status_code=_status_code(exc), content=content)


@app.on_event("startup")
async def startup_event():
    if not Config.validate():
        logger.error("Config validation failed.")
        return
    # The browser follows the 303 returned by the pay endpoint, so the session itself never navigates.
    session = BookingSession.from_config(navigator=lambda url: None)
    app.state.session = session
    app.state.ticker = asyncio.create_task(session.monitor.run(Config.COUNTDOWN_TICK_SECONDS))
    logger.info("Booking session initialized")


@app.on_event("shutdown")
async def shutdown_event():
    session = getattr(app.state, "session", None)
    ticker = getattr(app.state, "ticker", None)
    if ticker is not None:
        if session is not None:
            session.monitor.stop()
        ticker.cancel()
        try:
            await ticker
        except asyncio.CancelledError:
            pass
        app.state.ticker = None
    if session is not None:
        await session.aclose()


@app.post("/api/login")
async def login(body: LoginRequest, request: Request):
    session = get_session(request)
    auth = await session.auth.login(body.email, body.password)
    await session.refresh()
    return {"username": auth.username, "roles": auth.roles}


@app.get("/api/cars")
async def search_cars(
    request: Request,
    location: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    category: Optional[str] = None,
    fuel_type: Optional[str] = None,
    transmission: Optional[str] = None,
    min_seats: Optional[int] = None,
    make: Optional[str] = None,
    available: Optional[bool] = None,
):
    session = get_session(request)
    criteria = CarFilter(
        location_name=location,
        min_price=min_price,
        max_price=max_price,
        category=category,
        fuel_type=fuel_type,
        transmission=transmission,
        min_seats=min_seats,
        make=make,
        available=available,
    )
    cars = await session.catalog.search_cars(criteria)
    return [car.model_dump(mode="json", by_alias=True) for car in cars]


@app.get("/api/bookings")
async def list_bookings(request: Request):
    session = get_session(request)
    await session.refresh()
    return {
        "active": [booking_view(session, h) for h in session.active_holds()],
        "past": [booking_view(session, h) for h in session.past_holds()],
    }


@app.post("/api/bookings", status_code=201)
async def create_booking(body: BookingRequest, request: Request):
    session = get_session(request)
    cars = await session.catalog.list_cars()
    car = next((c for c in cars if str(c.id) == body.car_id), None)
    if car is None:
        raise DraftValidationError("Select a vehicle.", step=2)

    draft = ReservationDraft(
        car=car,
        pickup_location=body.pickup_location,
        dropoff_location=body.dropoff_location,
        pickup_at=body.pickup_at,
        dropoff_at=body.dropoff_at,
        add_ons=body.add_ons,
        hirer=body.hirer,
    )
    hold = await session.book(draft)
    return booking_view(session, hold)


@app.post("/api/bookings/{reservation_id}/pay")
async def pay(reservation_id: str, request: Request):
    session = get_session(request)
    url = await session.pay(reservation_id)
    return RedirectResponse(url, status_code=303)


@app.post("/api/bookings/{reservation_id}/cancel")
async def cancel(reservation_id: str, request: Request):
    session = get_session(request)
    cancelled = await session.cancel(reservation_id)
    await session.refresh()
    return {"cancelled": cancelled}


@app.get("/api/bookings/{reservation_id}/refund-estimate")
async def refund_estimate(reservation_id: str, request: Request):
    session = get_session(request)
    await session.refresh()
    return {"reservationId": reservation_id, "estimate": session.refund_estimate(reservation_id)}


@app.put("/api/bookings/{reservation_id}/status")
async def update_status(reservation_id: str, body: StatusRequest, request: Request):
    session = get_session(request)
    await session.update_status(reservation_id, body.status)
    await session.refresh()
    return booking_view(session, session.get(reservation_id))


@app.get("/api/notices")
async def notices(request: Request):
    session = get_session(request)
    return [n.model_dump() for n in session.monitor.drain_notices()]


def _page(title: str, message: str, colour: str) -> HTMLResponse:
    return HTMLResponse(
        f"<!doctype html><html><head><title>{title}</title></head>"
        f"<body style=\"text-align:center;padding:4em;font-family:sans-serif\">"
        f"<h1 style=\"color:{colour}\">{title}</h1><p>{message}</p>"
        f"<p><a href=\"/\">Go to Home</a></p></body></html>"
    )


@app.get("/payment/success")
async def payment_success(request: Request, session_id: Optional[str] = None):
    session = get_session(request)
    notice = await session.payment_succeeded(session_id)
    return _page("Payment Successful", notice.message, "green")


@app.get("/payment/cancel")
async def payment_cancel(request: Request):
    session = get_session(request)
    notice = session.payment_cancelled()
    return _page("Payment Cancelled", notice.message, "crimson")


if __name__ == "__main__":
    uvicorn.run("web_server:app", host="0.0.0.0", port=5000, reload=True)
