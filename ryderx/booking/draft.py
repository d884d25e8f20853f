"""
Reservation draft helpers: per-step validation, date normalisation and the
display-only price quote shown while the wizard is open.
"""

import math
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

from .models import PriceQuote, ReservationDraft, as_utc
from ..errors import DraftValidationError

ROAD_CARE_FEE = 300
ADDITIONAL_DRIVER_FEE = 200
CHILD_SEAT_FEE = 150

MIN_PICKUP_LEAD = timedelta(hours=1)
DEFAULT_RENTAL_LENGTH = timedelta(hours=24)

_EMAIL_PATTERN = re.compile(r"\S+@\S+\.\S+")

STEP_MESSAGES = {
    1: "Please set valid pickup & dropoff dates.",
    2: "Select a vehicle.",
    3: "Fill hirer details.",
}


def step1_valid(draft: ReservationDraft) -> bool:
    """Trip details: a dropoff location and a dropoff strictly after pickup."""
    if not draft.dropoff_location:
        return False
    if draft.pickup_at is None or draft.dropoff_at is None:
        return False
    return draft.dropoff_at > draft.pickup_at


def step2_valid(draft: ReservationDraft) -> bool:
    return draft.car is not None


def step3_valid(draft: ReservationDraft) -> bool:
    hirer = draft.hirer
    return bool(
        hirer.first_name.strip()
        and hirer.last_name.strip()
        and _EMAIL_PATTERN.search(hirer.email)
        and hirer.phone.strip()
    )


def validate_draft(draft: ReservationDraft, now: Optional[datetime] = None) -> None:
    """
    Run the three wizard pre-checks in order.

    Raises DraftValidationError for the first failing step. When ``now`` is
    given, a pickup time in the past also fails step 1.
    """
    checks = ((1, step1_valid), (2, step2_valid), (3, step3_valid))
    for step, check in checks:
        if not check(draft):
            raise DraftValidationError(STEP_MESSAGES[step], step=step)

    if now is not None and draft.pickup_at < as_utc(now):
        raise DraftValidationError("Pick-up time cannot be in the past.", step=1)


def normalize_dates(draft: ReservationDraft, now: datetime) -> ReservationDraft:
    """
    Keep the trip dates usable while the user edits them.

    Pickup is pushed to at least one hour from ``now``; a dropoff that is not
    after pickup is moved to one day after pickup.
    """
    earliest = as_utc(now) + MIN_PICKUP_LEAD
    if draft.pickup_at is None or draft.pickup_at < earliest:
        draft.pickup_at = earliest
    if draft.dropoff_at is None or draft.dropoff_at <= draft.pickup_at:
        draft.dropoff_at = draft.pickup_at + DEFAULT_RENTAL_LENGTH
    return draft


def rental_days(pickup_at: Optional[datetime], dropoff_at: Optional[datetime]) -> int:
    """
    Rental length in started 24-hour periods: 24h is one day, 25h is two.

    Missing or inverted dates count as a single day.
    """
    if pickup_at is None or dropoff_at is None:
        return 1
    start, end = as_utc(pickup_at), as_utc(dropoff_at)
    if end <= start:
        return 1
    return max(1, math.ceil((end - start).total_seconds() / 86400))


def quote(draft: ReservationDraft) -> PriceQuote:
    days = rental_days(draft.pickup_at, draft.dropoff_at)
    price_per_day = draft.car.price_per_day if draft.car else 0.0
    vehicle_subtotal = price_per_day * days

    add_ons = draft.add_ons
    road_care = ROAD_CARE_FEE if add_ons.road_care else 0
    additional_driver = ADDITIONAL_DRIVER_FEE if add_ons.additional_driver else 0
    child_seat = CHILD_SEAT_FEE if add_ons.child_seat else 0

    return PriceQuote(
        days=days,
        vehicle_subtotal=vehicle_subtotal,
        road_care=road_care,
        additional_driver=additional_driver,
        child_seat=child_seat,
        total=vehicle_subtotal + road_care + additional_driver + child_seat,
    )


def _iso(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


def build_payload(
    draft: ReservationDraft,
    pickup_location_id: Union[int, str],
    dropoff_location_id: Union[int, str],
) -> Dict[str, Any]:
    """Request body for the create-reservation call."""
    return {
        "carId": draft.car.id,
        "pickupAt": _iso(draft.pickup_at),
        "dropoffAt": _iso(draft.dropoff_at),
        "pickupLocationId": pickup_location_id,
        "dropoffLocationId": dropoff_location_id,
        "roadCare": draft.add_ons.road_care,
        "additionalDriver": draft.add_ons.additional_driver,
        "childSeat": draft.add_ons.child_seat,
    }
