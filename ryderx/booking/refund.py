from datetime import datetime

from .models import ReservationHold, ReservationStatus, as_utc
from ..errors import RefundNotApplicableError

FULL_REFUND_HOURS = 24
HALF_REFUND_HOURS = 6


def refund_applicable(hold: ReservationHold) -> bool:
    """Pending holds go through the payment countdown, not the refund path."""
    return hold.status == ReservationStatus.CONFIRMED and hold.pickup_at is not None


def estimate_refund(hold: ReservationHold, now: datetime) -> float:
    """
    Advisory refund for cancelling a confirmed reservation at ``now``.

    Full refund 24 hours or more before pickup, half from 6 hours, a quarter
    after that. The API decides the actual amount.
    """
    if not refund_applicable(hold):
        raise RefundNotApplicableError(
            f"No refund estimate for a reservation in status {hold.status.value}."
        )

    hours_until_pickup = (hold.pickup_at - as_utc(now)).total_seconds() / 3600
    if hours_until_pickup >= FULL_REFUND_HOURS:
        return hold.total_price
    if hours_until_pickup >= HALF_REFUND_HOURS:
        return round(hold.total_price * 0.5, 2)
    return round(hold.total_price * 0.25, 2)
