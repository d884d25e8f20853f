"""
Hosted checkout for pending reservations.

The payment page belongs to the payment provider, so the client never sees
card details:

- The reservations API creates a checkout session for the reservation and
  returns its URL.
- The client hands that URL to a navigator. The CLI opens the system
  browser, the web server answers with a redirect.
- The provider sends the user back to the success or cancel callback page.
  The payment webhook (server side) confirms the reservation; the client
  picks the new status up on its next fetch.

Failures are raised to the caller and never navigate. There is no retry;
the user starts checkout again.
"""

import logging
import webbrowser
from typing import Any, Callable, Optional, Set, Union

import httpx

from ..api.client import ApiClient, parse_model
from ..booking.models import CheckoutSession, Notice
from ..errors import ActionInProgressError, MalformedResponseError, ServiceRejectedError

logger = logging.getLogger(__name__)


def open_in_browser(url: str):
    webbrowser.open(url)


def _checkout_session(data: Any) -> CheckoutSession:
    if not isinstance(data, dict) or not data.get("url"):
        raise MalformedResponseError("Invalid checkout URL")
    session = parse_model(CheckoutSession, data)
    try:
        scheme = httpx.URL(session.url).scheme
    except httpx.InvalidURL as e:
        raise MalformedResponseError("Invalid checkout URL") from e
    if scheme not in ("http", "https"):
        raise MalformedResponseError("Invalid checkout URL")
    return session


class PaymentRedirectClient:
    def __init__(
        self,
        api: ApiClient,
        navigator: Callable[[str], None] = open_in_browser,
        payment_method: str = "Stripe",
    ):
        self.api = api
        self.navigator = navigator
        self.payment_method = payment_method
        self._in_flight: Set[str] = set()

    async def begin_checkout(self, reservation_id: Union[int, str], amount: float) -> str:
        """
        Request a checkout session and navigate to it.

        Args:
            reservation_id: The pending reservation being paid for.
            amount: Amount shown to the user; the API charges its own total.

        Returns:
            The checkout URL that was handed to the navigator.
        """
        key = str(reservation_id)
        if key in self._in_flight:
            raise ActionInProgressError("Payment is already being initialised for this reservation.")

        self._in_flight.add(key)
        try:
            logger.info(f"Creating checkout session for {amount}", extra={"reservation_id": key})
            data = await self.api.post(
                "/payments/create-checkout-session",
                json={
                    "reservationId": reservation_id,
                    "amount": amount,
                    "paymentMethod": self.payment_method,
                },
            )
        except ServiceRejectedError as e:
            logger.warning(f"Checkout session rejected: {e.message}", extra={"reservation_id": key})
            raise
        finally:
            self._in_flight.discard(key)

        session = _checkout_session(data)
        logger.info("Redirecting to hosted checkout", extra={"reservation_id": key})
        self.navigator(session.url)
        return session.url


def handle_success(session_id: Optional[str]) -> Notice:
    """Message for the page the provider returns to after a completed payment."""
    message = "Payment Successful. Your booking has been confirmed!"
    if session_id:
        message += f" Session ID: {session_id}"
    return Notice(level="info", message=message)


def handle_cancel() -> Notice:
    return Notice(level="warning", message="Payment Cancelled. You can try the payment again anytime.")
