import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Union

import httpx

from .countdown import CountdownState, PaymentCountdownMonitor
from .holds import ReservationHoldClient, is_status_locked
from .models import Notice, ReservationDraft, ReservationHold, ReservationStatus
from .refund import estimate_refund
from .store import JsonFileCountdownStore
from ..api.auth import AuthClient, AuthStore
from ..api.catalog import CatalogClient
from ..api.client import ApiClient
from ..config import Config
from ..errors import RyderXError, StatusTransitionError
from ..payments.checkout import PaymentRedirectClient, handle_cancel, handle_success, open_in_browser

logger = logging.getLogger(__name__)


class BookingSession:
    """
    What a UI layer talks to: the signed-in user's reservations, their payment
    countdowns, and the book / pay / cancel actions.
    """

    def __init__(
        self,
        api: ApiClient,
        auth: AuthClient,
        catalog: CatalogClient,
        holds: ReservationHoldClient,
        monitor: PaymentCountdownMonitor,
        checkout: PaymentRedirectClient,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.api = api
        self.auth = auth
        self.catalog = catalog
        self.holds = holds
        self.monitor = monitor
        self.checkout = checkout
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._reservations: Dict[str, ReservationHold] = {}

    @classmethod
    def from_config(
        cls,
        navigator: Callable[[str], None] = open_in_browser,
        on_notice: Optional[Callable[[Notice], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "BookingSession":
        if not Config.API_URL:
            raise RyderXError("RYDERX_API_URL is not configured.")
        auth_store = AuthStore(Config.auth_file())
        api = ApiClient(
            Config.API_URL,
            token_provider=auth_store.token,
            on_unauthorized=auth_store.clear,
            timeout=Config.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )
        catalog = CatalogClient(api)
        auth = AuthClient(api, auth_store)
        holds = ReservationHoldClient(api, catalog, roles_provider=auth.roles)
        monitor = PaymentCountdownMonitor(
            holds,
            JsonFileCountdownStore(Config.countdown_file()),
            window_seconds=Config.HOLD_WINDOW_SECONDS,
            on_notice=on_notice,
        )
        checkout = PaymentRedirectClient(api, navigator=navigator, payment_method=Config.CHECKOUT_PAYMENT_METHOD)
        return cls(api, auth, catalog, holds, monitor, checkout)

    @property
    def roles(self) -> List[str]:
        return self.auth.roles()

    async def refresh(self) -> List[ReservationHold]:
        """Re-fetch reservations and reconcile every countdown with the server's status."""
        reservations = await self.holds.fetch_holds(self.roles)
        self._reservations = {r.key: r for r in reservations}
        self.monitor.observe_all(reservations)
        return reservations

    def get(self, reservation_id: Union[int, str]) -> ReservationHold:
        try:
            return self._reservations[str(reservation_id)]
        except KeyError:
            raise RyderXError("Reservation not found. Please refresh your bookings.") from None

    def active_holds(self) -> List[ReservationHold]:
        return [r for r in self._reservations.values() if r.is_active]

    def past_holds(self) -> List[ReservationHold]:
        return [r for r in self._reservations.values() if not r.is_active]

    async def book(self, draft: ReservationDraft) -> ReservationHold:
        hold = await self.holds.create_hold(draft)
        self._reservations[hold.key] = hold
        self.monitor.observe(hold)
        return hold

    async def pay(self, reservation_id: Union[int, str]) -> str:
        hold = self.get(reservation_id)
        if not hold.is_pending:
            raise StatusTransitionError(f"A {hold.status.value} reservation has nothing to pay.")
        if self.monitor.state(hold.key) == CountdownState.EXPIRED:
            raise RyderXError("Payment time expired for this reservation.")
        return await self.checkout.begin_checkout(hold.id, hold.total_price)

    async def cancel(self, reservation_id: Union[int, str]) -> bool:
        """
        Manual cancel. Returns False when nothing was sent because the countdown
        already settled the reservation, or the server refused a cancel for a
        reservation that is no longer Pending. Any other rejection propagates
        and leaves the countdown running.
        """
        key = str(reservation_id)
        hold = self._reservations.get(key)
        if hold is not None and is_status_locked(hold.status):
            raise StatusTransitionError(f"A {hold.status.value} reservation can no longer be cancelled.")
        if self.monitor.is_settled(key):
            logger.info("Countdown already settled this reservation; cancel skipped", extra={"reservation_id": key})
            return False

        cancelled = await self.holds.cancel_hold(hold.id if hold is not None else reservation_id)
        self.monitor.resolve(key)
        return cancelled

    def refund_estimate(self, reservation_id: Union[int, str]) -> float:
        return estimate_refund(self.get(reservation_id), self._now())

    async def update_status(self, reservation_id: Union[int, str], status: Union[str, ReservationStatus]):
        hold = self._reservations.get(str(reservation_id))
        await self.holds.update_status(
            hold.id if hold is not None else reservation_id,
            status,
            current=hold.status if hold is not None else None,
        )

    async def payment_succeeded(self, session_id: Optional[str]) -> Notice:
        notice = handle_success(session_id)
        if self.auth.current() is not None:
            await self.refresh()
        return notice

    def payment_cancelled(self) -> Notice:
        return handle_cancel()

    async def aclose(self):
        self.monitor.stop()
        await self.monitor.wait_idle()
        await self.api.aclose()
