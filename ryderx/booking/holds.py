"""
Reservation hold client.

Submits a completed draft to the reservations API, which places the hold and
decides price and availability. The client never changes a reservation's
status locally; it only re-fetches.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Set, Tuple, Union

from .draft import build_payload, quote, validate_draft
from .models import LOCKED_STATUSES, ReservationDraft, ReservationHold, ReservationStatus
from ..api.catalog import CatalogClient
from ..api.client import ApiClient, parse_model, parse_models
from ..errors import (
    ActionInProgressError,
    MalformedResponseError,
    RyderXError,
    ServiceRejectedError,
    StatusTransitionError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

ReservationId = Union[int, str]


def available_status_options(current: ReservationStatus) -> List[ReservationStatus]:
    """Statuses an agent or admin may pick for a reservation in ``current``."""
    if current == ReservationStatus.CONFIRMED:
        return [ReservationStatus.CONFIRMED, ReservationStatus.COMPLETED, ReservationStatus.CANCELLED]
    if current in (ReservationStatus.PENDING, ReservationStatus.ACTIVE):
        return [
            ReservationStatus.PENDING,
            ReservationStatus.CONFIRMED,
            ReservationStatus.COMPLETED,
            ReservationStatus.CANCELLED,
        ]
    return [current]


def is_status_locked(status: ReservationStatus) -> bool:
    return status in LOCKED_STATUSES


def reservations_path(roles: Iterable[str]) -> str:
    roles = list(roles or [])
    if "User" in roles:
        return "/reservations/user"
    if "Agent" in roles:
        return "/reservations/agent/my"
    if "Admin" in roles:
        return "/reservations"
    raise RyderXError("Unauthorized role to fetch reservations")


class ReservationHoldClient:
    def __init__(
        self,
        api: ApiClient,
        catalog: CatalogClient,
        now: Optional[Callable[[], datetime]] = None,
        roles_provider: Optional[Callable[[], List[str]]] = None,
    ):
        self.api = api
        self.catalog = catalog
        self.roles_provider = roles_provider
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._in_flight: Set[Tuple[str, str]] = set()

    @contextmanager
    def _single_flight(self, action: str, reservation_id: ReservationId):
        key = (action, str(reservation_id))
        if key in self._in_flight:
            raise ActionInProgressError(f"A {action} request for {reservation_id} is already in progress.")
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)

    def is_in_flight(self, action: str, reservation_id: ReservationId) -> bool:
        return (action, str(reservation_id)) in self._in_flight

    async def create_hold(self, draft: ReservationDraft) -> ReservationHold:
        """
        Validate the draft and ask the API to place a hold.

        Raises DraftValidationError before any network call when a wizard step
        is incomplete. API rejections (car unavailable, overlapping booking)
        propagate as ServiceRejectedError carrying the API's own message.
        """
        validate_draft(draft, now=self._now())

        pickup = await self.catalog.find_location(draft.pickup_location)
        dropoff = await self.catalog.find_location(draft.dropoff_location)
        payload = build_payload(draft, pickup.id, dropoff.id)

        with self._single_flight("create", draft.car.id):
            logger.info(f"Creating reservation for car {draft.car.id}")
            data = await self.api.post("/reservations", json=payload)

        if not isinstance(data, dict):
            raise MalformedResponseError("Reservation response was empty.")
        reservation_id = data.get("reservationId", data.get("id"))
        if reservation_id is None:
            raise MalformedResponseError("Reservation response did not include an id.")

        total = data.get("totalPrice")
        if total is None:
            total = quote(draft).total
            logger.info("API did not return a total; showing the local quote",
                        extra={"reservation_id": str(reservation_id)})

        hold = parse_model(ReservationHold, {
            "id": reservation_id,
            "status": data.get("status") or ReservationStatus.PENDING.value,
            "createdAt": data.get("createdAt") or self._now(),
            "totalPrice": total,
            "pickupAt": draft.pickup_at,
            "dropoffAt": draft.dropoff_at,
            "carName": draft.car.display_name,
            "pickupLocation": draft.pickup_location,
            "dropoffLocation": draft.dropoff_location,
            "userEmail": draft.hirer.email,
            "imageUrl": draft.car.image_url,
        })
        logger.info(f"Reservation created with status {hold.status.value}", extra={"reservation_id": hold.key})
        return hold

    async def cancel_hold(self, reservation_id: ReservationId) -> bool:
        """
        Cancel a reservation.

        Returns True when this call cancelled it and False when the API
        rejected the call and a fresh fetch shows the reservation is no longer
        Pending (already cancelled, expired or gone). Any other rejection is
        raised with the API's message, as are transport failures and 401s.
        """
        with self._single_flight("cancel", reservation_id):
            try:
                await self.api.delete(f"/reservations/cancel/{reservation_id}")
            except UnauthorizedError:
                raise
            except ServiceRejectedError as e:
                if e.status_code is None or not 400 <= e.status_code < 500:
                    raise
                if not await self._left_pending(reservation_id):
                    raise
                logger.warning(f"Cancel ignored by server: {e.message}",
                               extra={"reservation_id": str(reservation_id)})
                return False

        logger.info("Reservation cancelled", extra={"reservation_id": str(reservation_id)})
        return True

    async def _left_pending(self, reservation_id: ReservationId) -> bool:
        """Re-fetch and report whether the reservation is verifiably no longer Pending."""
        if self.roles_provider is None:
            return False
        try:
            holds = await self.fetch_holds(self.roles_provider())
        except RyderXError as e:
            logger.warning(f"Could not verify reservation status after rejected cancel: {e.message}",
                           extra={"reservation_id": str(reservation_id)})
            return False
        for hold in holds:
            if hold.key == str(reservation_id):
                return not hold.is_pending
        return True

    async def update_status(
        self,
        reservation_id: ReservationId,
        status: Union[str, ReservationStatus],
        current: Optional[ReservationStatus] = None,
    ):
        """Agent/admin status change. Not used by the payment countdown."""
        target = ReservationStatus.parse(status) if isinstance(status, str) else status
        if current is not None:
            if is_status_locked(current):
                raise StatusTransitionError(f"A {current.value} reservation can no longer be changed.")
            if target not in available_status_options(current):
                raise StatusTransitionError(f"Cannot move a {current.value} reservation to {target.value}.")

        with self._single_flight("status", reservation_id):
            await self.api.put(
                "/reservations/status",
                json={"reservationId": reservation_id, "status": target.value},
            )
        logger.info(f"Reservation status set to {target.value}", extra={"reservation_id": str(reservation_id)})

    async def fetch_holds(self, roles: Iterable[str]) -> List[ReservationHold]:
        data = await self.api.get(reservations_path(roles))
        return parse_models(ReservationHold, data or [])
