import asyncio
import json
import unittest
from datetime import datetime, timedelta, timezone

import httpx

from ryderx.api.cache import catalog_cache
from ryderx.api.catalog import CatalogClient
from ryderx.api.client import ApiClient
from ryderx.booking.holds import ReservationHoldClient, available_status_options, reservations_path
from ryderx.booking.models import AddOns, Car, Hirer, ReservationDraft, ReservationStatus
from ryderx.errors import (
    ActionInProgressError,
    DraftValidationError,
    RyderXError,
    ServiceRejectedError,
    ServiceUnavailableError,
    StatusTransitionError,
    UnauthorizedError,
)

NOW = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)

LOCATIONS = [
    {"id": 1, "name": "Downtown", "address": "1 Main St", "city": "Skopje"},
    {"id": 2, "name": "Airport", "address": "Terminal 1", "city": "Skopje"},
]


def make_draft(**overrides):
    values = dict(
        car=Car(id=7, make="Toyota", model="Corolla", price_per_day=1800),
        pickup_location="Downtown",
        dropoff_location="Airport",
        pickup_at=NOW + timedelta(hours=2),
        dropoff_at=NOW + timedelta(hours=26),
        add_ons=AddOns(),
        hirer=Hirer(first_name="Ana", last_name="Lee", email="ana@example.com", phone="+1 555 0100"),
    )
    values.update(overrides)
    return ReservationDraft(**values)


class HoldClientTestCase(unittest.IsolatedAsyncioTestCase):
    """Runs the hold client against a scripted reservations API."""

    def setUp(self):
        catalog_cache.clear()
        self.requests = []
        self.routes = {("GET", "/locations"): httpx.Response(200, json=LOCATIONS)}
        self.api = ApiClient(
            "https://api.ryderx.test",
            token_provider=lambda: "token-123",
            transport=httpx.MockTransport(self.handle),
        )
        self.client = ReservationHoldClient(self.api, CatalogClient(self.api), now=lambda: NOW)

    async def asyncTearDown(self):
        await self.api.aclose()

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "Not found"})
        if isinstance(route, Exception):
            raise route
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)

    def sent(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]


class TestCreateHold(HoldClientTestCase):
    async def test_posts_payload_and_returns_pending_hold(self):
        self.routes[("POST", "/reservations")] = httpx.Response(
            201, json={"reservationId": 55, "totalPrice": 3900, "message": "Reservation created"}
        )
        hold = await self.client.create_hold(make_draft())

        self.assertEqual(hold.id, 55)
        self.assertEqual(hold.status, ReservationStatus.PENDING)
        self.assertEqual(hold.total_price, 3900)
        self.assertEqual(hold.car_name, "Toyota Corolla")

        [request] = self.sent("POST", "/reservations")
        body = json.loads(request.content)
        self.assertEqual(body["carId"], 7)
        self.assertEqual(body["pickupLocationId"], 1)
        self.assertEqual(body["dropoffLocationId"], 2)
        self.assertTrue(body["roadCare"])
        self.assertEqual(request.headers["Authorization"], "Bearer token-123")

    async def test_falls_back_to_local_quote(self):
        self.routes[("POST", "/reservations")] = httpx.Response(200, json={"id": 56})
        hold = await self.client.create_hold(make_draft())
        self.assertEqual(hold.total_price, 2100)

    async def test_invalid_draft_never_calls_api(self):
        with self.assertRaises(DraftValidationError) as ctx:
            await self.client.create_hold(make_draft(hirer=Hirer()))
        self.assertEqual(ctx.exception.step, 3)
        self.assertEqual(self.requests, [])

    async def test_unknown_location(self):
        with self.assertRaises(DraftValidationError) as ctx:
            await self.client.create_hold(make_draft(dropoff_location="Harbour"))
        self.assertEqual(ctx.exception.message, "Invalid pickup or dropoff location")
        self.assertEqual(self.sent("POST", "/reservations"), [])

    async def test_rejection_message_is_verbatim(self):
        self.routes[("POST", "/reservations")] = httpx.Response(
            400, json={"message": "Car is not available for the selected dates."}
        )
        with self.assertRaises(ServiceRejectedError) as ctx:
            await self.client.create_hold(make_draft())
        self.assertEqual(str(ctx.exception), "Car is not available for the selected dates.")
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_response_without_id(self):
        self.routes[("POST", "/reservations")] = httpx.Response(200, json={"message": "ok"})
        with self.assertRaises(ServiceRejectedError):
            await self.client.create_hold(make_draft())

    async def test_connection_error_is_unavailable(self):
        self.routes[("POST", "/reservations")] = httpx.ConnectError("connection refused")
        with self.assertRaises(ServiceUnavailableError) as ctx:
            await self.client.create_hold(make_draft())
        self.assertEqual(ctx.exception.message, "No response from server. Please try again.")


class TestCancelHold(HoldClientTestCase):
    async def test_cancel(self):
        self.routes[("DELETE", "/reservations/cancel/55")] = httpx.Response(200, text="Reservation cancelled.")
        self.assertTrue(await self.client.cancel_hold(55))

    async def test_redundant_cancel_is_not_an_error(self):
        self.client.roles_provider = lambda: ["User"]
        self.routes[("DELETE", "/reservations/cancel/55")] = httpx.Response(
            400, json={"message": "Reservation is already cancelled."}
        )
        self.routes[("GET", "/reservations/user")] = httpx.Response(200, json=[{"id": 55, "status": "Cancelled"}])
        self.assertFalse(await self.client.cancel_hold(55))

    async def test_cancel_of_vanished_reservation_is_not_an_error(self):
        self.client.roles_provider = lambda: ["User"]
        self.routes[("GET", "/reservations/user")] = httpx.Response(200, json=[])
        self.assertFalse(await self.client.cancel_hold(55))

    async def test_refused_cancel_of_pending_reservation_is_raised(self):
        self.client.roles_provider = lambda: ["User"]
        self.routes[("DELETE", "/reservations/cancel/55")] = httpx.Response(
            403, json={"message": "You cannot cancel this reservation."}
        )
        self.routes[("GET", "/reservations/user")] = httpx.Response(200, json=[{"id": 55, "status": "Pending"}])
        with self.assertRaises(ServiceRejectedError) as ctx:
            await self.client.cancel_hold(55)
        self.assertEqual(ctx.exception.message, "You cannot cancel this reservation.")
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertFalse(self.client.is_in_flight("cancel", 55))

    async def test_rejection_is_raised_when_status_cannot_be_checked(self):
        self.routes[("DELETE", "/reservations/cancel/55")] = httpx.Response(
            400, json={"message": "Reservation is already cancelled."}
        )
        with self.assertRaises(ServiceRejectedError) as ctx:
            await self.client.cancel_hold(55)
        self.assertEqual(ctx.exception.message, "Reservation is already cancelled.")

    async def test_server_error_propagates(self):
        self.routes[("DELETE", "/reservations/cancel/55")] = httpx.Response(500, json={"message": "boom"})
        with self.assertRaises(ServiceRejectedError):
            await self.client.cancel_hold(55)

    async def test_unauthorized_propagates(self):
        cleared = []
        self.api.on_unauthorized = lambda: cleared.append(True)
        self.routes[("DELETE", "/reservations/cancel/55")] = httpx.Response(401)
        with self.assertRaises(UnauthorizedError):
            await self.client.cancel_hold(55)
        self.assertEqual(cleared, [True])
        self.assertFalse(self.client.is_in_flight("cancel", 55))

    async def test_second_cancel_while_in_flight(self):
        release = asyncio.Event()

        async def slow_delete(path, **kwargs):
            await release.wait()
            return "Reservation cancelled."

        self.api.delete = slow_delete
        first = asyncio.create_task(self.client.cancel_hold(55))
        await asyncio.sleep(0)
        self.assertTrue(self.client.is_in_flight("cancel", "55"))
        with self.assertRaises(ActionInProgressError):
            await self.client.cancel_hold("55")
        release.set()
        self.assertTrue(await first)


class TestStatus(HoldClientTestCase):
    async def test_update_status(self):
        self.routes[("PUT", "/reservations/status")] = httpx.Response(200, text="Status updated.")
        await self.client.update_status(55, "confirmed", current=ReservationStatus.PENDING)
        [request] = self.sent("PUT", "/reservations/status")
        self.assertEqual(json.loads(request.content), {"reservationId": 55, "status": "Confirmed"})

    async def test_locked_status_cannot_change(self):
        with self.assertRaises(StatusTransitionError):
            await self.client.update_status(55, "Pending", current=ReservationStatus.CANCELLED)
        self.assertEqual(self.requests, [])

    async def test_confirmed_cannot_go_back_to_pending(self):
        with self.assertRaises(StatusTransitionError):
            await self.client.update_status(55, ReservationStatus.PENDING, current=ReservationStatus.CONFIRMED)

    def test_status_options(self):
        self.assertNotIn(ReservationStatus.PENDING, available_status_options(ReservationStatus.CONFIRMED))
        self.assertEqual(available_status_options(ReservationStatus.COMPLETED), [ReservationStatus.COMPLETED])


class TestFetchHolds(HoldClientTestCase):
    def test_paths_by_role(self):
        self.assertEqual(reservations_path(["User"]), "/reservations/user")
        self.assertEqual(reservations_path(["Agent"]), "/reservations/agent/my")
        self.assertEqual(reservations_path(["Admin"]), "/reservations")
        with self.assertRaises(RyderXError):
            reservations_path([])

    async def test_fetch(self):
        self.routes[("GET", "/reservations/user")] = httpx.Response(200, json=[
            {"id": 1, "status": "pending", "totalPrice": 3900, "createdAt": "2025-06-01T08:00:00Z"},
            {"id": 2, "status": "Confirmed", "totalPrice": 1000, "pickupAt": "2025-06-03T10:00:00"},
        ])
        holds = await self.client.fetch_holds(["User"])
        self.assertEqual([h.status for h in holds], [ReservationStatus.PENDING, ReservationStatus.CONFIRMED])
        self.assertEqual(holds[1].pickup_at.tzinfo, timezone.utc)

    async def test_malformed_list(self):
        self.routes[("GET", "/reservations/user")] = httpx.Response(200, json={"items": []})
        with self.assertRaises(ServiceRejectedError) as ctx:
            await self.client.fetch_holds(["User"])
        self.assertEqual(ctx.exception.message, "Unexpected response from server.")


if __name__ == "__main__":
    unittest.main()
