import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from fake_backend import CHECKOUT_URL, FakeBackend, build_session
from ryderx.booking.countdown import CountdownState
from ryderx.booking.models import AddOns, Hirer, ReservationDraft, ReservationStatus
from ryderx.errors import RyderXError, ServiceRejectedError, ServiceUnavailableError, StatusTransitionError

NOW = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestBookingSession(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.clock = FakeClock()
        self.backend = FakeBackend()
        self.session = build_session(self.backend, self.tmp.name, self.clock, lambda: NOW)
        await self.session.auth.login("ana@example.com", "secret")

    async def asyncTearDown(self):
        await self.session.aclose()
        self.tmp.cleanup()

    async def book(self):
        [car] = await self.session.catalog.list_cars()
        draft = ReservationDraft(
            car=car,
            pickup_location="Downtown",
            dropoff_location="Airport",
            pickup_at=NOW + timedelta(hours=2),
            dropoff_at=NOW + timedelta(hours=26),
            add_ons=AddOns(),
            hirer=await self.session.auth.hirer_from_profile(),
        )
        return await self.session.book(draft)

    async def test_book_starts_countdown(self):
        hold = await self.book()
        self.assertEqual(hold.status, ReservationStatus.PENDING)
        self.assertEqual(self.session.monitor.remaining(hold.id), 600)
        self.assertEqual([h.id for h in self.session.active_holds()], [hold.id])

    async def test_pay_opens_checkout(self):
        hold = await self.book()
        self.assertEqual(await self.session.pay(hold.id), CHECKOUT_URL)
        self.session.checkout.navigator.assert_called_once_with(CHECKOUT_URL)

    async def test_pay_after_expiry_is_refused(self):
        hold = await self.book()
        self.clock.now += 600
        await self.session.monitor.tick()
        await self.session.monitor.wait_idle()
        with self.assertRaises(RyderXError):
            await self.session.pay(hold.id)
        self.session.checkout.navigator.assert_not_called()

    async def test_refresh_after_payment_resolves_countdown(self):
        hold = await self.book()
        self.backend.reservations[hold.id]["status"] = "Confirmed"
        await self.session.payment_succeeded("cs_test_123")
        self.assertEqual(self.session.monitor.state(hold.id), CountdownState.RESOLVED)

        self.clock.now += 900
        await self.session.monitor.tick()
        self.assertEqual(self.backend.calls("DELETE", "/reservations/cancel"), [])

    async def test_manual_cancel_stops_countdown(self):
        hold = await self.book()
        self.assertTrue(await self.session.cancel(hold.id))
        self.clock.now += 900
        await self.session.monitor.tick()
        await self.session.monitor.wait_idle()
        self.assertEqual(len(self.backend.calls("DELETE", "/reservations/cancel")), 1)

    async def test_refused_manual_cancel_keeps_countdown_running(self):
        hold = await self.book()
        self.backend.refuse_cancel = "You cannot cancel this reservation."
        with self.assertRaises(ServiceRejectedError) as ctx:
            await self.session.cancel(hold.id)
        self.assertEqual(ctx.exception.message, "You cannot cancel this reservation.")

        await self.session.refresh()
        self.assertEqual(self.session.monitor.state(hold.id), CountdownState.RUNNING)
        self.assertEqual(self.session.monitor.remaining(hold.id), 600)

        self.backend.refuse_cancel = None
        self.clock.now += 600
        self.assertEqual(await self.session.monitor.tick(), [str(hold.id)])
        await self.session.monitor.wait_idle()
        self.assertEqual(self.backend.reservations[hold.id]["status"], "Cancelled")
        self.assertEqual(len(self.backend.calls("DELETE", "/reservations/cancel")), 2)

    async def test_redundant_manual_cancel_settles_countdown(self):
        hold = await self.book()
        self.backend.reservations[hold.id]["status"] = "Cancelled"
        self.assertFalse(await self.session.cancel(hold.id))
        self.assertTrue(self.session.monitor.is_settled(hold.id))

    async def test_cancel_after_auto_cancel_sends_nothing(self):
        hold = await self.book()
        self.clock.now += 600
        await self.session.monitor.tick()
        await self.session.monitor.wait_idle()

        self.assertFalse(await self.session.cancel(hold.id))
        self.assertEqual(len(self.backend.calls("DELETE", "/reservations/cancel")), 1)
        await self.session.refresh()
        self.assertEqual(self.session.get(hold.id).status, ReservationStatus.CANCELLED)
        self.assertEqual(self.session.past_holds()[0].id, hold.id)

    async def test_cancel_locked_reservation(self):
        reservation_id = self.backend.add_reservation(status="Completed")
        await self.session.refresh()
        with self.assertRaises(StatusTransitionError):
            await self.session.cancel(reservation_id)

    async def test_refund_estimate(self):
        reservation_id = self.backend.add_reservation(
            status="Confirmed", total=1000, pickupAt=(NOW + timedelta(hours=10)).isoformat()
        )
        await self.session.refresh()
        self.assertEqual(self.session.refund_estimate(reservation_id), 500)

    async def test_update_status(self):
        reservation_id = self.backend.add_reservation()
        await self.session.refresh()
        await self.session.update_status(reservation_id, "Confirmed")
        await self.session.refresh()
        self.assertEqual(self.session.get(reservation_id).status, ReservationStatus.CONFIRMED)

    async def test_unknown_reservation(self):
        with self.assertRaises(RyderXError) as ctx:
            self.session.get(999)
        self.assertEqual(ctx.exception.message, "Reservation not found. Please refresh your bookings.")

    async def test_outage_during_auto_cancel(self):
        hold = await self.book()
        self.backend.down = True
        self.clock.now += 600
        await self.session.monitor.tick()
        await self.session.monitor.wait_idle()

        [notice] = self.session.monitor.drain_notices()
        self.assertEqual(notice.level, "warning")
        self.assertEqual(notice.reservation_id, str(hold.id))
        with self.assertRaises(ServiceUnavailableError):
            await self.session.refresh()

    async def test_payment_cancelled(self):
        self.assertIn("try the payment again", self.session.payment_cancelled().message)


if __name__ == "__main__":
    unittest.main()
