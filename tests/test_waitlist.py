import unittest
from datetime import timedelta
from fulfillment_service.extensions import db
from fulfillment_service.models import Booking, Entitlement, EventInventory, Order, WaitlistEntry
from fulfillment_service.models.base import utcnow
from fulfillment_service.services import order_service, waitlist_service
from fulfillment_service.services.maintenance import run_maintenance
from tests.helpers import ServiceTestCase


class WaitlistTestCase(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.catalog.add("EVENT", "event-1", name="Breathwork Workshop", price=80000, currency="COP",
                         capacity=2, event_date="2026-12-01T18:00:00+00:00")
        self.make_inventory("event-1", capacity=2, seats_allocated=2)

    def join(self, user_id, seats=1):
        return self.client.post("/api/waitlist/events/event-1", json={"seats": seats},
                                headers=self.headers(user_id))

    def entry_of(self, user_id):
        self.refresh()
        return WaitlistEntry.query.filter_by(owner_id=user_id).one()

    def seats_allocated(self):
        self.refresh()
        return db.session.get(EventInventory, "event-1").seats_allocated


class TestQueue(WaitlistTestCase):

    def test_positions_stay_dense(self):
        for user in ("user-1", "user-2", "user-3"):
            self.assertEqual(self.join(user).status_code, 201)
        self.assertEqual([self.entry_of(u).position for u in ("user-1", "user-2", "user-3")], [1, 2, 3])

        second = self.entry_of("user-2")
        resp = self.client.post(f"/api/waitlist/{second.entry_id}/cancel", headers=self.headers("user-2"))
        self.assertEqual(resp.status_code, 200)
        self.assertIsNone(resp.get_json()["entry"]["position"])

        self.assertEqual(self.entry_of("user-1").position, 1)
        self.assertEqual(self.entry_of("user-3").position, 2)
        self.assertEqual(self.join("user-4").get_json()["entry"]["position"], 3)

    def test_join_when_seats_are_open(self):
        inventory = db.session.get(EventInventory, "event-1")
        inventory.seats_allocated = 1
        db.session.commit()

        resp = self.join("user-1")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(WaitlistEntry.query.count(), 0)

    def test_join_for_more_seats_than_open(self):
        inventory = db.session.get(EventInventory, "event-1")
        inventory.seats_allocated = 1
        db.session.commit()
        self.assertEqual(self.join("user-1", seats=2).status_code, 201)

    def test_join_twice(self):
        self.join("user-1")
        self.assertEqual(self.join("user-1").status_code, 409)

    def test_invalid_seat_count(self):
        self.assertEqual(self.join("user-1", seats=0).status_code, 400)

    def test_other_user_cannot_cancel(self):
        self.join("user-1")
        entry = self.entry_of("user-1")
        resp = self.client.post(f"/api/waitlist/{entry.entry_id}/cancel", headers=self.headers("user-2"))
        self.assertEqual(resp.status_code, 403)

    def test_availability(self):
        self.join("user-1")
        resp = self.client.get("/api/waitlist/events/event-1/availability", headers=self.headers("user-1"))
        availability = resp.get_json()["availability"]
        self.assertEqual(availability["seats_available"], 0)
        self.assertEqual(availability["waiting"], 1)

    def test_admin_sees_event_queue(self):
        self.join("user-1")
        self.join("user-2")
        resp = self.client.get("/api/admin/events/event-1/waitlist", headers=self.admin_headers())
        self.assertEqual([e["owner_id"] for e in resp.get_json()["entries"]], ["user-1", "user-2"])


class TestOffers(WaitlistTestCase):

    def cancel_event_booking(self):
        booking = self.make_booking(booking_type="EVENT", resource_id="event-1", resource_name="Breathwork Workshop",
                                    scheduled_at=self.future(days=10), seats=1)
        resp = self.client.post(f"/api/bookings/{booking.booking_id}/cancel", json={}, headers=self.admin_headers())
        self.assertEqual(resp.status_code, 200)

    def test_cancelled_booking_offers_seat_to_first_in_line(self):
        self.join("user-1")
        self.join("user-2")

        self.cancel_event_booking()

        first = self.entry_of("user-1")
        self.assertEqual(first.status, "OFFER_PENDING")
        self.assertIsNotNone(first.offer_expires_at)
        self.assertEqual(self.entry_of("user-2").status, "WAITING")
        self.assertEqual(self.seats_allocated(), 1)
        self.assertIn("waitlist_offer", self.notifier.templates())

        # The held seat is not open to anyone else.
        availability = waitlist_service.get_event_availability("event-1")
        self.assertEqual(availability["seats_held"], 1)
        self.assertEqual(availability["seats_available"], 0)

    def test_offer_skips_requests_that_do_not_fit(self):
        self.join("user-1", seats=2)
        self.join("user-2", seats=1)

        self.cancel_event_booking()

        self.assertEqual(self.entry_of("user-1").status, "WAITING")
        self.assertEqual(self.entry_of("user-2").status, "OFFER_PENDING")

    def test_maintenance_expires_and_cascades(self):
        self.join("user-1")
        self.join("user-2")
        self.cancel_event_booking()

        result = run_maintenance(now=utcnow() + timedelta(hours=25))
        self.assertEqual(result["waitlist_offers_expired"], 1)
        self.assertEqual(result["waitlist_offers_sent"], 1)

        first, second = self.entry_of("user-1"), self.entry_of("user-2")
        self.assertEqual(first.status, "EXPIRED")
        self.assertIsNone(first.position)
        self.assertEqual(second.status, "OFFER_PENDING")
        self.assertEqual(second.position, 1)
        self.assertIn("waitlist_offer_expired", self.notifier.templates())

    def test_declining_passes_offer_on(self):
        self.join("user-1")
        self.join("user-2")
        self.cancel_event_booking()

        first = self.entry_of("user-1")
        self.client.post(f"/api/waitlist/{first.entry_id}/cancel", headers=self.headers("user-1"))

        self.assertEqual(self.entry_of("user-2").status, "OFFER_PENDING")

    def test_accept_paid_offer_then_pay(self):
        self.join("user-1")
        self.cancel_event_booking()
        entry = self.entry_of("user-1")

        resp = self.client.post(f"/api/waitlist/{entry.entry_id}/accept", headers=self.headers("user-1"))
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertEqual(body["entry"]["status"], "ACCEPTED")
        self.assertEqual(body["booking"]["status"], "PENDING_PAYMENT")
        self.assertEqual(body["order"]["status"], "PENDING")
        self.assertEqual(body["order"]["amount"], 80000)
        self.assertEqual(self.seats_allocated(), 2)

        order = Order.query.one()
        result = order_service.complete_order(order.order_id, "wompi", "TX-77")
        self.assertTrue(result.success)
        self.assertEqual(result.effect, "BOOKING_CONFIRMED")

        self.refresh()
        self.assertEqual(Booking.query.filter_by(status="CONFIRMED").count(), 1)
        self.assertEqual(self.seats_allocated(), 2)
        self.assertEqual(Entitlement.query.filter_by(entitlement_type="EVENT").count(), 1)

    def test_failed_payment_releases_seat(self):
        self.join("user-1")
        self.join("user-2")
        self.cancel_event_booking()
        entry = self.entry_of("user-1")
        self.client.post(f"/api/waitlist/{entry.entry_id}/accept", headers=self.headers("user-1"))

        order = Order.query.one()
        order_service.apply_payment_status(order.order_id, "FAILED", "wompi", "TX-78", "DECLINED")

        self.refresh()
        self.assertEqual(Booking.query.filter_by(order_id=order.order_id).one().status, "CANCELLED")
        self.assertEqual(self.seats_allocated(), 1)
        self.assertEqual(self.entry_of("user-2").status, "OFFER_PENDING")

    def test_accept_free_event_confirms(self):
        self.catalog.add("EVENT", "event-1", name="Open Circle", price=0, capacity=2)
        self.join("user-1")
        self.cancel_event_booking()
        entry = self.entry_of("user-1")

        body = self.client.post(f"/api/waitlist/{entry.entry_id}/accept", headers=self.headers("user-1")).get_json()
        self.assertIsNone(body["order"])
        self.assertEqual(body["booking"]["status"], "CONFIRMED")
        self.assertEqual(Entitlement.query.filter_by(owner_id="user-1").count(), 1)

    def test_accept_expired_offer(self):
        self.join("user-1")
        self.cancel_event_booking()
        entry = self.entry_of("user-1")
        entry.offer_expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        resp = self.client.post(f"/api/waitlist/{entry.entry_id}/accept", headers=self.headers("user-1"))
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(self.entry_of("user-1").status, "EXPIRED")
        self.assertEqual(Booking.query.filter_by(status="PENDING_PAYMENT").count(), 0)

    def test_accept_without_offer(self):
        self.join("user-1")
        entry = self.entry_of("user-1")
        resp = self.client.post(f"/api/waitlist/{entry.entry_id}/accept", headers=self.headers("user-1"))
        self.assertEqual(resp.status_code, 409)


if __name__ == "__main__":
    unittest.main()
