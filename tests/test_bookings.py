import unittest
from datetime import timedelta
from sqlalchemy.exc import IntegrityError
from fulfillment_service.extensions import db
from fulfillment_service.models import AuditLog, Booking
from fulfillment_service.models.base import isoformat
from tests.helpers import ServiceTestCase


class TestCancellation(ServiceTestCase):

    def cancel(self, booking, headers, reason="conflict at work"):
        return self.client.post(f"/api/bookings/{booking.booking_id}/cancel",
                                json={"reason": reason}, headers=headers)

    def test_client_needs_lead_time(self):
        booking = self.make_booking(scheduled_at=self.future(hours=10))

        resp = self.cancel(booking, self.headers("user-1"))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error_code"], "VALIDATION")
        self.refresh()
        self.assertEqual(db.session.get(Booking, booking.booking_id).status, "CONFIRMED")

    def test_admin_bypasses_lead_time(self):
        booking = self.make_booking(scheduled_at=self.future(hours=10))

        resp = self.cancel(booking, self.admin_headers())
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["booking"]["status"], "CANCELLED")

        log = AuditLog.query.filter_by(entity_id=str(booking.booking_id), action="CANCEL").one()
        self.assertEqual(log.actor_id, "admin-1")
        self.assertEqual(log.before["status"], "CONFIRMED")
        self.assertEqual(log.after["status"], "CANCELLED")
        self.assertEqual(log.reason, "conflict at work")

    def test_client_cancels_in_time(self):
        booking = self.make_booking(scheduled_at=self.future(days=3))
        resp = self.cancel(booking, self.headers("user-1"))
        self.assertEqual(resp.status_code, 200)
        self.assertIn("booking_cancelled", self.notifier.templates())

    def test_other_client_is_forbidden(self):
        booking = self.make_booking(scheduled_at=self.future(days=3))
        self.assertEqual(self.cancel(booking, self.headers("user-2")).status_code, 403)

    def test_cancelled_is_terminal(self):
        booking = self.make_booking(scheduled_at=self.future(days=3), status="CANCELLED")
        self.assertEqual(self.cancel(booking, self.admin_headers()).status_code, 409)

    def test_unknown_booking(self):
        resp = self.client.post("/api/bookings/not-a-uuid/cancel", json={}, headers=self.admin_headers())
        self.assertEqual(resp.status_code, 404)

    def test_requires_token(self):
        booking = self.make_booking(scheduled_at=self.future(days=3))
        self.assertEqual(self.client.post(f"/api/bookings/{booking.booking_id}/cancel", json={}).status_code, 401)


class TestReschedule(ServiceTestCase):

    def reschedule(self, booking, when, headers):
        return self.client.post(f"/api/bookings/{booking.booking_id}/reschedule",
                                json={"new_time": isoformat(when), "reason": "travel"}, headers=headers)

    def test_client_limit(self):
        booking = self.make_booking(scheduled_at=self.future(days=5))

        for day in (6, 7):
            resp = self.reschedule(booking, self.future(days=day), self.headers("user-1"))
            self.assertEqual(resp.status_code, 200)

        resp = self.reschedule(booking, self.future(days=8), self.headers("user-1"))
        self.assertEqual(resp.status_code, 400)

        resp = self.reschedule(booking, self.future(days=8), self.admin_headers())
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()["booking"]
        self.assertEqual(body["reschedule_count"], 3)
        self.assertEqual(body["rescheduled_by"], "admin-1")

        logs = AuditLog.query.filter_by(action="RESCHEDULE").all()
        self.assertEqual(len(logs), 3)
        self.assertEqual(sorted(log.meta["initiated_by"] for log in logs), ["admin", "client", "client"])

    def test_keeps_previous_time(self):
        original = self.future(days=5)
        booking = self.make_booking(scheduled_at=original)

        resp = self.reschedule(booking, self.future(days=6), self.headers("user-1"))
        self.assertEqual(resp.get_json()["booking"]["previous_scheduled_at"], isoformat(original))

    def test_taken_slot(self):
        wanted = self.future(days=6)
        self.make_booking(owner_id="user-2", scheduled_at=wanted)
        booking = self.make_booking(scheduled_at=self.future(days=5))

        resp = self.reschedule(booking, wanted, self.admin_headers())
        self.assertEqual(resp.status_code, 409)
        self.refresh()
        self.assertEqual(db.session.get(Booking, booking.booking_id).reschedule_count, 0)

    def test_slot_of_cancelled_booking_is_free(self):
        wanted = self.future(days=6)
        self.make_booking(owner_id="user-2", scheduled_at=wanted, status="CANCELLED")
        booking = self.make_booking(scheduled_at=self.future(days=5))
        self.assertEqual(self.reschedule(booking, wanted, self.headers("user-1")).status_code, 200)

    def test_past_time(self):
        booking = self.make_booking(scheduled_at=self.future(days=5))
        resp = self.reschedule(booking, self.future(days=-1), self.admin_headers())
        self.assertEqual(resp.status_code, 400)

    def test_cancelled_booking(self):
        booking = self.make_booking(scheduled_at=self.future(days=5), status="CANCELLED")
        self.assertEqual(self.reschedule(booking, self.future(days=6), self.admin_headers()).status_code, 409)


class TestCompletion(ServiceTestCase):

    def test_admin_completes_confirmed(self):
        booking = self.make_booking(scheduled_at=self.future(days=-1) + timedelta(hours=2))
        resp = self.client.post(f"/api/admin/bookings/{booking.booking_id}/complete",
                                json={"notes": "done"}, headers=self.admin_headers())
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["booking"]["status"], "COMPLETED")
        self.assertEqual(AuditLog.query.filter_by(action="COMPLETE").count(), 1)

    def test_client_cannot_complete(self):
        booking = self.make_booking(scheduled_at=self.future(days=1))
        resp = self.client.post(f"/api/admin/bookings/{booking.booking_id}/complete",
                                json={}, headers=self.headers("user-1"))
        self.assertEqual(resp.status_code, 403)


class TestSlotBackstop(ServiceTestCase):

    def test_unique_index_rejects_double_booking(self):
        slot = self.future(days=4)
        self.make_booking(scheduled_at=slot)
        with self.assertRaises(IntegrityError):
            self.make_booking(owner_id="user-2", scheduled_at=slot)
        db.session.rollback()
        self.assertEqual(Booking.query.count(), 1)

    def test_unique_index_spans_session_resources(self):
        slot = self.future(days=4)
        self.make_booking(scheduled_at=slot, resource_id="session-1v1")
        with self.assertRaises(IntegrityError):
            self.make_booking(owner_id="user-2", scheduled_at=slot, resource_id="session-flexible")
        db.session.rollback()
        self.assertEqual(Booking.query.count(), 1)


class TestPackPurchaseBooking(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.origin = self.make_booking(resource_id="pack-8", resource_name="Pack of 8",
                                        sessions_total=8, sessions_remaining=8,
                                        meta={"package_type": "pack"})

    def test_cannot_be_rescheduled_onto_the_calendar(self):
        resp = self.client.post(f"/api/bookings/{self.origin.booking_id}/reschedule",
                                json={"new_time": isoformat(self.future(days=5))},
                                headers=self.admin_headers())
        self.assertEqual(resp.status_code, 409)
        self.refresh()
        self.assertIsNone(db.session.get(Booking, self.origin.booking_id).scheduled_at)

    def test_cannot_be_cancelled(self):
        resp = self.client.post(f"/api/bookings/{self.origin.booking_id}/cancel",
                                json={"reason": "changed my mind"}, headers=self.headers("user-1"))
        self.assertEqual(resp.status_code, 409)
        self.refresh()
        self.assertEqual(db.session.get(Booking, self.origin.booking_id).status, "CONFIRMED")

    def test_cannot_be_completed(self):
        resp = self.client.post(f"/api/admin/bookings/{self.origin.booking_id}/complete",
                                json={}, headers=self.admin_headers())
        self.assertEqual(resp.status_code, 409)


if __name__ == "__main__":
    unittest.main()
