import unittest
from datetime import timedelta
from unittest import mock
from fulfillment_service.errors import GatewayError
from fulfillment_service.extensions import db
from fulfillment_service.models import AuditLog, Booking, Entitlement, Order, SessionPackCode, Subscription
from fulfillment_service.models.base import isoformat
from fulfillment_service.providers.base import ProviderStatus
from fulfillment_service.services import order_service
from tests.helpers import ServiceTestCase

WOMPI_FETCH = "fulfillment_service.providers.wompi.WompiProvider.fetch_status"


class TestCreateOrder(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.catalog.add("SESSION", "session-1v1", name="1:1 Session", price=303198, currency="COP")
        self.catalog.add("SESSION", "session-pack", name="Pack of 8", price=1800000, sessions_total=8)
        self.catalog.add("EVENT", "event-1", name="Workshop", price=80000, capacity=3)

    def create(self, payload, headers=None):
        return self.client.post("/api/orders", json=payload, headers=headers or self.headers("user-1"))

    def test_session_order(self):
        when = self.future(days=2)
        resp = self.create({"order_type": "SESSION", "item_id": "session-1v1",
                            "payment_method": "wompi", "scheduled_at": isoformat(when)})
        self.assertEqual(resp.status_code, 201)
        order = resp.get_json()["order"]
        self.assertRegex(order["order_number"], r"^ORD-\d{8}-\d{4}$")
        self.assertEqual(order["status"], "PENDING")
        self.assertEqual(order["amount"], 303198)

    def test_past_slot(self):
        resp = self.create({"order_type": "SESSION", "item_id": "session-1v1",
                            "scheduled_at": isoformat(self.future(days=-1))})
        self.assertEqual(resp.status_code, 400)

    def test_taken_slot(self):
        when = self.future(days=2)
        self.make_booking(owner_id="user-2", resource_id="session-1v1", scheduled_at=when)
        resp = self.create({"order_type": "SESSION", "item_id": "session-1v1", "scheduled_at": isoformat(when)})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(Order.query.count(), 0)

    def test_pack_session_at_same_time_blocks_paid_session(self):
        when = self.future(days=2)
        self.make_booking(owner_id="user-2", resource_id="session-flexible", scheduled_at=when)
        resp = self.create({"order_type": "SESSION", "item_id": "session-1v1", "scheduled_at": isoformat(when)})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(Order.query.count(), 0)

    def test_pack_needs_no_slot(self):
        resp = self.create({"order_type": "SESSION", "item_id": "session-pack"})
        self.assertEqual(resp.status_code, 201)

    def test_guest_needs_email(self):
        resp = self.client.post("/api/orders", json={"order_type": "SESSION", "item_id": "session-pack"})
        self.assertEqual(resp.status_code, 400)

        resp = self.client.post("/api/orders", json={"order_type": "SESSION", "item_id": "session-pack",
                                                     "guest_email": "ana@example.com"})
        self.assertEqual(resp.status_code, 201)
        order = Order.query.one()
        self.assertIsNone(order.owner_id)
        self.assertEqual(order.customer_email, "ana@example.com")

    def test_event_seats(self):
        resp = self.create({"order_type": "EVENT", "item_id": "event-1", "seats": 2})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.get_json()["order"]["amount"], 160000)
        self.assertRegex(resp.get_json()["order"]["order_number"], r"^EVT-")

    def test_event_sold_out(self):
        self.make_inventory("event-1", capacity=3, seats_allocated=3)
        resp = self.create({"order_type": "EVENT", "item_id": "event-1"})
        self.assertEqual(resp.status_code, 409)

    def test_unknown_item_and_type(self):
        self.assertEqual(self.create({"order_type": "SESSION", "item_id": "nope"}).status_code, 404)
        self.assertEqual(self.create({"order_type": "GIFT", "item_id": "x"}).status_code, 400)
        self.assertEqual(self.create({"order_type": "SESSION", "item_id": "session-pack",
                                      "payment_method": "cash"}).status_code, 400)


class TestOrderLookup(ServiceTestCase):

    def test_status_by_number_id_and_transaction(self):
        order = self.make_order(provider_transaction_id="TX-1")
        for reference in ("ORD-1", str(order.order_id), "TX-1"):
            resp = self.client.get(f"/api/orders/{reference}")
            self.assertEqual(resp.status_code, 200)
            self.assertEqual(resp.get_json()["order"]["order_number"], "ORD-1")

    def test_unknown_reference(self):
        self.assertEqual(self.client.get("/api/orders/ORD-404").status_code, 404)

    def test_my_orders(self):
        self.make_order()
        self.make_order(order_number="ORD-2", owner_id="user-2")
        resp = self.client.get("/api/orders", headers=self.headers("user-1"))
        self.assertEqual([o["order_number"] for o in resp.get_json()["orders"]], ["ORD-1"])


class TestVerifyOrder(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.catalog.add("SESSION", "session-1v1", name="1:1 Session", price=303198)
        self.order = self.make_order(payment_provider="wompi",
                                     meta={"scheduled_at": self.future(days=2).isoformat()})

    def verify(self, headers=None):
        return self.client.post("/api/orders/ORD-1/verify", headers=headers or self.headers("user-1"))

    def test_approved_at_provider(self):
        with mock.patch(WOMPI_FETCH, return_value=ProviderStatus("APPROVED", "TX-5")):
            resp = self.verify()
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertTrue(body["changed"])
        self.assertEqual(body["order"]["status"], "COMPLETED")
        self.assertEqual(body["fulfillment"]["effect"], "BOOKING_CONFIRMED")

        with mock.patch(WOMPI_FETCH) as fetch:
            resp = self.verify()
        fetch.assert_not_called()
        self.assertFalse(resp.get_json()["changed"])

    def test_still_pending(self):
        with mock.patch(WOMPI_FETCH, return_value=ProviderStatus("PENDING", "TX-5")):
            resp = self.verify()
        self.assertFalse(resp.get_json()["changed"])
        self.assertEqual(resp.get_json()["order"]["status"], "PENDING")

    def test_provider_down(self):
        with mock.patch(WOMPI_FETCH, side_effect=GatewayError("Wompi unavailable")):
            resp = self.verify()
        self.assertEqual(resp.status_code, 502)
        self.refresh()
        self.assertEqual(db.session.get(Order, self.order.order_id).status, "PENDING")

    def test_other_user(self):
        self.assertEqual(self.verify(self.headers("user-2")).status_code, 403)


class TestAdminOrders(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.catalog.add("MEMBERSHIP", "tier-gold", name="Gold", price=99000, credits_per_period=4)
        self.catalog.add("SESSION", "session-pack", name="Pack of 8", price=1800000, sessions_total=8)

    def confirm(self, order, headers=None):
        return self.client.post(f"/api/admin/orders/{order.order_id}/confirm-payment",
                                json={"reason": "bank transfer"}, headers=headers or self.admin_headers())

    def refund(self, order):
        return self.client.post(f"/api/admin/orders/{order.order_id}/refund",
                                json={"reason": "customer request"}, headers=self.admin_headers())

    def test_manual_confirmation_is_audited(self):
        order = self.make_order(order_type="MEMBERSHIP", item_id="tier-gold", amount=99000)

        resp = self.confirm(order)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["fulfillment"]["effect"], "SUBSCRIPTION_ACTIVATED")

        log = AuditLog.query.filter_by(action="CONFIRM_PAYMENT").one()
        self.assertEqual(log.before["status"], "PENDING")
        self.assertEqual(log.after["status"], "COMPLETED")
        self.assertEqual(log.reason, "bank transfer")

        self.assertEqual(self.confirm(order).status_code, 409)

    def test_manual_confirmation_requires_admin(self):
        order = self.make_order(order_type="MEMBERSHIP", item_id="tier-gold")
        self.assertEqual(self.confirm(order, self.headers("user-1")).status_code, 403)
        self.assertEqual(Subscription.query.count(), 0)

    def test_refund_membership(self):
        order = self.make_order(order_type="MEMBERSHIP", item_id="tier-gold", amount=99000)
        self.confirm(order)

        resp = self.refund(order)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["order"]["status"], "REFUNDED")

        self.refresh()
        self.assertEqual(Subscription.query.one().status, "CANCELLED")
        self.assertTrue(all(e.revoked for e in Entitlement.query.all()))
        self.assertEqual(AuditLog.query.filter_by(action="REFUND").count(), 1)
        self.assertIn("order_refunded", self.notifier.templates())

    def test_refund_pack_deactivates_code(self):
        order = self.make_order(item_id="session-pack", amount=1800000)
        self.confirm(order)

        self.refund(order)
        self.refresh()
        self.assertFalse(SessionPackCode.query.one().active)
        self.assertEqual(Booking.query.one().payment_status, "REFUNDED")

    def test_refund_requires_completed_order(self):
        order = self.make_order(order_type="MEMBERSHIP", item_id="tier-gold")
        self.assertEqual(self.refund(order).status_code, 409)

    def test_audit_log_filters(self):
        order = self.make_order(order_type="MEMBERSHIP", item_id="tier-gold", amount=99000)
        self.confirm(order)
        self.refund(order)

        resp = self.client.get(f"/api/admin/audit-logs?entity_type=order&entity_id={order.order_id}",
                               headers=self.admin_headers())
        self.assertEqual([log["action"] for log in resp.get_json()["logs"]], ["REFUND", "CONFIRM_PAYMENT"])
        self.assertEqual(self.client.get("/api/admin/audit-logs", headers=self.headers()).status_code, 403)


if __name__ == "__main__":
    unittest.main()
