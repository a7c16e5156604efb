import hashlib
import hmac
import json
import os
import shutil
import tempfile
import threading
import unittest
from datetime import timedelta
from flask_jwt_extended import create_access_token
from sqlalchemy import event
from fulfillment_service.app import create_app
from fulfillment_service.extensions import db
from fulfillment_service.models import Booking, EventInventory, Order, SessionPackCode, Subscription
from fulfillment_service.models.base import utcnow

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "JWT_SECRET_KEY": "test-secret-key-that-is-long-enough-for-hs256",
    "LOG_LEVEL": "WARNING",
    "WOMPI_EVENTS_SECRET": "wompi-events-secret",
    "EPAYCO_P_KEY": "epayco-p-key",
    "EPAYCO_PRIVATE_KEY": "epayco-private-key",
    "EPAYCO_CUSTOMER_ID": "12345",
    "NEQUI_WEBHOOK_SECRET": "nequi-webhook-secret",
    "PAYPAL_API_URL": "https://api-m.sandbox.paypal.com",
    "PAYPAL_CLIENT_ID": "paypal-client",
    "PAYPAL_CLIENT_SECRET": "paypal-secret",
    "PAYPAL_WEBHOOK_ID": "WH-1",
    "STRIPE_SECRET_KEY": "sk_test_123",
    "STRIPE_WEBHOOK_SECRET": "whsec_test_secret",
}


class FakeCatalog:
    def __init__(self):
        self.items = {}

    def add(self, item_type, item_id, **data):
        self.items[(item_type, item_id)] = data

    def get_item(self, item_type, item_id):
        return self.items.get((item_type.upper(), str(item_id)))


class FakeNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, template, recipient, context=None):
        if self.fail:
            raise RuntimeError("notification service down")
        self.sent.append((template, recipient, context or {}))

    def templates(self):
        return [template for template, _, _ in self.sent]


class FakeIdentity:
    def __init__(self):
        self.calls = []

    def find_or_create_user(self, email, name=None):
        self.calls.append(email)
        return f"user-{email.split('@')[0]}"


class ServiceTestCase(unittest.TestCase):
    """Fresh in-memory database and fake collaborators for every test."""

    def setUp(self):
        self.app = create_app(self.app_config())
        self.catalog = FakeCatalog()
        self.notifier = FakeNotifier()
        self.identity = FakeIdentity()
        self.app.extensions["catalog"] = self.catalog
        self.app.extensions["notifier"] = self.notifier
        self.app.extensions["identity"] = self.identity

        self.ctx = self.app.app_context()
        self.ctx.push()
        self.client = self.app.test_client()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    def app_config(self):
        return dict(TEST_CONFIG)

    # ── auth ──

    def headers(self, user_id="user-1", role="USER", email=None):
        token = create_access_token(
            identity=user_id,
            additional_claims={"email": email or f"{user_id}@example.com", "role": role},
        )
        return {"Authorization": f"Bearer {token}"}

    def admin_headers(self):
        return self.headers("admin-1", role="ADMIN")

    def refresh(self):
        db.session.expire_all()

    # ── seed data ──

    def future(self, **delta):
        return (utcnow() + timedelta(**delta)).replace(second=0, microsecond=0)

    def make_order(self, order_number="ORD-1", order_type="SESSION", item_id="session-1v1",
                   amount=303198, owner_id="user-1", status="PENDING", meta=None, **extra):
        order = Order(
            order_number=order_number,
            order_type=order_type,
            item_id=item_id,
            item_name=extra.pop("item_name", "1:1 Session"),
            amount=amount,
            currency="COP",
            status=status,
            owner_id=owner_id,
            customer_email=extra.pop("customer_email", f"{owner_id}@example.com" if owner_id else None),
            meta=meta or {},
            **extra,
        )
        db.session.add(order)
        db.session.commit()
        return order

    def make_booking(self, owner_id="user-1", scheduled_at=None, status="CONFIRMED",
                     resource_id="session-flexible", booking_type="SESSION", **extra):
        booking = Booking(
            owner_id=owner_id,
            booking_type=booking_type,
            resource_id=resource_id,
            resource_name=extra.pop("resource_name", "1:1 Session"),
            scheduled_at=scheduled_at,
            status=status,
            payment_status=extra.pop("payment_status", "COMPLETED"),
            amount=extra.pop("amount", 0),
            **extra,
        )
        db.session.add(booking)
        db.session.commit()
        return booking

    def make_pack(self, owner_id="user-1", code="PACK-ABC234", sessions_used=0, active=True, expires_at=None):
        pack = SessionPackCode(
            code=code,
            owner_id=owner_id,
            pack_name="Pack of 8 sessions",
            sessions_total=8,
            sessions_used=sessions_used,
            price_at_purchase=1800000,
            currency="COP",
            active=active,
            expires_at=expires_at or utcnow() + timedelta(days=365),
        )
        db.session.add(pack)
        db.session.commit()
        return pack

    def make_subscription(self, owner_id="user-1", status="ACTIVE", **extra):
        now = utcnow()
        subscription = Subscription(
            owner_id=owner_id,
            tier_id=extra.pop("tier_id", "tier-gold"),
            tier_name=extra.pop("tier_name", "Gold"),
            status=status,
            amount=extra.pop("amount", 99000),
            currency="COP",
            current_period_start=extra.pop("current_period_start", now),
            current_period_end=extra.pop("current_period_end", now + timedelta(days=30)),
            **extra,
        )
        db.session.add(subscription)
        db.session.commit()
        return subscription

    def make_inventory(self, event_id="event-1", capacity=2, seats_allocated=0):
        inventory = EventInventory(event_id=event_id, capacity=capacity, seats_allocated=seats_allocated)
        db.session.add(inventory)
        db.session.commit()
        return inventory

    # ── webhook signing, as the providers do it ──

    def wompi_webhook(self, transaction_id, reference, status, timestamp="1730000000", secret=None):
        body = json.dumps({
            "event": "transaction.updated",
            "data": {"transaction": {
                "id": transaction_id,
                "reference": reference,
                "status": status,
                "amount_in_cents": 30319800,
                "currency": "COP",
            }},
            "timestamp": int(timestamp),
        })
        checksum = hmac.new(
            (secret or TEST_CONFIG["WOMPI_EVENTS_SECRET"]).encode(),
            f"{timestamp}{body}".encode(),
            hashlib.sha256,
        ).hexdigest()
        return self.client.post(
            "/api/webhooks/wompi",
            data=body,
            content_type="application/json",
            headers={"X-Event-Checksum": checksum, "X-Event-Timestamp": timestamp},
        )


def _driver_autocommit(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


def _begin_immediate(conn):
    conn.exec_driver_sql("BEGIN IMMEDIATE")


class ConcurrentServiceTestCase(ServiceTestCase):
    """
    File-backed SQLite shared by worker threads. SQLite has no row locks, so
    every transaction opens with BEGIN IMMEDIATE and writers queue the way
    SELECT ... FOR UPDATE makes them queue on PostgreSQL.
    """

    def app_config(self):
        self.db_dir = tempfile.mkdtemp()
        config = super().app_config()
        config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///" + os.path.join(self.db_dir, "fulfillment.db")
        config["SQLALCHEMY_ENGINE_OPTIONS"] = {"connect_args": {"timeout": 30, "check_same_thread": False}}
        return config

    def setUp(self):
        super().setUp()
        self.engine = db.engine
        event.listen(self.engine, "connect", _driver_autocommit)
        event.listen(self.engine, "begin", _begin_immediate)
        self.engine.dispose()

    def tearDown(self):
        super().tearDown()
        self.engine.dispose()
        shutil.rmtree(self.db_dir, ignore_errors=True)

    def run_together(self, *calls):
        """Run each call in its own thread and app context, released at once."""
        db.session.remove()
        barrier = threading.Barrier(len(calls))
        results = [None] * len(calls)
        errors = [None] * len(calls)

        def worker(index, call):
            with self.app.app_context():
                barrier.wait()
                try:
                    results[index] = call()
                except Exception as e:
                    errors[index] = e

        threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)
        return results, errors
