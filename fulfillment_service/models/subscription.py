"""
Subscription and Entitlement Models
Subscription status: TRIAL -> ACTIVE -> PAST_DUE | CANCELLED
"""

import uuid
from fulfillment_service.extensions import db
from fulfillment_service.models.base import UTCDateTime, as_utc, isoformat, utcnow

SUBSCRIPTION_STATUSES = ("TRIAL", "ACTIVE", "PAST_DUE", "CANCELLED")
LIVE_SUBSCRIPTION_STATUSES = ("TRIAL", "ACTIVE", "PAST_DUE")
BILLING_INTERVALS = ("MONTHLY", "YEARLY")
ENTITLEMENT_TYPES = ("MEMBERSHIP", "EVENT", "COURSE", "PREMIUM_CONTENT", "PRODUCT")


class Subscription(db.Model):
    __tablename__ = "subscriptions"
    __table_args__ = (
        db.Index(
            "uq_subscriptions_live_owner",
            "owner_id",
            unique=True,
            postgresql_where=db.text("status IN ('TRIAL', 'ACTIVE', 'PAST_DUE')"),
            sqlite_where=db.text("status IN ('TRIAL', 'ACTIVE', 'PAST_DUE')"),
        ),
    )

    subscription_id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    tier_id = db.Column(db.String(128), nullable=False)
    tier_name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.Enum(*SUBSCRIPTION_STATUSES, name="subscription_status"), nullable=False, default="ACTIVE")
    billing_interval = db.Column(db.Enum(*BILLING_INTERVALS, name="billing_interval"), nullable=False, default="MONTHLY")
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="COP")
    payment_provider = db.Column(db.String(16), nullable=True)
    provider_subscription_id = db.Column(db.String(128), nullable=True, index=True)
    current_period_start = db.Column(UTCDateTime, nullable=False, default=utcnow)
    current_period_end = db.Column(UTCDateTime, nullable=False)
    cancelled_at = db.Column(UTCDateTime, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    entitlements = db.relationship("Entitlement", backref="subscription", lazy=True)

    def to_dict(self):
        return {
            "subscription_id": str(self.subscription_id),
            "owner_id": self.owner_id,
            "tier_id": self.tier_id,
            "tier_name": self.tier_name,
            "status": self.status,
            "billing_interval": self.billing_interval,
            "amount": float(self.amount),
            "currency": self.currency,
            "payment_provider": self.payment_provider,
            "current_period_start": isoformat(self.current_period_start),
            "current_period_end": isoformat(self.current_period_end),
            "cancelled_at": isoformat(self.cancelled_at),
        }


class Entitlement(db.Model):
    """Access grant. Revoked, never deleted."""

    __tablename__ = "entitlements"

    entitlement_id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    entitlement_type = db.Column(db.Enum(*ENTITLEMENT_TYPES, name="entitlement_type"), nullable=False)
    resource_id = db.Column(db.String(128), nullable=False)
    resource_name = db.Column(db.String(255), nullable=False)
    expires_at = db.Column(UTCDateTime, nullable=True)
    subscription_id = db.Column(db.Uuid, db.ForeignKey("subscriptions.subscription_id"), nullable=True)
    order_id = db.Column(db.Uuid, db.ForeignKey("orders.order_id"), nullable=True, index=True)
    revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_reason = db.Column(db.Text, nullable=True)
    revoked_at = db.Column(UTCDateTime, nullable=True)
    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow)

    def is_active(self, now=None):
        now = now or utcnow()
        if self.revoked:
            return False
        return self.expires_at is None or as_utc(self.expires_at) > now

    def revoke(self, reason, now=None):
        self.revoked = True
        self.revoked_reason = reason
        self.revoked_at = now or utcnow()

    def to_dict(self):
        return {
            "entitlement_id": str(self.entitlement_id),
            "owner_id": self.owner_id,
            "type": self.entitlement_type,
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "expires_at": isoformat(self.expires_at),
            "subscription_id": str(self.subscription_id) if self.subscription_id else None,
            "order_id": str(self.order_id) if self.order_id else None,
            "revoked": self.revoked,
            "revoked_reason": self.revoked_reason,
            "active": self.is_active(),
        }
