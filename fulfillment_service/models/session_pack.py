"""
Session pack codes and their redemptions.
sessions_used always equals the number of live PackRedemption rows.
"""

import uuid
from fulfillment_service.extensions import db
from fulfillment_service.models.base import UTCDateTime, as_utc, isoformat, utcnow


class SessionPackCode(db.Model):
    __tablename__ = "session_pack_codes"
    __table_args__ = (
        db.CheckConstraint(
            "sessions_used >= 0 AND sessions_used <= sessions_total",
            name="ck_pack_sessions_used_range",
        ),
    )

    pack_code_id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    code = db.Column(db.String(16), unique=True, nullable=False)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    pack_name = db.Column(db.String(255), nullable=False)
    sessions_total = db.Column(db.Integer, nullable=False)
    sessions_used = db.Column(db.Integer, nullable=False, default=0)
    price_at_purchase = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="COP")
    active = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(UTCDateTime, nullable=True)
    original_booking_id = db.Column(db.Uuid, db.ForeignKey("bookings.booking_id"), unique=True, nullable=True)
    order_id = db.Column(db.Uuid, db.ForeignKey("orders.order_id"), nullable=True)
    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow)

    redemptions = db.relationship("PackRedemption", backref="pack_code", lazy=True)

    @property
    def sessions_remaining(self):
        return self.sessions_total - self.sessions_used

    def is_expired(self, now=None):
        now = now or utcnow()
        return self.expires_at is not None and now > as_utc(self.expires_at)

    def to_dict(self):
        return {
            "pack_code_id": str(self.pack_code_id),
            "code": self.code,
            "owner_id": self.owner_id,
            "pack_name": self.pack_name,
            "sessions_total": self.sessions_total,
            "sessions_used": self.sessions_used,
            "sessions_remaining": self.sessions_remaining,
            "active": self.active,
            "expired": self.is_expired(),
            "expires_at": isoformat(self.expires_at),
            "original_booking_id": str(self.original_booking_id) if self.original_booking_id else None,
        }


class PackRedemption(db.Model):
    __tablename__ = "pack_redemptions"

    redemption_id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    pack_code_id = db.Column(db.Uuid, db.ForeignKey("session_pack_codes.pack_code_id"), nullable=False)
    booking_id = db.Column(db.Uuid, db.ForeignKey("bookings.booking_id"), unique=True, nullable=False)
    redeemed_at = db.Column(UTCDateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "redemption_id": str(self.redemption_id),
            "pack_code_id": str(self.pack_code_id),
            "booking_id": str(self.booking_id),
            "redeemed_at": isoformat(self.redeemed_at),
        }
