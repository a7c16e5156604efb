import uuid
from fulfillment_service.extensions import db
from fulfillment_service.models.base import UTCDateTime, isoformat, utcnow

CREDIT_REASONS = ("GRANT", "REDEEM", "REFUND", "ADJUSTMENT")


class CreditEntry(db.Model):
    """Append-only session credit ledger. Positive amounts grant, negative redeem."""

    __tablename__ = "credit_entries"

    entry_id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Enum(*CREDIT_REASONS, name="credit_reason"), nullable=False)
    subscription_id = db.Column(db.Uuid, db.ForeignKey("subscriptions.subscription_id"), nullable=True)
    booking_id = db.Column(db.Uuid, db.ForeignKey("bookings.booking_id"), nullable=True)
    expires_at = db.Column(UTCDateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "entry_id": str(self.entry_id),
            "amount": self.amount,
            "reason": self.reason,
            "booking_id": str(self.booking_id) if self.booking_id else None,
            "expires_at": isoformat(self.expires_at),
            "notes": self.notes,
            "created_at": isoformat(self.created_at),
        }
