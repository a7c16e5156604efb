"""
Waitlist Models
Entry status: WAITING -> OFFER_PENDING -> ACCEPTED | EXPIRED | CANCELLED
"""

import uuid
from fulfillment_service.extensions import db
from fulfillment_service.models.base import UTCDateTime, isoformat, utcnow

WAITLIST_STATUSES = ("WAITING", "OFFER_PENDING", "ACCEPTED", "EXPIRED", "CANCELLED")
ACTIVE_WAITLIST_STATUSES = ("WAITING", "OFFER_PENDING")


class EventInventory(db.Model):
    """Per-event seat counter. Locked for every allocation decision."""

    __tablename__ = "event_inventory"

    event_id = db.Column(db.String(128), primary_key=True)
    capacity = db.Column(db.Integer, nullable=True)  # NULL = unlimited
    seats_allocated = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)


class WaitlistEntry(db.Model):
    __tablename__ = "waitlist_entries"

    entry_id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    event_id = db.Column(db.String(128), nullable=False, index=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    owner_email = db.Column(db.String(255), nullable=True)
    seats_requested = db.Column(db.Integer, nullable=False, default=1)
    position = db.Column(db.Integer, nullable=True)  # NULL once the entry leaves the queue
    status = db.Column(db.Enum(*WAITLIST_STATUSES, name="waitlist_status"), nullable=False, default="WAITING")
    offer_sent_at = db.Column(UTCDateTime, nullable=True)
    offer_expires_at = db.Column(UTCDateTime, nullable=True)
    responded_at = db.Column(UTCDateTime, nullable=True)
    resulting_booking_id = db.Column(db.Uuid, db.ForeignKey("bookings.booking_id"), nullable=True)
    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "entry_id": str(self.entry_id),
            "event_id": self.event_id,
            "owner_id": self.owner_id,
            "seats_requested": self.seats_requested,
            "position": self.position,
            "status": self.status,
            "offer_sent_at": isoformat(self.offer_sent_at),
            "offer_expires_at": isoformat(self.offer_expires_at),
            "responded_at": isoformat(self.responded_at),
            "resulting_booking_id": str(self.resulting_booking_id) if self.resulting_booking_id else None,
        }
