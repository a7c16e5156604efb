"""
Booking Model
Status: PENDING_PAYMENT -> PENDING | CONFIRMED -> CANCELLED | COMPLETED
"""

import uuid
from fulfillment_service.extensions import db
from fulfillment_service.models.base import UTCDateTime, isoformat, utcnow
from fulfillment_service.models.order import PAYMENT_STATUSES

BOOKING_TYPES = ("SESSION", "EVENT")
BOOKING_STATUSES = ("PENDING_PAYMENT", "PENDING", "CONFIRMED", "CANCELLED", "COMPLETED")
ACTIVE_STATUSES = ("PENDING", "CONFIRMED")
TERMINAL_STATUSES = ("CANCELLED", "COMPLETED")


class Booking(db.Model):
    __tablename__ = "bookings"
    __table_args__ = (
        # Backstop for the explicit slot check: one live 1:1 session per start time.
        db.Index(
            "uq_bookings_active_slot",
            "scheduled_at",
            unique=True,
            postgresql_where=db.text("booking_type = 'SESSION' AND status IN ('PENDING', 'CONFIRMED')"),
            sqlite_where=db.text("booking_type = 'SESSION' AND status IN ('PENDING', 'CONFIRMED')"),
        ),
    )

    booking_id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    booking_type = db.Column(db.Enum(*BOOKING_TYPES, name="booking_type"), nullable=False)
    resource_id = db.Column(db.String(128), nullable=False)
    resource_name = db.Column(db.String(255), nullable=False)
    scheduled_at = db.Column(UTCDateTime, nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=False, default=60)
    status = db.Column(db.Enum(*BOOKING_STATUSES, name="booking_status"), nullable=False, default="PENDING")
    payment_status = db.Column(
        db.Enum(*PAYMENT_STATUSES, name="booking_payment_status"),
        nullable=False,
        default="PENDING",
    )
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="COP")
    seats = db.Column(db.Integer, nullable=False, default=1)
    order_id = db.Column(db.Uuid, db.ForeignKey("orders.order_id"), unique=True, nullable=True)

    sessions_total = db.Column(db.Integer, nullable=False, default=1)
    sessions_remaining = db.Column(db.Integer, nullable=False, default=1)

    reschedule_count = db.Column(db.Integer, nullable=False, default=0)
    previous_scheduled_at = db.Column(UTCDateTime, nullable=True)
    rescheduled_at = db.Column(UTCDateTime, nullable=True)
    rescheduled_by = db.Column(db.String(64), nullable=True)
    reschedule_reason = db.Column(db.Text, nullable=True)

    cancelled_at = db.Column(UTCDateTime, nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    completed_at = db.Column(UTCDateTime, nullable=True)

    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)
    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    order = db.relationship("Order", backref=db.backref("booking", uselist=False))

    def to_dict(self):
        return {
            "booking_id":            str(self.booking_id),
            "owner_id":              self.owner_id,
            "booking_type":          self.booking_type,
            "resource_id":           self.resource_id,
            "resource_name":         self.resource_name,
            "scheduled_at":          isoformat(self.scheduled_at),
            "duration_minutes":      self.duration_minutes,
            "status":                self.status,
            "payment_status":        self.payment_status,
            "amount":                float(self.amount),
            "currency":              self.currency,
            "seats":                 self.seats,
            "order_id":              str(self.order_id) if self.order_id else None,
            "sessions_total":        self.sessions_total,
            "sessions_remaining":    self.sessions_remaining,
            "reschedule_count":      self.reschedule_count,
            "previous_scheduled_at": isoformat(self.previous_scheduled_at),
            "rescheduled_by":        self.rescheduled_by,
            "reschedule_reason":     self.reschedule_reason,
            "cancelled_at":          isoformat(self.cancelled_at),
            "cancellation_reason":   self.cancellation_reason,
            "completed_at":          isoformat(self.completed_at),
        }
