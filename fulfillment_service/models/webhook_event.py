import uuid
from fulfillment_service.extensions import db
from fulfillment_service.models.base import UTCDateTime, isoformat, utcnow


class WebhookEvent(db.Model):
    """One row per provider notification. Never deleted."""

    __tablename__ = "webhook_events"

    event_id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    provider = db.Column(db.String(16), nullable=False)
    idempotency_key = db.Column(db.String(255), unique=True, nullable=False)
    event_type = db.Column(db.String(128), nullable=False)
    order_reference = db.Column(db.String(64), nullable=True, index=True)
    payload = db.Column(db.JSON, nullable=True)
    processed = db.Column(db.Boolean, nullable=False, default=False)
    processed_at = db.Column(UTCDateTime, nullable=True)
    failed = db.Column(db.Boolean, nullable=False, default=False)
    error_message = db.Column(db.Text, nullable=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    received_at = db.Column(UTCDateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "event_id": str(self.event_id),
            "provider": self.provider,
            "idempotency_key": self.idempotency_key,
            "event_type": self.event_type,
            "order_reference": self.order_reference,
            "processed": self.processed,
            "processed_at": isoformat(self.processed_at),
            "failed": self.failed,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "received_at": isoformat(self.received_at),
        }
