"""
Order Model
Status: PENDING | PROCESSING | COMPLETED | FAILED | CANCELLED | REFUNDED
"""

import uuid
from fulfillment_service.extensions import db
from fulfillment_service.models.base import UTCDateTime, isoformat, utcnow

ORDER_TYPES = ("SESSION", "EVENT", "MEMBERSHIP", "COURSE", "PRODUCT", "PREMIUM_CONTENT")
PAYMENT_STATUSES = ("PENDING", "PROCESSING", "COMPLETED", "FAILED", "CANCELLED", "REFUNDED")


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint(
            "(owner_id IS NULL) <> (guest_email IS NULL)",
            name="ck_orders_owner_xor_guest",
        ),
    )

    order_id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    order_number = db.Column(db.String(32), unique=True, nullable=False)
    order_type = db.Column(db.Enum(*ORDER_TYPES, name="order_type"), nullable=False)
    item_id = db.Column(db.String(128), nullable=False)
    item_name = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="COP")
    payment_method = db.Column(db.String(32), nullable=True)
    payment_provider = db.Column(db.String(16), nullable=True)
    provider_transaction_id = db.Column(db.String(128), nullable=True)
    status = db.Column(
        db.Enum(*PAYMENT_STATUSES, name="payment_status"),
        nullable=False,
        default="PENDING",
    )
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)
    owner_id = db.Column(db.String(64), nullable=True, index=True)
    guest_email = db.Column(db.String(255), nullable=True)
    guest_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)  # notification contact
    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = db.Column(UTCDateTime, nullable=True)

    def to_dict(self):
        return {
            "order_id":                str(self.order_id),
            "order_number":            self.order_number,
            "order_type":              self.order_type,
            "item_id":                 self.item_id,
            "item_name":               self.item_name,
            "amount":                  float(self.amount),
            "currency":                self.currency,
            "payment_method":          self.payment_method,
            "payment_provider":        self.payment_provider,
            "provider_transaction_id": self.provider_transaction_id,
            "status":                  self.status,
            "metadata":                self.meta or {},
            "owner_id":                self.owner_id,
            "guest_email":             self.guest_email,
            "customer_email":          self.customer_email,
            "created_at":              isoformat(self.created_at),
            "completed_at":            isoformat(self.completed_at),
        }
