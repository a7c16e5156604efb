import uuid
from fulfillment_service.extensions import db
from fulfillment_service.models.base import UTCDateTime, isoformat, utcnow

AUDIT_ENTITY_TYPES = ("booking", "order", "subscription", "waitlist_entry", "pack_code")


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    audit_id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    actor_id = db.Column(db.String(64), nullable=False, index=True)
    actor_email = db.Column(db.String(255), nullable=True)
    actor_role = db.Column(db.String(16), nullable=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    action = db.Column(db.String(32), nullable=False)
    before = db.Column(db.JSON, nullable=True)
    after = db.Column(db.JSON, nullable=True)
    reason = db.Column(db.Text, nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=True)
    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),)

    def to_dict(self):
        return {
            "audit_id": str(self.audit_id),
            "actor_id": self.actor_id,
            "actor_email": self.actor_email,
            "actor_role": self.actor_role,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "before": self.before,
            "after": self.after,
            "reason": self.reason,
            "metadata": self.meta,
            "created_at": isoformat(self.created_at),
        }
