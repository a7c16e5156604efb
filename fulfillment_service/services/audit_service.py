"""
Audit Trail: append-only log of privileged state transitions.
Writes happen after the business transaction commits; a failed audit write
is logged and never fails the calling operation.
"""

import logging
from fulfillment_service.extensions import db
from fulfillment_service.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


def record_audit(actor, entity_type, entity_id, action, before=None, after=None, reason=None, metadata=None):
    entry = AuditLog(
        actor_id=actor.id,
        actor_email=actor.email,
        actor_role=actor.role,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        before=before,
        after=after,
        reason=reason,
        meta=metadata,
    )
    try:
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception:
        db.session.rollback()
        logger.exception("Audit write failed for %s %s (%s)", entity_type, entity_id, action)
        return None


def get_audit_logs(entity_type=None, entity_id=None, actor_id=None, action=None, limit=50, offset=0):
    query = AuditLog.query
    if entity_type:
        query = query.filter_by(entity_type=entity_type)
    if entity_id:
        query = query.filter_by(entity_id=str(entity_id))
    if actor_id:
        query = query.filter_by(actor_id=actor_id)
    if action:
        query = query.filter_by(action=action)
    return query.order_by(AuditLog.created_at.desc()).offset(offset).limit(limit).all()
