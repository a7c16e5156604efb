"""
Entitlement grants and revocations. Entitlements are revoked, never deleted.
None of these helpers commit.
"""

import logging
from fulfillment_service.extensions import db
from fulfillment_service.models.base import utcnow
from fulfillment_service.models.subscription import Entitlement

logger = logging.getLogger(__name__)


def grant_entitlement(owner_id, entitlement_type, resource_id, resource_name,
                      expires_at=None, subscription_id=None, order_id=None):
    entitlement = Entitlement(
        owner_id=owner_id,
        entitlement_type=entitlement_type,
        resource_id=str(resource_id),
        resource_name=resource_name,
        expires_at=expires_at,
        subscription_id=subscription_id,
        order_id=order_id,
    )
    db.session.add(entitlement)
    return entitlement


def revoke_for_order(order_id, reason):
    return _revoke(Entitlement.query.filter_by(order_id=order_id, revoked=False), reason)


def revoke_for_subscription(subscription_id, reason):
    return _revoke(Entitlement.query.filter_by(subscription_id=subscription_id, revoked=False), reason)


def _revoke(query, reason):
    now = utcnow()
    entitlements = query.all()
    for entitlement in entitlements:
        entitlement.revoke(reason, now)
    if entitlements:
        logger.info("Revoked %s entitlement(s): %s", len(entitlements), reason)
    return len(entitlements)


def list_entitlements(owner_id, active_only=True):
    entitlements = (
        Entitlement.query.filter_by(owner_id=owner_id)
        .order_by(Entitlement.created_at.desc())
        .all()
    )
    if active_only:
        now = utcnow()
        entitlements = [e for e in entitlements if e.is_active(now)]
    return entitlements
