"""
Memberships: activation on payment, cancellation (immediate or at period
end) and its reversal before the period ends, lapse finalization and
provider status sync.
"""

import logging
from datetime import timedelta
from fulfillment_service.auth import SYSTEM_ACTOR
from fulfillment_service.errors import ConflictError, ForbiddenError, NotFoundError
from fulfillment_service.extensions import db
from fulfillment_service.models.base import as_utc, isoformat, utcnow
from fulfillment_service.models.subscription import LIVE_SUBSCRIPTION_STATUSES, Entitlement, Subscription
from fulfillment_service.providers import get_provider
from fulfillment_service.services import credit_service, entitlements
from fulfillment_service.services.audit_service import record_audit
from fulfillment_service.services.collaborators import notify

logger = logging.getLogger(__name__)

PERIOD_LENGTHS = {
    "MONTHLY": timedelta(days=30),
    "YEARLY":  timedelta(days=365),
}

# Stripe subscription.status -> ours
PROVIDER_STATUSES = {
    "trialing":           "TRIAL",
    "active":             "ACTIVE",
    "past_due":           "PAST_DUE",
    "unpaid":             "PAST_DUE",
    "canceled":           "CANCELLED",
    "incomplete_expired": "CANCELLED",
}


def _snapshot(subscription):
    return {
        "status": subscription.status,
        "current_period_end": isoformat(subscription.current_period_end),
        "cancelled_at": isoformat(subscription.cancelled_at),
    }


def get_subscription(subscription_id):
    subscription = db.session.get(Subscription, subscription_id)
    if not subscription:
        raise NotFoundError("Subscription not found")
    return subscription


def get_live_subscription(owner_id, lock=False):
    query = Subscription.query.filter(
        Subscription.owner_id == owner_id,
        Subscription.status.in_(LIVE_SUBSCRIPTION_STATUSES),
    )
    if lock:
        query = query.with_for_update()
    return query.first()


def activate_membership(owner_id, order, item):
    """
    Create the owner's subscription, or renew the live one, for a paid
    membership order. Runs inside the fulfillment transaction.
    """
    now = utcnow()
    interval = (item.get("billing_interval") or "MONTHLY").upper()
    if interval not in PERIOD_LENGTHS:
        interval = "MONTHLY"
    provider_subscription_id = (order.meta or {}).get("provider_subscription_id")

    subscription = get_live_subscription(owner_id, lock=True)
    if subscription:
        period_end = as_utc(subscription.current_period_end)
        start = period_end if period_end and period_end > now else now
        subscription.tier_id = order.item_id
        subscription.tier_name = item.get("name", order.item_name)
        subscription.status = "ACTIVE"
        subscription.billing_interval = interval
        subscription.amount = order.amount
        subscription.currency = order.currency
        subscription.current_period_start = start
        subscription.current_period_end = start + PERIOD_LENGTHS[interval]
        subscription.cancelled_at = None
        subscription.cancellation_reason = None
        created = False
    else:
        subscription = Subscription(
            owner_id=owner_id,
            tier_id=order.item_id,
            tier_name=item.get("name", order.item_name),
            status="ACTIVE",
            billing_interval=interval,
            amount=order.amount,
            currency=order.currency,
            current_period_start=now,
            current_period_end=now + PERIOD_LENGTHS[interval],
        )
        db.session.add(subscription)
        created = True

    subscription.payment_provider = order.payment_provider or subscription.payment_provider
    if provider_subscription_id:
        subscription.provider_subscription_id = provider_subscription_id
    db.session.flush()

    entitlement = Entitlement.query.filter_by(
        subscription_id=subscription.subscription_id,
        entitlement_type="MEMBERSHIP",
        revoked=False,
    ).first()
    if entitlement:
        entitlement.resource_id = subscription.tier_id
        entitlement.resource_name = subscription.tier_name
        entitlement.order_id = order.order_id
    else:
        entitlement = entitlements.grant_entitlement(
            owner_id, "MEMBERSHIP", subscription.tier_id, subscription.tier_name,
            subscription_id=subscription.subscription_id, order_id=order.order_id,
        )

    credit_service.grant_period_credits(subscription, item.get("credits_per_period") or 0)
    logger.info("Membership %s %s for %s", subscription.subscription_id, "created" if created else "renewed", owner_id)
    return subscription, created


def _end_now(subscription, reason, now):
    subscription.status = "CANCELLED"
    subscription.cancelled_at = subscription.cancelled_at or now
    subscription.current_period_end = now
    subscription.cancellation_reason = reason or subscription.cancellation_reason
    entitlements.revoke_for_subscription(subscription.subscription_id, reason or "Subscription cancelled")


def end_subscription(subscription, reason, now=None):
    """Immediate end used by refunds. Caller owns the transaction."""
    _end_now(subscription, reason, now or utcnow())


def cancel_subscription(subscription_id, actor, reason=None, immediate=False):
    subscription = get_subscription(subscription_id)
    if subscription.owner_id != actor.id and not actor.is_admin:
        raise ForbiddenError("This subscription belongs to another user")
    if immediate and not actor.is_admin:
        raise ForbiddenError("Only administrators can end a subscription immediately")

    try:
        subscription = (
            Subscription.query.with_for_update()
            .filter_by(subscription_id=subscription_id)
            .populate_existing()
            .first()
        )
        if subscription.status not in LIVE_SUBSCRIPTION_STATUSES:
            raise ConflictError(f"Subscription is already {subscription.status}")
        if subscription.cancelled_at and not immediate:
            raise ConflictError("Subscription is already set to cancel at the end of the period")

        before = _snapshot(subscription)
        now = utcnow()
        if immediate:
            _end_now(subscription, reason, now)
        else:
            subscription.cancelled_at = now
            subscription.cancellation_reason = reason
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    _cancel_at_provider(subscription, at_period_end=not immediate)
    record_audit(actor, "subscription", subscription.subscription_id,
                 "CANCEL_IMMEDIATE" if immediate else "CANCEL_AT_PERIOD_END",
                 before=before, after=_snapshot(subscription), reason=reason)
    notify(
        "subscription_cancelled",
        actor.email if actor.id == subscription.owner_id else None,
        tier_name=subscription.tier_name,
        access_until=isoformat(subscription.current_period_end),
        immediate=immediate,
    )
    return subscription


def _cancel_at_provider(subscription, at_period_end):
    if subscription.payment_provider != "stripe" or not subscription.provider_subscription_id:
        return False
    try:
        get_provider("stripe").cancel_subscription(subscription.provider_subscription_id, at_period_end)
        return True
    except Exception:
        logger.exception("Provider-side cancellation failed for %s", subscription.provider_subscription_id)
        return False


def reactivate_subscription(subscription_id, actor):
    """Undo a deferred cancellation while the paid period is still running."""
    subscription = get_subscription(subscription_id)
    if subscription.owner_id != actor.id and not actor.is_admin:
        raise ForbiddenError("This subscription belongs to another user")

    try:
        subscription = (
            Subscription.query.with_for_update()
            .filter_by(subscription_id=subscription_id)
            .populate_existing()
            .first()
        )
        if subscription.status not in LIVE_SUBSCRIPTION_STATUSES:
            raise ConflictError(f"Subscription is {subscription.status} and cannot be reactivated")
        if not subscription.cancelled_at:
            raise ConflictError("Subscription is not set to cancel")
        period_end = as_utc(subscription.current_period_end)
        if period_end is None or period_end <= utcnow():
            raise ConflictError("The paid period has ended. Please subscribe again.")

        before = _snapshot(subscription)
        reason = subscription.cancellation_reason
        subscription.cancelled_at = None
        subscription.cancellation_reason = None
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    _resume_at_provider(subscription)
    logger.info("Subscription %s reactivated by %s", subscription.subscription_id, actor.id)
    record_audit(actor, "subscription", subscription.subscription_id, "REACTIVATE",
                 before=before, after=_snapshot(subscription),
                 metadata={"previous_cancellation_reason": reason})
    notify(
        "subscription_reactivated",
        actor.email if actor.id == subscription.owner_id else None,
        tier_name=subscription.tier_name,
        renews_at=isoformat(subscription.current_period_end),
    )
    return subscription


def _resume_at_provider(subscription):
    if subscription.payment_provider != "stripe" or not subscription.provider_subscription_id:
        return False
    try:
        get_provider("stripe").resume_subscription(subscription.provider_subscription_id)
        return True
    except Exception:
        logger.exception("Provider-side reactivation failed for %s", subscription.provider_subscription_id)
        return False


def finalize_lapsed_subscriptions(now=None):
    """Deferred cancellations whose period has ended become CANCELLED."""
    now = now or utcnow()
    try:
        lapsed = (
            Subscription.query.with_for_update()
            .filter(
                Subscription.status.in_(LIVE_SUBSCRIPTION_STATUSES),
                Subscription.cancelled_at.isnot(None),
                Subscription.current_period_end <= now,
            )
            .all()
        )
        for subscription in lapsed:
            subscription.status = "CANCELLED"
            entitlements.revoke_for_subscription(subscription.subscription_id, "Subscription period ended")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if lapsed:
        logger.info("Finalized %s lapsed subscription(s)", len(lapsed))
    return len(lapsed)


def sync_provider_status(provider_subscription_id, provider_status, period_end=None, cancel_at_period_end=None):
    """Apply a provider subscription event. Unknown subscriptions are ignored."""
    try:
        subscription = (
            Subscription.query.with_for_update()
            .filter_by(provider_subscription_id=provider_subscription_id)
            .first()
        )
        if not subscription:
            logger.info("No subscription linked to provider id %s", provider_subscription_id)
            return None

        status = PROVIDER_STATUSES.get((provider_status or "").lower())
        if status is None or subscription.status == "CANCELLED":
            return subscription

        before = _snapshot(subscription)
        now = utcnow()
        if status == "CANCELLED":
            _end_now(subscription, "Cancelled at provider", now)
        else:
            subscription.status = status
            if period_end and as_utc(period_end) > as_utc(subscription.current_period_end):
                subscription.current_period_end = period_end
            if cancel_at_period_end is True and not subscription.cancelled_at:
                subscription.cancelled_at = now
            elif cancel_at_period_end is False:
                subscription.cancelled_at = None
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if before != _snapshot(subscription):
        record_audit(SYSTEM_ACTOR, "subscription", subscription.subscription_id, "PROVIDER_SYNC",
                     before=before, after=_snapshot(subscription),
                     metadata={"provider_status": provider_status})
    return subscription
