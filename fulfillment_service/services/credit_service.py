"""
Session credits for members: granted each billing period, redeemed one per
1:1 session, refunded when a funded booking is cancelled.
"""

import logging
from datetime import timedelta
from flask import current_app
from fulfillment_service.errors import ConflictError, ForbiddenError, ValidationError
from fulfillment_service.extensions import db
from fulfillment_service.models.base import as_utc, utcnow
from fulfillment_service.models.booking import Booking
from fulfillment_service.models.credit import CreditEntry
from fulfillment_service.models.subscription import Subscription
from fulfillment_service.services import slots

logger = logging.getLogger(__name__)

EXPIRING_SOON_DAYS = 7


def get_credit_balance(owner_id, now=None):
    """
    Replay the ledger in order. Each redemption consumes the oldest grant that
    was still valid when it happened; whatever is left of an unexpired grant
    is available.
    """
    now = now or utcnow()
    entries = (
        CreditEntry.query.filter_by(owner_id=owner_id)
        .order_by(CreditEntry.created_at.asc())
        .all()
    )

    grants = []
    for entry in entries:
        if entry.amount > 0:
            grants.append([as_utc(entry.expires_at), entry.amount])
            continue
        to_consume = -entry.amount
        at = as_utc(entry.created_at)
        for grant in grants:
            if to_consume <= 0:
                break
            if grant[1] <= 0 or (grant[0] and grant[0] <= at):
                continue
            consumed = min(grant[1], to_consume)
            grant[1] -= consumed
            to_consume -= consumed

    available = 0
    expiring_soon = 0
    next_expiration = None
    soon = now + timedelta(days=EXPIRING_SOON_DAYS)
    for expires_at, remaining in grants:
        if remaining <= 0 or (expires_at and expires_at <= now):
            continue
        available += remaining
        if expires_at and expires_at <= soon:
            expiring_soon += remaining
            if next_expiration is None or expires_at < next_expiration["date"]:
                next_expiration = {"date": expires_at, "amount": remaining}

    return {
        "available": available,
        "expiring_soon": expiring_soon,
        "next_expiration": {
            "date": next_expiration["date"].isoformat(),
            "amount": next_expiration["amount"],
        } if next_expiration else None,
    }


def get_credit_history(owner_id, limit=50):
    return (
        CreditEntry.query.filter_by(owner_id=owner_id)
        .order_by(CreditEntry.created_at.desc())
        .limit(limit)
        .all()
    )


def grant_period_credits(subscription, amount, notes=None):
    """At most one grant per subscription per billing period. Does not commit."""
    if not amount or amount <= 0:
        return None

    already = CreditEntry.query.filter(
        CreditEntry.subscription_id == subscription.subscription_id,
        CreditEntry.reason == "GRANT",
        CreditEntry.created_at >= subscription.current_period_start,
    ).first()
    if already:
        return None

    expire_days = current_app.config["CREDITS_EXPIRE_DAYS"]
    entry = CreditEntry(
        owner_id=subscription.owner_id,
        amount=int(amount),
        reason="GRANT",
        subscription_id=subscription.subscription_id,
        expires_at=utcnow() + timedelta(days=expire_days) if expire_days > 0 else None,
        notes=notes or f"Monthly credits - {subscription.tier_name}",
    )
    db.session.add(entry)
    logger.info("Granted %s credits to %s", amount, subscription.owner_id)
    return entry


def book_with_credit(owner_id, scheduled_at):
    """
    Book a flexible 1:1 session paid with one credit. The owner's live
    subscription row is locked to serialize balance checks.
    """
    if scheduled_at <= utcnow():
        raise ValidationError("The session must be scheduled in the future")

    try:
        subscription = (
            Subscription.query.with_for_update()
            .filter(Subscription.owner_id == owner_id, Subscription.status.in_(("ACTIVE", "TRIAL")))
            .first()
        )
        if not subscription:
            raise ForbiddenError("An active membership is required to book with credits")

        if get_credit_balance(owner_id)["available"] <= 0:
            raise ConflictError("No session credits available")

        resource_id, resource_name = slots.flexible_session_resource()
        slots.ensure_slot_free(scheduled_at)

        booking = Booking(
            owner_id=owner_id,
            booking_type="SESSION",
            resource_id=resource_id,
            resource_name=resource_name,
            scheduled_at=scheduled_at,
            status="CONFIRMED",
            payment_status="COMPLETED",
            amount=0,
            currency=subscription.currency,
            meta={"funded_by": "credit"},
        )
        db.session.add(booking)
        db.session.flush()

        db.session.add(CreditEntry(
            owner_id=owner_id,
            amount=-1,
            reason="REDEEM",
            subscription_id=subscription.subscription_id,
            booking_id=booking.booking_id,
            notes=f"Session {scheduled_at.isoformat()}",
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return booking


def refund_for_booking(booking):
    """Return the credit that funded a booking, once. Does not commit."""
    redeemed = CreditEntry.query.filter_by(booking_id=booking.booking_id, reason="REDEEM").first()
    if not redeemed:
        return False
    if CreditEntry.query.filter_by(booking_id=booking.booking_id, reason="REFUND").first():
        return False

    expire_days = current_app.config["CREDITS_EXPIRE_DAYS"]
    db.session.add(CreditEntry(
        owner_id=booking.owner_id,
        amount=1,
        reason="REFUND",
        subscription_id=redeemed.subscription_id,
        booking_id=booking.booking_id,
        expires_at=utcnow() + timedelta(days=expire_days) if expire_days > 0 else None,
        notes="Cancelled session",
    ))
    return True
