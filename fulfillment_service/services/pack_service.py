"""
Pack Redemption Subsystem
Turns a prepaid multi-session pack into bookings and reverses usage when a
funded booking is cancelled.
"""

import logging
import secrets
from datetime import timedelta
from flask import current_app
from fulfillment_service.errors import ConflictError, ForbiddenError, InternalError, NotFoundError, ValidationError
from fulfillment_service.extensions import db
from fulfillment_service.models.base import utcnow
from fulfillment_service.models.booking import Booking
from fulfillment_service.models.session_pack import PackRedemption, SessionPackCode
from fulfillment_service.services import slots

logger = logging.getLogger(__name__)

# No I, O, 0 or 1: codes are read aloud and typed by hand.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_ATTEMPTS = 5


def generate_pack_code():
    return "PACK-" + "".join(secrets.choice(CODE_ALPHABET) for _ in range(6))


def create_pack_code(owner_id, booking, amount, currency, order_id=None, sessions_total=None):
    """
    Issue the pack code for an originating booking. Idempotent: an existing
    code for the booking is returned as is. The size defaults to
    PACK_SESSIONS_TOTAL. Does not commit.
    """
    existing = SessionPackCode.query.filter_by(original_booking_id=booking.booking_id).first()
    if existing:
        return existing

    sessions_total = int(sessions_total or current_app.config["PACK_SESSIONS_TOTAL"])
    for _ in range(CODE_ATTEMPTS):
        code = generate_pack_code()
        if SessionPackCode.query.filter_by(code=code).first():
            continue
        pack = SessionPackCode(
            code=code,
            owner_id=owner_id,
            pack_name=f"Pack of {sessions_total} sessions",
            sessions_total=sessions_total,
            sessions_used=0,
            price_at_purchase=amount,
            currency=currency,
            active=True,
            expires_at=utcnow() + timedelta(days=current_app.config["PACK_VALIDITY_DAYS"]),
            original_booking_id=booking.booking_id,
            order_id=order_id,
        )
        db.session.add(pack)
        db.session.flush()
        logger.info("Pack code %s issued for booking %s", code, booking.booking_id)
        return pack

    raise InternalError("Could not generate a unique pack code")


def get_pack(code):
    pack = SessionPackCode.query.filter_by(code=(code or "").strip().upper()).first()
    if not pack:
        raise NotFoundError("Pack code not found")
    return pack


def get_pack_balance(owner_id):
    packs = (
        SessionPackCode.query.filter_by(owner_id=owner_id)
        .order_by(SessionPackCode.created_at.desc())
        .all()
    )
    now = utcnow()
    usable = [p for p in packs if p.active and not p.is_expired(now)]
    return {
        "sessions_remaining": sum(p.sessions_remaining for p in usable),
        "packs": [p.to_dict() for p in packs],
    }


def redeem(code, owner_id, date_str, time_str):
    """
    Book one session funded by a pack. Checks run in a fixed order inside one
    transaction: existence, ownership, active, expiry, balance, slot.
    """
    scheduled_at = slots.parse_slot(date_str, time_str)
    now = utcnow()
    if scheduled_at <= now:
        raise ValidationError("The session must be scheduled in the future")

    try:
        pack = (
            SessionPackCode.query.with_for_update()
            .filter_by(code=(code or "").strip().upper())
            .first()
        )
        if not pack:
            raise NotFoundError("Pack code not found")
        if pack.owner_id != owner_id:
            raise ForbiddenError("This pack belongs to another user")
        if not pack.active:
            raise ConflictError("This pack is no longer active")
        if pack.is_expired(now):
            raise ConflictError("This pack has expired")
        if pack.sessions_remaining <= 0:
            raise ConflictError("All sessions in this pack have been used")

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
            currency=pack.currency,
            meta={"funded_by": "pack", "pack_code": pack.code},
        )
        db.session.add(booking)
        db.session.flush()

        db.session.add(PackRedemption(pack_code_id=pack.pack_code_id, booking_id=booking.booking_id))
        claimed = (
            SessionPackCode.query.filter(
                SessionPackCode.pack_code_id == pack.pack_code_id,
                SessionPackCode.sessions_used < SessionPackCode.sessions_total,
            )
            .update({SessionPackCode.sessions_used: SessionPackCode.sessions_used + 1}, synchronize_session=False)
        )
        if not claimed:
            raise ConflictError("All sessions in this pack have been used")
        db.session.refresh(pack)
        _sync_originating_booking(pack)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Pack %s redeemed for booking %s (%s left)", pack.code, booking.booking_id, pack.sessions_remaining)
    return booking, pack


def reverse_redemption(booking):
    """
    Give the session back to its pack. Only applies while the pack is still
    active. Runs inside the caller's transaction; does not commit.
    """
    redemption = PackRedemption.query.filter_by(booking_id=booking.booking_id).first()
    if not redemption:
        return False

    pack = (
        SessionPackCode.query.with_for_update()
        .filter_by(pack_code_id=redemption.pack_code_id)
        .first()
    )
    if not pack or not pack.active:
        return False

    pack.sessions_used = max(0, pack.sessions_used - 1)
    _sync_originating_booking(pack)
    db.session.delete(redemption)
    logger.info("Session returned to pack %s for booking %s", pack.code, booking.booking_id)
    return True


def _sync_originating_booking(pack):
    if pack.original_booking_id is None:
        return
    origin = db.session.get(Booking, pack.original_booking_id)
    if origin is not None:
        origin.sessions_remaining = pack.sessions_remaining


def deactivate_packs_for_order(order_id):
    """Refunded pack purchases stop being redeemable. Does not commit."""
    packs = SessionPackCode.query.with_for_update().filter_by(order_id=order_id).all()
    for pack in packs:
        pack.active = False
    return len(packs)
