"""
Booking Lifecycle Manager
PENDING_PAYMENT -> PENDING | CONFIRMED -> CANCELLED | COMPLETED (terminal)

Clients must give CANCELLATION_LEAD_HOURS notice and may reschedule at most
MAX_CLIENT_RESCHEDULES times; admins bypass both and ownership.
"""

import logging
from flask import current_app
from fulfillment_service.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from fulfillment_service.extensions import db
from fulfillment_service.models.base import as_utc, isoformat, utcnow
from fulfillment_service.models.booking import ACTIVE_STATUSES, Booking
from fulfillment_service.services import credit_service, pack_service, slots, waitlist_service
from fulfillment_service.services.audit_service import record_audit
from fulfillment_service.services.collaborators import notify

logger = logging.getLogger(__name__)


def _snapshot(booking):
    return {
        "status": booking.status,
        "scheduled_at": isoformat(booking.scheduled_at),
        "reschedule_count": booking.reschedule_count,
    }


def get_booking(booking_id):
    booking = db.session.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def get_booking_for(booking_id, actor):
    booking = get_booking(booking_id)
    if booking.owner_id != actor.id and not actor.is_admin:
        raise ForbiddenError("This booking belongs to another user")
    return booking


def list_bookings(owner_id, status=None):
    query = Booking.query.filter_by(owner_id=owner_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Booking.scheduled_at.desc(), Booking.created_at.desc()).all()


def _lock(booking_id):
    booking = (
        Booking.query.with_for_update()
        .filter_by(booking_id=booking_id)
        .populate_existing()
        .first()
    )
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def _check_client_policy(booking, actor, now, action):
    if booking.owner_id != actor.id:
        raise ForbiddenError("This booking belongs to another user")
    lead_hours = current_app.config["CANCELLATION_LEAD_HOURS"]
    if booking.scheduled_at and slots.hours_until(as_utc(booking.scheduled_at), now) < lead_hours:
        raise ValidationError(
            f"Bookings can only be {action} at least {lead_hours} hours in advance. "
            "Please contact us for help."
        )


def _ensure_not_pack_placeholder(booking):
    """The booking that records a pack purchase is managed through the pack code."""
    if booking.scheduled_at is None and (
        booking.sessions_total > 1 or (booking.meta or {}).get("package_type") == "pack"
    ):
        raise ConflictError("Pack purchases are managed through their pack code, not as a booking")


def release_booking(booking, reason, cancelled_by, now=None):
    """
    Cancel a booking and undo what funded or reserved it: pack usage, credit,
    event seats. Caller holds the booking lock and owns the transaction.
    Returns the event id whose seats were released, if any.
    """
    now = now or utcnow()
    released_event = None
    if booking.status in ACTIVE_STATUSES or booking.status == "PENDING_PAYMENT":
        if booking.booking_type == "EVENT":
            waitlist_service.release_seats(booking.resource_id, booking.seats)
            released_event = booking.resource_id

    booking.status = "CANCELLED"
    booking.cancelled_at = now
    booking.cancelled_by = cancelled_by
    booking.cancellation_reason = reason

    pack_service.reverse_redemption(booking)
    credit_service.refund_for_booking(booking)
    return released_event


def cancel_booking(booking_id, actor, reason=None):
    try:
        booking = _lock(booking_id)
        _ensure_not_pack_placeholder(booking)
        if booking.status not in ACTIVE_STATUSES:
            raise ConflictError(f"Booking cannot be cancelled from status {booking.status}")

        now = utcnow()
        if not actor.is_admin:
            _check_client_policy(booking, actor, now, "cancelled")

        before = _snapshot(booking)
        released_event = release_booking(booking, reason, actor.id, now)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Booking %s cancelled by %s", booking.booking_id, actor.id)
    if released_event:
        waitlist_service.offer_released_seats(released_event)

    record_audit(actor, "booking", booking.booking_id, "CANCEL",
                 before=before, after=_snapshot(booking), reason=reason)
    notify(
        "booking_cancelled",
        _contact_for(booking, actor),
        booking_id=str(booking.booking_id),
        resource_name=booking.resource_name,
        scheduled_at=isoformat(booking.scheduled_at),
        reason=reason,
    )
    return booking


def reschedule_booking(booking_id, actor, new_time, reason=None):
    new_scheduled_at = slots.parse_datetime(new_time, "new_time")

    try:
        booking = _lock(booking_id)
        _ensure_not_pack_placeholder(booking)
        if booking.status not in ACTIVE_STATUSES:
            raise ConflictError(f"Booking cannot be rescheduled from status {booking.status}")

        now = utcnow()
        if new_scheduled_at <= now:
            raise ValidationError("The new time must be in the future")

        if not actor.is_admin:
            _check_client_policy(booking, actor, now, "rescheduled")
            limit = current_app.config["MAX_CLIENT_RESCHEDULES"]
            if booking.reschedule_count >= limit:
                raise ValidationError(
                    f"This booking has reached the limit of {limit} reschedules. Please contact us."
                )

        if booking.booking_type == "SESSION":
            slots.ensure_slot_free(new_scheduled_at, exclude_booking_id=booking.booking_id)

        before = _snapshot(booking)
        booking.previous_scheduled_at = booking.scheduled_at
        booking.scheduled_at = new_scheduled_at
        booking.reschedule_count += 1
        booking.rescheduled_at = now
        booking.rescheduled_by = actor.id
        booking.reschedule_reason = reason
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Booking %s rescheduled by %s (%s)", booking.booking_id, actor.id, booking.reschedule_count)
    record_audit(actor, "booking", booking.booking_id, "RESCHEDULE",
                 before=before, after=_snapshot(booking), reason=reason,
                 metadata={"initiated_by": "admin" if actor.is_admin else "client"})
    notify(
        "booking_rescheduled",
        _contact_for(booking, actor),
        booking_id=str(booking.booking_id),
        resource_name=booking.resource_name,
        previous_scheduled_at=isoformat(booking.previous_scheduled_at),
        scheduled_at=isoformat(booking.scheduled_at),
    )
    return booking


def complete_booking(booking_id, actor, notes=None):
    try:
        booking = _lock(booking_id)
        _ensure_not_pack_placeholder(booking)
        if booking.status != "CONFIRMED":
            raise ConflictError(f"Only confirmed bookings can be completed (status {booking.status})")
        before = _snapshot(booking)
        booking.status = "COMPLETED"
        booking.completed_at = utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    record_audit(actor, "booking", booking.booking_id, "COMPLETE",
                 before=before, after=_snapshot(booking), reason=notes)
    return booking


def _contact_for(booking, actor):
    if booking.order is not None:
        return booking.order.customer_email or booking.order.guest_email
    return actor.email if actor.id == booking.owner_id else None
