"""
Fulfillment Engine
Turns a paid order into its durable effects. fulfill() runs inside the
transaction that moved the order to COMPLETED and never commits itself; any
ServiceError it raises rolls the whole step back, payment status included.
"""

import logging
from datetime import timedelta
from flask import current_app
from fulfillment_service.errors import NotFoundError, ValidationError
from fulfillment_service.extensions import db
from fulfillment_service.models.base import isoformat, utcnow
from fulfillment_service.models.booking import Booking
from fulfillment_service.models.subscription import Entitlement
from fulfillment_service.services import entitlements, pack_service, slots, subscription_service, waitlist_service
from fulfillment_service.services.collaborators import get_catalog, get_identity, notify

logger = logging.getLogger(__name__)


class FulfillmentResult:
    def __init__(self, success, order_id=None, effect=None, details=None,
                 error_code=None, message=None, already_completed=False):
        self.success = success
        self.order_id = order_id
        self.effect = effect
        self.details = details or {}
        self.error_code = error_code
        self.message = message
        self.already_completed = already_completed

    @classmethod
    def failure(cls, order_id, error_code, message):
        return cls(False, order_id=order_id, error_code=error_code, message=message)

    @classmethod
    def noop(cls, order_id):
        return cls(True, order_id=order_id, already_completed=True, message="Order already fulfilled")

    def to_dict(self):
        data = {
            "success": self.success,
            "order_id": str(self.order_id) if self.order_id else None,
            "effect": self.effect,
            "details": self.details,
            "already_completed": self.already_completed,
        }
        if not self.success:
            data["error_code"] = self.error_code
            data["error"] = self.message
        return data

    def __repr__(self):
        return f"<FulfillmentResult {self.order_id} success={self.success} effect={self.effect}>"


def resolve_owner(order):
    """Guest checkouts become an account at fulfillment time."""
    if order.owner_id:
        return order.owner_id

    owner_id = get_identity().find_or_create_user(order.guest_email, order.guest_name)
    meta = dict(order.meta or {})
    meta["converted_from_guest"] = order.guest_email
    order.customer_email = order.customer_email or order.guest_email
    order.owner_id = owner_id
    order.guest_email = None
    order.meta = meta
    logger.info("Guest order %s assigned to user %s", order.order_number, owner_id)
    return owner_id


def resolve_item(order):
    item = get_catalog().get_item(order.order_type, order.item_id)
    if not item:
        raise NotFoundError(f"Catalog item {order.order_type} {order.item_id} not found")
    return item


def is_pack(item):
    return int(item.get("sessions_total") or 1) > 1


def fulfill(order):
    owner_id = resolve_owner(order)
    item = resolve_item(order)

    handler = HANDLERS[order.order_type]
    effect, details = handler(order, owner_id, item)
    db.session.flush()
    logger.info("Order %s fulfilled: %s", order.order_number, effect)
    return FulfillmentResult(True, order_id=order.order_id, effect=effect, details=details)


def _fulfill_membership(order, owner_id, item):
    subscription, created = subscription_service.activate_membership(owner_id, order, item)
    return "SUBSCRIPTION_ACTIVATED" if created else "SUBSCRIPTION_RENEWED", {
        "subscription_id": str(subscription.subscription_id),
        "current_period_end": isoformat(subscription.current_period_end),
    }


def _fulfill_session(order, owner_id, item):
    if is_pack(item):
        return _fulfill_pack(order, owner_id, item)

    booking = order.booking
    if booking is None:
        scheduled = (order.meta or {}).get("scheduled_at")
        if not scheduled:
            raise ValidationError("Session order has no scheduled_at")
        scheduled_at = slots.parse_datetime(scheduled)
        slots.ensure_slot_free(scheduled_at)
        booking = Booking(
            owner_id=owner_id,
            booking_type="SESSION",
            resource_id=order.item_id,
            resource_name=order.item_name,
            scheduled_at=scheduled_at,
            duration_minutes=int(item.get("duration_minutes") or 60),
            amount=order.amount,
            currency=order.currency,
            order_id=order.order_id,
        )
        db.session.add(booking)
    booking.status = "CONFIRMED"
    booking.payment_status = "COMPLETED"
    db.session.flush()
    return "BOOKING_CONFIRMED", {"booking_id": str(booking.booking_id)}


def _fulfill_pack(order, owner_id, item):
    sessions_total = int(item.get("sessions_total") or current_app.config["PACK_SESSIONS_TOTAL"])
    booking = order.booking
    if booking is None:
        booking = Booking(
            owner_id=owner_id,
            booking_type="SESSION",
            resource_id=order.item_id,
            resource_name=order.item_name,
            amount=order.amount,
            currency=order.currency,
            order_id=order.order_id,
            sessions_total=sessions_total,
            sessions_remaining=sessions_total,
            meta={"package_type": "pack"},
        )
        db.session.add(booking)
    booking.status = "CONFIRMED"
    booking.payment_status = "COMPLETED"
    db.session.flush()

    pack = pack_service.create_pack_code(
        owner_id, booking, order.amount, order.currency, order.order_id, sessions_total=booking.sessions_total,
    )
    return "PACK_ISSUED", {
        "booking_id": str(booking.booking_id),
        "pack_code": pack.code,
        "sessions_total": pack.sessions_total,
        "expires_at": isoformat(pack.expires_at),
    }


def _fulfill_event(order, owner_id, item):
    booking = order.booking
    if booking is None:
        seats = int((order.meta or {}).get("seats") or 1)
        waitlist_service.ensure_inventory_in_transaction(order.item_id, item.get("capacity"))
        waitlist_service.allocate_seats(order.item_id, seats)
        event_date = item.get("event_date")
        booking = Booking(
            owner_id=owner_id,
            booking_type="EVENT",
            resource_id=order.item_id,
            resource_name=order.item_name,
            scheduled_at=slots.parse_datetime(event_date, "event_date") if event_date else None,
            seats=seats,
            amount=order.amount,
            currency=order.currency,
            order_id=order.order_id,
        )
        db.session.add(booking)
    # A waitlist booking already holds its seats.
    booking.status = "CONFIRMED"
    booking.payment_status = "COMPLETED"
    db.session.flush()

    if not Entitlement.query.filter_by(order_id=order.order_id, entitlement_type="EVENT").first():
        entitlements.grant_entitlement(
            owner_id, "EVENT", order.item_id, order.item_name,
            expires_at=booking.scheduled_at, order_id=order.order_id,
        )
    return "BOOKING_CONFIRMED", {"booking_id": str(booking.booking_id), "seats": booking.seats}


def _access_expiry(item):
    days = item.get("access_days")
    return utcnow() + timedelta(days=int(days)) if days else None


def _fulfill_course(order, owner_id, item):
    course_ids = (order.meta or {}).get("course_ids") or [order.item_id]
    granted = []
    for course_id in course_ids:
        name = order.item_name if str(course_id) == str(order.item_id) else f"{order.item_name} ({course_id})"
        entitlement = entitlements.grant_entitlement(
            owner_id, "COURSE", course_id, name,
            expires_at=_access_expiry(item), order_id=order.order_id,
        )
        granted.append(entitlement)
    db.session.flush()
    return "ENTITLEMENT_GRANTED", {"entitlement_ids": [str(e.entitlement_id) for e in granted]}


def _single_entitlement(entitlement_type):
    def handler(order, owner_id, item):
        entitlement = entitlements.grant_entitlement(
            owner_id, entitlement_type, order.item_id, order.item_name,
            expires_at=_access_expiry(item), order_id=order.order_id,
        )
        db.session.flush()
        return "ENTITLEMENT_GRANTED", {"entitlement_ids": [str(entitlement.entitlement_id)]}
    return handler


HANDLERS = {
    "MEMBERSHIP":      _fulfill_membership,
    "SESSION":         _fulfill_session,
    "EVENT":           _fulfill_event,
    "COURSE":          _fulfill_course,
    "PREMIUM_CONTENT": _single_entitlement("PREMIUM_CONTENT"),
    "PRODUCT":         _single_entitlement("PRODUCT"),
}


def send_confirmation(order, result):
    """Best-effort, after commit."""
    context = {
        "order_number": order.order_number,
        "item_name": order.item_name,
        "amount": float(order.amount),
        "currency": order.currency,
    }
    if result.effect == "PACK_ISSUED":
        template = "pack_purchased"
    elif result.effect == "BOOKING_CONFIRMED":
        template = "booking_confirmed"
    elif result.effect in ("SUBSCRIPTION_ACTIVATED", "SUBSCRIPTION_RENEWED"):
        template = "subscription_activated"
    else:
        template = "purchase_confirmed"
    context.update(result.details)
    return notify(template, order.customer_email, **context)
