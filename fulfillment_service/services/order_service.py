"""
Order Service
Creates orders, applies normalized payment statuses and owns the
"first completion wins" gate in front of fulfillment.

    PENDING    -> PROCESSING | COMPLETED | FAILED | CANCELLED
    PROCESSING -> COMPLETED | FAILED | CANCELLED
    COMPLETED  -> REFUNDED
"""

import logging
import uuid
from collections import namedtuple
from sqlalchemy.exc import IntegrityError
from fulfillment_service.auth import SYSTEM_ACTOR
from fulfillment_service.errors import (
    ConflictError, ForbiddenError, NotFoundError, ServiceError, ValidationError, error_for_kind,
)
from fulfillment_service.extensions import db
from fulfillment_service.models.base import isoformat, utcnow
from fulfillment_service.models.booking import Booking
from fulfillment_service.models.order import ORDER_TYPES, Order
from fulfillment_service.models.subscription import Entitlement, Subscription
from fulfillment_service.providers import PROVIDERS, get_provider
from fulfillment_service.services import booking_service, entitlements, pack_service, slots, subscription_service, waitlist_service
from fulfillment_service.services.audit_service import record_audit
from fulfillment_service.services.collaborators import get_catalog, notify
from fulfillment_service.services.fulfillment import FulfillmentResult, fulfill, is_pack, send_confirmation
from fulfillment_service.services.order_numbers import generate_order_number
from fulfillment_service.services.status_normalizer import normalize

logger = logging.getLogger(__name__)

VALID_TRANSITIONS = {
    "PENDING":    {"PROCESSING", "COMPLETED", "FAILED", "CANCELLED"},
    "PROCESSING": {"COMPLETED", "FAILED", "CANCELLED"},
    "COMPLETED":  {"REFUNDED"},
    "FAILED":     set(),
    "CANCELLED":  set(),
    "REFUNDED":   set(),
}

GATE_STATUSES = ("PENDING", "PROCESSING")

PaymentUpdate = namedtuple("PaymentUpdate", ["order", "changed", "fulfillment"])


def _snapshot(order):
    return {"status": order.status, "completed_at": isoformat(order.completed_at)}


# ── Lookup ───────────────────────────────────────────────────────────────────

def get_order(order_id):
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


def find_order_by_reference(reference):
    """Order number, order id or provider transaction id; None when unknown."""
    if not reference:
        return None
    reference = str(reference).strip()
    order = Order.query.filter_by(order_number=reference).first()
    if order:
        return order
    try:
        order = db.session.get(Order, uuid.UUID(reference))
    except ValueError:
        order = None
    if order:
        return order
    return Order.query.filter_by(provider_transaction_id=reference).first()


def get_order_by_reference(reference):
    order = find_order_by_reference(reference)
    if not order:
        raise NotFoundError(f"Order {reference} not found")
    return order


def get_order_status(reference):
    order = get_order_by_reference(reference)
    data = {
        "order_number": order.order_number,
        "status": order.status,
        "order_type": order.order_type,
        "amount": float(order.amount),
        "currency": order.currency,
        "completed_at": isoformat(order.completed_at),
    }
    if order.booking is not None:
        data["booking"] = order.booking.to_dict()
    return data


def list_orders(owner_id):
    return Order.query.filter_by(owner_id=owner_id).order_by(Order.created_at.desc()).all()


# ── Creation ─────────────────────────────────────────────────────────────────

def create_order(data, actor=None):
    order_type = (data.get("order_type") or "").upper()
    item_id = data.get("item_id")
    payment_method = data.get("payment_method")
    guest_email = (data.get("guest_email") or "").strip() or None

    if order_type not in ORDER_TYPES:
        raise ValidationError(f"order_type must be one of {', '.join(ORDER_TYPES)}")
    if not item_id:
        raise ValidationError("Missing field: item_id")
    if payment_method and payment_method not in PROVIDERS:
        raise ValidationError(f"Unsupported payment_method: {payment_method}")
    if actor is None and not guest_email:
        raise ValidationError("Sign in or provide guest_email")

    item = get_catalog().get_item(order_type, item_id)
    if not item:
        raise NotFoundError(f"{order_type} {item_id} not found")

    meta = dict(data.get("metadata") or {})
    amount = float(item.get("price") or 0)

    if order_type == "SESSION" and not is_pack(item):
        scheduled_at = slots.parse_datetime(data.get("scheduled_at"))
        if scheduled_at <= utcnow():
            raise ValidationError("The session must be scheduled in the future")
        slots.ensure_slot_free(scheduled_at)
        meta["scheduled_at"] = scheduled_at.isoformat()

    if order_type == "EVENT":
        seats = data.get("seats", 1)
        if not isinstance(seats, int) or seats < 1:
            raise ValidationError("seats must be a positive integer")
        inventory = waitlist_service.ensure_inventory(str(item_id), item.get("capacity"))
        available = waitlist_service.seats_available(inventory)
        if available is not None and available < seats:
            raise ConflictError("Not enough seats for this event. Join the waitlist to be notified.")
        meta["seats"] = seats
        amount *= seats

    order = Order(
        order_number=generate_order_number(order_type),
        order_type=order_type,
        item_id=str(item_id),
        item_name=item.get("name", str(item_id)),
        amount=amount,
        currency=item.get("currency", "COP"),
        payment_method=payment_method,
        payment_provider=payment_method,
        status="PENDING",
        meta=meta,
        owner_id=actor.id if actor else None,
        guest_email=None if actor else guest_email,
        guest_name=None if actor else data.get("guest_name"),
        customer_email=actor.email if actor and actor.email else guest_email,
    )
    try:
        db.session.add(order)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Order %s created (%s %s)", order.order_number, order_type, item_id)
    return order


# ── Payment status ───────────────────────────────────────────────────────────

def complete_order(order_id, provider=None, transaction_id=None, metadata=None):
    """
    Move the order to COMPLETED and fulfill it in one transaction. Only the
    caller whose conditional UPDATE matched runs fulfillment; everyone else
    sees an already-completed no-op or a conflict.
    """
    now = utcnow()
    values = {Order.status: "COMPLETED", Order.completed_at: now, Order.updated_at: now}
    if provider:
        values[Order.payment_provider] = provider
    if transaction_id:
        values[Order.provider_transaction_id] = transaction_id

    matched = (
        Order.query.filter(Order.order_id == order_id, Order.status.in_(GATE_STATUSES))
        .update(values, synchronize_session=False)
    )
    if not matched:
        db.session.rollback()
        order = get_order(order_id)
        if order.status == "COMPLETED":
            return FulfillmentResult.noop(order.order_id)
        return FulfillmentResult.failure(
            order.order_id, "CONFLICT", f"Order is {order.status} and cannot be completed",
        )

    order = db.session.get(Order, order_id, populate_existing=True)
    if metadata:
        order.meta = {**(order.meta or {}), **metadata}
    try:
        result = fulfill(order)
        db.session.commit()
    except ServiceError as e:
        db.session.rollback()
        logger.warning("Fulfillment of %s failed: %s", order_id, e.message)
        return FulfillmentResult.failure(order_id, e.kind, e.message)
    except IntegrityError:
        db.session.rollback()
        logger.warning("Fulfillment of %s hit a uniqueness conflict", order_id)
        return FulfillmentResult.failure(order_id, "CONFLICT", "The resource was modified concurrently, please retry")

    send_confirmation(order, result)
    return result


def apply_payment_status(order_id, canonical, provider=None, transaction_id=None,
                         native_status=None, metadata=None):
    """
    Apply a normalized status. Statuses that are not a legal transition from
    the current one (stale or out-of-order deliveries) leave the order as is.
    """
    order = get_order(order_id)

    if canonical == "COMPLETED" and order.status not in GATE_STATUSES + ("COMPLETED",):
        logger.warning(
            "Payment %s approved at %s for %s order %s; order left unchanged",
            transaction_id, provider, order.status, order.order_number,
        )
        record_audit(SYSTEM_ACTOR, "order", order.order_id, "LATE_PAYMENT",
                     before=_snapshot(order), after=_snapshot(order),
                     reason=f"Approved at {provider or 'provider'} after the order became {order.status}",
                     metadata={"transaction_id": transaction_id, "native_status": native_status})
        return PaymentUpdate(order, False, None)

    if canonical == "COMPLETED":
        result = complete_order(order_id, provider, transaction_id, metadata)
        order = get_order(order_id)
        return PaymentUpdate(order, result.success and not result.already_completed, result)

    if canonical == "REFUNDED":
        if order.status != "COMPLETED":
            logger.info("Ignoring refund for %s in status %s", order.order_number, order.status)
            return PaymentUpdate(order, False, None)
        order = refund_order(order_id, SYSTEM_ACTOR, f"Refunded at {provider or 'provider'}")
        return PaymentUpdate(order, True, None)

    if canonical == order.status or canonical not in VALID_TRANSITIONS.get(order.status, set()):
        logger.info(
            "Order %s stays %s (provider reported %s / %s)",
            order.order_number, order.status, native_status, canonical,
        )
        return PaymentUpdate(order, False, None)

    released_event = None
    try:
        order = Order.query.with_for_update().filter_by(order_id=order_id).populate_existing().first()
        if canonical not in VALID_TRANSITIONS.get(order.status, set()):
            db.session.rollback()
            return PaymentUpdate(order, False, None)

        order.status = canonical
        if provider:
            order.payment_provider = provider
        if transaction_id:
            order.provider_transaction_id = transaction_id
        if metadata:
            order.meta = {**(order.meta or {}), **metadata}

        booking = order.booking
        if canonical in ("FAILED", "CANCELLED") and booking is not None and booking.status == "PENDING_PAYMENT":
            booking = Booking.query.with_for_update().filter_by(booking_id=booking.booking_id).populate_existing().first()
            released_event = booking_service.release_booking(booking, f"Payment {canonical.lower()}", "system")
            booking.payment_status = canonical
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Order %s -> %s", order.order_number, canonical)
    if released_event:
        waitlist_service.offer_released_seats(released_event)
    if canonical == "FAILED":
        notify("payment_failed", order.customer_email, order_number=order.order_number, item_name=order.item_name)
    return PaymentUpdate(order, True, None)


def verify_order(reference, actor=None):
    """
    Poll the provider for the order's current status and apply it through the
    same idempotent path as a webhook. Provider errors leave the order alone.
    """
    order = get_order_by_reference(reference)
    if actor is not None and order.owner_id and order.owner_id != actor.id and not actor.is_admin:
        raise ForbiddenError("This order belongs to another user")

    provider_name = order.payment_provider or order.payment_method
    if not provider_name:
        raise ValidationError("Order has no payment provider to verify against")
    if order.status not in GATE_STATUSES:
        return PaymentUpdate(order, False, None)

    provider = get_provider(provider_name)
    status = provider.fetch_status(order)
    if status is None:
        return PaymentUpdate(order, False, None)

    canonical = normalize(provider_name, status.native_status)
    return apply_payment_status(
        order.order_id, canonical, provider_name, status.transaction_id, status.native_status,
    )


# ── Admin ────────────────────────────────────────────────────────────────────

def confirm_payment_manually(order_id, actor, reason=None):
    order = get_order(order_id)
    before = _snapshot(order)
    result = complete_order(
        order.order_id,
        metadata={"manually_confirmed_by": actor.id, "manual_confirmation_reason": reason},
    )
    if not result.success:
        raise error_for_kind(result.error_code, result.message)
    if result.already_completed:
        raise ConflictError("Order is already completed")

    order = get_order(order_id)
    record_audit(actor, "order", order.order_id, "CONFIRM_PAYMENT",
                 before=before, after=_snapshot(order), reason=reason,
                 metadata={"effect": result.effect})
    return order, result


def refund_order(order_id, actor, reason=None):
    """
    COMPLETED -> REFUNDED. Revokes what the order granted: entitlements,
    bookings (with pack, credit and seat reversal), pack codes and a
    membership bought by it.
    """
    released_events = []
    try:
        order = Order.query.with_for_update().filter_by(order_id=order_id).populate_existing().first()
        if not order:
            raise NotFoundError("Order not found")
        if "REFUNDED" not in VALID_TRANSITIONS[order.status]:
            raise ConflictError(f"Order cannot be refunded from status {order.status}")

        before = _snapshot(order)
        now = utcnow()
        order.status = "REFUNDED"
        refund_reason = reason or "Order refunded"

        subscription_ids = {
            e.subscription_id for e in Entitlement.query.filter_by(order_id=order.order_id).all()
            if e.subscription_id
        }
        entitlements.revoke_for_order(order.order_id, refund_reason)
        for subscription_id in subscription_ids:
            subscription = (
                Subscription.query.with_for_update()
                .filter_by(subscription_id=subscription_id)
                .first()
            )
            if subscription and subscription.status != "CANCELLED":
                subscription_service.end_subscription(subscription, refund_reason, now)

        booking = order.booking
        if booking is not None and booking.status not in ("CANCELLED", "COMPLETED"):
            booking = Booking.query.with_for_update().filter_by(booking_id=booking.booking_id).populate_existing().first()
            event_id = booking_service.release_booking(booking, refund_reason, actor.id, now)
            booking.payment_status = "REFUNDED"
            if event_id:
                released_events.append(event_id)
        elif booking is not None:
            booking.payment_status = "REFUNDED"

        pack_service.deactivate_packs_for_order(order.order_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Order %s refunded by %s", order.order_number, actor.id)
    for event_id in released_events:
        waitlist_service.offer_released_seats(event_id)
    record_audit(actor, "order", order.order_id, "REFUND",
                 before=before, after=_snapshot(order), reason=reason)
    notify("order_refunded", order.customer_email, order_number=order.order_number, item_name=order.item_name)
    return order
