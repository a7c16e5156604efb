"""
Waitlist / Seat Allocation
Seats per event live on one EventInventory row, locked for every decision.
Seats held by an OFFER_PENDING entry are unavailable to everyone else until
the offer is accepted, cancelled or expires.

Overdue offers are expired on access (every waitlist operation for the event)
and by run_maintenance(); expiry cascades the seats to the next WAITING entries.
"""

import logging
from datetime import timedelta
from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from fulfillment_service.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from fulfillment_service.extensions import db
from fulfillment_service.models.base import as_utc, utcnow
from fulfillment_service.models.booking import Booking
from fulfillment_service.models.order import Order
from fulfillment_service.models.waitlist import ACTIVE_WAITLIST_STATUSES, EventInventory, WaitlistEntry
from fulfillment_service.services import entitlements
from fulfillment_service.services.collaborators import get_catalog, notify
from fulfillment_service.services.order_numbers import generate_order_number
from fulfillment_service.services.slots import parse_datetime

logger = logging.getLogger(__name__)


# ── Inventory ────────────────────────────────────────────────────────────────

def get_event_item(event_id):
    item = get_catalog().get_item("EVENT", event_id)
    if not item:
        raise NotFoundError(f"Event {event_id} not found")
    return item


def ensure_inventory(event_id, capacity=None):
    """Create the inventory row on first use. Commits only when it creates."""
    inventory = db.session.get(EventInventory, event_id)
    if inventory:
        return inventory

    if capacity is None:
        capacity = get_event_item(event_id).get("capacity")
    try:
        db.session.add(EventInventory(event_id=event_id, capacity=capacity, seats_allocated=0))
        db.session.commit()
    except IntegrityError:
        # Created by a concurrent request.
        db.session.rollback()
    return db.session.get(EventInventory, event_id)


def ensure_inventory_in_transaction(event_id, capacity=None):
    """Like ensure_inventory, without committing the caller's transaction."""
    inventory = db.session.get(EventInventory, event_id)
    if inventory is None:
        inventory = EventInventory(event_id=event_id, capacity=capacity, seats_allocated=0)
        db.session.add(inventory)
        db.session.flush()
    return inventory


def lock_inventory(event_id):
    inventory = (
        EventInventory.query.with_for_update()
        .filter_by(event_id=event_id)
        .populate_existing()
        .first()
    )
    if not inventory:
        raise NotFoundError(f"No seat inventory for event {event_id}")
    return inventory


def held_seats(event_id):
    held = (
        db.session.query(func.coalesce(func.sum(WaitlistEntry.seats_requested), 0))
        .filter(WaitlistEntry.event_id == event_id, WaitlistEntry.status == "OFFER_PENDING")
        .scalar()
    )
    return int(held or 0)


def seats_available(inventory):
    """None means unlimited."""
    if inventory.capacity is None:
        return None
    return max(0, inventory.capacity - inventory.seats_allocated - held_seats(inventory.event_id))


def allocate_seats(event_id, seats):
    """Take seats from open availability. Caller owns the transaction."""
    inventory = lock_inventory(event_id)
    available = seats_available(inventory)
    if available is not None and available < seats:
        raise ConflictError(
            f"Only {available} seat(s) left for this event. Join the waitlist to be notified."
        )
    inventory.seats_allocated += seats
    return inventory


def release_seats(event_id, seats):
    """Give seats back. Caller owns the transaction and should offer them afterwards."""
    inventory = lock_inventory(event_id)
    inventory.seats_allocated = max(0, inventory.seats_allocated - seats)
    return inventory


def get_event_availability(event_id):
    expire_overdue_offers(event_id=event_id)
    inventory = ensure_inventory(event_id)
    waiting = WaitlistEntry.query.filter_by(event_id=event_id, status="WAITING").count()
    return {
        "event_id": event_id,
        "capacity": inventory.capacity,
        "seats_allocated": inventory.seats_allocated,
        "seats_held": held_seats(event_id),
        "seats_available": seats_available(inventory),
        "waiting": waiting,
    }


# ── Queue maintenance ────────────────────────────────────────────────────────

def _leave_queue(entry, status, now):
    """Take an entry out of the active queue and close the gap it leaves."""
    vacated = entry.position
    entry.status = status
    entry.position = None
    entry.responded_at = now
    db.session.flush()

    if vacated is not None:
        WaitlistEntry.query.filter(
            WaitlistEntry.event_id == entry.event_id,
            WaitlistEntry.status.in_(ACTIVE_WAITLIST_STATUSES),
            WaitlistEntry.position > vacated,
        ).update({WaitlistEntry.position: WaitlistEntry.position - 1}, synchronize_session="fetch")


def _offer_available(inventory, now):
    """
    Extend offers to WAITING entries, in position order, while their seat
    requests fit what is open. Inventory must be locked. Returns the entries
    that received an offer.
    """
    available = seats_available(inventory)
    offer_hours = current_app.config["WAITLIST_OFFER_HOURS"]
    offered = []

    waiting = (
        WaitlistEntry.query.filter_by(event_id=inventory.event_id, status="WAITING")
        .order_by(WaitlistEntry.position.asc())
        .all()
    )
    for entry in waiting:
        if available is not None and available <= 0:
            break
        if available is not None and entry.seats_requested > available:
            continue
        entry.status = "OFFER_PENDING"
        entry.offer_sent_at = now
        entry.offer_expires_at = now + timedelta(hours=offer_hours)
        if available is not None:
            available -= entry.seats_requested
        offered.append(entry)

    if offered:
        logger.info("Offered seats for event %s to %s waitlist entr(ies)", inventory.event_id, len(offered))
    return offered


def _notify_offers(entries):
    for entry in entries:
        notify(
            "waitlist_offer",
            entry.owner_email,
            event_id=entry.event_id,
            seats=entry.seats_requested,
            expires_at=entry.offer_expires_at.isoformat(),
        )


def offer_released_seats(event_id):
    """Called after seats are released (cancellation, failed payment)."""
    if not db.session.get(EventInventory, event_id):
        return []
    try:
        inventory = lock_inventory(event_id)
        offered = _offer_available(inventory, utcnow())
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    _notify_offers(offered)
    return offered


def expire_overdue_offers(event_id=None, now=None):
    """Expire OFFER_PENDING entries past their deadline and cascade the seats."""
    now = now or utcnow()
    query = WaitlistEntry.query.filter(
        WaitlistEntry.status == "OFFER_PENDING",
        WaitlistEntry.offer_expires_at <= now,
    )
    if event_id is not None:
        query = query.filter(WaitlistEntry.event_id == event_id)
    event_ids = sorted({entry.event_id for entry in query.all()})

    expired, offered = [], []
    for eid in event_ids:
        try:
            inventory = lock_inventory(eid)
            overdue = (
                WaitlistEntry.query.with_for_update()
                .filter(
                    WaitlistEntry.event_id == eid,
                    WaitlistEntry.status == "OFFER_PENDING",
                    WaitlistEntry.offer_expires_at <= now,
                )
                .order_by(WaitlistEntry.position.asc())
                .all()
            )
            for entry in overdue:
                _leave_queue(entry, "EXPIRED", now)
            expired.extend(overdue)
            offered.extend(_offer_available(inventory, now))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    for entry in expired:
        notify("waitlist_offer_expired", entry.owner_email, event_id=entry.event_id)
    _notify_offers(offered)
    if expired:
        logger.info("Expired %s waitlist offer(s)", len(expired))
    return {"expired": len(expired), "offered": len(offered)}


# ── Client operations ────────────────────────────────────────────────────────

def get_entry(entry_id):
    entry = db.session.get(WaitlistEntry, entry_id)
    if not entry:
        raise NotFoundError("Waitlist entry not found")
    return entry


def list_event_entries(event_id, active_only=True):
    query = WaitlistEntry.query.filter_by(event_id=event_id)
    if active_only:
        query = query.filter(WaitlistEntry.status.in_(ACTIVE_WAITLIST_STATUSES))
    return query.order_by(WaitlistEntry.position.asc(), WaitlistEntry.created_at.asc()).all()


def list_owner_entries(owner_id):
    return (
        WaitlistEntry.query.filter_by(owner_id=owner_id)
        .order_by(WaitlistEntry.created_at.desc())
        .all()
    )


def join_waitlist(event_id, actor, seats=1):
    if not isinstance(seats, int) or seats < 1:
        raise ValidationError("seats must be a positive integer")

    expire_overdue_offers(event_id=event_id)
    ensure_inventory(event_id)

    try:
        inventory = lock_inventory(event_id)
        available = seats_available(inventory)
        if available is None or available >= seats:
            raise ConflictError("Seats are available for this event. Book directly instead.")

        existing = WaitlistEntry.query.filter(
            WaitlistEntry.event_id == event_id,
            WaitlistEntry.owner_id == actor.id,
            WaitlistEntry.status.in_(ACTIVE_WAITLIST_STATUSES),
        ).first()
        if existing:
            raise ConflictError("You are already on the waitlist for this event")

        active = WaitlistEntry.query.filter(
            WaitlistEntry.event_id == event_id,
            WaitlistEntry.status.in_(ACTIVE_WAITLIST_STATUSES),
        ).count()

        entry = WaitlistEntry(
            event_id=event_id,
            owner_id=actor.id,
            owner_email=actor.email,
            seats_requested=seats,
            position=active + 1,
            status="WAITING",
        )
        db.session.add(entry)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("User %s joined waitlist for %s at position %s", actor.id, event_id, entry.position)
    notify("waitlist_joined", actor.email, event_id=event_id, position=entry.position)
    return entry


def accept_offer(entry_id, actor):
    """
    Turn a pending offer into a booking. Paid events get a PENDING order and a
    PENDING_PAYMENT booking that fulfillment confirms; free events are
    confirmed immediately.
    """
    entry = get_entry(entry_id)
    if entry.owner_id != actor.id:
        raise ForbiddenError("This waitlist entry belongs to another user")

    expire_overdue_offers(event_id=entry.event_id)
    item = get_event_item(entry.event_id)

    try:
        inventory = lock_inventory(entry.event_id)
        entry = WaitlistEntry.query.with_for_update().filter_by(entry_id=entry_id).populate_existing().first()
        now = utcnow()
        if entry.status != "OFFER_PENDING":
            raise ConflictError(f"No pending offer on this entry (status {entry.status})")
        if entry.offer_expires_at and as_utc(entry.offer_expires_at) <= now:
            raise ConflictError("This offer has expired")

        # The offer held these seats; accepting turns the hold into an allocation.
        inventory.seats_allocated += entry.seats_requested

        unit_price = float(item.get("price") or 0)
        amount = unit_price * entry.seats_requested
        currency = item.get("currency", "COP")
        item_name = item.get("name", entry.event_id)
        event_date = item.get("event_date")

        booking = Booking(
            owner_id=actor.id,
            booking_type="EVENT",
            resource_id=entry.event_id,
            resource_name=item_name,
            scheduled_at=parse_datetime(event_date, "event_date") if event_date else None,
            seats=entry.seats_requested,
            amount=amount,
            currency=currency,
            meta={"waitlist_entry_id": str(entry.entry_id)},
        )
        order = None
        if amount > 0:
            order = Order(
                order_number=generate_order_number("EVENT"),
                order_type="EVENT",
                item_id=entry.event_id,
                item_name=item_name,
                amount=amount,
                currency=currency,
                status="PENDING",
                owner_id=actor.id,
                customer_email=actor.email or entry.owner_email,
                meta={"seats": entry.seats_requested, "waitlist_entry_id": str(entry.entry_id)},
            )
            db.session.add(order)
            db.session.flush()
            booking.order_id = order.order_id
            booking.status = "PENDING_PAYMENT"
            booking.payment_status = "PENDING"
        else:
            booking.status = "CONFIRMED"
            booking.payment_status = "COMPLETED"
            entitlements.grant_entitlement(actor.id, "EVENT", entry.event_id, item_name)

        db.session.add(booking)
        db.session.flush()

        entry.resulting_booking_id = booking.booking_id
        _leave_queue(entry, "ACCEPTED", now)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Waitlist offer %s accepted, booking %s", entry.entry_id, booking.booking_id)
    return entry, booking, order


def cancel_entry(entry_id, actor):
    """Cancel from WAITING or OFFER_PENDING; a cancelled offer goes to the next in line."""
    entry = get_entry(entry_id)
    if entry.owner_id != actor.id and not actor.is_admin:
        raise ForbiddenError("This waitlist entry belongs to another user")

    offered = []
    try:
        inventory = lock_inventory(entry.event_id)
        entry = WaitlistEntry.query.with_for_update().filter_by(entry_id=entry_id).populate_existing().first()
        if entry.status not in ACTIVE_WAITLIST_STATUSES:
            raise ConflictError(f"Waitlist entry is already {entry.status}")

        held_offer = entry.status == "OFFER_PENDING"
        now = utcnow()
        _leave_queue(entry, "CANCELLED", now)
        if held_offer:
            offered = _offer_available(inventory, now)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    _notify_offers(offered)
    return entry
