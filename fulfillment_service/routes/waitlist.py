from flask import Blueprint, jsonify
from fulfillment_service.auth import current_actor
from fulfillment_service.routes import json_body, parse_uuid
from fulfillment_service.services import waitlist_service

waitlist_bp = Blueprint("waitlist", __name__)


@waitlist_bp.route("/events/<event_id>/availability", methods=["GET"])
def event_availability(event_id):
    """
    Seat availability for an event
    ---
    tags:
      - Waitlist
    parameters:
      - in: path
        name: event_id
        type: string
        required: true
    responses:
      200:
        description: Capacity, allocated, held and available seats (null = unlimited)
    """
    return jsonify({"success": True, "availability": waitlist_service.get_event_availability(event_id)}), 200


@waitlist_bp.route("/events/<event_id>", methods=["POST"])
def join_waitlist(event_id):
    """
    Join the waitlist of a sold-out event
    ---
    tags:
      - Waitlist
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            seats:
              type: integer
              default: 1
    responses:
      201:
        description: Joined; position is returned
      409:
        description: Seats are available, or already on the waitlist
    """
    data = json_body()
    entry = waitlist_service.join_waitlist(event_id, current_actor(), data.get("seats", 1))
    return jsonify({"success": True, "entry": entry.to_dict()}), 201


@waitlist_bp.route("", methods=["GET"])
def my_entries():
    """
    Waitlist entries of the signed-in user
    ---
    tags:
      - Waitlist
    responses:
      200:
        description: Entries
    """
    entries = waitlist_service.list_owner_entries(current_actor().id)
    return jsonify({"success": True, "entries": [e.to_dict() for e in entries]}), 200


@waitlist_bp.route("/<entry_id>/accept", methods=["POST"])
def accept_offer(entry_id):
    """
    Accept a seat offer
    Paid events return an order to pay; free events are confirmed directly.
    ---
    tags:
      - Waitlist
    responses:
      200:
        description: Offer accepted
      403:
        description: Not your entry
      409:
        description: No pending offer, or offer expired
    """
    entry, booking, order = waitlist_service.accept_offer(parse_uuid(entry_id, "Waitlist entry"), current_actor())
    return jsonify({
        "success": True,
        "entry": entry.to_dict(),
        "booking": booking.to_dict(),
        "order": order.to_dict() if order else None,
    }), 200


@waitlist_bp.route("/<entry_id>/cancel", methods=["POST"])
def cancel_entry(entry_id):
    """
    Leave the waitlist, or decline a pending offer
    ---
    tags:
      - Waitlist
    responses:
      200:
        description: Entry cancelled; later positions move up
      409:
        description: Entry no longer active
    """
    entry = waitlist_service.cancel_entry(parse_uuid(entry_id, "Waitlist entry"), current_actor())
    return jsonify({"success": True, "entry": entry.to_dict()}), 200
