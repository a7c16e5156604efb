from flask import Blueprint, jsonify, request
from fulfillment_service.auth import current_actor
from fulfillment_service.routes import json_body, parse_uuid
from fulfillment_service.services import booking_service

bookings_bp = Blueprint("bookings", __name__)


@bookings_bp.route("", methods=["GET"])
def list_bookings():
    """
    Bookings of the signed-in user
    ---
    tags:
      - Bookings
    parameters:
      - in: query
        name: status
        type: string
    responses:
      200:
        description: Bookings
    """
    actor = current_actor()
    bookings = booking_service.list_bookings(actor.id, request.args.get("status"))
    return jsonify({"success": True, "bookings": [b.to_dict() for b in bookings]}), 200


@bookings_bp.route("/<booking_id>", methods=["GET"])
def get_booking(booking_id):
    """
    Booking detail
    ---
    tags:
      - Bookings
    responses:
      200:
        description: Booking
      403:
        description: Not your booking
      404:
        description: Not found
    """
    booking = booking_service.get_booking_for(parse_uuid(booking_id, "Booking"), current_actor())
    return jsonify({"success": True, "booking": booking.to_dict()}), 200


@bookings_bp.route("/<booking_id>/cancel", methods=["POST"])
def cancel_booking(booking_id):
    """
    Cancel a booking
    Clients need 24h notice; admins may cancel any booking at any time.
    Pack sessions, credits and event seats are returned.
    ---
    tags:
      - Bookings
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            reason:
              type: string
    responses:
      200:
        description: Booking cancelled
      400:
        description: Less than 24h notice
      403:
        description: Not your booking
      409:
        description: Booking already cancelled or completed
    """
    data = json_body()
    booking = booking_service.cancel_booking(
        parse_uuid(booking_id, "Booking"), current_actor(), data.get("reason"),
    )
    return jsonify({"success": True, "booking": booking.to_dict()}), 200


@bookings_bp.route("/<booking_id>/reschedule", methods=["POST"])
def reschedule_booking(booking_id):
    """
    Move a booking to a new time
    ---
    tags:
      - Bookings
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - new_time
          properties:
            new_time:
              type: string
              description: ISO-8601
            reason:
              type: string
    responses:
      200:
        description: Booking rescheduled
      400:
        description: Past time, short notice or reschedule limit reached
      409:
        description: New slot taken
    """
    data = json_body()
    booking = booking_service.reschedule_booking(
        parse_uuid(booking_id, "Booking"), current_actor(), data.get("new_time"), data.get("reason"),
    )
    return jsonify({"success": True, "booking": booking.to_dict()}), 200
