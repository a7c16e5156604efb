from flask import Blueprint, jsonify, request
from fulfillment_service.auth import current_actor
from fulfillment_service.routes import json_body
from fulfillment_service.services import credit_service
from fulfillment_service.services.slots import parse_datetime

credits_bp = Blueprint("credits", __name__)


@credits_bp.route("/balance", methods=["GET"])
def credit_balance():
    """
    Session credit balance
    ---
    tags:
      - Credits
    responses:
      200:
        description: Available credits, credits expiring within 7 days, next expiration
    """
    return jsonify({"success": True, **credit_service.get_credit_balance(current_actor().id)}), 200


@credits_bp.route("/history", methods=["GET"])
def credit_history():
    limit = min(request.args.get("limit", 50, type=int), 200)
    entries = credit_service.get_credit_history(current_actor().id, limit)
    return jsonify({"success": True, "entries": [e.to_dict() for e in entries]}), 200


@credits_bp.route("/book", methods=["POST"])
def book_with_credit():
    """
    Book a 1:1 session paid with one credit
    ---
    tags:
      - Credits
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - scheduled_at
          properties:
            scheduled_at:
              type: string
    responses:
      201:
        description: Session booked
      403:
        description: No active membership
      409:
        description: No credits left, or slot taken
    """
    data = json_body()
    booking = credit_service.book_with_credit(current_actor().id, parse_datetime(data.get("scheduled_at")))
    return jsonify({
        "success": True,
        "booking": booking.to_dict(),
        "credits": credit_service.get_credit_balance(booking.owner_id),
    }), 201
