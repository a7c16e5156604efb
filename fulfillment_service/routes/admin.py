"""
Administrator operations. Every mutation here is written to the audit log.
"""

from flask import Blueprint, jsonify, request
from fulfillment_service.auth import current_actor, require_admin
from fulfillment_service.routes import json_body, parse_uuid
from fulfillment_service.services import audit_service, booking_service, order_service, waitlist_service
from fulfillment_service.services.maintenance import run_maintenance

admin_bp = Blueprint("admin", __name__)


@admin_bp.route("/orders/<order_id>/confirm-payment", methods=["POST"])
def confirm_payment(order_id):
    """
    Confirm a payment by hand (bank transfer, provider outage)
    The order goes through the same completion gate as a webhook.
    ---
    tags:
      - Admin
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
        description: Order completed and fulfilled
      403:
        description: Administrator role required
      409:
        description: Order already completed or not payable
    """
    actor = require_admin(current_actor())
    order, result = order_service.confirm_payment_manually(
        parse_uuid(order_id, "Order"), actor, json_body().get("reason"),
    )
    return jsonify({"success": True, "order": order.to_dict(), "fulfillment": result.to_dict()}), 200


@admin_bp.route("/orders/<order_id>/refund", methods=["POST"])
def refund_order(order_id):
    """
    Mark a completed order refunded and revoke what it granted
    ---
    tags:
      - Admin
    responses:
      200:
        description: Order refunded
      409:
        description: Order is not completed
    """
    actor = require_admin(current_actor())
    order = order_service.refund_order(parse_uuid(order_id, "Order"), actor, json_body().get("reason"))
    return jsonify({"success": True, "order": order.to_dict()}), 200


@admin_bp.route("/bookings/<booking_id>/complete", methods=["POST"])
def complete_booking(booking_id):
    actor = require_admin(current_actor())
    booking = booking_service.complete_booking(parse_uuid(booking_id, "Booking"), actor, json_body().get("notes"))
    return jsonify({"success": True, "booking": booking.to_dict()}), 200


@admin_bp.route("/events/<event_id>/waitlist", methods=["GET"])
def event_waitlist(event_id):
    require_admin(current_actor())
    active_only = request.args.get("all") != "1"
    entries = waitlist_service.list_event_entries(event_id, active_only=active_only)
    return jsonify({"success": True, "entries": [e.to_dict() for e in entries]}), 200


@admin_bp.route("/audit-logs", methods=["GET"])
def audit_logs():
    """
    Query the audit trail
    ---
    tags:
      - Admin
    parameters:
      - in: query
        name: entity_type
        type: string
      - in: query
        name: entity_id
        type: string
      - in: query
        name: actor_id
        type: string
      - in: query
        name: action
        type: string
      - in: query
        name: limit
        type: integer
        default: 50
      - in: query
        name: offset
        type: integer
        default: 0
    responses:
      200:
        description: Entries, newest first
    """
    require_admin(current_actor())
    logs = audit_service.get_audit_logs(
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id"),
        actor_id=request.args.get("actor_id"),
        action=request.args.get("action"),
        limit=min(request.args.get("limit", 50, type=int), 500),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({"success": True, "logs": [entry.to_dict() for entry in logs]}), 200


@admin_bp.route("/maintenance", methods=["POST"])
def maintenance():
    """
    Run time-driven transitions (cron)
    Expires overdue waitlist offers, passing seats on, and finalizes
    subscriptions whose cancellation took effect.
    ---
    tags:
      - Admin
    responses:
      200:
        description: Counts of what changed
    """
    require_admin(current_actor())
    return jsonify({"success": True, **run_maintenance()}), 200
