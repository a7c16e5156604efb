from flask import Blueprint, jsonify
from fulfillment_service.auth import current_actor, optional_actor
from fulfillment_service.routes import json_body
from fulfillment_service.services import order_service

orders_bp = Blueprint("orders", __name__)


@orders_bp.route("", methods=["POST"])
def create_order():
    """
    Create an order for one catalog item
    Signed-in users own the order; guests must pass guest_email.
    ---
    tags:
      - Orders
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - order_type
            - item_id
          properties:
            order_type:
              type: string
              enum: [SESSION, EVENT, MEMBERSHIP, COURSE, PRODUCT, PREMIUM_CONTENT]
            item_id:
              type: string
            payment_method:
              type: string
              enum: [wompi, epayco, nequi, paypal, stripe]
            scheduled_at:
              type: string
              description: ISO-8601, required for single sessions
            seats:
              type: integer
              description: Events only, defaults to 1
            guest_email:
              type: string
            guest_name:
              type: string
            metadata:
              type: object
    responses:
      201:
        description: Order created in PENDING
      400:
        description: Invalid input
      404:
        description: Catalog item not found
      409:
        description: Slot taken or event sold out
    """
    order = order_service.create_order(json_body(), optional_actor())
    return jsonify({"success": True, "order": order.to_dict()}), 201


@orders_bp.route("", methods=["GET"])
def list_my_orders():
    """
    Orders of the signed-in user
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    responses:
      200:
        description: Orders, newest first
    """
    actor = current_actor()
    orders = order_service.list_orders(actor.id)
    return jsonify({"success": True, "orders": [o.to_dict() for o in orders]}), 200


@orders_bp.route("/<reference>", methods=["GET"])
def get_order_status(reference):
    """
    Payment status by order number, order id or provider transaction id
    ---
    tags:
      - Orders
    parameters:
      - in: path
        name: reference
        type: string
        required: true
    responses:
      200:
        description: Current status
      404:
        description: Order not found
    """
    return jsonify({"success": True, "order": order_service.get_order_status(reference)}), 200


@orders_bp.route("/<reference>/verify", methods=["POST"])
def verify_order(reference):
    """
    Poll the payment provider when no webhook has arrived yet
    ---
    tags:
      - Orders
    parameters:
      - in: path
        name: reference
        type: string
        required: true
    responses:
      200:
        description: Status after verification
      502:
        description: Provider unavailable, order left unchanged
    """
    update = order_service.verify_order(reference, optional_actor())
    return jsonify({
        "success": True,
        "changed": update.changed,
        "order": update.order.to_dict(),
        "fulfillment": update.fulfillment.to_dict() if update.fulfillment else None,
    }), 200
