from flask import Blueprint, jsonify
from fulfillment_service.auth import current_actor
from fulfillment_service.routes import json_body, parse_uuid
from fulfillment_service.services import entitlements, subscription_service

subscriptions_bp = Blueprint("subscriptions", __name__)


@subscriptions_bp.route("/me", methods=["GET"])
def my_subscription():
    """
    Live subscription of the signed-in user
    ---
    tags:
      - Subscriptions
    responses:
      200:
        description: Subscription or null
    """
    subscription = subscription_service.get_live_subscription(current_actor().id)
    return jsonify({"success": True, "subscription": subscription.to_dict() if subscription else None}), 200


@subscriptions_bp.route("/<subscription_id>/cancel", methods=["POST"])
def cancel_subscription(subscription_id):
    """
    Cancel a subscription
    By default access continues until the end of the paid period.
    immediate=true ends it now and is reserved for administrators.
    ---
    tags:
      - Subscriptions
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            reason:
              type: string
            immediate:
              type: boolean
              default: false
    responses:
      200:
        description: Subscription cancelled
      403:
        description: Not your subscription, or immediate without admin role
      409:
        description: Already cancelled
    """
    data = json_body()
    subscription = subscription_service.cancel_subscription(
        parse_uuid(subscription_id, "Subscription"),
        current_actor(),
        data.get("reason"),
        bool(data.get("immediate", False)),
    )
    return jsonify({"success": True, "subscription": subscription.to_dict()}), 200


@subscriptions_bp.route("/<subscription_id>/reactivate", methods=["POST"])
def reactivate_subscription(subscription_id):
    """
    Keep a subscription that was set to cancel at the end of the period
    ---
    tags:
      - Subscriptions
    parameters:
      - in: path
        name: subscription_id
        type: string
        required: true
    responses:
      200:
        description: Subscription renews again
      403:
        description: Not your subscription
      404:
        description: Subscription not found
      409:
        description: No pending cancellation, or the paid period has ended
    """
    subscription = subscription_service.reactivate_subscription(
        parse_uuid(subscription_id, "Subscription"), current_actor(),
    )
    return jsonify({"success": True, "subscription": subscription.to_dict()}), 200


@subscriptions_bp.route("/entitlements", methods=["GET"])
def my_entitlements():
    """
    Active entitlements of the signed-in user
    ---
    tags:
      - Subscriptions
    responses:
      200:
        description: Entitlements
    """
    granted = entitlements.list_entitlements(current_actor().id)
    return jsonify({"success": True, "entitlements": [e.to_dict() for e in granted]}), 200
