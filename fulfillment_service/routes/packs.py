from flask import Blueprint, jsonify
from fulfillment_service.auth import current_actor
from fulfillment_service.errors import ForbiddenError
from fulfillment_service.routes import json_body
from fulfillment_service.services import pack_service

packs_bp = Blueprint("packs", __name__)


@packs_bp.route("/redeem", methods=["POST"])
def redeem_pack():
    """
    Book one session with a pack code
    ---
    tags:
      - Packs
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - code
            - date
            - time
          properties:
            code:
              type: string
              example: PACK-7KQ2ZD
            date:
              type: string
              example: "2026-11-03"
            time:
              type: string
              example: "15:00"
    responses:
      201:
        description: Session booked
      403:
        description: Pack belongs to another user
      404:
        description: Unknown code
      409:
        description: Pack inactive, expired, used up, or slot taken
    """
    data = json_body()
    booking, pack = pack_service.redeem(data.get("code"), current_actor().id, data.get("date"), data.get("time"))
    return jsonify({
        "success": True,
        "booking": booking.to_dict(),
        "sessions_remaining": pack.sessions_remaining,
    }), 201


@packs_bp.route("/balance", methods=["GET"])
def pack_balance():
    """
    Remaining pack sessions of the signed-in user
    ---
    tags:
      - Packs
    responses:
      200:
        description: Balance and packs
    """
    return jsonify({"success": True, **pack_service.get_pack_balance(current_actor().id)}), 200


@packs_bp.route("/<code>", methods=["GET"])
def get_pack(code):
    """
    Look up a pack code
    ---
    tags:
      - Packs
    parameters:
      - in: path
        name: code
        type: string
        required: true
        example: PACK-7KQ2ZD
    responses:
      200:
        description: Pack with usage and expiry
      403:
        description: Pack belongs to another user
      404:
        description: Unknown code
    """
    actor = current_actor()
    pack = pack_service.get_pack(code)
    if pack.owner_id != actor.id and not actor.is_admin:
        raise ForbiddenError("This pack belongs to another user")
    return jsonify({"success": True, "pack": pack.to_dict()}), 200
