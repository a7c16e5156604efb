from flask import Blueprint, jsonify, request
from fulfillment_service.services.webhook_processor import handle_webhook

webhooks_bp = Blueprint("webhooks", __name__)


@webhooks_bp.route("/<provider>", methods=["POST"])
def provider_webhook(provider):
    """
    Handle a payment provider webhook
    Signature is verified per provider before anything is recorded.
    A redelivered event is acknowledged without side effects.
    ---
    tags:
      - Webhooks
    parameters:
      - in: path
        name: provider
        type: string
        enum: [wompi, epayco, nequi, paypal, stripe]
        required: true
    responses:
      200:
        description: Event processed or acknowledged as duplicate
      400:
        description: Invalid payload
      401:
        description: Invalid signature
      404:
        description: Unknown provider or order (provider will retry)
    """
    form = request.form if request.mimetype == "application/x-www-form-urlencoded" else None
    result = handle_webhook(provider, request.headers, request.get_data(), form)
    return jsonify(result), 200
