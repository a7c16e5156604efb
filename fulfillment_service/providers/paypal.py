"""
PayPal has no shared-secret signature; every webhook is checked through the
verify-webhook-signature API with an OAuth client-credentials token.
"""

import json
from fulfillment_service.errors import AuthError, GatewayError, ValidationError
from fulfillment_service.providers.base import PaymentProvider, ProviderStatus, WebhookNotification

# Event types whose resource.status does not carry the outcome on its own.
EVENT_STATUSES = {
    "CHECKOUT.ORDER.APPROVED":   "APPROVED",
    "CHECKOUT.ORDER.COMPLETED":  "COMPLETED",
    "PAYMENT.CAPTURE.COMPLETED": "COMPLETED",
    "PAYMENT.CAPTURE.PENDING":   "PENDING",
    "PAYMENT.CAPTURE.DENIED":    "DENIED",
    "PAYMENT.CAPTURE.DECLINED":  "DECLINED",
    "PAYMENT.CAPTURE.REFUNDED":  "REFUNDED",
    "PAYMENT.CAPTURE.REVERSED":  "REFUNDED",
}

TRANSMISSION_HEADERS = {
    "auth_algo":         "PAYPAL-AUTH-ALGO",
    "cert_url":          "PAYPAL-CERT-URL",
    "transmission_id":   "PAYPAL-TRANSMISSION-ID",
    "transmission_sig":  "PAYPAL-TRANSMISSION-SIG",
    "transmission_time": "PAYPAL-TRANSMISSION-TIME",
}


class PayPalProvider(PaymentProvider):
    name = "paypal"

    @property
    def base_url(self):
        return self.config["PAYPAL_API_URL"].rstrip("/")

    def access_token(self):
        data = self._request(
            "POST",
            f"{self.base_url}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.config["PAYPAL_CLIENT_ID"], self.config["PAYPAL_CLIENT_SECRET"]),
        )
        if not data or not data.get("access_token"):
            raise GatewayError("PayPal did not return an access token")
        return data["access_token"]

    def verify_signature(self, headers, event):
        verification = {field: headers.get(header) for field, header in TRANSMISSION_HEADERS.items()}
        if not all(verification.values()):
            raise AuthError("Missing PayPal transmission headers")
        verification["webhook_id"] = self.config["PAYPAL_WEBHOOK_ID"]
        verification["webhook_event"] = event

        data = self._request(
            "POST",
            f"{self.base_url}/v1/notifications/verify-webhook-signature",
            json=verification,
            headers={"Authorization": f"Bearer {self.access_token()}"},
        )
        if not data or data.get("verification_status") != "SUCCESS":
            raise AuthError("Invalid signature")

    def parse_webhook(self, headers, raw_body, form=None):
        try:
            event = json.loads(raw_body)
        except (TypeError, ValueError) as e:
            raise ValidationError("Invalid JSON payload") from e
        self.verify_signature(headers, event)

        resource = event.get("resource") or {}
        if not resource.get("id"):
            raise ValidationError("No resource in webhook payload")

        event_type = event.get("event_type", "")
        purchase_units = resource.get("purchase_units") or [{}]
        reference = (
            resource.get("custom_id")
            or resource.get("invoice_id")
            or purchase_units[0].get("custom_id")
            or purchase_units[0].get("reference_id")
        )
        return WebhookNotification(
            provider=self.name,
            transaction_id=str(resource["id"]),
            order_reference=reference,
            native_status=EVENT_STATUSES.get(event_type, resource.get("status")),
            event_type=event_type,
            event_timestamp=event.get("create_time") or event.get("id"),
            payload=event,
        )

    def fetch_status(self, order):
        if not order.provider_transaction_id:
            return None
        data = self._request(
            "GET",
            f"{self.base_url}/v2/checkout/orders/{order.provider_transaction_id}",
            headers={"Authorization": f"Bearer {self.access_token()}"},
        )
        if not data:
            return None
        return ProviderStatus(data.get("status"), str(data.get("id") or order.provider_transaction_id))
