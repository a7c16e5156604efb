from fulfillment_service.errors import ValidationError
from fulfillment_service.models.base import utcnow
from fulfillment_service.providers.base import PaymentProvider, ProviderStatus, WebhookNotification


class NequiProvider(PaymentProvider):
    """Signature: HMAC-SHA256(webhook secret, raw body) in X-Nequi-Signature. Status codes 35..39."""

    name = "nequi"

    def parse_webhook(self, headers, raw_body, form=None):
        expected = self._hmac_sha256(self.config["NEQUI_WEBHOOK_SECRET"], raw_body)
        self._check_signature(expected, headers.get("X-Nequi-Signature"))

        event = self._load_json(raw_body)
        data = event.get("data") or {}
        transaction_id = data.get("transactionId") or data.get("codeQR")
        if not transaction_id:
            raise ValidationError("No transaction in webhook payload")

        return WebhookNotification(
            provider=self.name,
            transaction_id=str(transaction_id),
            order_reference=data.get("reference") or data.get("messageId"),
            native_status=data.get("status"),
            event_type=event.get("eventType", "payment.updated"),
            event_timestamp=event.get("timestamp") or event.get("eventId"),
            payload=event,
        )

    def fetch_status(self, order):
        if not order.provider_transaction_id:
            return None
        body = {
            "RequestMessage": {
                "RequestHeader": {
                    "Channel": "PNP04-C001",
                    "RequestDate": utcnow().isoformat(),
                    "MessageID": f"status-{order.provider_transaction_id}"[:35],
                    "ClientID": self.config["NEQUI_CLIENT_ID"],
                    "Destination": {
                        "ServiceName": "PaymentsService",
                        "ServiceOperation": "getStatusPayment",
                        "ServiceRegion": "C001",
                        "ServiceVersion": "1.0.0",
                    },
                },
                "RequestBody": {"any": {"getStatusPaymentRQ": {"codeQR": order.provider_transaction_id}}},
            }
        }
        data = self._request(
            "POST",
            f"{self.config['NEQUI_API_URL'].rstrip('/')}/payments/v2/-services-paymentservice-getstatuspayment",
            json=body,
            headers={
                "Authorization": f"Bearer {self.config['NEQUI_ACCESS_TOKEN']}",
                "x-api-key": self.config["NEQUI_API_KEY"],
            },
        )
        result = (((data or {}).get("ResponseMessage") or {}).get("ResponseBody") or {}).get("any", {}).get("getStatusPaymentRS")
        if not result:
            return None
        return ProviderStatus(result.get("status"), order.provider_transaction_id)
