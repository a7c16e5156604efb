from fulfillment_service.errors import AuthError, ValidationError
from fulfillment_service.providers.base import PaymentProvider, ProviderStatus, WebhookNotification


class WompiProvider(PaymentProvider):
    """Signature: HMAC-SHA256(events secret, X-Event-Timestamp + raw body) in X-Event-Checksum."""

    name = "wompi"

    def parse_webhook(self, headers, raw_body, form=None):
        timestamp = headers.get("X-Event-Timestamp")
        if not timestamp:
            raise AuthError("Missing X-Event-Timestamp header")
        body = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        expected = self._hmac_sha256(self.config["WOMPI_EVENTS_SECRET"], f"{timestamp}{body}")
        self._check_signature(expected, headers.get("X-Event-Checksum"))

        data = self._load_json(body)
        transaction = (data.get("data") or {}).get("transaction")
        if not transaction or not transaction.get("id"):
            raise ValidationError("No transaction in webhook payload")

        return WebhookNotification(
            provider=self.name,
            transaction_id=str(transaction["id"]),
            order_reference=transaction.get("reference"),
            native_status=transaction.get("status"),
            event_type=data.get("event", "transaction.updated"),
            event_timestamp=timestamp,
            payload=data,
        )

    def fetch_status(self, order):
        headers = {"Authorization": f"Bearer {self.config['WOMPI_PRIVATE_KEY']}"}
        base = self.config["WOMPI_API_URL"].rstrip("/")

        if order.provider_transaction_id:
            data = self._request("GET", f"{base}/transactions/{order.provider_transaction_id}", headers=headers)
            transaction = (data or {}).get("data")
        else:
            data = self._request("GET", f"{base}/transactions", headers=headers,
                                 params={"reference": order.order_number})
            matches = (data or {}).get("data") or []
            transaction = matches[0] if matches else None

        if not transaction:
            return None
        return ProviderStatus(transaction.get("status"), str(transaction.get("id")))
