from fulfillment_service.errors import ValidationError
from fulfillment_service.providers.base import PaymentProvider, ProviderStatus, WebhookNotification

SIGNED_FIELDS = ("x_cust_id_cliente", "x_ref_payco", "x_transaction_id", "x_amount", "x_currency_code")


class EpaycoProvider(PaymentProvider):
    """
    Confirmation arrives form-encoded or as JSON. Signature:
    HMAC-SHA256(private key, cust_id^p_key^ref_payco^transaction_id^amount^currency).
    """

    name = "epayco"

    def signature_for(self, fields):
        message = "^".join([
            str(fields.get("x_cust_id_cliente", "")),
            self.config["EPAYCO_P_KEY"] or "",
            str(fields.get("x_ref_payco", "")),
            str(fields.get("x_transaction_id", "")),
            str(fields.get("x_amount", "")),
            str(fields.get("x_currency_code", "")),
        ])
        return self._hmac_sha256(self.config["EPAYCO_PRIVATE_KEY"], message)

    def parse_webhook(self, headers, raw_body, form=None):
        fields = form.to_dict() if form else self._load_json(raw_body)
        missing = [f for f in SIGNED_FIELDS if not fields.get(f)]
        if missing:
            raise ValidationError(f"Missing fields: {', '.join(missing)}")

        self._check_signature(self.signature_for(fields), fields.get("x_signature"))

        return WebhookNotification(
            provider=self.name,
            transaction_id=str(fields["x_ref_payco"]),
            order_reference=fields.get("x_id_invoice") or fields.get("x_extra1"),
            native_status=fields.get("x_cod_response"),
            event_type=f"confirmation.{fields.get('x_response', 'unknown')}".lower(),
            event_timestamp=fields.get("x_transaction_date") or fields.get("x_transaction_id"),
            payload=fields,
        )

    def fetch_status(self, order):
        if not order.provider_transaction_id:
            return None
        data = self._request(
            "GET",
            f"{self.config['EPAYCO_API_URL'].rstrip('/')}/transaction/response.json",
            params={"ref_payco": order.provider_transaction_id},
        )
        if not data or not data.get("success"):
            return None
        transaction = data.get("data") or {}
        return ProviderStatus(transaction.get("x_cod_response"), str(transaction.get("x_ref_payco") or order.provider_transaction_id))
