"""
Shared adapter plumbing: the parsed notification, the status poll result and
the outbound HTTP helper every provider goes through.
"""

import hashlib
import hmac
import json
import logging
from collections import namedtuple
import requests
from fulfillment_service.errors import AuthError, GatewayError, ValidationError
from fulfillment_service.services.status_normalizer import normalize
from fulfillment_service.services.webhook_ledger import build_idempotency_key

logger = logging.getLogger(__name__)

ProviderStatus = namedtuple("ProviderStatus", ["native_status", "transaction_id"])


class WebhookNotification:
    """One verified provider event, reduced to what reconciliation needs."""

    def __init__(self, provider, transaction_id, order_reference, native_status,
                 event_type, event_timestamp, payload, provider_subscription_id=None,
                 subscription=None):
        self.provider = provider
        self.transaction_id = transaction_id
        self.order_reference = order_reference
        self.native_status = native_status
        self.event_type = event_type
        self.event_timestamp = event_timestamp
        self.payload = payload
        self.provider_subscription_id = provider_subscription_id
        # Subscription lifecycle events: {"id", "status", "current_period_end", "cancel_at_period_end"}
        self.subscription = subscription

    @property
    def idempotency_key(self):
        if self.subscription is not None:
            return build_idempotency_key(self.provider, self.event_timestamp, self.subscription["id"])
        return build_idempotency_key(self.provider, self.event_timestamp, self.transaction_id)

    @property
    def canonical_status(self):
        return normalize(self.provider, self.native_status)

    def __repr__(self):
        return f"<WebhookNotification {self.provider} {self.event_type} {self.transaction_id}>"


class PaymentProvider:
    name = None

    def __init__(self, config):
        self.config = config
        self.timeout = config.get("PROVIDER_TIMEOUT_SECONDS", 10)

    def parse_webhook(self, headers, raw_body, form=None):
        """Verify the signature and extract the notification. Raises AuthError / ValidationError."""
        raise NotImplementedError

    def fetch_status(self, order):
        """Current provider status for an order, or None when the provider has no record."""
        raise NotImplementedError

    def _request(self, method, url, **kwargs):
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = requests.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise GatewayError(f"{self.name} unreachable: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise GatewayError(f"{self.name} returned {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise GatewayError(f"{self.name} returned a non-JSON response") from e

    @staticmethod
    def _load_json(raw_body):
        try:
            data = json.loads(raw_body)
        except (TypeError, ValueError) as e:
            raise ValidationError("Invalid JSON payload") from e
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        return data

    @staticmethod
    def _hmac_sha256(secret, message):
        if isinstance(message, str):
            message = message.encode("utf-8")
        return hmac.new((secret or "").encode("utf-8"), message, hashlib.sha256).hexdigest()

    def _check_signature(self, expected, received):
        if not received or not hmac.compare_digest(expected, received.strip()):
            logger.warning("Rejected %s webhook with invalid signature", self.name)
            raise AuthError("Invalid signature")
