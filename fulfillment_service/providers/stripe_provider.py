import json
import logging
from datetime import datetime, timezone
import stripe
from fulfillment_service.errors import AuthError, GatewayError, ValidationError
from fulfillment_service.providers.base import PaymentProvider, ProviderStatus, WebhookNotification

logger = logging.getLogger(__name__)

# Events whose object status lags behind the outcome the event announces.
EVENT_STATUSES = {
    "payment_intent.payment_failed":        "payment_failed",
    "payment_intent.canceled":              "canceled",
    "checkout.session.expired":             "expired",
    "checkout.session.async_payment_failed": "failed",
    "charge.refunded":                      "refunded",
}

SUBSCRIPTION_EVENTS = (
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
)


class StripeProvider(PaymentProvider):
    name = "stripe"

    def client(self):
        return stripe.StripeClient(
            self.config["STRIPE_SECRET_KEY"],
            http_client=stripe.RequestsClient(timeout=self.timeout),
        )

    def parse_webhook(self, headers, raw_body, form=None):
        sig_header = headers.get("Stripe-Signature")
        if not sig_header:
            raise AuthError("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(raw_body, sig_header, self.config["STRIPE_WEBHOOK_SECRET"])
        except ValueError as e:
            raise ValidationError("Invalid payload") from e
        except stripe.SignatureVerificationError as e:
            raise AuthError("Invalid signature") from e

        event = self._load_json(raw_body)
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}

        if event_type in SUBSCRIPTION_EVENTS:
            period_end = obj.get("current_period_end")
            return WebhookNotification(
                provider=self.name,
                transaction_id=obj.get("id"),
                order_reference=None,
                native_status=obj.get("status"),
                event_type=event_type,
                event_timestamp=event.get("created"),
                payload=event,
                subscription={
                    "id": obj.get("id"),
                    "status": "canceled" if event_type.endswith(".deleted") else obj.get("status"),
                    "current_period_end": datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end else None,
                    "cancel_at_period_end": obj.get("cancel_at_period_end"),
                },
            )

        if event_type.startswith("checkout.session."):
            transaction_id = obj.get("payment_intent") or obj.get("id")
            reference = obj.get("client_reference_id") or metadata.get("order_number")
            native_status = obj.get("payment_status")
        elif event_type == "charge.refunded":
            transaction_id = obj.get("payment_intent") or obj.get("id")
            reference = metadata.get("order_number")
            native_status = None
        else:
            transaction_id = obj.get("id")
            reference = metadata.get("order_number")
            native_status = obj.get("status")

        if not transaction_id:
            raise ValidationError("No transaction in webhook payload")

        return WebhookNotification(
            provider=self.name,
            transaction_id=str(transaction_id),
            order_reference=reference,
            native_status=EVENT_STATUSES.get(event_type, native_status),
            event_type=event_type,
            event_timestamp=event.get("created"),
            payload=event,
            provider_subscription_id=obj.get("subscription"),
        )

    def fetch_status(self, order):
        reference = order.provider_transaction_id
        if not reference:
            return None
        try:
            if reference.startswith("cs_"):
                session = self.client().checkout.sessions.retrieve(reference)
                return ProviderStatus(session.payment_status, session.payment_intent or session.id)
            intent = self.client().payment_intents.retrieve(reference)
            return ProviderStatus(intent.status, intent.id)
        except stripe.InvalidRequestError:
            return None
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe status lookup failed: {e}") from e

    def cancel_subscription(self, provider_subscription_id, at_period_end=True):
        try:
            if at_period_end:
                self.client().subscriptions.update(
                    provider_subscription_id, params={"cancel_at_period_end": True},
                )
            else:
                self.client().subscriptions.cancel(provider_subscription_id)
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe cancellation failed: {e}") from e
        logger.info("Stripe subscription %s cancelled (at_period_end=%s)", provider_subscription_id, at_period_end)

    def resume_subscription(self, provider_subscription_id):
        try:
            self.client().subscriptions.update(
                provider_subscription_id, params={"cancel_at_period_end": False},
            )
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe reactivation failed: {e}") from e
        logger.info("Stripe subscription %s no longer cancels at period end", provider_subscription_id)
