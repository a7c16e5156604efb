"""
Inbound provider events: verify -> ledger gate -> normalize -> apply.
A failure is written to the ledger row and re-raised so the provider's own
retry redelivers the event.
"""

import logging
from fulfillment_service.auth import SYSTEM_ACTOR
from fulfillment_service.errors import NotFoundError, error_for_kind
from fulfillment_service.providers import get_provider
from fulfillment_service.services import order_service, subscription_service, webhook_ledger
from fulfillment_service.services.audit_service import record_audit

logger = logging.getLogger(__name__)


def handle_webhook(provider_name, headers, raw_body, form=None):
    provider = get_provider(provider_name)
    notification = provider.parse_webhook(headers, raw_body, form)
    key = notification.idempotency_key

    already_processed = webhook_ledger.record_and_check(
        provider.name, key, notification.event_type, notification.payload, notification.order_reference,
    )
    if already_processed:
        logger.info("Webhook %s already processed, acknowledging", key)
        return {"received": True, "processed": False, "duplicate": True, "idempotency_key": key}

    try:
        response = _apply(provider.name, notification)
    except Exception as e:
        webhook_ledger.mark_failed(key, getattr(e, "message", None) or str(e))
        raise

    webhook_ledger.mark_processed(key)
    response.update({"received": True, "processed": True, "duplicate": False, "idempotency_key": key})
    return response


def _apply(provider_name, notification):
    if notification.subscription is not None:
        sub = notification.subscription
        subscription = subscription_service.sync_provider_status(
            sub["id"], sub["status"], sub.get("current_period_end"), sub.get("cancel_at_period_end"),
        )
        return {"subscription_status": subscription.status if subscription else None}

    order = (
        order_service.find_order_by_reference(notification.order_reference)
        or order_service.find_order_by_reference(notification.transaction_id)
    )
    if order is None:
        raise NotFoundError(f"No order for reference {notification.order_reference or notification.transaction_id}")

    previous = order.status
    canonical = notification.canonical_status
    metadata = None
    if notification.provider_subscription_id:
        metadata = {"provider_subscription_id": notification.provider_subscription_id}

    update = order_service.apply_payment_status(
        order.order_id, canonical, provider_name, notification.transaction_id,
        notification.native_status, metadata,
    )
    result = update.fulfillment
    if result is not None and not result.success:
        raise error_for_kind(result.error_code, result.message)

    if update.changed:
        record_audit(
            SYSTEM_ACTOR, "order", update.order.order_id, "PAYMENT_STATUS",
            before={"status": previous}, after={"status": update.order.status},
            metadata={"provider": provider_name, "native_status": notification.native_status,
                      "transaction_id": notification.transaction_id},
        )
    logger.info(
        "Webhook %s: order %s %s -> %s (%s)",
        provider_name, update.order.order_number, previous, update.order.status, notification.native_status,
    )
    return {
        "order_number": update.order.order_number,
        "status": update.order.status,
        "fulfillment": result.to_dict() if result is not None else None,
    }
