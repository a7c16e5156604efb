"""
Webhook Ledger: records every inbound provider event once and gates
re-processing. The ledger never retries on its own; provider redelivery does.
"""

import logging
from sqlalchemy.exc import IntegrityError
from fulfillment_service.extensions import db
from fulfillment_service.models.base import utcnow
from fulfillment_service.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


def build_idempotency_key(provider, event_timestamp, transaction_id):
    return f"{provider}:{event_timestamp or 'unknown'}:{transaction_id or 'unknown'}"


def get_event(idempotency_key):
    return WebhookEvent.query.filter_by(idempotency_key=idempotency_key).first()


def record_and_check(provider, idempotency_key, event_type, payload, order_reference=None):
    """
    Returns True when the event was already processed (caller acknowledges
    and does nothing else). Otherwise ensures an unprocessed row exists.
    """
    existing = get_event(idempotency_key)
    if existing:
        return existing.processed

    event = WebhookEvent(
        provider=provider,
        idempotency_key=idempotency_key,
        event_type=event_type or "unknown",
        order_reference=order_reference,
        payload=payload,
        processed=False,
    )
    try:
        db.session.add(event)
        db.session.commit()
    except IntegrityError:
        # Concurrent delivery inserted first.
        db.session.rollback()
        existing = get_event(idempotency_key)
        return bool(existing and existing.processed)
    return False


def mark_processed(idempotency_key):
    event = get_event(idempotency_key)
    if not event:
        return None
    event.processed = True
    event.processed_at = utcnow()
    event.failed = False
    event.error_message = None
    db.session.commit()
    return event


def mark_failed(idempotency_key, error):
    db.session.rollback()
    event = get_event(idempotency_key)
    if not event:
        return None
    event.failed = True
    event.error_message = str(error)
    event.retry_count = (event.retry_count or 0) + 1
    db.session.commit()
    logger.warning("Webhook %s failed (attempt %s): %s", idempotency_key, event.retry_count, error)
    return event
