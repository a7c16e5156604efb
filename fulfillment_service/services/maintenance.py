import logging
from fulfillment_service.services import subscription_service, waitlist_service

logger = logging.getLogger(__name__)


def run_maintenance(now=None):
    """Time-driven transitions: overdue waitlist offers and lapsed subscriptions."""
    offers = waitlist_service.expire_overdue_offers(now=now)
    finalized = subscription_service.finalize_lapsed_subscriptions(now=now)
    logger.info("Maintenance: %s offer(s) expired, %s subscription(s) finalized", offers["expired"], finalized)
    return {
        "waitlist_offers_expired": offers["expired"],
        "waitlist_offers_sent": offers["offered"],
        "subscriptions_finalized": finalized,
    }
