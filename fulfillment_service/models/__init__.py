from fulfillment_service.models.order import Order
from fulfillment_service.models.webhook_event import WebhookEvent
from fulfillment_service.models.booking import Booking
from fulfillment_service.models.session_pack import SessionPackCode, PackRedemption
from fulfillment_service.models.subscription import Subscription, Entitlement
from fulfillment_service.models.waitlist import EventInventory, WaitlistEntry
from fulfillment_service.models.audit_log import AuditLog
from fulfillment_service.models.credit import CreditEntry

__all__ = [
    "Order",
    "WebhookEvent",
    "Booking",
    "SessionPackCode",
    "PackRedemption",
    "Subscription",
    "Entitlement",
    "EventInventory",
    "WaitlistEntry",
    "AuditLog",
    "CreditEntry",
]
