"""
Payment provider adapters. Each verifies its own webhook signature, extracts
transaction id / order reference / native status and can poll current status.
"""

from flask import current_app
from fulfillment_service.errors import NotFoundError
from fulfillment_service.providers.epayco import EpaycoProvider
from fulfillment_service.providers.nequi import NequiProvider
from fulfillment_service.providers.paypal import PayPalProvider
from fulfillment_service.providers.stripe_provider import StripeProvider
from fulfillment_service.providers.wompi import WompiProvider

PROVIDERS = {
    "wompi":  WompiProvider,
    "epayco": EpaycoProvider,
    "nequi":  NequiProvider,
    "paypal": PayPalProvider,
    "stripe": StripeProvider,
}


def get_provider(name):
    provider_class = PROVIDERS.get((name or "").lower())
    if provider_class is None:
        raise NotFoundError(f"Unknown payment provider: {name}")
    return provider_class(current_app.config)
