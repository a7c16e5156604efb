"""
Environment-driven configuration; .env is loaded on import.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _database_url():
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    db_user = os.environ.get("DB_USER", "fulfillment_svc_user")
    db_pass = os.environ.get("DB_PASS", "password")
    db_host = os.environ.get("DB_HOST", "fulfillment-db")
    db_name = os.environ.get("DB_NAME", "fulfillment_db")
    return f"postgresql://{db_user}:{db_pass}@{db_host}:5432/{db_name}"


class Config:
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET", "dev-secret-change-me")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Booking policy
    BOOKING_TIMEZONE = os.environ.get("BOOKING_TIMEZONE", "UTC")
    CANCELLATION_LEAD_HOURS = int(os.environ.get("CANCELLATION_LEAD_HOURS", "24"))
    MAX_CLIENT_RESCHEDULES = int(os.environ.get("MAX_CLIENT_RESCHEDULES", "2"))

    # Session packs and credits
    PACK_SESSIONS_TOTAL = int(os.environ.get("PACK_SESSIONS_TOTAL", "8"))
    PACK_VALIDITY_DAYS = int(os.environ.get("PACK_VALIDITY_DAYS", "365"))
    FLEXIBLE_SESSION_RESOURCE_ID = os.environ.get("FLEXIBLE_SESSION_RESOURCE_ID", "session-flexible")
    FLEXIBLE_SESSION_RESOURCE_NAME = os.environ.get("FLEXIBLE_SESSION_RESOURCE_NAME", "1:1 Session")
    CREDITS_EXPIRE_DAYS = int(os.environ.get("CREDITS_EXPIRE_DAYS", "30"))

    # Waitlist
    WAITLIST_OFFER_HOURS = int(os.environ.get("WAITLIST_OFFER_HOURS", "24"))

    # Outbound HTTP
    PROVIDER_TIMEOUT_SECONDS = float(os.environ.get("PROVIDER_TIMEOUT_SECONDS", "10"))
    COLLABORATOR_TIMEOUT_SECONDS = float(os.environ.get("COLLABORATOR_TIMEOUT_SECONDS", "2"))
    CATALOG_SERVICE_URL = os.environ.get("CATALOG_SERVICE_URL", "http://catalog-service:8080")
    NOTIFICATION_SERVICE_URL = os.environ.get("NOTIFICATION_SERVICE_URL", "http://notification-service:8080")
    IDENTITY_SERVICE_URL = os.environ.get("IDENTITY_SERVICE_URL", "http://user-service:5000")

    # Providers
    WOMPI_API_URL = os.environ.get("WOMPI_API_URL", "https://sandbox.wompi.co/v1")
    WOMPI_PRIVATE_KEY = os.environ.get("WOMPI_PRIVATE_KEY", "")
    WOMPI_EVENTS_SECRET = os.environ.get("WOMPI_EVENTS_SECRET", "")

    EPAYCO_API_URL = os.environ.get("EPAYCO_API_URL", "https://api.secure.epayco.co")
    EPAYCO_CUSTOMER_ID = os.environ.get("EPAYCO_CUSTOMER_ID", "")
    EPAYCO_P_KEY = os.environ.get("EPAYCO_P_KEY", "")
    EPAYCO_PRIVATE_KEY = os.environ.get("EPAYCO_PRIVATE_KEY", "")

    NEQUI_API_URL = os.environ.get("NEQUI_API_URL", "https://api.sandbox.nequi.com")
    NEQUI_API_KEY = os.environ.get("NEQUI_API_KEY", "")
    NEQUI_CLIENT_ID = os.environ.get("NEQUI_CLIENT_ID", "")
    NEQUI_ACCESS_TOKEN = os.environ.get("NEQUI_ACCESS_TOKEN", "")
    NEQUI_WEBHOOK_SECRET = os.environ.get("NEQUI_WEBHOOK_SECRET", "")

    PAYPAL_API_URL = os.environ.get("PAYPAL_API_URL", "https://api-m.sandbox.paypal.com")
    PAYPAL_CLIENT_ID = os.environ.get("PAYPAL_CLIENT_ID", "")
    PAYPAL_CLIENT_SECRET = os.environ.get("PAYPAL_CLIENT_SECRET", "")
    PAYPAL_WEBHOOK_ID = os.environ.get("PAYPAL_WEBHOOK_ID", "")

    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
