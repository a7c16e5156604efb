"""
HTTP clients for the external collaborators: catalog (read-only),
notifications (fire-and-forget) and identity (guest conversion).
Each client is registered on app.extensions so it can be swapped.
"""

import logging
import requests
from flask import current_app
from fulfillment_service.errors import GatewayError

logger = logging.getLogger(__name__)


class CatalogClient:
    """Read-only view of catalog items: name, price, capacity, schedule."""

    def __init__(self, base_url, timeout=2.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def get_item(self, item_type, item_id):
        try:
            response = requests.get(
                f"{self.base_url}/items/{item_type.lower()}/{item_id}",
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GatewayError(f"Catalog service unreachable: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise GatewayError(f"Catalog service returned {response.status_code}")
        return response.json().get("data")


class NotificationClient:
    def __init__(self, base_url, timeout=2.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def send(self, template, recipient, context=None):
        response = requests.post(
            f"{self.base_url}/notifications",
            json={"template": template, "recipient": recipient, "context": context or {}},
            timeout=self.timeout,
        )
        response.raise_for_status()


class IdentityClient:
    def __init__(self, base_url, timeout=2.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def find_or_create_user(self, email, name=None):
        try:
            response = requests.post(
                f"{self.base_url}/internal/users/find-or-create",
                json={"email": email, "name": name},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return str(response.json()["user_id"])
        except (requests.RequestException, KeyError, ValueError) as e:
            raise GatewayError(f"Identity service could not resolve guest {email}: {e}") from e


def init_collaborators(app):
    timeout = app.config["COLLABORATOR_TIMEOUT_SECONDS"]
    app.extensions.setdefault("catalog", CatalogClient(app.config["CATALOG_SERVICE_URL"], timeout))
    app.extensions.setdefault("notifier", NotificationClient(app.config["NOTIFICATION_SERVICE_URL"], timeout))
    app.extensions.setdefault("identity", IdentityClient(app.config["IDENTITY_SERVICE_URL"], timeout))


def get_catalog():
    return current_app.extensions["catalog"]


def get_identity():
    return current_app.extensions["identity"]


def notify(template, recipient, **context):
    """Best-effort notification. Failures are logged, never raised."""
    if not recipient:
        return False
    try:
        current_app.extensions["notifier"].send(template, recipient, context)
        return True
    except Exception:
        logger.exception("Notification %s to %s failed", template, recipient)
        return False
