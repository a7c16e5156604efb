"""
Acting-user resolution. Tokens are issued by the identity service; we only
validate them and read the id / email / role claims.
"""

from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request
from fulfillment_service.errors import AuthError, ForbiddenError

ADMIN_ROLE = "ADMIN"


class Actor:
    def __init__(self, actor_id, email=None, role="USER"):
        self.id = actor_id
        self.email = email
        self.role = role

    @property
    def is_admin(self):
        return self.role == ADMIN_ROLE

    def __repr__(self):
        return f"<Actor {self.id} ({self.role})>"


SYSTEM_ACTOR = Actor("system", None, "SYSTEM")


def current_actor():
    verify_jwt_in_request()
    identity = get_jwt_identity()
    if not identity:
        raise AuthError("Missing acting user")
    claims = get_jwt()
    return Actor(str(identity), claims.get("email"), claims.get("role", "USER"))


def optional_actor():
    verify_jwt_in_request(optional=True)
    identity = get_jwt_identity()
    if not identity:
        return None
    claims = get_jwt()
    return Actor(str(identity), claims.get("email"), claims.get("role", "USER"))


def require_admin(actor):
    if not actor.is_admin:
        raise ForbiddenError("Administrator role required")
    return actor
