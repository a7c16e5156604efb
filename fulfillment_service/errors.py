"""
Error taxonomy shared by services and routes.
Every error carries a machine kind and a human-readable reason.
"""

from flask import jsonify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError


class ServiceError(Exception):
    kind = "INTERNAL"
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"success": False, "error_code": self.kind, "error": self.message}


class ValidationError(ServiceError):
    kind = "VALIDATION"
    status_code = 400


class AuthError(ServiceError):
    kind = "AUTH"
    status_code = 401


class ForbiddenError(ServiceError):
    kind = "FORBIDDEN"
    status_code = 403


class NotFoundError(ServiceError):
    kind = "NOT_FOUND"
    status_code = 404


class ConflictError(ServiceError):
    kind = "CONFLICT"
    status_code = 409


class GatewayError(ServiceError):
    kind = "GATEWAY_ERROR"
    status_code = 502


class InternalError(ServiceError):
    kind = "INTERNAL"
    status_code = 500


ERRORS_BY_KIND = {
    cls.kind: cls
    for cls in (ValidationError, AuthError, ForbiddenError, NotFoundError, ConflictError, GatewayError, InternalError)
}


def error_for_kind(kind, message):
    return ERRORS_BY_KIND.get(kind, InternalError)(message)


def register_error_handlers(app):
    from fulfillment_service.extensions import db

    @app.errorhandler(ServiceError)
    def handle_service_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error):
        db.session.rollback()
        app.logger.warning("Uniqueness constraint rejected write: %s", error.orig)
        return jsonify(ConflictError("The resource was modified concurrently, please retry").to_dict()), 409

    @app.errorhandler(SQLAlchemyError)
    def handle_storage_error(error):
        db.session.rollback()
        app.logger.exception("Storage failure")
        return jsonify(InternalError("Storage failure").to_dict()), 500
