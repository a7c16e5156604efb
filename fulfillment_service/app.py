import logging
from flask import Flask, jsonify
from flasgger import Swagger
from fulfillment_service.config import Config
from fulfillment_service.errors import AuthError, register_error_handlers
from fulfillment_service.extensions import db, jwt
from fulfillment_service import models  # noqa: F401  (register models)

SWAGGER_TEMPLATE = {
    "info": {
        "title": "Fulfillment Service",
        "description": "Payment reconciliation, fulfillment, bookings, packs and waitlists",
        "version": "1.0.0",
    },
    "securityDefinitions": {
        "Bearer": {"type": "apiKey", "name": "Authorization", "in": "header"},
    },
}


def create_app(config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Initialize Extensions
    db.init_app(app)
    jwt.init_app(app)
    _register_jwt_errors()

    Swagger(app, template=SWAGGER_TEMPLATE)
    register_error_handlers(app)

    from fulfillment_service.services.collaborators import init_collaborators
    init_collaborators(app)

    # Register Blueprints
    from fulfillment_service.routes.orders import orders_bp
    app.register_blueprint(orders_bp, url_prefix="/api/orders")

    from fulfillment_service.routes.webhooks import webhooks_bp
    app.register_blueprint(webhooks_bp, url_prefix="/api/webhooks")

    from fulfillment_service.routes.bookings import bookings_bp
    app.register_blueprint(bookings_bp, url_prefix="/api/bookings")

    from fulfillment_service.routes.packs import packs_bp
    app.register_blueprint(packs_bp, url_prefix="/api/packs")

    from fulfillment_service.routes.waitlist import waitlist_bp
    app.register_blueprint(waitlist_bp, url_prefix="/api/waitlist")

    from fulfillment_service.routes.subscriptions import subscriptions_bp
    app.register_blueprint(subscriptions_bp, url_prefix="/api/subscriptions")

    from fulfillment_service.routes.credits import credits_bp
    app.register_blueprint(credits_bp, url_prefix="/api/credits")

    from fulfillment_service.routes.admin import admin_bp
    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    @app.route("/health")
    def health():
        try:
            db.session.execute(db.text("SELECT 1"))
            return {"service": "fulfillment-service", "status": "healthy"}, 200
        except Exception as e:
            return {"service": "fulfillment-service", "status": "unhealthy", "error": str(e)}, 503

    with app.app_context():
        db.create_all()

    return app


def _register_jwt_errors():
    def _auth_error(message):
        return jsonify(AuthError(message).to_dict()), 401

    @jwt.unauthorized_loader
    def missing_token(reason):
        return _auth_error(f"Missing authorization: {reason}")

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return _auth_error(f"Invalid token: {reason}")

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return _auth_error("Token has expired")


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=5000)
