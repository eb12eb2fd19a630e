# --- marketplace/__init__.py ---
import logging

from flask import Flask, jsonify

from .config import Config
from .errors import register_error_handlers
from .extensions import db, jwt, cors, migrate


def _configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.logger.setLevel(level)
    logging.getLogger("marketplace").setLevel(level)


def create_app(config_object=Config):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)
    config_object.init_app(app)

    _configure_logging(app)

    # Init extensions
    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(app, resources={r"/*": {"origins": "*"}})
    migrate.init_app(app, db)

    register_error_handlers(app)

    from .services.pricing_service import pricing_from_config
    app.extensions["pricing"] = pricing_from_config(app.config)

    # Register blueprints
    from .cart import bp as cart_bp; app.register_blueprint(cart_bp)
    from .coupon import bp as coupon_bp; app.register_blueprint(coupon_bp)
    from .offer import bp as offer_bp; app.register_blueprint(offer_bp)
    from .order import bp as order_bp; app.register_blueprint(order_bp)
    from .notification import bp as notification_bp; app.register_blueprint(notification_bp)

    from .cli import register_cli
    register_cli(app)

    @app.get("/")
    def health():
        return jsonify(ok=True, msg="API running")

    with app.app_context():
        from . import model  # noqa: F401
        db.create_all()

    return app
