# backend/farmmarket/__init__.py
import logging

from flask import Flask, jsonify, request

from .config import Config
from .errors import MarketError
from .extensions import db, migrate


def _engine_options(app: Flask) -> dict:
    """Connect and statement timeouts for server databases; SQLite has neither."""
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if uri.startswith("sqlite"):
        return {}
    options = {"pool_pre_ping": True}
    if uri.startswith("postgresql"):
        options["connect_args"] = {
            "connect_timeout": app.config["DB_CONNECT_TIMEOUT_SECONDS"],
            "options": f"-c statement_timeout={app.config['DB_STATEMENT_TIMEOUT_MS']}",
        }
    return options


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", _engine_options(app))

    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger("farmmarket").setLevel(level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.admin import admin_bp
    from .routes.products import products_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.transactions import transactions_bp
    from .routes.notifications import notifications_bp
    from .routes.farmer import farmer_bp
    from .routes.users import users_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(farmer_bp)
    app.register_blueprint(users_bp)

    @app.errorhandler(MarketError)
    def handle_market_error(e: MarketError):
        return jsonify(e.to_dict()), e.status_code

    @app.teardown_request
    def rollback_on_error(exc):
        if exc is not None:
            db.session.rollback()

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            app.config["FRONTEND_URL"],
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
