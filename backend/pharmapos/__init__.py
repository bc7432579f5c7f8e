# backend/pharmapos/__init__.py
from flask import Flask, request, g

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.scanner_service import ScanSessionRegistry
    app.extensions["scan_sessions"] = ScanSessionRegistry(
        default_unit=app.config["DEFAULT_SCAN_UNIT"],
        history_limit=app.config["SCAN_HISTORY_LIMIT"],
        log_limit=app.config["SYNC_LOG_LIMIT"],
    )

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.scanner import scanner_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(scanner_bp)

    @app.before_request
    def load_operator():
        # Audit attribution only; no authorization decisions are made from it
        g.operator_name = (request.headers.get("X-Operator-Name") or "").strip() or "Unknown"

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Operator-Name"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    return app
