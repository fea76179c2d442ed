# backend/kasse/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Fiscal hardware and FinanzOnline transport are swappable per app (tests inject fakes)
    from .services.fiscal_device import build_fiscal_device
    from .services.finanzonline_service import build_finanzonline_client
    app.extensions.setdefault("fiscal_device", build_fiscal_device(app.config))
    app.extensions.setdefault("finanzonline_client", build_finanzonline_client(app.config))

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.carts import carts_bp
    from .routes.payments import payments_bp
    from .routes.invoices import invoices_bp
    from .routes.tse import tse_bp
    from .routes.finanzonline import finanzonline_bp
    from .routes.registers import registers_bp
    from .routes.tables import tables_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(carts_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(tse_bp)
    app.register_blueprint(finanzonline_bp)
    app.register_blueprint(registers_bp)
    app.register_blueprint(tables_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:8081",
            "http://127.0.0.1:8081",
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
