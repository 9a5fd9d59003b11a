# backend/pdvstore/__init__.py
from __future__ import annotations

from typing import Any, Mapping

from flask import Flask

from .config import Config
from .extensions import db


def create_app(config_overrides: Mapping[str, Any] | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)

    # Import models so create_all() sees the kv_entries table
    from . import models  # noqa: F401

    with app.app_context():
        db.create_all()

    from .runtime import init_runtime
    init_runtime(app, kv=app.config.get("PDV_KV_STORE"))

    # Register blueprints
    from .routes.system import system_bp
    from .routes.backups import backups_bp
    from .routes.stock import stock_bp
    from .routes.cash import cash_bp
    from .routes.inventory import inventory_bp
    from .routes.sales import sales_bp
    from .routes.sync import sync_bp
    from .routes.reports import reports_bp
    from .routes.fiscal import fiscal_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(backups_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(cash_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(fiscal_bp)

    return app
