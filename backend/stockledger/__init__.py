# backend/stockledger/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        # Must land before db.init_app: the engine is built from config there
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import inventory_bp
    from .routes.expirations import expirations_bp
    from .routes.cash import cash_bp
    from .routes.sales import sales_bp
    from .routes.notifications import notifications_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(expirations_bp)
    app.register_blueprint(cash_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(notifications_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
