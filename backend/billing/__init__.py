# backend/billing/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def _sqlite_engine_options(app: Flask) -> None:
    # Bound how long a writer waits on SQLite's database lock (busy timeout).
    uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if not uri.startswith("sqlite"):
        return
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    connect_args = dict(options.get("connect_args") or {})
    connect_args.setdefault("timeout", float(app.config["LOCK_TIMEOUT_SECONDS"]))
    options["connect_args"] = connect_args
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    _sqlite_engine_options(app)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.kots import kots_bp
    from .routes.invoices import invoices_bp
    from .routes.inventory import inventory_bp
    from .routes.purchases import purchases_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(kots_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(purchases_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
