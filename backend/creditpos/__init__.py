# backend/creditpos/__init__.py
from __future__ import annotations

from flask import Flask

from .config import Config
from .extensions import db, migrate
from .logging_config import configure_logging


def _engine_options(app: Flask) -> dict:
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if uri.startswith("sqlite"):
        # SQLite has no statement timeout; the busy timeout bounds lock waits instead
        connect_args = dict(options.get("connect_args") or {})
        connect_args.setdefault("timeout", app.config["ATOMIC_WRITE_TIMEOUT_SECONDS"])
        options["connect_args"] = connect_args
    return options


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
