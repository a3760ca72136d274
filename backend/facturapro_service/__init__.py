# backend/facturapro_service/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate
from .responses import error_response


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        # Applied before extensions bind so the engine sees the final URI
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.rest import rest_bp
    from .routes.rpc import rpc_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(rest_bp)
    app.register_blueprint(rpc_bp)

    @app.before_request
    def require_public_key():
        """Every /api call carries the public key, like a hosted data service."""
        expected = app.config.get("PUBLIC_API_KEY")
        if not expected or request.method == "OPTIONS" or not request.path.startswith("/api/"):
            return None
        if request.headers.get("apikey") != expected:
            return error_response("Invalid API key", "unauthorized", 401)
        return None

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config.get("CORS_ALLOWED_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, apikey"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
