"""Application factory."""

import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify

from capacity_planner.config import Settings, configure_logging
from capacity_planner.middleware.rate_limiter import rate_limiter


def create_app(
    config: Optional[Dict[str, Any]] = None,
    settings: Optional[Settings] = None,
    service=None,
):
    """Create and configure Flask application.

    Args:
        config: Optional dictionary of Flask configuration overrides
        settings: Settings to use instead of reading the environment
        service: Prebuilt CapacityService (tests pass one wired to a fake client)

    Returns:
        Configured Flask app instance
    """
    settings = settings or Settings.from_env()
    configure_logging(settings)

    app = Flask(__name__)
    app.secret_key = settings.session_secret
    app.config["CAPACITY_SETTINGS"] = settings
    if config:
        app.config.update(config)

    rate_limiter.init_app(
        app,
        default_limits=[settings.rate_limit_default],
        save_limit=settings.rate_limit_save,
    )

    if service is None:
        from capacity_planner.services.allocation_client import CapacityApiClient
        from capacity_planner.services.capacity_service import CapacityService

        service = CapacityService(CapacityApiClient.from_settings(settings), settings=settings)
    app.extensions["capacity_service"] = service

    from capacity_planner.api.capacity_routes import init_capacity_routes

    app.register_blueprint(init_capacity_routes(service))

    @app.route("/health", methods=["GET"])
    @rate_limiter.exempt
    def health():
        return jsonify({"status": "ok"})

    logging.info("Registered %d blueprints", len(app.blueprints))

    return app
