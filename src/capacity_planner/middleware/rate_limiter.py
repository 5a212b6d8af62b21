"""Rate limiting for the capacity API.

Limits are read from the Flask config of whichever app handles the request,
so one module-level limiter can serve several apps (tests build many).
"""

import logging
from typing import Callable, Iterable, Optional

from flask import Flask, current_app, jsonify
from flask_limiter import Limiter
from flask_limiter.errors import RateLimitExceeded
from flask_limiter.util import get_remote_address

logger = logging.getLogger(__name__)

SAVE_LIMIT_CONFIG_KEY = "RATELIMIT_SAVE"
DEFAULT_SAVE_LIMIT = "60 per minute"


class AppRateLimiter:
    """flask-limiter wrapper with JSON 429 responses and config-driven limits."""

    def __init__(self):
        self.limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

    def init_app(
        self,
        app: Flask,
        default_limits: Optional[Iterable[str]] = None,
        save_limit: Optional[str] = None,
    ) -> None:
        """Attach the limiter to ``app``.

        Args:
            app: Flask application instance
            default_limits: Limits for routes without their own decorator
            save_limit: Limit for endpoints that write to the backend
        """
        if default_limits is not None:
            app.config["RATELIMIT_DEFAULT"] = "; ".join(default_limits)
        if save_limit is not None:
            app.config[SAVE_LIMIT_CONFIG_KEY] = save_limit
        self.limiter.init_app(app)
        app.register_error_handler(RateLimitExceeded, self._too_many_requests)

    @staticmethod
    def _too_many_requests(e: RateLimitExceeded):
        logger.warning("Rate limit exceeded for %s: %s", get_remote_address(), e.description)
        body = {
            "error": "Rate limit exceeded",
            "message": "Too many requests. Please try again later.",
        }
        return jsonify(body), 429

    @staticmethod
    def save_limit() -> str:
        """Current app's write limit (evaluated per request)."""
        return current_app.config.get(SAVE_LIMIT_CONFIG_KEY, DEFAULT_SAVE_LIMIT)

    def limit_writes(self) -> Callable:
        """Decorator applying the configured write limit to a route."""
        return self.limiter.limit(self.save_limit)

    def exempt(self, func):
        return self.limiter.exempt(func)


rate_limiter = AppRateLimiter()


__all__ = [
    "AppRateLimiter",
    "DEFAULT_SAVE_LIMIT",
    "SAVE_LIMIT_CONFIG_KEY",
    "rate_limiter",
]
