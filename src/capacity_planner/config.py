"""Application settings loaded from the environment (and a local .env file)."""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_LOG_FORMAT = "[%(asctime)s] %(levelname)s in %(module)s: %(message)s"


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    value = _env_float(name, float(default))
    return int(value) if value is not None else default


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the capacity planner.

    ``APP_TIMEZONE`` is read by :mod:`capacity_planner.utils.common` at import.
    """

    api_base_url: str = "http://localhost:5000/api"
    api_token: Optional[str] = None
    http_timeout: int = 10
    http_retries: int = 3
    cache_ttl: int = 300
    default_weekly_capacity: float = 40.0
    default_non_project_hours: float = 8.0
    max_cell_hours: float = 40.0
    row_lock_release_seconds: float = 2.0
    save_max_workers: int = 1
    alert_critical_threshold: float = 100.0
    alert_error_threshold: Optional[float] = None
    alert_warning_threshold: float = 85.0
    alert_under_utilization_threshold: float = 70.0
    rate_limit_default: str = "200 per hour"
    rate_limit_save: str = "60 per minute"
    session_secret: str = field(default="change-me-please", repr=False)
    log_level: str = "INFO"
    log_format: str = DEFAULT_LOG_FORMAT

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "Settings":
        """Build settings from environment variables.

        Args:
            load_dotenv_file: Load variables from a local .env first

        Returns:
            Settings instance
        """
        if load_dotenv_file:
            load_dotenv()

        return cls(
            api_base_url=os.environ.get("CAPACITY_API_BASE_URL", cls.api_base_url).rstrip("/"),
            api_token=os.environ.get("CAPACITY_API_TOKEN") or None,
            http_timeout=_env_int("HTTP_TIMEOUT", cls.http_timeout),
            http_retries=_env_int("HTTP_RETRIES", cls.http_retries),
            cache_ttl=_env_int("CAPACITY_CACHE_TTL", cls.cache_ttl),
            default_weekly_capacity=_env_float("DEFAULT_WEEKLY_CAPACITY", cls.default_weekly_capacity),
            default_non_project_hours=_env_float("DEFAULT_NON_PROJECT_HOURS", cls.default_non_project_hours),
            max_cell_hours=_env_float("MAX_CELL_HOURS", cls.max_cell_hours),
            row_lock_release_seconds=_env_float("ROW_LOCK_RELEASE_SECONDS", cls.row_lock_release_seconds),
            save_max_workers=max(1, _env_int("SAVE_MAX_WORKERS", cls.save_max_workers)),
            alert_critical_threshold=_env_float("ALERT_CRITICAL_THRESHOLD", cls.alert_critical_threshold),
            alert_error_threshold=_env_float("ALERT_ERROR_THRESHOLD", None),
            alert_warning_threshold=_env_float("ALERT_WARNING_THRESHOLD", cls.alert_warning_threshold),
            alert_under_utilization_threshold=_env_float(
                "ALERT_UNDER_UTILIZATION_THRESHOLD", cls.alert_under_utilization_threshold
            ),
            rate_limit_default=os.environ.get("RATE_LIMIT_DEFAULT", cls.rate_limit_default),
            rate_limit_save=os.environ.get("RATE_LIMIT_SAVE", cls.rate_limit_save),
            session_secret=os.environ.get("SESSION_SECRET") or cls.session_secret,
            log_level=(os.environ.get("LOG_LEVEL") or cls.log_level).upper(),
            log_format=os.environ.get("LOG_FORMAT", DEFAULT_LOG_FORMAT),
        )


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings (LOG_LEVEL / LOG_FORMAT)."""
    level = getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(level=level, format=settings.log_format)
    logging.getLogger().setLevel(level)


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "Settings",
    "configure_logging",
]
