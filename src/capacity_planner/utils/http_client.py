"""Pooled ``requests`` sessions for talking to the capacity backend."""

import logging
from typing import Iterable, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10
DEFAULT_POOL_SIZE = 10

TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})

# POST creates records and is never replayed
RETRY_METHODS = frozenset({"HEAD", "GET", "OPTIONS", "PUT", "DELETE"})


def backend_retry_policy(
    retries: int = 3,
    backoff_factor: float = 0.3,
    statuses: Iterable[int] = TRANSIENT_STATUSES,
) -> Retry:
    """urllib3 retry policy for transient backend statuses.

    The final response is returned rather than raised so callers see the
    real status code.
    """
    return Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=sorted(statuses),
        allowed_methods=RETRY_METHODS,
        respect_retry_after_header=True,
        raise_on_status=False,
    )


def build_backend_session(
    retries: int = 3,
    backoff_factor: float = 0.3,
    headers: Optional[Mapping[str, str]] = None,
    pool_size: int = DEFAULT_POOL_SIZE,
) -> requests.Session:
    """Create a session whose adapters retry transient failures.

    Args:
        retries: Total retry budget per request
        backoff_factor: Exponential backoff factor between attempts
        headers: Headers sent with every request (auth, accept)
        pool_size: Connections kept per host; parallel saves share them

    Returns:
        A configured requests.Session
    """
    session = requests.Session()
    adapter = HTTPAdapter(
        max_retries=backend_retry_policy(retries, backoff_factor),
        pool_connections=pool_size,
        pool_maxsize=pool_size,
    )
    for scheme in ("http://", "https://"):
        session.mount(scheme, adapter)
    if headers:
        session.headers.update(headers)
    logger.debug("Built backend session (retries=%d, pool=%d)", retries, pool_size)
    return session


__all__ = [
    "DEFAULT_TIMEOUT",
    "DEFAULT_POOL_SIZE",
    "TRANSIENT_STATUSES",
    "RETRY_METHODS",
    "backend_retry_policy",
    "build_backend_session",
]
