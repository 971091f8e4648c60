"""
Shared HTTP client with automatic retry and backoff.

Provides pre-configured ``requests.Session`` objects. The default session
retries transient network errors (timeouts, connection resets, 502/503/504)
with exponential backoff. Geocoding providers use ``NO_RETRY`` instead:
the resolver runs its own retry loop so that every try is recorded.

Usage::

    from campfire_planner.services.http import NO_RETRY, create_session

    geocode_session = create_session(retry=NO_RETRY, timeout=15)
"""

from __future__ import annotations

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from campfire_planner import __version__

#: Default retry strategy for transient server errors and rate limits.
DEFAULT_RETRY = Retry(
    total=4,
    backoff_factor=2,  # 0s, 2s, 4s, 8s between retries
    status_forcelist=[429, 502, 503, 504],
    allowed_methods=["GET", "HEAD", "OPTIONS"],
    raise_on_status=False,  # let resp.raise_for_status() handle it
)

#: Adapter-level retries off; the caller owns retry and backoff.
NO_RETRY = Retry(total=0, raise_on_status=False)

DEFAULT_TIMEOUT = 30  # seconds

USER_AGENT = f"campfire-planner/{__version__} (purpose: fire ban lookup)"

#: Status codes worth another try.
RETRYABLE_STATUS = frozenset({408, 429})


def is_retryable_status(status: int) -> bool:
    """True for request timeout, rate limiting and any server error."""
    return status in RETRYABLE_STATUS or status >= 500


def create_session(
    retry: Retry | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> requests.Session:
    """
    Build a ``requests.Session`` with retry adapter mounted.

    Args:
        retry: Custom retry strategy (defaults to ``DEFAULT_RETRY``).
        timeout: Default timeout applied to every request.
    """
    s = requests.Session()
    adapter = HTTPAdapter(max_retries=retry or DEFAULT_RETRY)
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    s.headers["User-Agent"] = USER_AGENT
    s.headers["Accept"] = "application/json"

    # Inject a default timeout so callers don't need to pass ``timeout=``.
    _original_send = s.send

    def _send_with_timeout(
        prepared: requests.PreparedRequest, **kwargs: object
    ) -> requests.Response:
        kwargs.setdefault("timeout", timeout)
        return _original_send(prepared, **kwargs)  # type: ignore[arg-type]

    s.send = _send_with_timeout  # type: ignore[method-assign]
    return s
