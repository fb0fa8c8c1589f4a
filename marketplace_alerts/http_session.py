"""
HTTP session factory for Marketplace Alerts.

Marketplace adapters and the Discord notifier share one retry policy,
mounted on the requests session: bounded retries with exponential backoff
on connection errors, rate limits (429) and server errors (5xx). Other
4xx responses (bad credentials, unknown CSP slugs, rejected payloads) are
returned immediately.
"""

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

DEFAULT_RETRIES = 3
DEFAULT_BACKOFF_FACTOR = 0.5  # seconds, doubled after every failed attempt

RETRY_STATUSES = [429, 500, 502, 503, 504]

USER_AGENT = "MarketplaceAlerts/1.0"


def build_retry(retries: int = DEFAULT_RETRIES, backoff_factor: float = DEFAULT_BACKOFF_FACTOR) -> Retry:
    return Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUSES,
        # Token, PA-API and webhook calls are all POSTs
        allowed_methods=["HEAD", "GET", "POST"],
        respect_retry_after_header=True,
        # Hand the last response back so callers report its status
        raise_on_status=False,
    )


def create_session(
    retries: int = DEFAULT_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
) -> requests.Session:
    """Create a requests session with the retry strategy mounted."""
    session = requests.Session()

    adapter = HTTPAdapter(max_retries=build_retry(retries, backoff_factor))
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({"User-Agent": USER_AGENT})
    return session
