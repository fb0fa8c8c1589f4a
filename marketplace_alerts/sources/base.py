"""
Base adapter class for marketplaces.

All adapters inherit from BaseMarketplace and implement:
- search_once(): Run one query against the marketplace API
- parse_item(): Decode one raw API item into a normalized Listing

The marketplace-specific payload shapes never leave the adapter.
"""

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

import requests

from ..config import get_app_config, get_credentials
from ..http_session import USER_AGENT, create_session
from ..matching import REGEX_TERM
from ..models import Listing, Marketplace, ProductRule, WatchlistSettings, parse_timestamp

logger = logging.getLogger(__name__)

# Only the first few search terms are queried per product
MAX_QUERIES_PER_PRODUCT = 4


class AdapterError(Exception):
    """A marketplace query failed (auth, rate limit, bad response)."""


def parse_amount(value: Any) -> Optional[float]:
    """Parse a number that may arrive as a string; None when not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def parse_listed_at(value: Any) -> Optional[datetime]:
    """Best-effort listing timestamp; malformed values are dropped."""
    if not value:
        return None
    try:
        return parse_timestamp(str(value))
    except ValueError:
        logger.debug(f"Unparseable listing timestamp: {value!r}")
        return None


class BaseMarketplace(ABC):
    """
    Abstract base class for marketplace adapters.

    Provides common functionality:
    - HTTP session with rate limiting between requests
    - Bounded retries with exponential backoff (mounted on the session)
    - Query selection, dedup by listing id, per-product cap

    Subclasses must implement:
    - marketplace: The Marketplace enum value
    - search_once(): Query the marketplace once
    - parse_item(): Map one raw item to a Listing
    """

    marketplace: Marketplace  # Subclass must set this

    def __init__(self, session: Optional[requests.Session] = None):
        """Initialize the adapter."""
        self.config = get_app_config()
        self.credentials = get_credentials()
        self.session = session or create_session()
        self.session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        })

        self._last_request_time: float = 0
        self._request_delay: float = 0

    def _rate_limit(self) -> None:
        """Enforce the inter-request delay."""
        elapsed = time.time() - self._last_request_time
        if elapsed < self._request_delay:
            time.sleep(self._request_delay - elapsed)
        self._last_request_time = time.time()

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Make an HTTP request with rate limiting.

        Raises:
            requests.HTTPError: On a non-2xx response (after the session retries 429/5xx)
        """
        self._rate_limit()
        kwargs.setdefault("timeout", self.config.request_timeout)
        response = self.session.request(method, url, **kwargs)
        response.raise_for_status()
        return response

    def queries_for(self, rule: ProductRule) -> list[str]:
        """Literal include terms (regex terms can't be searched), else the product name."""
        literals = [t for t in rule.include_terms if t and not REGEX_TERM.match(t)]
        return (literals or [rule.name])[:MAX_QUERIES_PER_PRODUCT]

    def _run_query(self, label: str, fn) -> list[Listing]:
        try:
            return fn()
        except requests.RequestException as e:
            raise AdapterError(f"{label} failed: {e}") from e

    def _collect(self, listings: list[Listing], seen: set, out: list[Listing]) -> None:
        for listing in listings:
            if listing.listing_id in seen:
                continue
            seen.add(listing.listing_id)
            out.append(listing)

    def extra_searches(self, rule: ProductRule, limit: int) -> list[Listing]:
        """Marketplace-specific searches run before the keyword queries."""
        return []

    @abstractmethod
    def search_once(self, query: str, limit: int) -> list[Listing]:
        """
        Run a single keyword query.

        Returns:
            Normalized listings (unparseable items dropped)
        """
        pass

    @abstractmethod
    def parse_item(self, item: dict) -> Optional[Listing]:
        """
        Decode one raw item.

        Returns:
            Listing, or None if required fields are missing
        """
        pass

    def parse_items(self, items: Any) -> list[Listing]:
        listings = []
        for item in items if isinstance(items, list) else []:
            if not isinstance(item, dict):
                continue
            listing = self.parse_item(item)
            if listing:
                listings.append(listing)
        return listings

    def search(self, rule: ProductRule, settings: WatchlistSettings) -> list[Listing]:
        """
        Main entry point: all raw listings for one product.

        Raises:
            AdapterError: If a query still fails after retries
        """
        self._request_delay = settings.request_delay_seconds
        limit = settings.max_results_per_marketplace

        all_listings: list[Listing] = []
        seen: set = set()

        self._collect(self.extra_searches(rule, limit), seen, all_listings)

        for query in self.queries_for(rule):
            listings = self._run_query(
                f"{self.marketplace.value}.search({query})",
                lambda q=query: self.search_once(q, limit),
            )
            self._collect(listings, seen, all_listings)

        logger.debug(f"{self.marketplace.value} returned {len(all_listings)} raw listings for {rule.product_id}")
        return all_listings[:settings.max_listings_per_product_per_run]
