"""
Pytest configuration and shared fixtures.

This module provides common fixtures and factories for all tests
in the Marketplace Alerts test suite.
"""

import pytest
from datetime import datetime, timezone

from marketplace_alerts.models import (
    Listing,
    Marketplace,
    Match,
    Money,
    ProductRule,
    Shipping,
    WatchlistSettings,
)


RUN_AT = datetime(2024, 1, 10, 12, 0, 0, tzinfo=timezone.utc)


def make_listing(
    listing_id: str = "item-1",
    title: str = "Roland System-8 Synthesizer",
    price: float = 400.0,
    shipping: float = None,
    shipping_known: bool = True,
    currency: str = "USD",
    marketplace: Marketplace = Marketplace.EBAY,
    url: str = None,
    **kwargs,
) -> Listing:
    """Build a Listing; shipping=None means no shipping information at all."""
    return Listing(
        marketplace=marketplace,
        listing_id=listing_id,
        title=title,
        url=url or f"https://example.com/{marketplace.value}/{listing_id}",
        price=Money(amount=price, currency=currency),
        shipping=Shipping(amount=shipping, currency=currency, known=shipping_known) if shipping is not None else None,
        **kwargs,
    )


def make_rule(**overrides) -> ProductRule:
    data = {
        "product_id": "system-8",
        "name": "Roland System-8",
        "max_price": 500.0,
        "include_terms": ["synth"],
        "marketplaces": [Marketplace.EBAY],
    }
    data.update(overrides)
    return ProductRule(**data)


def make_match(listing: Listing = None, rule: ProductRule = None, effective_price: float = None) -> Match:
    listing = listing or make_listing()
    return Match(
        listing=listing,
        rule=rule or make_rule(),
        effective_price=listing.price.amount if effective_price is None else effective_price,
    )


@pytest.fixture
def run_at():
    return RUN_AT


@pytest.fixture
def rule():
    return make_rule()


@pytest.fixture
def settings():
    return WatchlistSettings(request_delay_seconds=0)
