"""
Market statistics for Marketplace Alerts.

Summarizes what the market looks like for a product, independent of the
user's own price threshold: computed over every listing whose title passes
the keyword filter, not just the matches.
"""

import math
import logging
from statistics import mean, median

from .matching import effective_price, is_usd
from .models import Listing, MarketStats, StatsSample

logger = logging.getLogger(__name__)

# Rank positions (as fractions of n) used to pick sample listings
SAMPLE_POSITIONS = (0.0, 0.25, 0.5, 0.75, 1.0)


def compute_stats(listings: list[Listing], include_shipping: bool = True) -> MarketStats:
    """
    Compute min/max/average/median and a few sample listings.

    Args:
        listings: Keyword-filtered listings for one product
        include_shipping: Whether known shipping counts toward the price

    Returns:
        MarketStats (empty, with None prices, when there are no USD listings)
    """
    priced = []
    for listing in listings:
        if not is_usd(listing):
            continue
        price, _ = effective_price(listing, include_shipping)
        priced.append((price, listing))

    if not priced:
        return MarketStats()

    priced.sort(key=lambda pair: pair[0])
    prices = [price for price, _ in priced]

    return MarketStats(
        count=len(prices),
        min_price=round(prices[0], 2),
        max_price=round(prices[-1], 2),
        avg_price=round(mean(prices), 2),
        median_price=round(median(prices), 2),
        samples=_pick_samples(priced),
    )


def _pick_samples(priced: list[tuple[float, Listing]]) -> list[StatsSample]:
    """Lowest, quartiles and highest, skipping listings whose URL was already picked."""
    n = len(priced)
    samples = []
    seen_urls = set()

    for position in SAMPLE_POSITIONS:
        index = n - 1 if position == 1.0 else math.floor(position * n)
        price, listing = priced[index]
        if listing.url in seen_urls:
            continue
        seen_urls.add(listing.url)
        samples.append(StatsSample(
            title=listing.title,
            price=round(price, 2),
            url=listing.url,
            marketplace=listing.marketplace,
        ))

    return samples
