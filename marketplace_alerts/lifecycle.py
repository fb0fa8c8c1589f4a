"""
Lifecycle module for Marketplace Alerts.

Tracks every matched listing across runs:
- New: first time a listing matches for a marketplace/product
- Unchanged: seen again at the same or a higher effective price
- Price drop: seen again at a lower effective price (eligible for a second alert)
- Missing: absent from a run's results; after 3 consecutive misses it is sold
- Sold entries are frozen and deleted by the retention sweep after 5 days
- Buckets for products or marketplaces dropped from the watchlist age out the same way

All mutation of the state document goes through this module.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .models import (
    LifecycleEntry,
    Marketplace,
    Match,
    PriceDrop,
    StateDocument,
    Transition,
    TransitionKind,
)

logger = logging.getLogger(__name__)

# Consecutive absences before a listing is considered sold
MISSED_RUNS_BEFORE_SOLD = 3

# How long sold entries are kept before the sweep removes them
SOLD_RETENTION = timedelta(days=5)


# =============================================================================
# PURE OPERATIONS
# =============================================================================

def reconcile(existing: Optional[LifecycleEntry], match: Match) -> Transition:
    """
    Classify a match against its prior lifecycle entry.

    Sold entries are frozen, so a sold listing that shows up again before the
    sweep removes it is reported as unchanged.
    """
    if existing is None:
        return Transition(kind=TransitionKind.NEW)

    if existing.is_sold:
        return Transition(kind=TransitionKind.UNCHANGED)

    previous = existing.last_effective_price
    if match.effective_price < previous:
        return Transition(
            kind=TransitionKind.PRICE_DROP,
            previous_price=previous,
            drop_amount=round(previous - match.effective_price, 2),
        )

    return Transition(kind=TransitionKind.UNCHANGED)


def record_sighting(
    entry: Optional[LifecycleEntry],
    match: Match,
    run_at: datetime,
) -> LifecycleEntry:
    """
    Record that a match was seen in this run.

    Creates the entry on first sight; otherwise refreshes last_seen_at, the
    stored price and display fields, and resets the missed-run counter.
    first_seen_at is never touched, and sold entries are returned unchanged.

    Returns:
        The created or updated entry
    """
    if entry is None:
        return LifecycleEntry(
            first_seen_at=run_at,
            last_seen_at=run_at,
            last_effective_price=match.effective_price,
            url=match.listing.url,
            title=match.listing.title,
        )

    if entry.is_sold:
        logger.debug(f"Ignoring sighting of sold listing {match.listing.listing_id}")
        return entry

    entry.last_seen_at = run_at
    entry.last_effective_price = match.effective_price
    entry.url = match.listing.url
    entry.title = match.listing.title
    entry.missed_runs = 0
    return entry


def mark_missing_if_absent(
    entries: dict[str, LifecycleEntry],
    seen_ids: Iterable[str],
    run_at: datetime,
) -> int:
    """
    Update missed-run counters for one marketplace/product.

    Entries whose listing id is in seen_ids get their counter reset; all
    others are counted as missed, and stamped sold on the third miss.

    Returns:
        Number of entries that became sold in this call
    """
    seen = set(seen_ids)
    sold = 0

    for listing_id, entry in entries.items():
        if entry.is_sold:
            continue

        if listing_id in seen:
            entry.missed_runs = 0
            continue

        entry.missed_runs += 1
        if entry.missed_runs >= MISSED_RUNS_BEFORE_SOLD:
            entry.sold_at = run_at
            sold += 1
            logger.info(f"Listing {listing_id} presumed sold after {entry.missed_runs} missed runs")

    return sold


def sweep(
    entries: dict[str, LifecycleEntry],
    now: datetime,
    retention: timedelta = SOLD_RETENTION,
) -> int:
    """
    Delete sold entries older than the retention window.

    Returns:
        Number of entries removed
    """
    cutoff = now - retention
    expired = [
        listing_id for listing_id, entry in entries.items()
        if entry.sold_at is not None and entry.sold_at < cutoff
    ]
    for listing_id in expired:
        del entries[listing_id]
    return len(expired)


# =============================================================================
# LIFECYCLE STORE
# =============================================================================

class LifecycleStore:
    """
    Stateful facade over the persisted state document for one run.

    Reconciliation is strictly sequential: observe() is a read-modify-write
    of a single entry and is not safe to call from concurrent writers.

    Usage:
        store = LifecycleStore(state)
        transition = store.observe(match, run_at)
        ...
        store.mark_missing(Marketplace.EBAY, "system-8", seen_ids, run_at)
        store.sweep(run_at)
    """

    def __init__(self, state: StateDocument):
        self.state = state

    def get_entry(self, marketplace: Marketplace, product_id: str, listing_id: str) -> Optional[LifecycleEntry]:
        return self.state.seen.get(marketplace.value, {}).get(product_id, {}).get(listing_id)

    def observe(self, match: Match, run_at: datetime) -> Transition:
        """
        Reconcile a match and record the sighting.

        A price drop is also attached to the match so the notifier can show it.
        """
        listing = match.listing
        bucket = self.state.bucket(listing.marketplace, match.rule.product_id)
        existing = bucket.get(listing.listing_id)

        transition = reconcile(existing, match)
        bucket[listing.listing_id] = record_sighting(existing, match, run_at)

        if transition.kind == TransitionKind.PRICE_DROP:
            match.price_drop = PriceDrop(
                previous_price=transition.previous_price,
                drop_amount=transition.drop_amount,
            )
            logger.info(
                f"Price drop on {listing.marketplace.value}/{listing.listing_id}: "
                f"${transition.previous_price:.2f} -> ${match.effective_price:.2f}"
            )

        return transition

    def mark_missing(
        self,
        marketplace: Marketplace,
        product_id: str,
        seen_ids: Iterable[str],
        run_at: datetime,
    ) -> int:
        entries = self.state.seen.get(marketplace.value, {}).get(product_id)
        if not entries:
            return 0
        return mark_missing_if_absent(entries, seen_ids, run_at)

    def age_unconfigured(
        self,
        configured: set[tuple[Marketplace, str]],
        run_at: datetime,
    ) -> int:
        """
        Count a miss for every entry in a marketplace/product bucket that is
        no longer in the watchlist, so it goes sold and is swept like any
        other listing that stopped showing up.

        Returns:
            Number of entries that became sold
        """
        configured_keys = {(market.value, product_id) for market, product_id in configured}
        sold = 0

        for market, products in self.state.seen.items():
            for product_id, entries in products.items():
                if (market, product_id) in configured_keys:
                    continue
                sold += mark_missing_if_absent(entries, (), run_at)

        return sold

    def sweep(self, now: datetime, retention: timedelta = SOLD_RETENTION) -> int:
        """
        Run the retention sweep over every marketplace/product bucket.

        Buckets left empty afterwards are dropped from the state document.
        """
        removed = 0
        for market in list(self.state.seen):
            products = self.state.seen[market]
            for product_id in list(products):
                removed += sweep(products[product_id], now, retention)
                if not products[product_id]:
                    del products[product_id]
            if not products:
                del self.state.seen[market]

        if removed:
            logger.info(f"Removed {removed} sold listing(s) older than {retention.days} days")
        return removed
