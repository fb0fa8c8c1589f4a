"""
Marketplace Alerts - Deal Watcher

A system that polls online marketplaces for specific products, alerts once
per newly discovered deal (and again on a price drop), and tracks whether
alerted listings are still available.

Modules:
- config: Environment configuration and watchlist loading
- models: Canonical data models (dataclasses)
- matching: Keyword/regex and price-threshold filtering
- lifecycle: New / price drop / missing / sold tracking across runs
- market_stats: Market price distribution per product
- storage: JSON state and run history documents
- sources: Marketplace adapters (eBay, Reverb, Amazon)
- alerts: Discord webhook alerts
- http_session: requests session with the shared retry policy
- scheduler: APScheduler setup for periodic runs
- pipeline: Main orchestration
"""

__version__ = "0.1.0"

# Convenient imports
from .models import (
    Listing,
    Marketplace,
    Money,
    Shipping,
    ProductRule,
    WatchlistSettings,
    Watchlist,
    Match,
    PriceDrop,
    Transition,
    TransitionKind,
    LifecycleEntry,
    StateDocument,
    MarketStats,
    RunSummary,
)
from .matching import title_passes, effective_price, filter_matches, RuleMatcher
from .lifecycle import reconcile, record_sighting, mark_missing_if_absent, sweep, LifecycleStore
from .market_stats import compute_stats
from .pipeline import run_full_pipeline, RunOrchestrator

__all__ = [
    # Models
    "Listing",
    "Marketplace",
    "Money",
    "Shipping",
    "ProductRule",
    "WatchlistSettings",
    "Watchlist",
    "Match",
    "PriceDrop",
    "Transition",
    "TransitionKind",
    "LifecycleEntry",
    "StateDocument",
    "MarketStats",
    "RunSummary",
    # Matching
    "title_passes",
    "effective_price",
    "filter_matches",
    "RuleMatcher",
    # Lifecycle
    "reconcile",
    "record_sighting",
    "mark_missing_if_absent",
    "sweep",
    "LifecycleStore",
    # Statistics
    "compute_stats",
    # Pipeline
    "run_full_pipeline",
    "RunOrchestrator",
]
