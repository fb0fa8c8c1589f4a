"""
Main Pipeline module for Marketplace Alerts.

Orchestrates one polling run:
1. Search → Query each product's marketplaces (sequentially)
2. Match → Keyword, currency and price filtering
3. Reconcile → Classify every match against the lifecycle state
4. Alert → Notify new listings and price drops
5. Stats → Market statistics from the keyword-filtered listings
6. Lifecycle → Missed-run / sold detection (unwatched products age out too), then the retention sweep
7. Persist → Write state, append the run summary to history

Only one run may be in flight at a time; the scheduler enforces that.
"""

import json
import logging
import time
from datetime import datetime
from typing import Callable, Optional

from .alerts import DiscordNotifier, NotificationError
from .config import get_app_config, load_watchlist
from .lifecycle import LifecycleStore
from .market_stats import compute_stats
from .matching import RuleMatcher
from .models import (
    Listing,
    Marketplace,
    ProductResult,
    ProductRule,
    RunError,
    RunSummary,
    Watchlist,
    utcnow,
)
from .sources import BaseMarketplace, get_adapters
from .storage import HistoryStore, StateStore, get_history_store, get_state_store

logger = logging.getLogger(__name__)

# Matches kept per product in the run summary
MAX_MATCHES_IN_SUMMARY = 50


class RunFailed(Exception):
    """The run completed and was persisted, but some alerts could not be delivered."""


class RunOrchestrator:
    """
    Runs one polling cycle over every product in the watchlist.

    Usage:
        orchestrator = RunOrchestrator(watchlist, adapters, notifier, state_store, history_store)
        summary = orchestrator.run()
    """

    def __init__(
        self,
        watchlist: Watchlist,
        adapters: dict[Marketplace, BaseMarketplace],
        notifier: DiscordNotifier,
        state_store: StateStore,
        history_store: HistoryStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.watchlist = watchlist
        self.adapters = adapters
        self.notifier = notifier
        self.state_store = state_store
        self.history_store = history_store
        self.clock = clock

    def gather(
        self,
        rule: ProductRule,
        errors: list[RunError],
    ) -> tuple[list[Listing], dict[Marketplace, set[str]]]:
        """
        Query every marketplace configured for a product.

        A failing marketplace is recorded and skipped.

        Returns:
            (raw listings, listing ids observed per successfully queried marketplace)
        """
        listings: list[Listing] = []
        observed: dict[Marketplace, set[str]] = {}

        for market in rule.marketplaces:
            adapter = self.adapters.get(market)
            if adapter is None:
                errors.append(RunError(
                    stage="search", marketplace=market, product_id=rule.product_id,
                    message=f"No adapter for {market.value}",
                ))
                continue

            try:
                found = adapter.search(rule, self.watchlist.settings)
            except Exception as e:
                logger.warning(f"Adapter failed for {market.value}/{rule.product_id}: {e}")
                errors.append(RunError(
                    stage="search", marketplace=market, product_id=rule.product_id, message=str(e),
                ))
                continue

            logger.info(f"Got {len(found)} listings from {market.value} for {rule.product_id}")
            listings.extend(found)
            observed[market] = {listing.listing_id for listing in found}

        return listings, observed

    def run(self) -> RunSummary:
        """
        Run the complete cycle.

        Returns:
            The appended RunSummary

        Raises:
            PersistenceError: State or history could not be read/written
            RunFailed: Alerts failed for at least one product (state is still persisted)
        """
        started = time.monotonic()
        run_at = self.clock()
        settings = self.watchlist.settings
        logger.info(f"Starting run at {run_at.isoformat()} for {len(self.watchlist.products)} products")

        state = self.state_store.load()
        lifecycle = LifecycleStore(state)
        summary = RunSummary(run_at=run_at)
        observed_by_product: dict[str, dict[Marketplace, set[str]]] = {}

        for rule in self.watchlist.products:
            listings, observed = self.gather(rule, summary.errors)
            observed_by_product[rule.product_id] = observed

            matcher = RuleMatcher(rule)
            matches = matcher.filter_matches(listings, settings.include_shipping_in_threshold)

            # Every match is reconciled so stored prices stay current
            to_alert = []
            for match in matches:
                transition = lifecycle.observe(match, run_at)
                if transition.is_alertable:
                    to_alert.append(match)

            result = ProductResult(
                product_id=rule.product_id,
                product_name=rule.name,
                threshold=rule.max_price,
                scanned=len(listings),
                matches=matches[:MAX_MATCHES_IN_SUMMARY],
                market_stats=compute_stats(
                    matcher.keyword_filter(listings), settings.include_shipping_in_threshold,
                ),
            )

            if to_alert:
                try:
                    result.alerts = self.notifier.send_alerts(to_alert, run_at)
                except NotificationError as e:
                    # Chunks delivered before the failure still count
                    result.alerts = e.sent
                    logger.error(f"Alerts failed for {rule.product_id} after {e.sent} sent: {e}")
                    summary.errors.append(RunError(stage="notify", product_id=rule.product_id, message=str(e)))
            else:
                logger.info(f"No new alerts for {rule.product_id} (matches={len(matches)})")

            summary.scanned += result.scanned
            summary.matches += len(matches)
            summary.alerts += result.alerts
            summary.by_product.append(result)

        for product_id, observed in observed_by_product.items():
            for market, seen_ids in observed.items():
                summary.sold += lifecycle.mark_missing(market, product_id, seen_ids, run_at)

        configured = {
            (market, rule.product_id)
            for rule in self.watchlist.products
            for market in rule.marketplaces
        }
        summary.sold += lifecycle.age_unconfigured(configured, run_at)
        summary.removed = lifecycle.sweep(run_at)

        # State is written even if a notification failed, so a retry doesn't re-alert
        state.updated_at = run_at
        self.state_store.save(state)

        summary.duration_seconds = round(time.monotonic() - started, 3)
        self.history_store.append(summary)

        logger.info(
            f"Run complete: scanned={summary.scanned} matches={summary.matches} alerts={summary.alerts} "
            f"sold={summary.sold} removed={summary.removed} errors={len(summary.errors)} "
            f"duration={summary.duration_seconds:.1f}s"
        )

        failed = [e for e in summary.errors if e.stage == "notify"]
        if failed:
            raise RunFailed(
                "Alert delivery failed for " + ", ".join(e.product_id for e in failed)
            )
        return summary


# =============================================================================
# PIPELINE FUNCTIONS
# =============================================================================

def run_full_pipeline(watchlist: Optional[Watchlist] = None) -> RunSummary:
    """
    Run one cycle with the configured watchlist, adapters, notifier and stores.

    Returns:
        The run summary
    """
    watchlist = watchlist or load_watchlist()
    orchestrator = RunOrchestrator(
        watchlist=watchlist,
        adapters=get_adapters(),
        notifier=DiscordNotifier(max_embeds_per_message=watchlist.settings.max_embeds_per_message),
        state_store=get_state_store(),
        history_store=get_history_store(),
    )
    return orchestrator.run()


# =============================================================================
# CLI ENTRY POINT
# =============================================================================

def main():
    """CLI entry point for running the pipeline."""
    import argparse

    parser = argparse.ArgumentParser(description="Marketplace Alerts Pipeline")
    parser.add_argument(
        "--run",
        action="store_true",
        help="Run the full pipeline once"
    )
    parser.add_argument(
        "--history",
        metavar="N",
        type=int,
        help="Print the N most recent run summaries"
    )
    parser.add_argument(
        "--watchlist",
        metavar="PATH",
        help="Watchlist YAML (default: WATCHLIST_PATH or config/watchlist.yml)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=get_app_config().log_level,
        help="Logging level"
    )

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if args.run:
        summary = run_full_pipeline(load_watchlist(args.watchlist))
        print(f"Pipeline complete: scanned={summary.scanned} matches={summary.matches} alerts={summary.alerts}")
    elif args.history:
        for record in get_history_store().recent(args.history):
            print(json.dumps(record, indent=2))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
