"""
Data models for Marketplace Alerts.

Defines the canonical dataclasses that every marketplace adapter normalizes into,
plus the records the engine persists between runs (lifecycle entries, run summaries).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from enum import Enum


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (accepts a trailing 'Z')."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Marketplace(str, Enum):
    """Supported marketplaces."""
    EBAY = "ebay"
    REVERB = "reverb"
    AMAZON = "amazon"


class TransitionKind(str, Enum):
    """Outcome of reconciling a match against its lifecycle entry."""
    NEW = "new"
    PRICE_DROP = "price_drop"
    UNCHANGED = "unchanged"


# =============================================================================
# LISTINGS
# =============================================================================

@dataclass
class Money:
    """An amount tagged with its ISO currency code."""
    amount: float
    currency: str = "USD"

    def to_dict(self) -> dict:
        return {"amount": self.amount, "currency": self.currency}

    @classmethod
    def from_dict(cls, data: dict) -> "Money":
        return cls(amount=float(data["amount"]), currency=data.get("currency", "USD"))


@dataclass
class Shipping:
    """
    Shipping cost for a listing.

    known=False means the marketplace did not report a cost, which is
    different from a known $0 (free shipping).
    """
    amount: float = 0.0
    currency: str = "USD"
    known: bool = True

    def to_dict(self) -> dict:
        return {"amount": self.amount, "currency": self.currency, "known": self.known}

    @classmethod
    def unknown(cls, currency: str = "USD") -> "Shipping":
        return cls(amount=0.0, currency=currency, known=False)


@dataclass
class Listing:
    """
    Canonical, marketplace-neutral representation of a listing.

    Produced fresh by the adapters every run. The (marketplace, listing_id)
    pair together with the product id is the deduplication key.
    """
    marketplace: Marketplace
    listing_id: str
    title: str
    url: str
    price: Money

    shipping: Optional[Shipping] = None
    image_url: Optional[str] = None
    condition: str = ""
    location: Optional[str] = None
    listed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "marketplace": self.marketplace.value,
            "listing_id": self.listing_id,
            "title": self.title,
            "url": self.url,
            "price": self.price.to_dict(),
            "shipping": self.shipping.to_dict() if self.shipping else None,
            "image_url": self.image_url,
            "condition": self.condition,
            "location": self.location,
            "listed_at": format_timestamp(self.listed_at),
        }


# =============================================================================
# WATCHLIST
# =============================================================================

@dataclass
class ProductRule:
    """
    One watched product.

    Terms are literal case-insensitive substrings, or regular expressions
    written as /pattern/flags.
    """
    product_id: str
    name: str
    max_price: float
    min_price: Optional[float] = None
    include_terms: list[str] = field(default_factory=list)
    exclude_terms: list[str] = field(default_factory=list)
    marketplaces: list[Marketplace] = field(default_factory=list)

    # Reverb canonical product (CSP) slugs, queried before keyword searches
    reverb_product_slugs: list[str] = field(default_factory=list)

    # Accessory guard override; None keeps the built-in words / brand token
    accessory_words: Optional[list[str]] = None
    accessory_brand: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ProductRule":
        min_price = data.get("min_price_usd")
        return cls(
            product_id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            max_price=float(data["max_price_usd"]),
            min_price=float(min_price) if min_price is not None else None,
            include_terms=[str(t) for t in data.get("include_terms") or [] if t],
            exclude_terms=[str(t) for t in data.get("exclude_terms") or [] if t],
            marketplaces=[Marketplace(m) for m in data.get("marketplaces") or []],
            reverb_product_slugs=list(data.get("reverb_product_slugs") or []),
            accessory_words=data.get("accessory_words"),
            accessory_brand=data.get("accessory_brand"),
        )


@dataclass
class WatchlistSettings:
    """Global settings shared by every product for one run."""
    currency: str = "USD"
    include_shipping_in_threshold: bool = True
    max_results_per_marketplace: int = 50
    request_delay_seconds: float = 1.5
    max_embeds_per_message: int = 10
    max_listings_per_product_per_run: int = 100

    @classmethod
    def from_dict(cls, data: dict) -> "WatchlistSettings":
        return cls(
            currency=data.get("currency", "USD"),
            include_shipping_in_threshold=bool(data.get("include_shipping_in_threshold", True)),
            max_results_per_marketplace=int(data.get("max_results_per_marketplace", 50)),
            request_delay_seconds=float(data.get("request_delay_ms", 1500)) / 1000.0,
            max_embeds_per_message=int(data.get("max_embeds_per_discord_message", 10)),
            max_listings_per_product_per_run=int(data.get("max_listings_per_product_per_run", 100)),
        )


@dataclass
class Watchlist:
    products: list[ProductRule]
    settings: WatchlistSettings


# =============================================================================
# MATCHES & TRANSITIONS
# =============================================================================

@dataclass
class PriceDrop:
    previous_price: float
    drop_amount: float

    def to_dict(self) -> dict:
        return {"previous_price": self.previous_price, "drop_amount": self.drop_amount}


@dataclass
class Match:
    """A listing that passed keyword and price filtering for a product rule."""
    listing: Listing
    rule: ProductRule
    effective_price: float
    shipping_note: Optional[str] = None
    price_drop: Optional[PriceDrop] = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.rule.product_id,
            "product_name": self.rule.name,
            "max_price": self.rule.max_price,
            "listing": self.listing.to_dict(),
            "effective_price": self.effective_price,
            "shipping_note": self.shipping_note,
            "price_drop": self.price_drop.to_dict() if self.price_drop else None,
        }


@dataclass
class Transition:
    kind: TransitionKind
    previous_price: Optional[float] = None
    drop_amount: Optional[float] = None

    @property
    def is_alertable(self) -> bool:
        """New listings and price drops are the only transitions that notify."""
        return self.kind in (TransitionKind.NEW, TransitionKind.PRICE_DROP)


# =============================================================================
# LIFECYCLE STATE
# =============================================================================

@dataclass
class LifecycleEntry:
    """
    Persisted history of a single listing across runs.

    sold_at is stamped once missed_runs reaches the sold threshold; after
    that the entry is frozen until the retention sweep deletes it.
    """
    first_seen_at: datetime
    last_seen_at: datetime
    last_effective_price: float
    url: str
    title: str
    missed_runs: int = 0
    sold_at: Optional[datetime] = None

    @property
    def is_sold(self) -> bool:
        return self.sold_at is not None

    def to_dict(self) -> dict:
        return {
            "first_seen_at": format_timestamp(self.first_seen_at),
            "last_seen_at": format_timestamp(self.last_seen_at),
            "last_effective_price": self.last_effective_price,
            "url": self.url,
            "title": self.title,
            "missed_runs": self.missed_runs,
            "sold_at": format_timestamp(self.sold_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LifecycleEntry":
        return cls(
            first_seen_at=parse_timestamp(data["first_seen_at"]),
            last_seen_at=parse_timestamp(data["last_seen_at"]),
            last_effective_price=float(data["last_effective_price"]),
            url=data.get("url", ""),
            title=data.get("title", ""),
            missed_runs=int(data.get("missed_runs", 0)),
            sold_at=parse_timestamp(data.get("sold_at")),
        )


# marketplace -> product_id -> listing_id -> entry
SeenIndex = dict[str, dict[str, dict[str, LifecycleEntry]]]


@dataclass
class StateDocument:
    """The single shared state blob read at run start and written at run end."""
    version: int
    updated_at: Optional[datetime] = None
    seen: SeenIndex = field(default_factory=dict)

    def bucket(self, marketplace: Marketplace, product_id: str) -> dict[str, LifecycleEntry]:
        """Entries for one marketplace/product, created on demand."""
        return self.seen.setdefault(marketplace.value, {}).setdefault(product_id, {})

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "updated_at": format_timestamp(self.updated_at),
            "seen": {
                market: {
                    product_id: {listing_id: entry.to_dict() for listing_id, entry in entries.items()}
                    for product_id, entries in products.items()
                }
                for market, products in self.seen.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StateDocument":
        seen: SeenIndex = {}
        for market, products in (data.get("seen") or {}).items():
            seen[market] = {
                product_id: {
                    listing_id: LifecycleEntry.from_dict(entry)
                    for listing_id, entry in (entries or {}).items()
                }
                for product_id, entries in (products or {}).items()
            }
        return cls(
            version=int(data["version"]),
            updated_at=parse_timestamp(data.get("updated_at")),
            seen=seen,
        )


# =============================================================================
# STATISTICS & RUN SUMMARY
# =============================================================================

@dataclass
class StatsSample:
    title: str
    price: float
    url: str
    marketplace: Marketplace

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "price": self.price,
            "url": self.url,
            "marketplace": self.marketplace.value,
        }


@dataclass
class MarketStats:
    """Distribution of effective prices over the keyword-filtered listings."""
    count: int = 0
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    avg_price: Optional[float] = None
    median_price: Optional[float] = None
    samples: list[StatsSample] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "avg_price": self.avg_price,
            "median_price": self.median_price,
            "samples": [s.to_dict() for s in self.samples],
        }


@dataclass
class RunError:
    """An error recorded in the run summary (adapter or notification)."""
    stage: str  # "search" or "notify"
    product_id: str
    message: str
    marketplace: Optional[Marketplace] = None

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "marketplace": self.marketplace.value if self.marketplace else None,
            "product_id": self.product_id,
            "message": self.message,
        }


@dataclass
class ProductResult:
    product_id: str
    product_name: str
    threshold: float
    scanned: int = 0
    alerts: int = 0
    matches: list[Match] = field(default_factory=list)
    market_stats: Optional[MarketStats] = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "threshold": self.threshold,
            "scanned": self.scanned,
            "alerts": self.alerts,
            "matches": [m.to_dict() for m in self.matches],
            "market_stats": self.market_stats.to_dict() if self.market_stats else None,
        }


@dataclass
class RunSummary:
    """
    One record per run, appended to the history document.

    Never mutated after it has been appended.
    """
    run_at: datetime
    duration_seconds: float = 0.0
    scanned: int = 0
    matches: int = 0
    alerts: int = 0
    sold: int = 0
    removed: int = 0
    errors: list[RunError] = field(default_factory=list)
    by_product: list[ProductResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "run_at": format_timestamp(self.run_at),
            "duration_seconds": self.duration_seconds,
            "scanned": self.scanned,
            "matches": self.matches,
            "alerts": self.alerts,
            "sold": self.sold,
            "removed": self.removed,
            "errors": [e.to_dict() for e in self.errors],
            "by_product": [p.to_dict() for p in self.by_product],
        }
