"""
Configuration module for Marketplace Alerts.

Two sources of configuration:
- Environment variables (secrets, file paths, schedule), loaded from .env
- The watchlist YAML file (products to watch and global settings)

All sensitive values should be in .env file (never commit to git).
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from .models import Marketplace, ProductRule, Watchlist, WatchlistSettings

# Load environment variables from .env file
load_dotenv()


@dataclass
class MarketplaceCredentials:
    """API credentials for the marketplace adapters."""
    ebay_client_id: str
    ebay_client_secret: str
    ebay_env: str  # "production" or "sandbox"
    ebay_marketplace_id: str
    reverb_token: str
    amazon_access_key: str
    amazon_secret_key: str
    amazon_partner_tag: str

    @classmethod
    def from_env(cls) -> "MarketplaceCredentials":
        return cls(
            ebay_client_id=os.getenv("EBAY_CLIENT_ID", ""),
            ebay_client_secret=os.getenv("EBAY_CLIENT_SECRET", ""),
            ebay_env=os.getenv("EBAY_ENV", "production").lower(),
            ebay_marketplace_id=os.getenv("EBAY_MARKETPLACE_ID", "EBAY_US"),
            reverb_token=os.getenv("REVERB_TOKEN", ""),
            amazon_access_key=os.getenv("AMAZON_ACCESS_KEY", ""),
            amazon_secret_key=os.getenv("AMAZON_SECRET_KEY", ""),
            amazon_partner_tag=os.getenv("AMAZON_PARTNER_TAG", ""),
        )


@dataclass
class DiscordConfig:
    """Discord webhook configuration."""
    webhook_url: str

    @classmethod
    def from_env(cls) -> "DiscordConfig":
        return cls(webhook_url=os.getenv("DISCORD_WEBHOOK_URL", ""))


@dataclass
class AppConfig:
    """Main application configuration."""
    watchlist_path: Path = Path("config/watchlist.yml")
    state_path: Path = Path("data/state.json")
    history_path: Path = Path("data/history.json")

    # Scheduling
    poll_interval_minutes: int = 60

    # HTTP settings for adapters and the notifier
    request_timeout: int = 30

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            watchlist_path=Path(os.getenv("WATCHLIST_PATH", "config/watchlist.yml")),
            state_path=Path(os.getenv("STATE_PATH", "data/state.json")),
            history_path=Path(os.getenv("HISTORY_PATH", "data/history.json")),
            poll_interval_minutes=int(os.getenv("POLL_INTERVAL_MINUTES", "60")),
            request_timeout=int(os.getenv("REQUEST_TIMEOUT", "30")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


# =============================================================================
# WATCHLIST
# =============================================================================

def parse_watchlist(raw: dict) -> Watchlist:
    """
    Validate a parsed watchlist document and build the Watchlist.

    Raises:
        ValueError: If products or settings are missing or malformed
    """
    if not isinstance(raw, dict):
        raise ValueError("Invalid config: expected a mapping at the top level")

    products_data = raw.get("products")
    if not isinstance(products_data, list):
        raise ValueError("Invalid config: products missing")
    settings_data = raw.get("settings")
    if not isinstance(settings_data, dict):
        raise ValueError("Invalid config: settings missing")

    known = {m.value for m in Marketplace}
    products = []
    seen_ids = set()

    for i, data in enumerate(products_data):
        if not isinstance(data, dict) or not data.get("id"):
            raise ValueError(f"Invalid config: product #{i + 1} has no id")
        if data.get("max_price_usd") is None:
            raise ValueError(f"Invalid config: product {data['id']} has no max_price_usd")

        unknown = [m for m in data.get("marketplaces") or [] if m not in known]
        if unknown:
            raise ValueError(f"Invalid config: product {data['id']} has unknown marketplaces {unknown}")

        if data["id"] in seen_ids:
            raise ValueError(f"Invalid config: duplicate product id {data['id']}")
        seen_ids.add(data["id"])

        products.append(ProductRule.from_dict(data))

    return Watchlist(products=products, settings=WatchlistSettings.from_dict(settings_data))


def load_watchlist(path: Optional[Path] = None) -> Watchlist:
    """
    Load the watchlist from YAML.

    Raises:
        FileNotFoundError: If the watchlist file does not exist
        ValueError: If the YAML is invalid or fails validation
    """
    path = Path(path or get_app_config().watchlist_path)
    if not path.exists():
        raise FileNotFoundError(f"Watchlist file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in watchlist {path}: {e}") from e

    return parse_watchlist(raw)


# Global configuration instances (lazy loaded)
_credentials: Optional[MarketplaceCredentials] = None
_discord_config: Optional[DiscordConfig] = None
_app_config: Optional[AppConfig] = None


def get_credentials() -> MarketplaceCredentials:
    """Get marketplace credentials (cached)."""
    global _credentials
    if _credentials is None:
        _credentials = MarketplaceCredentials.from_env()
    return _credentials


def get_discord_config() -> DiscordConfig:
    """Get Discord configuration (cached)."""
    global _discord_config
    if _discord_config is None:
        _discord_config = DiscordConfig.from_env()
    return _discord_config


def get_app_config() -> AppConfig:
    """Get app configuration (cached)."""
    global _app_config
    if _app_config is None:
        _app_config = AppConfig.from_env()
    return _app_config
