"""
Reverb adapter using the Reverb REST API.

Searches by canonical product (CSP) slug first when the product rule lists
any, then by keyword. Listings are restricted to US sellers shipping to the US.

Required environment variables:
- REVERB_TOKEN: Reverb API bearer token
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

from .base import AdapterError, BaseMarketplace, parse_amount, parse_listed_at
from ..models import Listing, Marketplace, Money, ProductRule, Shipping

logger = logging.getLogger(__name__)

API_BASE = "https://api.reverb.com/api"

# Reverb caps per_page at 50
MAX_PER_PAGE = 50

MAX_SLUGS_PER_PRODUCT = 2


def parse_money(value: Any) -> Optional[Money]:
    """Reverb prices come as {amount, currency} or {value, currency_code}."""
    if not isinstance(value, dict):
        return None
    amount = parse_amount(value.get("amount", value.get("value")))
    currency = value.get("currency") or value.get("currency_code") or value.get("currencyCode")
    if amount is None or not currency:
        return None
    return Money(amount=amount, currency=str(currency))


def pick_web_url(item: dict) -> Optional[str]:
    web = ((item.get("_links") or {}).get("web")) or {}
    href = web.get("href") or web.get("url")
    return href or item.get("url") or item.get("permalink")


def pick_image_url(item: dict) -> Optional[str]:
    photos = item.get("photos") or []
    if not photos or not isinstance(photos[0], dict):
        return None
    links = photos[0].get("_links") or {}
    return (links.get("full") or {}).get("href") or (links.get("thumbnail") or {}).get("href")


class ReverbMarketplace(BaseMarketplace):
    """Adapter for Reverb."""

    marketplace = Marketplace.REVERB

    def _headers(self) -> dict:
        token = self.credentials.reverb_token
        if not token:
            raise AdapterError("Missing REVERB_TOKEN")
        return {
            "Authorization": f"Bearer {token}",
            "Accept-Version": "3.0",
        }

    def _fetch(self, url: str, params: dict) -> list[Listing]:
        params = {
            **params,
            # US sellers only (avoids import duties)
            "ships_to": "US",
            "item_region": "US",
        }
        response = self._request("GET", url, params=params, headers=self._headers())
        payload = response.json()
        items = payload.get("listings") if isinstance(payload, dict) else payload
        return self.parse_items(items)

    def search_once(self, query: str, limit: int) -> list[Listing]:
        return self._fetch(
            f"{API_BASE}/listings",
            {"query": query, "per_page": min(limit, MAX_PER_PAGE)},
        )

    def search_by_slug(self, slug: str, limit: int) -> list[Listing]:
        """Listings for a canonical product page, more precise than keywords."""
        return self._fetch(
            f"{API_BASE}/csps/{quote(slug, safe='')}/listings",
            {"per_page": min(limit, MAX_PER_PAGE)},
        )

    def extra_searches(self, rule: ProductRule, limit: int) -> list[Listing]:
        listings = []
        for slug in rule.reverb_product_slugs[:MAX_SLUGS_PER_PRODUCT]:
            try:
                listings.extend(self._run_query(
                    f"reverb.csp({slug})",
                    lambda s=slug: self.search_by_slug(s, limit),
                ))
            except AdapterError as e:
                # Unknown slugs 404; keyword search still runs
                logger.debug(f"Reverb CSP search failed for {slug}: {e}")
        return listings

    def parse_item(self, item: dict) -> Optional[Listing]:
        listing_id = item.get("id")
        title = item.get("title")
        url = pick_web_url(item)
        price = (
            parse_money(item.get("price"))
            or parse_money(item.get("price_with_shipping"))
            or parse_money(item.get("listing_price"))
        )
        if not listing_id or not title or not url or not price:
            return None

        rate = parse_money((item.get("shipping") or {}).get("rate")) or parse_money(item.get("shipping_price"))
        if rate:
            shipping = Shipping(amount=rate.amount, currency=rate.currency, known=True)
        else:
            shipping = Shipping.unknown(price.currency)

        image = pick_image_url(item)
        condition = item.get("condition")
        if isinstance(condition, dict):
            condition = condition.get("display_name")
        country = (item.get("shop") or {}).get("country")

        return Listing(
            marketplace=self.marketplace,
            listing_id=str(listing_id),
            title=str(title),
            url=str(url),
            price=price,
            shipping=shipping,
            image_url=str(image) if image else None,
            condition=str(condition or ""),
            location=str(country) if country else None,
            listed_at=parse_listed_at(item.get("created_at")),
        )
