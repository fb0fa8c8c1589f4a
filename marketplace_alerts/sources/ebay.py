"""
eBay adapter using the Browse API.

Authenticates with an OAuth client-credentials token (cached until shortly
before it expires) and searches item summaries.

Required environment variables:
- EBAY_CLIENT_ID / EBAY_CLIENT_SECRET
- EBAY_ENV (optional): "production" (default) or "sandbox"
- EBAY_MARKETPLACE_ID (optional): defaults to EBAY_US
"""

import time
import logging
from typing import Optional

from .base import AdapterError, BaseMarketplace, parse_amount, parse_listed_at
from ..models import Listing, Marketplace, Money, Shipping

logger = logging.getLogger(__name__)

OAUTH_SCOPE = "https://api.ebay.com/oauth/api_scope"

# Refresh the token when it has less than this many seconds left
TOKEN_REFRESH_MARGIN = 60


def parse_money(value) -> Optional[Money]:
    """eBay money objects look like {"value": "12.34", "currency": "USD"}."""
    if not isinstance(value, dict):
        return None
    amount = parse_amount(value.get("value", value.get("amount")))
    currency = value.get("currency") or value.get("currencyCode")
    if amount is None or not currency:
        return None
    return Money(amount=amount, currency=str(currency))


class EbayMarketplace(BaseMarketplace):
    """Adapter for eBay's Browse API."""

    marketplace = Marketplace.EBAY

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._token: Optional[str] = None
        self._token_expires_at: float = 0

    @property
    def base_url(self) -> str:
        if self.credentials.ebay_env == "sandbox":
            return "https://api.sandbox.ebay.com"
        return "https://api.ebay.com"

    def _access_token(self) -> str:
        """Get a cached application token, fetching a new one when close to expiry."""
        now = time.time()
        if self._token and self._token_expires_at - now > TOKEN_REFRESH_MARGIN:
            return self._token

        client_id = self.credentials.ebay_client_id
        client_secret = self.credentials.ebay_client_secret
        if not client_id or not client_secret:
            raise AdapterError("Missing EBAY_CLIENT_ID/EBAY_CLIENT_SECRET")

        response = self._request(
            "POST",
            f"{self.base_url}/identity/v1/oauth2/token",
            auth=(client_id, client_secret),
            data={"grant_type": "client_credentials", "scope": OAUTH_SCOPE},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        payload = response.json()

        self._token = payload["access_token"]
        self._token_expires_at = now + int(payload.get("expires_in", 7200))
        logger.debug("Fetched new eBay access token")
        return self._token

    def search_once(self, query: str, limit: int) -> list[Listing]:
        token = self._access_token()
        response = self._request(
            "GET",
            f"{self.base_url}/buy/browse/v1/item_summary/search",
            params={"q": query, "limit": limit},
            headers={
                "Authorization": f"Bearer {token}",
                "X-EBAY-C-MARKETPLACE-ID": self.credentials.ebay_marketplace_id,
            },
        )
        return self.parse_items(response.json().get("itemSummaries"))

    def parse_item(self, item: dict) -> Optional[Listing]:
        listing_id = item.get("itemId") or item.get("legacyItemId")
        title = item.get("title")
        url = item.get("itemWebUrl")
        price = parse_money(item.get("price"))
        if not listing_id or not title or not url or not price:
            return None

        options = item.get("shippingOptions") or []
        cost = parse_money(options[0].get("shippingCost")) if options and isinstance(options[0], dict) else None
        if cost:
            shipping = Shipping(amount=cost.amount, currency=cost.currency, known=True)
        else:
            shipping = Shipping.unknown(price.currency)

        image = (item.get("image") or {}).get("imageUrl")
        location = (item.get("itemLocation") or {}).get("country")

        return Listing(
            marketplace=self.marketplace,
            listing_id=str(listing_id),
            title=str(title),
            url=str(url),
            price=price,
            shipping=shipping,
            image_url=str(image) if image else None,
            condition=str(item.get("condition") or ""),
            location=str(location) if location else None,
            listed_at=parse_listed_at(item.get("itemCreationDate")),
        )
