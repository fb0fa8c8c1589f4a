"""
Amazon adapter using the Product Advertising API 5.0 (SearchItems).

Requests are signed with AWS Signature Version 4. Only used-condition offers
are searched, since those are where deals show up.

Required environment variables:
- AMAZON_ACCESS_KEY / AMAZON_SECRET_KEY
- AMAZON_PARTNER_TAG: Associates tag
"""

import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from .base import AdapterError, BaseMarketplace, parse_amount
from ..models import Listing, Marketplace, Money, Shipping

logger = logging.getLogger(__name__)

SERVICE = "ProductAdvertisingAPI"
REGION = "us-east-1"
HOST = "webservices.amazon.com"
PATH = "/paapi5/searchitems"
TARGET = "com.amazon.paapi5.v1.ProductAdvertisingAPIv1.SearchItems"

# PA-API returns at most 10 items per request
MAX_ITEM_COUNT = 10

RESOURCES = [
    "Images.Primary.Large",
    "Images.Primary.Medium",
    "ItemInfo.Title",
    "Offers.Listings.Price",
    "Offers.Listings.Condition",
    "Offers.Listings.DeliveryInfo.IsFreeShippingEligible",
]


def _sha256(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _hmac(key: bytes, data: str) -> bytes:
    return hmac.new(key, data.encode("utf-8"), hashlib.sha256).digest()


def sign_request(access_key: str, secret_key: str, payload: str, now: Optional[datetime] = None) -> dict:
    """
    Build SigV4 headers for a SearchItems POST.

    Returns:
        Headers including Authorization
    """
    now = now or datetime.now(timezone.utc)
    amz_date = now.strftime("%Y%m%dT%H%M%SZ")
    date_stamp = amz_date[:8]

    headers = {
        "content-encoding": "amz-1.0",
        "content-type": "application/json; charset=utf-8",
        "host": HOST,
        "x-amz-date": amz_date,
        "x-amz-target": TARGET,
    }
    signed_headers = ";".join(sorted(headers))
    canonical_headers = "".join(f"{k}:{headers[k]}\n" for k in sorted(headers))

    canonical_request = "\n".join([
        "POST", PATH, "", canonical_headers, signed_headers, _sha256(payload),
    ])
    scope = f"{date_stamp}/{REGION}/{SERVICE}/aws4_request"
    string_to_sign = "\n".join(["AWS4-HMAC-SHA256", amz_date, scope, _sha256(canonical_request)])

    key = _hmac(f"AWS4{secret_key}".encode("utf-8"), date_stamp)
    for part in (REGION, SERVICE, "aws4_request"):
        key = _hmac(key, part)
    signature = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    headers["Authorization"] = (
        f"AWS4-HMAC-SHA256 Credential={access_key}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    return headers


class AmazonMarketplace(BaseMarketplace):
    """Adapter for Amazon PA-API 5."""

    marketplace = Marketplace.AMAZON

    def search_once(self, query: str, limit: int) -> list[Listing]:
        creds = self.credentials
        if not creds.amazon_access_key or not creds.amazon_secret_key:
            raise AdapterError("Missing AMAZON_ACCESS_KEY/AMAZON_SECRET_KEY")
        if not creds.amazon_partner_tag:
            raise AdapterError("Missing AMAZON_PARTNER_TAG")

        payload = json.dumps({
            "Keywords": query,
            "Resources": RESOURCES,
            "SearchIndex": "MusicalInstruments",
            "ItemCount": min(limit, MAX_ITEM_COUNT),
            "PartnerTag": creds.amazon_partner_tag,
            "PartnerType": "Associates",
            "Marketplace": "www.amazon.com",
            "Condition": "Used",
        })
        headers = sign_request(creds.amazon_access_key, creds.amazon_secret_key, payload)

        response = self._request("POST", f"https://{HOST}{PATH}", data=payload, headers=headers)
        body = response.json()

        if body.get("Errors"):
            messages = "; ".join(str(e.get("Message")) for e in body["Errors"])
            raise AdapterError(f"Amazon API error: {messages}")

        return self.parse_items((body.get("SearchResult") or {}).get("Items"))

    def parse_item(self, item: dict) -> Optional[Listing]:
        asin = item.get("ASIN")
        title = ((item.get("ItemInfo") or {}).get("Title") or {}).get("DisplayValue")
        url = item.get("DetailPageURL")

        offers = (item.get("Offers") or {}).get("Listings") or []
        offer = offers[0] if offers and isinstance(offers[0], dict) else {}
        price_data = offer.get("Price") or offer.get("SavingBasis") or {}
        amount = parse_amount(price_data.get("Amount"))

        if not asin or not title or not url or amount is None:
            return None
        price = Money(amount=amount, currency=price_data.get("Currency") or "USD")

        # Free-shipping eligibility is the only shipping signal PA-API gives
        if (offer.get("DeliveryInfo") or {}).get("IsFreeShippingEligible"):
            shipping = Shipping(amount=0.0, currency=price.currency, known=True)
        else:
            shipping = Shipping.unknown(price.currency)

        primary = (item.get("Images") or {}).get("Primary") or {}
        image = (primary.get("Large") or {}).get("URL") or (primary.get("Medium") or {}).get("URL")
        condition = (offer.get("Condition") or {}).get("Value")

        return Listing(
            marketplace=self.marketplace,
            listing_id=str(asin),
            title=str(title),
            url=str(url),
            price=price,
            shipping=shipping,
            image_url=str(image) if image else None,
            condition=str(condition or ""),
            location="US",
        )
