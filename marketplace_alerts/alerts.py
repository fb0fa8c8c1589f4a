"""
Alert Sending module for Marketplace Alerts.

Posts deal alerts to a Discord webhook. Each message carries a header line
and up to max_embeds_per_message embeds (Discord allows 10 per webhook
message), one per match, best price first.
"""

import logging
from datetime import datetime
from typing import Optional

import requests

from .config import get_app_config, get_discord_config
from .http_session import create_session
from .models import Match

logger = logging.getLogger(__name__)

PRICE_DROP_COLOR = 0x00FF00
PRICE_DROP_PREFIX = "\U0001F4C9 "  # chart decreasing

# Discord rejects embed titles longer than 256 characters
MAX_TITLE_LENGTH = 256


class NotificationError(Exception):
    """An alert batch could not be delivered."""

    def __init__(self, message: str, sent: int = 0):
        super().__init__(message)
        self.sent = sent


def fmt_usd(amount: float) -> str:
    return f"${amount:.2f}"


def fmt_threshold(amount: float) -> str:
    return f"${amount:g}"


# =============================================================================
# MESSAGE BUILDING
# =============================================================================

def build_embed(match: Match, run_at: datetime) -> dict:
    """Build the Discord embed for one match."""
    listing = match.listing
    shipping = listing.shipping
    shipping_text = fmt_usd(shipping.amount) if shipping and shipping.known else "Unknown"

    fields = [
        {"name": "Price", "value": fmt_usd(listing.price.amount), "inline": True},
        {"name": "Shipping", "value": shipping_text, "inline": True},
        {"name": "Effective", "value": fmt_usd(match.effective_price), "inline": True},
        {"name": "Marketplace", "value": listing.marketplace.value, "inline": True},
    ]
    if listing.condition:
        fields.append({"name": "Condition", "value": listing.condition, "inline": True})
    if match.shipping_note:
        fields.append({"name": "Note", "value": match.shipping_note, "inline": False})

    title = listing.title
    embed = {
        "url": listing.url,
        "timestamp": run_at.isoformat(),
        "footer": {"text": f"{match.rule.name} • threshold <= {fmt_threshold(match.rule.max_price)}"},
    }

    if match.price_drop:
        drop = match.price_drop
        title = PRICE_DROP_PREFIX + title
        embed["color"] = PRICE_DROP_COLOR
        fields.insert(0, {
            "name": "Price Drop",
            "value": f"{fmt_usd(drop.previous_price)} → {fmt_usd(match.effective_price)} "
                     f"(-{fmt_usd(drop.drop_amount)})",
            "inline": False,
        })

    embed["title"] = title[:MAX_TITLE_LENGTH]
    embed["fields"] = fields
    if listing.image_url:
        embed["image"] = {"url": listing.image_url}
    return embed


def build_payload(chunk: list[Match], run_at: datetime) -> dict:
    rule = chunk[0].rule
    drops = sum(1 for m in chunk if m.price_drop)
    content = (
        f"\U0001F3B9 **Deal alert:** {rule.name} (<= {fmt_threshold(rule.max_price)})\n"
        f"Found **{len(chunk)}** matching listing(s)."
    )
    if drops:
        content += f" {drops} price drop(s)."
    return {"content": content, "embeds": [build_embed(m, run_at) for m in chunk]}


def chunked(matches: list[Match], size: int) -> list[list[Match]]:
    size = max(1, size)
    return [matches[i:i + size] for i in range(0, len(matches), size)]


# =============================================================================
# NOTIFIER
# =============================================================================

class DiscordNotifier:
    """
    Sends alert batches to a Discord webhook.

    Rate limits and server errors are retried by the session's retry policy.

    Usage:
        notifier = DiscordNotifier(max_embeds_per_message=10)
        sent = notifier.send_alerts(matches, run_at)
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        max_embeds_per_message: int = 10,
        session: Optional[requests.Session] = None,
    ):
        self.webhook_url = webhook_url if webhook_url is not None else get_discord_config().webhook_url
        self.max_embeds_per_message = max_embeds_per_message
        self.timeout = get_app_config().request_timeout
        self.session = session or create_session()

    def send_alerts(self, matches: list[Match], run_at: datetime) -> int:
        """
        Deliver matches for one product.

        Returns:
            Number of matches delivered

        Raises:
            NotificationError: Missing webhook or a failed delivery; its
                `sent` attribute counts matches delivered before the failure
        """
        if not matches:
            return 0
        if not self.webhook_url:
            raise NotificationError("Missing DISCORD_WEBHOOK_URL")

        sent = 0
        for chunk in chunked(matches, self.max_embeds_per_message):
            payload = build_payload(chunk, run_at)
            try:
                response = self.session.post(self.webhook_url, json=payload, timeout=self.timeout)
            except requests.RequestException as e:
                logger.error(f"Discord webhook failed after {sent} alert(s): {e}")
                raise NotificationError(f"Discord webhook failed: {e}", sent=sent) from e

            if not response.ok:
                logger.error(f"Discord webhook failed after {sent} alert(s): {response.status_code} {response.text}")
                raise NotificationError(
                    f"Discord webhook failed: {response.status_code} {response.text}", sent=sent,
                )

            sent += len(chunk)

        logger.info(f"Sent {sent} alert(s) for {matches[0].rule.product_id}")
        return sent


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def send_alerts(matches: list[Match], run_at: datetime, max_embeds_per_message: int = 10) -> int:
    """
    Convenience function to send alerts.

    Returns:
        Number of matches delivered
    """
    notifier = DiscordNotifier(max_embeds_per_message=max_embeds_per_message)
    return notifier.send_alerts(matches, run_at)
