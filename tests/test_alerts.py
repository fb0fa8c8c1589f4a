"""Unit tests for Discord alert building and delivery."""

from unittest.mock import MagicMock

import pytest
import requests

from marketplace_alerts.alerts import (
    PRICE_DROP_COLOR,
    DiscordNotifier,
    NotificationError,
    build_embed,
    build_payload,
    chunked,
)
from marketplace_alerts.matching import SHIPPING_UNKNOWN_NOTE
from marketplace_alerts.models import PriceDrop

from conftest import RUN_AT, make_listing, make_match

WEBHOOK = "https://discord.test/api/webhooks/1/abc"


def make_response(status_code: int = 204, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = text
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


def make_matches(count: int) -> list:
    return [
        make_match(listing=make_listing(listing_id=f"item-{i}", price=100 + i, shipping=0))
        for i in range(count)
    ]


class TestBuildEmbed:
    """Test cases for build_embed()."""

    def test_basic_fields(self):
        listing = make_listing(price=400, shipping=20, condition="Used", image_url="https://img.test/1.jpg")
        embed = build_embed(make_match(listing=listing, effective_price=420), RUN_AT)

        fields = {f["name"]: f["value"] for f in embed["fields"]}
        assert embed["title"] == listing.title
        assert embed["url"] == listing.url
        assert embed["timestamp"] == RUN_AT.isoformat()
        assert embed["image"] == {"url": "https://img.test/1.jpg"}
        assert embed["footer"]["text"] == "Roland System-8 • threshold <= $500"
        assert fields["Price"] == "$400.00"
        assert fields["Shipping"] == "$20.00"
        assert fields["Effective"] == "$420.00"
        assert fields["Marketplace"] == "ebay"
        assert fields["Condition"] == "Used"
        assert "Note" not in fields
        assert "color" not in embed

    def test_unknown_shipping_note(self):
        match = make_match(listing=make_listing(price=300, shipping=None))
        match.shipping_note = SHIPPING_UNKNOWN_NOTE

        fields = {f["name"]: f["value"] for f in build_embed(match, RUN_AT)["fields"]}

        assert fields["Shipping"] == "Unknown"
        assert fields["Note"] == SHIPPING_UNKNOWN_NOTE

    def test_price_drop(self):
        match = make_match(effective_price=320)
        match.price_drop = PriceDrop(previous_price=400, drop_amount=80)

        embed = build_embed(match, RUN_AT)

        assert embed["title"].startswith("\U0001F4C9 ")
        assert embed["color"] == PRICE_DROP_COLOR
        assert embed["fields"][0] == {
            "name": "Price Drop",
            "value": "$400.00 → $320.00 (-$80.00)",
            "inline": False,
        }

    def test_long_title_is_truncated(self):
        match = make_match(listing=make_listing(title="Synth " * 100))
        assert len(build_embed(match, RUN_AT)["title"]) == 256


class TestBuildPayload:
    """Test cases for build_payload() and chunking."""

    def test_header_and_embeds(self):
        payload = build_payload(make_matches(3), RUN_AT)

        assert "Roland System-8" in payload["content"]
        assert "**3**" in payload["content"]
        assert len(payload["embeds"]) == 3

    def test_header_counts_price_drops(self):
        matches = make_matches(2)
        matches[1].price_drop = PriceDrop(previous_price=200, drop_amount=99)
        assert "1 price drop(s)" in build_payload(matches, RUN_AT)["content"]

    def test_chunked(self):
        chunks = chunked(list(range(23)), 10)
        assert [len(c) for c in chunks] == [10, 10, 3]

    def test_chunked_guards_size(self):
        assert chunked([1, 2], 0) == [[1], [2]]


class TestDiscordNotifier:
    """Test cases for DiscordNotifier."""

    def test_sends_in_chunks(self):
        session = MagicMock()
        session.post.return_value = make_response(204)
        notifier = DiscordNotifier(webhook_url=WEBHOOK, max_embeds_per_message=10, session=session)

        sent = notifier.send_alerts(make_matches(23), RUN_AT)

        assert sent == 23
        assert session.post.call_count == 3
        embeds_per_call = [len(c.kwargs["json"]["embeds"]) for c in session.post.call_args_list]
        assert embeds_per_call == [10, 10, 3]
        assert session.post.call_args.args[0] == WEBHOOK

    def test_no_matches_sends_nothing(self):
        session = MagicMock()
        notifier = DiscordNotifier(webhook_url=WEBHOOK, session=session)

        assert notifier.send_alerts([], RUN_AT) == 0
        session.post.assert_not_called()

    def test_missing_webhook(self):
        notifier = DiscordNotifier(webhook_url="", session=MagicMock())
        with pytest.raises(NotificationError, match="DISCORD_WEBHOOK_URL"):
            notifier.send_alerts(make_matches(1), RUN_AT)

    def test_client_error_fails_on_first_post(self):
        session = MagicMock()
        session.post.return_value = make_response(400, text="bad embed")
        notifier = DiscordNotifier(webhook_url=WEBHOOK, session=session)

        with pytest.raises(NotificationError, match="400 bad embed"):
            notifier.send_alerts(make_matches(1), RUN_AT)
        assert session.post.call_count == 1

    def test_server_error_after_session_retries(self):
        # The session's transport has already retried by the time a 5xx comes back
        session = MagicMock()
        session.post.return_value = make_response(503)
        notifier = DiscordNotifier(webhook_url=WEBHOOK, session=session)

        with pytest.raises(NotificationError, match="503"):
            notifier.send_alerts(make_matches(1), RUN_AT)
        assert session.post.call_count == 1

    def test_connection_error(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("connection refused")
        notifier = DiscordNotifier(webhook_url=WEBHOOK, session=session)

        with pytest.raises(NotificationError, match="connection refused") as excinfo:
            notifier.send_alerts(make_matches(3), RUN_AT)
        assert excinfo.value.sent == 0

    def test_failure_reports_chunks_already_sent(self):
        session = MagicMock()
        session.post.side_effect = [make_response(204), make_response(500), make_response(204)]
        notifier = DiscordNotifier(webhook_url=WEBHOOK, max_embeds_per_message=10, session=session)

        with pytest.raises(NotificationError) as excinfo:
            notifier.send_alerts(make_matches(23), RUN_AT)

        assert excinfo.value.sent == 10
        assert session.post.call_count == 2

    def test_default_session_has_retry_adapter(self):
        notifier = DiscordNotifier(webhook_url=WEBHOOK)
        retry = notifier.session.get_adapter(WEBHOOK).max_retries
        assert retry.total == 3
        assert 429 in retry.status_forcelist
