"""
Matching module for Marketplace Alerts.

Turns raw normalized listings into Matches for a product rule:
1. Title filter: include terms (any), exclude terms (none), accessory guard
2. Currency filter: only USD listings are evaluated
3. Effective price: listed price, plus shipping when it counts and is known
4. Price bounds: min_price <= effective <= max_price

Matches come back sorted best deal (lowest effective price) first.
"""

import re
import math
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from .models import Listing, Match, ProductRule

logger = logging.getLogger(__name__)


# =============================================================================
# BUILT-IN TERMS
# =============================================================================

# Applied to every product on top of its own exclude terms
DEFAULT_EXCLUDES = [
    "deck saver",
    "decksaver",
    "overlay",
    "template",
    "manual",
    "knob",
    "stand",
    "parts",
    "repair",
    "broken",
    "for parts",
    "power supply",
    "adapter",
]

# Titles with these words are treated as accessories unless the brand token is present.
# Tuned for Roland synths; rules can override both via accessory_words/accessory_brand.
ACCESSORY_WORDS = ["case", "cover", "decksaver", "overlay", "template"]
ACCESSORY_BRAND = "roland"

SHIPPING_UNKNOWN_NOTE = "Shipping unknown (verify on listing)"

REGEX_TERM = re.compile(r"^/(.*)/([a-z]*)$", re.DOTALL)

REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    # Accepted for compatibility with JavaScript-style patterns, no Python equivalent
    "g": 0,
    "u": 0,
    "y": 0,
}


def normalize_text(text: str) -> str:
    """Lowercase and collapse whitespace."""
    return re.sub(r"\s+", " ", text.lower()).strip()


def is_usd(listing: Listing) -> bool:
    return normalize_text(listing.price.currency) == "usd"


# =============================================================================
# TERMS
# =============================================================================

@dataclass(frozen=True)
class Term:
    """A compiled include/exclude term (literal substring or regex)."""
    raw: str
    literal: Optional[str] = None
    pattern: Optional[re.Pattern] = None

    @property
    def is_regex(self) -> bool:
        return self.literal is None

    def matches(self, text: str) -> bool:
        """Match against an already-normalized title."""
        if self.literal is not None:
            return self.literal in text
        # Invalid regexes compile to None and never match
        return bool(self.pattern and self.pattern.search(text))


@lru_cache(maxsize=1024)
def compile_term(term: str) -> Term:
    """
    Compile a configured term once.

    "/pattern/flags" becomes a case-insensitive regex; anything else is a
    literal substring. Invalid patterns log a warning and never match.
    """
    regex = REGEX_TERM.match(term)
    if not regex:
        return Term(raw=term, literal=normalize_text(term))

    body, flag_chars = regex.groups()
    flags = re.IGNORECASE
    for char in flag_chars:
        flags |= REGEX_FLAGS.get(char, 0)

    try:
        return Term(raw=term, pattern=re.compile(body, flags))
    except re.error as e:
        logger.warning(f"Invalid regex pattern {term!r}: {e}")
        return Term(raw=term)


# =============================================================================
# RULE MATCHER
# =============================================================================

class RuleMatcher:
    """
    Evaluates listings against one product rule.

    Terms are compiled when the matcher is built, so build one per rule per
    run rather than per listing.

    Usage:
        matcher = RuleMatcher(rule)
        matches = matcher.filter_matches(listings, include_shipping=True)
    """

    def __init__(self, rule: ProductRule):
        self.rule = rule
        self.include_terms = [compile_term(t) for t in rule.include_terms if t]

        excludes = list(dict.fromkeys([*rule.exclude_terms, *DEFAULT_EXCLUDES]))
        self.exclude_terms = [compile_term(t) for t in excludes if t]

        words = ACCESSORY_WORDS if rule.accessory_words is None else rule.accessory_words
        self.accessory_words = [normalize_text(w) for w in words if w]
        self.accessory_brand = normalize_text(rule.accessory_brand or ACCESSORY_BRAND)

    def title_passes(self, title: str) -> bool:
        text = normalize_text(title)

        # Must match at least one include term, if any are configured
        if self.include_terms and not any(term.matches(text) for term in self.include_terms):
            return False

        if any(term.matches(text) for term in self.exclude_terms):
            return False

        # Accessory-only listings, e.g. "System-8 case"
        has_accessory = any(word in text for word in self.accessory_words)
        if has_accessory and self.accessory_brand not in text:
            return False

        return True

    def keyword_filter(self, listings: list[Listing]) -> list[Listing]:
        """Listings whose title passes, ignoring currency and price bounds."""
        return [listing for listing in listings if self.title_passes(listing.title)]

    def within_bounds(self, effective: float) -> bool:
        if self.rule.min_price is not None and effective < self.rule.min_price:
            return False
        return effective <= self.rule.max_price

    def filter_matches(self, listings: list[Listing], include_shipping: bool = True) -> list[Match]:
        matches = []

        for listing in listings:
            if not self.title_passes(listing.title):
                continue

            # Thresholds are USD only
            if not is_usd(listing):
                logger.debug(f"Skipping non-USD listing {listing.listing_id} ({listing.price.currency})")
                continue

            effective, note = effective_price(listing, include_shipping)
            if not self.within_bounds(effective):
                continue

            matches.append(Match(
                listing=listing,
                rule=self.rule,
                effective_price=effective,
                shipping_note=note,
            ))

        matches.sort(key=lambda m: m.effective_price)
        return matches


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def effective_price(listing: Listing, include_shipping: bool = True) -> tuple[float, Optional[str]]:
    """
    Compute the price a listing is judged by.

    Unknown shipping does not block a deal: the listed price is used and a
    caveat is returned so the alert can tell the user to verify.

    Returns:
        (effective price, shipping caveat or None)
    """
    price = listing.price.amount
    shipping = listing.shipping
    shipping_known = shipping is not None and shipping.known and not math.isnan(shipping.amount)

    # The caveat is attached even when shipping does not count toward thresholds
    if not shipping_known:
        return price, SHIPPING_UNKNOWN_NOTE
    if not include_shipping:
        return price, None

    return price + shipping.amount, None


def title_passes(rule: ProductRule, title: str) -> bool:
    return RuleMatcher(rule).title_passes(title)


def filter_matches(
    rule: ProductRule,
    listings: list[Listing],
    include_shipping: bool = True,
) -> list[Match]:
    """
    Convenience function to filter listings for one rule.

    Returns:
        Matches sorted ascending by effective price
    """
    return RuleMatcher(rule).filter_matches(listings, include_shipping)


def keyword_filter(rule: ProductRule, listings: list[Listing]) -> list[Listing]:
    return RuleMatcher(rule).keyword_filter(listings)
