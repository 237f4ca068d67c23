"""Text classification of Kalshi markets: asset, crypto-ness, interval."""

from __future__ import annotations

import logging
import re
from typing import Sequence

from strike_bot.config import DEFAULT_INTERVAL_REGEX
from strike_bot.models import Market

LOGGER = logging.getLogger(__name__)

DEFAULT_INTERVAL_PATTERN = re.compile(DEFAULT_INTERVAL_REGEX)

# asset key -> long-form name that also counts as a match
_ASSET_SYNONYMS = {
    "btc": "bitcoin",
    "eth": "ethereum",
    "sol": "solana",
}


def market_haystack(market: Market) -> str:
    parts = [market.title]
    if market.subtitle:
        parts.append(market.subtitle)
    if market.event_ticker:
        parts.append(market.event_ticker)
    return " ".join(parts).lower()


def primary_asset(market: Market) -> str | None:
    """BTC wins over ETH when the text mentions both."""
    haystack = market_haystack(market)
    if "btc" in haystack or "bitcoin" in haystack:
        return "BTC"
    if "eth" in haystack or "ethereum" in haystack:
        return "ETH"
    return None


def is_btc_related(market: Market) -> bool:
    haystack = market_haystack(market)
    return "btc" in haystack or "bitcoin" in haystack


def is_crypto_text(text: str, assets: Sequence[str]) -> bool:
    value = text.lower()
    for asset in assets:
        if not asset:
            continue
        if asset in value:
            return True
        synonym = _ASSET_SYNONYMS.get(asset)
        if synonym is not None and synonym in value:
            return True
    return False


def is_crypto_related(market: Market, assets: Sequence[str]) -> bool:
    if not assets:
        return False
    return is_crypto_text(market_haystack(market), assets)


def compile_interval_pattern(pattern: str | None) -> re.Pattern[str]:
    """Compile the configured interval pattern, falling back to the 15-minute default."""
    if not pattern:
        return DEFAULT_INTERVAL_PATTERN
    try:
        return re.compile(pattern)
    except re.error as exc:
        LOGGER.warning(
            "invalid interval pattern %r (%s); using default %r",
            pattern, exc, DEFAULT_INTERVAL_PATTERN.pattern,
        )
        return DEFAULT_INTERVAL_PATTERN


def matches_interval(market: Market, pattern: re.Pattern[str]) -> bool:
    if pattern.search(market.title):
        return True
    if market.subtitle and pattern.search(market.subtitle):
        return True
    if market.event_ticker and pattern.search(market.event_ticker):
        return True
    return False
