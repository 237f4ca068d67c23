"""CEX spot quote sources (Coinbase, Kraken, Binance).

Every venue is queried once per asset over REST.  Each fetch resolves to
either a :class:`VenueQuote` or a :class:`FetchError`; exceptions never
leave this module so one venue outage cannot abort the scan.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping

import httpx

from strike_bot.crypto.reference import (
    AssetReference,
    FetchError,
    QuoteResult,
    VenueQuote,
    build_references,
)

LOGGER = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 3.0


class QuoteParseError(ValueError):
    """A venue payload did not contain a usable bid/ask."""


def _positive_price(venue: str, label: str, value: Any) -> float:
    if value is None:
        raise QuoteParseError(f"{venue} {label} missing")
    try:
        price = float(value)
    except (TypeError, ValueError) as exc:
        raise QuoteParseError(f"{venue} invalid {label}: {value!r}") from exc
    if not math.isfinite(price) or price <= 0.0:
        raise QuoteParseError(f"{venue} invalid {label}: {value!r}")
    return price


def _mid_quote(venue: str, bid: float, ask: float) -> VenueQuote:
    mid = (bid + ask) / 2.0
    if not math.isfinite(mid) or mid <= 0.0:
        raise QuoteParseError(f"{venue} invalid mid from bid={bid} ask={ask}")
    return VenueQuote(venue=venue, mid=mid)


def parse_coinbase(payload: Any) -> VenueQuote:
    """``{"bid": "97000.1", "ask": "97000.5", ...}``"""
    if not isinstance(payload, dict):
        raise QuoteParseError("coinbase payload is not an object")
    bid = _positive_price("coinbase", "bid", payload.get("bid"))
    ask = _positive_price("coinbase", "ask", payload.get("ask"))
    return _mid_quote("coinbase", bid, ask)


def parse_kraken(payload: Any) -> VenueQuote:
    """``{"error": [], "result": {"XXBTZUSD": {"a": ["97000.5", ...], "b": [...]}}}``"""
    if not isinstance(payload, dict):
        raise QuoteParseError("kraken payload is not an object")
    errors = payload.get("error")
    if errors:
        raise QuoteParseError(f"kraken error: {errors}")
    result = payload.get("result")
    if not isinstance(result, dict):
        raise QuoteParseError("kraken response missing result object")
    first = next(iter(result.values()), None)
    if not isinstance(first, dict):
        raise QuoteParseError("kraken response empty result")

    def _level(key: str, label: str) -> Any:
        levels = first.get(key)
        if isinstance(levels, list) and levels:
            return levels[0]
        raise QuoteParseError(f"kraken {label} missing")

    ask = _positive_price("kraken", "ask", _level("a", "ask"))
    bid = _positive_price("kraken", "bid", _level("b", "bid"))
    return _mid_quote("kraken", bid, ask)


def parse_binance(payload: Any) -> VenueQuote:
    """``{"symbol": "BTCUSDT", "bidPrice": "...", "askPrice": "..."}``"""
    if not isinstance(payload, dict):
        raise QuoteParseError("binance payload is not an object")
    bid = _positive_price("binance", "bid", payload.get("bidPrice"))
    ask = _positive_price("binance", "ask", payload.get("askPrice"))
    return _mid_quote("binance", bid, ask)


@dataclass(frozen=True)
class VenueEndpoint:
    venue: str
    url_template: str
    parser: Callable[[Any], VenueQuote]

    def url(self, symbol: str) -> str:
        return self.url_template.format(symbol=symbol)


COINBASE = VenueEndpoint(
    venue="coinbase",
    url_template="https://api.exchange.coinbase.com/products/{symbol}/ticker",
    parser=parse_coinbase,
)
KRAKEN = VenueEndpoint(
    venue="kraken",
    url_template="https://api.kraken.com/0/public/Ticker?pair={symbol}",
    parser=parse_kraken,
)
BINANCE = VenueEndpoint(
    venue="binance",
    url_template="https://api.binance.com/api/v3/ticker/bookTicker?symbol={symbol}",
    parser=parse_binance,
)

# asset -> [(venue endpoint, venue-specific symbol)]
DEFAULT_VENUE_SYMBOLS: Dict[str, List[tuple[VenueEndpoint, str]]] = {
    "BTC": [(COINBASE, "BTC-USD"), (KRAKEN, "XBTUSD"), (BINANCE, "BTCUSDT")],
    "ETH": [(COINBASE, "ETH-USD"), (KRAKEN, "ETHUSD"), (BINANCE, "ETHUSDT")],
}


class CexQuoteSource:
    """Fetches one quote per (asset, venue) concurrently.

    Parameters
    ----------
    venue_symbols:
        Map of asset -> list of ``(VenueEndpoint, symbol)`` pairs.
    timeout_seconds:
        Per-request timeout; a timeout is reported like any other failure.
    transport:
        Optional httpx transport, mostly for tests.
    """

    def __init__(
        self,
        venue_symbols: Mapping[str, List[tuple[VenueEndpoint, str]]] | None = None,
        timeout_seconds: float = _DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._venue_symbols = dict(venue_symbols or DEFAULT_VENUE_SYMBOLS)
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def fetch_quote(
        self,
        client: httpx.AsyncClient,
        endpoint: VenueEndpoint,
        symbol: str,
    ) -> QuoteResult:
        try:
            response = await client.get(endpoint.url(symbol))
            response.raise_for_status()
            return endpoint.parser(response.json())
        except (httpx.HTTPError, QuoteParseError, ValueError) as exc:
            LOGGER.debug("%s %s fetch failed: %s", endpoint.venue, symbol, exc)
            return FetchError(venue=endpoint.venue, reason=str(exc) or type(exc).__name__)

    async def fetch_all(self) -> Dict[str, List[QuoteResult]]:
        """Resolve every configured venue fetch; waits for all before returning."""
        async with httpx.AsyncClient(
            timeout=self._timeout_seconds,
            transport=self._transport,
        ) as client:
            keys: list[str] = []
            tasks = []
            for asset, venues in self._venue_symbols.items():
                for endpoint, symbol in venues:
                    keys.append(asset)
                    tasks.append(self.fetch_quote(client, endpoint, symbol))
            resolved = await asyncio.gather(*tasks)

        results: Dict[str, List[QuoteResult]] = {asset: [] for asset in self._venue_symbols}
        for asset, result in zip(keys, resolved):
            results[asset].append(result)
        return results

    async def scan_references(self, min_sources: int) -> Dict[str, AssetReference]:
        references = build_references(await self.fetch_all(), min_sources)
        for reference in references.values():
            LOGGER.info(
                "CEX ref %s %.2f from %d venues [%s]",
                reference.asset,
                reference.reference_price,
                reference.source_count,
                reference.describe_venues(),
            )
        return references
