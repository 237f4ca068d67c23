"""CEX-lag signal: model probability from spot vs strike, against the Kalshi ask.

Direction and strike are read out of the market title/subtitle.  This is a
best-effort heuristic with a fixed precedence:

* "above" phrases are checked before "below" phrases, so text containing
  both resolves to ABOVE (and is flagged as ambiguous);
* the strike is the largest number >= 100 in the text, which skips times
  of day, interval lengths and other small incidental numbers.

New title formats may need new entries in the phrase tables.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

from strike_bot.crypto.reference import AssetReference
from strike_bot.models import Direction, Market

LOGGER = logging.getLogger(__name__)

ABOVE_PHRASES = ("at or above", "above", "over", "greater than", "higher than")
BELOW_PHRASES = ("at or below", "below", "under", "less than", "lower than")

LAG_ASSETS = frozenset({"BTC", "ETH"})

# Logistic scale in basis points: distance from strike that moves the
# probability by one logit.
ASSET_SCALE_BPS = {
    "BTC": 45.0,
    "ETH": 65.0,
}
DEFAULT_SCALE_BPS = 55.0

MIN_PLAUSIBLE_STRIKE = 100.0

_NUMBER_RE = re.compile(r"\$?\d[\d,]*(?:\.\d+)?")


@dataclass(frozen=True)
class LagSignal:
    asset: str
    direction: Direction
    strike: float
    reference_price: float
    model_yes_prob: float
    kalshi_yes_prob: float
    lag: float
    abs_lag: float
    ambiguous_direction: bool = False

    def is_hit(self, threshold: float) -> bool:
        return self.abs_lag >= threshold

    def describe(self) -> str:
        return (
            f"lag {self.asset} {self.direction.value} {self.strike:.2f}"
            f" model {self.model_yes_prob:.4f} vs kalshi {self.kalshi_yes_prob:.4f}"
            f" (lag {self.lag:+.4f}, |lag| {self.abs_lag:.4f})"
        )


def _signal_text(market: Market) -> str:
    if market.subtitle:
        return f"{market.title} {market.subtitle}".lower()
    return market.title.lower()


def parse_direction(text: str) -> tuple[Direction | None, bool]:
    """Return ``(direction, ambiguous)`` for lowercased *text*."""
    is_above = any(phrase in text for phrase in ABOVE_PHRASES)
    is_below = any(phrase in text for phrase in BELOW_PHRASES)
    if is_above:
        return Direction.ABOVE, is_below
    if is_below:
        return Direction.BELOW, False
    return None, False


def parse_strike(text: str) -> float | None:
    candidates: list[float] = []
    for token in _NUMBER_RE.findall(text):
        cleaned = token.replace("$", "").replace(",", "")
        try:
            value = float(cleaned)
        except ValueError:
            continue
        if value >= MIN_PLAUSIBLE_STRIKE:
            candidates.append(value)
    if not candidates:
        return None
    return max(candidates)


def logistic(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def model_yes_probability(
    reference_price: float,
    strike: float,
    asset: str,
    direction: Direction,
) -> float:
    distance_bps = (reference_price - strike) / strike * 10_000.0
    scale = ASSET_SCALE_BPS.get(asset.upper(), DEFAULT_SCALE_BPS)
    above_prob = logistic(distance_bps / scale)
    if direction is Direction.ABOVE:
        return above_prob
    return 1.0 - above_prob


def compute_lag_signal(
    market: Market,
    reference: AssetReference,
    kalshi_yes_prob: float,
) -> LagSignal | None:
    """Build a lag signal, or ``None`` when the text has no direction or strike."""
    text = _signal_text(market)

    direction, ambiguous = parse_direction(text)
    if direction is None:
        LOGGER.debug("%s: no direction phrase in %r", market.ticker, text)
        return None

    strike = parse_strike(text)
    if strike is None:
        LOGGER.debug("%s: no strike >= %.0f in %r", market.ticker, MIN_PLAUSIBLE_STRIKE, text)
        return None

    if ambiguous:
        LOGGER.warning(
            "%s: title matches both above and below phrasing; treating as above",
            market.ticker,
        )

    model_prob = model_yes_probability(reference.reference_price, strike, reference.asset, direction)
    lag = model_prob - kalshi_yes_prob
    return LagSignal(
        asset=reference.asset,
        direction=direction,
        strike=strike,
        reference_price=reference.reference_price,
        model_yes_prob=model_prob,
        kalshi_yes_prob=kalshi_yes_prob,
        lag=lag,
        abs_lag=abs(lag),
        ambiguous_direction=ambiguous,
    )
