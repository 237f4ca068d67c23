"""Opportunity selection for 15-minute crypto markets.

Markets are walked in input order through a fixed filter chain (asset,
crypto, interval, freshness, price presence).  Survivors qualify either on
the *fast* path (under a minute to close with a side already priced in the
0.90-0.97 band) or on the *slow* path (YES + NO asks below the combined
threshold).  An optional CEX-lag signal annotates the decision and can be
required as a gate.

Every step is recorded as a :class:`StrategyEvent` on the returned report
so callers can render logs or summaries without the engine knowing about
them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence

from strike_bot.config import BotSettings
from strike_bot.crypto.classifier import (
    compile_interval_pattern,
    is_btc_related,
    is_crypto_related,
    matches_interval,
    primary_asset,
)
from strike_bot.crypto.lag_signal import LAG_ASSETS, LagSignal, compute_lag_signal
from strike_bot.crypto.reference import AssetReference
from strike_bot.models import Market, OrderRequest, Side

LOGGER = logging.getLogger(__name__)

BAND_LOW = 0.90
BAND_HIGH = 0.97
FAST_WINDOW_SECONDS = 60


class EventKind(str, Enum):
    EVALUATE = "evaluate"
    SKIP = "skip"
    SIGNAL = "signal"
    QUALIFY = "qualify"


class QualificationPath(str, Enum):
    FAST = "fast"
    SLOW = "slow"


@dataclass(frozen=True)
class StrategyEvent:
    ticker: str
    kind: EventKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Decision:
    market: Market
    orders: tuple[OrderRequest, ...]
    reason: str
    path: QualificationPath
    lag_signal: Optional[LagSignal] = None


@dataclass(frozen=True)
class StrategyReport:
    decisions: tuple[Decision, ...]
    events: tuple[StrategyEvent, ...]

    def events_for(self, ticker: str) -> list[StrategyEvent]:
        return [event for event in self.events if event.ticker == ticker]


def in_band(price: float) -> bool:
    return BAND_LOW <= price <= BAND_HIGH


class _EventLog:
    def __init__(self, verbose: bool) -> None:
        self._level = logging.INFO if verbose else logging.DEBUG
        self.events: list[StrategyEvent] = []

    def add(self, ticker: str, kind: EventKind, message: str, **details: Any) -> None:
        self.events.append(StrategyEvent(ticker=ticker, kind=kind, message=message, details=details))
        LOGGER.log(self._level, "%s %s: %s", ticker, kind.value, message)


def _lag_signal_for(
    settings: BotSettings,
    market: Market,
    yes_price: float,
    references: Mapping[str, AssetReference] | None,
) -> LagSignal | None:
    if not settings.enable_cex_lag_scan or not references:
        return None
    asset = primary_asset(market)
    if asset not in LAG_ASSETS:
        return None
    reference = references.get(asset)
    if reference is None:
        return None
    return compute_lag_signal(market, reference, yes_price)


def _fast_reason(seconds_to_close: int, yes: float, no: float, combined: float) -> str:
    return (
        f"fast: TTL {seconds_to_close}s with YES {yes:.4f} / NO {no:.4f}"
        f" in {BAND_LOW:.2f}-{BAND_HIGH:.2f} band (combined {combined:.4f})"
    )


def _slow_reason(seconds_to_close: int, yes: float, no: float, combined: float, threshold: float) -> str:
    return (
        f"slow: YES {yes:.4f} + NO {no:.4f} = {combined:.4f} < {threshold:.4f}"
        f" within {seconds_to_close}s of close"
    )


def pick_opportunities(
    settings: BotSettings,
    now: datetime,
    markets: Sequence[Market],
    references: Mapping[str, AssetReference] | None = None,
) -> StrategyReport:
    """Evaluate *markets* in order and return the qualifying decisions.

    Parameters
    ----------
    settings:
        Run configuration (filters, thresholds, order size, lag options).
    now:
        Evaluation time; ``close_time - now`` is the time to close.
    markets:
        Market snapshot for this run.
    references:
        CEX reference prices by asset (``"BTC"``, ``"ETH"``), if scanned.
    """
    interval_re = compile_interval_pattern(settings.interval_regex)
    log = _EventLog(settings.log_decisions)
    decisions: list[Decision] = []

    for market in markets:
        ticker = market.ticker
        seconds_to_close = int((market.close_time - now).total_seconds())
        log.add(
            ticker,
            EventKind.EVALUATE,
            f"title={market.title!r} ttl={seconds_to_close}s yes={market.yes_ask} no={market.no_ask}",
            title=market.title,
            seconds_to_close=seconds_to_close,
            yes_ask=market.yes_ask,
            no_ask=market.no_ask,
        )

        if settings.btc_only and not is_btc_related(market):
            log.add(ticker, EventKind.SKIP, "not BTC-related")
            continue
        if settings.crypto_only and not is_crypto_related(market, settings.crypto_assets):
            log.add(ticker, EventKind.SKIP, "not crypto-related")
            continue
        if not matches_interval(market, interval_re):
            log.add(ticker, EventKind.SKIP, "not 15-minute interval")
            continue
        if seconds_to_close < 0:
            log.add(ticker, EventKind.SKIP, f"market already closed ({seconds_to_close}s)")
            continue

        yes_price = market.yes_price
        no_price = market.no_price
        if yes_price is None or no_price is None:
            log.add(ticker, EventKind.SKIP, "missing or invalid YES/NO ask")
            continue

        combined = yes_price + no_price
        yes_in_band = in_band(yes_price)
        no_in_band = in_band(no_price)

        signal = _lag_signal_for(settings, market, yes_price, references)
        if signal is not None:
            log.add(
                ticker,
                EventKind.SIGNAL,
                signal.describe(),
                asset=signal.asset,
                direction=signal.direction.value,
                strike=signal.strike,
                model_yes_prob=signal.model_yes_prob,
                kalshi_yes_prob=signal.kalshi_yes_prob,
                lag=signal.lag,
                ambiguous_direction=signal.ambiguous_direction,
            )

        if settings.enable_cex_lag_scan and settings.cex_lag_require_signal:
            if signal is None or not signal.is_hit(settings.cex_lag_threshold):
                log.add(
                    ticker,
                    EventKind.SKIP,
                    f"no CEX lag signal >= {settings.cex_lag_threshold:.4f}",
                )
                continue

        qualifies_fast = seconds_to_close < FAST_WINDOW_SECONDS and (yes_in_band or no_in_band)

        orders: list[OrderRequest] = []
        if qualifies_fast:
            path = QualificationPath.FAST
            if yes_in_band:
                orders.append(OrderRequest(ticker, Side.YES, yes_price, settings.order_count))
            if no_in_band:
                orders.append(OrderRequest(ticker, Side.NO, no_price, settings.order_count))
            reason = _fast_reason(seconds_to_close, yes_price, no_price, combined)
        elif combined < settings.combined_max_price:
            path = QualificationPath.SLOW
            orders.append(OrderRequest(ticker, Side.YES, yes_price, settings.order_count))
            orders.append(OrderRequest(ticker, Side.NO, no_price, settings.order_count))
            reason = _slow_reason(
                seconds_to_close, yes_price, no_price, combined, settings.combined_max_price,
            )
        else:
            log.add(
                ticker,
                EventKind.SKIP,
                f"combined {combined:.4f} >= threshold {settings.combined_max_price:.4f}",
                combined=combined,
            )
            continue

        if signal is not None:
            reason = f"{reason} | {signal.describe()}"

        decisions.append(Decision(
            market=market,
            orders=tuple(orders),
            reason=reason,
            path=path,
            lag_signal=signal,
        ))
        log.add(
            ticker,
            EventKind.QUALIFY,
            reason,
            path=path.value,
            orders=len(orders),
            combined=combined,
        )

    return StrategyReport(decisions=tuple(decisions), events=tuple(log.events))
