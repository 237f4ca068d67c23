"""Single-pass run: references, markets, decisions, then dry-run log or orders."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from strike_bot.config import BotSettings
from strike_bot.crypto.price_feed import CexQuoteSource
from strike_bot.crypto.reference import AssetReference
from strike_bot.exchanges import ExchangeClient, KalshiClient, MockClient
from strike_bot.strategy import StrategyReport, pick_opportunities

LOGGER = logging.getLogger(__name__)


@dataclass
class RunResult:
    report: Optional[StrategyReport] = None
    references: Dict[str, AssetReference] = field(default_factory=dict)
    order_ids: List[str] = field(default_factory=list)


def build_client(settings: BotSettings) -> ExchangeClient:
    if settings.dry_run:
        LOGGER.info("running in DRY_RUN mode")
        if settings.has_credentials:
            return KalshiClient(settings)
        return MockClient()
    if not settings.api_key:
        raise RuntimeError("KALSHI_API_KEY not set")
    return KalshiClient(settings)


async def ensure_exchange_open(client: ExchangeClient) -> None:
    status = await client.exchange_status()
    if status is None:
        return
    if not status.exchange_active or not status.trading_active:
        resume = (
            status.exchange_estimated_resume_time.isoformat()
            if status.exchange_estimated_resume_time is not None
            else "unknown"
        )
        raise RuntimeError(
            f"Exchange not active (exchange_active={status.exchange_active}, "
            f"trading_active={status.trading_active}). Resume: {resume}"
        )


async def run_once(
    settings: BotSettings,
    client: ExchangeClient,
    quote_source: CexQuoteSource | None = None,
    result: RunResult | None = None,
) -> RunResult:
    """Run one evaluation pass; collaborator failures propagate to the caller.

    *result* is filled in place so a caller still sees partial progress
    (references, placed orders) when a later step raises.
    """
    result = result if result is not None else RunResult()

    if not settings.dry_run and settings.check_exchange:
        await ensure_exchange_open(client)

    now = client.now()
    if settings.enable_cex_lag_scan:
        source = quote_source or CexQuoteSource()
        result.references = await source.scan_references(settings.cex_lag_min_sources)

    LOGGER.info("fetching markets")
    markets = await client.list_markets()
    if not markets:
        LOGGER.info("no markets loaded")
        return result

    report = pick_opportunities(settings, now, markets, result.references)
    result.report = report
    LOGGER.info("opportunities found: %d", len(report.decisions))
    if not report.decisions:
        LOGGER.info("no qualifying opportunities")
        return result

    for decision in report.decisions:
        if settings.dry_run:
            LOGGER.info(
                "DRY_RUN: %s -> %d orders (%s)",
                decision.market.ticker, len(decision.orders), decision.reason,
            )
            continue
        for order in decision.orders:
            response = await client.place_order(order)
            result.order_ids.append(response.order_id)
            LOGGER.info("ORDER: %s %s @ %.4f -> %s", order.ticker, order.side.value, order.price, response.order_id)

    return result
