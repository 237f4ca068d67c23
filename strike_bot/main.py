from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace

import httpx

from strike_bot.config import BotSettings, load_reporting_settings, load_settings
from strike_bot.logging_setup import configure_logging
from strike_bot.runner import RunResult, build_client, run_once
from strike_bot.summary import RunSummary, SlackPostError, post_slack_summary

LOGGER = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python3 -m strike_bot",
        description="Single-pass Kalshi 15-minute crypto market scan",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Never place orders (default via DRY_RUN)")
    mode.add_argument("--live", action="store_true", help="Place orders (requires Kalshi credentials)")
    parser.add_argument("--btc-only", action="store_true", help="Only evaluate BTC markets")
    parser.add_argument("--no-lag-scan", action="store_true", help="Skip the CEX reference price scan")
    parser.add_argument("--log-decisions", action="store_true", help="Log every filter decision at INFO")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def _apply_overrides(settings: BotSettings, args: argparse.Namespace) -> BotSettings:
    overrides = {}
    if args.dry_run:
        overrides["dry_run"] = True
    if args.live:
        overrides["dry_run"] = False
    if args.btc_only:
        overrides["btc_only"] = True
    if args.no_lag_scan:
        overrides["enable_cex_lag_scan"] = False
    if args.log_decisions:
        overrides["log_decisions"] = True
    if overrides:
        settings = replace(settings, **overrides)
    return settings


async def _async_main(settings: BotSettings, result: RunResult) -> None:
    client = build_client(settings)
    try:
        await run_once(settings, client, result=result)
    finally:
        await client.aclose()


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    error: BaseException | None = None
    result = RunResult()
    try:
        settings = _apply_overrides(load_settings(), args)
    except ValueError as exc:
        settings = _apply_overrides(load_reporting_settings(), args)
        configure_logging(settings.log_level, verbose=args.verbose)
        LOGGER.exception("invalid configuration: %s", exc)
        error = exc
    else:
        configure_logging(settings.log_level, verbose=args.verbose)
        try:
            asyncio.run(_async_main(settings, result))
        except KeyboardInterrupt:
            LOGGER.info("shutdown requested")
            return 0
        except Exception as exc:
            LOGGER.exception("run failed: %s", exc)
            error = exc

    summary = RunSummary(
        dry_run=settings.dry_run,
        report=result.report,
        order_ids=tuple(result.order_ids),
        error=error,
    )
    if settings.slack_webhook_url:
        try:
            post_slack_summary(settings.slack_webhook_url, summary.render())
        except (SlackPostError, httpx.HTTPError) as exc:
            LOGGER.error("slack post failed: %s", exc)

    return 0 if error is None else 1


if __name__ == "__main__":
    sys.exit(main())
