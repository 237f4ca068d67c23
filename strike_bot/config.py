from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

DEFAULT_BASE_URL = "https://api.elections.kalshi.com/trade-api/v2"
DEFAULT_API_PREFIX = "/trade-api/v2"
DEFAULT_INTERVAL_REGEX = r"(?i)\b15\s?m(in(ute)?s?)?\b"
DEFAULT_TARGET_SERIES = "KXBTC15M,KXETH15M,KXSOL15M"


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _as_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _as_optional_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    return int(value)


def _as_csv(value: str | None) -> List[str]:
    if value is None or not value.strip():
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def split_base_url(raw: str) -> tuple[str, str]:
    """Split ``https://host/trade-api/v2`` into ``("https://host", "/trade-api/v2")``."""
    idx = raw.find("/trade-api/")
    if idx >= 0:
        return raw[:idx].rstrip("/"), raw[idx:]
    return raw.rstrip("/"), DEFAULT_API_PREFIX


@dataclass(frozen=True)
class BotSettings:
    """Settings for a single bot run.

    Values are read once per process by :func:`load_settings`; the decision
    engine only ever sees this frozen snapshot.
    """

    # ── Kalshi API ─────────────────────────────────────────────────
    base_url: str = "https://api.elections.kalshi.com"
    api_prefix: str = DEFAULT_API_PREFIX
    api_key: str = ""
    private_key_path: str | None = None
    private_key_pem: str | None = None
    check_exchange: bool = True
    time_in_force: str = "fill_or_kill"

    # ── Run mode ───────────────────────────────────────────────────
    dry_run: bool = True
    log_decisions: bool = False
    log_level: str = "INFO"
    slack_webhook_url: str = ""

    # ── Market filtering ───────────────────────────────────────────
    btc_only: bool = False
    crypto_only: bool = True
    crypto_assets: List[str] = field(default_factory=lambda: ["btc", "eth", "sol"])
    interval_regex: str = DEFAULT_INTERVAL_REGEX
    combined_max_price: float = 1.0
    order_count: int = 1

    # ── Discovery ──────────────────────────────────────────────────
    event_ticker_prefixes: List[str] = field(
        default_factory=lambda: _as_csv(DEFAULT_TARGET_SERIES),
    )
    event_series_tickers: List[str] = field(
        default_factory=lambda: _as_csv(DEFAULT_TARGET_SERIES),
    )
    min_close_ts: int | None = None
    discover_btc_events: bool = True
    discover_series: bool = False
    series_category: str = "crypto"
    series_frequency: str = "fifteen_min"
    events_limit: int = 200

    # ── CEX lag signal ─────────────────────────────────────────────
    enable_cex_lag_scan: bool = True
    cex_lag_threshold: float = 0.08
    cex_lag_require_signal: bool = False
    cex_lag_min_sources: int = 2

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key) and bool(self.private_key_pem or self.private_key_path)


def load_reporting_settings() -> BotSettings:
    """Mode, log level and Slack URL only; used when the full load fails."""
    load_dotenv(override=False)
    return BotSettings(
        dry_run=_as_bool(os.getenv("DRY_RUN"), default=True),
        log_level=os.getenv("LOG_LEVEL") or "INFO",
        slack_webhook_url=(os.getenv("SLACK_WEBHOOK_URL") or "").strip(),
    )


def load_settings() -> BotSettings:
    load_dotenv(override=False)

    base_url, api_prefix = split_base_url(os.getenv("KALSHI_BASE_URL") or DEFAULT_BASE_URL)

    key_path = os.getenv("KALSHI_PRIVATE_KEY_PATH")
    if key_path:
        key_path = str(Path(key_path).expanduser())

    return BotSettings(
        base_url=base_url,
        api_prefix=api_prefix,
        api_key=os.getenv("KALSHI_API_KEY", ""),
        private_key_path=key_path or None,
        private_key_pem=os.getenv("KALSHI_PRIVATE_KEY_PEM") or os.getenv("KALSHI_API_SECRET") or None,
        check_exchange=_as_bool(os.getenv("CHECK_EXCHANGE"), default=True),
        time_in_force=os.getenv("TIME_IN_FORCE") or "fill_or_kill",
        dry_run=_as_bool(os.getenv("DRY_RUN"), default=True),
        log_decisions=_as_bool(os.getenv("LOG_DECISIONS"), default=False),
        log_level=os.getenv("LOG_LEVEL") or "INFO",
        slack_webhook_url=(os.getenv("SLACK_WEBHOOK_URL") or "").strip(),
        btc_only=_as_bool(os.getenv("BTC_ONLY"), default=False),
        crypto_only=_as_bool(os.getenv("CRYPTO_ONLY"), default=True),
        crypto_assets=[a.lower() for a in _as_csv(os.getenv("CRYPTO_ASSETS", "BTC,ETH,SOL"))],
        interval_regex=os.getenv("INTERVAL_REGEX") or DEFAULT_INTERVAL_REGEX,
        combined_max_price=_as_float(os.getenv("COMBINED_MAX_PRICE"), 1.0),
        order_count=_as_int(os.getenv("ORDER_COUNT"), 1),
        event_ticker_prefixes=[
            p.upper() for p in _as_csv(os.getenv("EVENT_TICKER_PREFIXES", DEFAULT_TARGET_SERIES))
        ],
        event_series_tickers=[
            s.upper() for s in _as_csv(os.getenv("EVENT_SERIES_TICKERS", DEFAULT_TARGET_SERIES))
        ],
        min_close_ts=_as_optional_int(os.getenv("MIN_CLOSE_TS")),
        discover_btc_events=_as_bool(os.getenv("DISCOVER_BTC_EVENTS"), default=True),
        discover_series=_as_bool(os.getenv("DISCOVER_SERIES"), default=False),
        series_category=os.getenv("SERIES_CATEGORY", "crypto"),
        series_frequency=os.getenv("SERIES_FREQUENCY", "fifteen_min"),
        events_limit=_as_int(os.getenv("EVENTS_LIMIT"), 200),
        enable_cex_lag_scan=_as_bool(os.getenv("ENABLE_CEX_LAG_SCAN"), default=True),
        cex_lag_threshold=_as_float(os.getenv("CEX_LAG_THRESHOLD"), 0.08),
        cex_lag_require_signal=_as_bool(os.getenv("CEX_LAG_REQUIRE_SIGNAL"), default=False),
        cex_lag_min_sources=_as_int(os.getenv("CEX_LAG_MIN_SOURCES"), 2),
    )
