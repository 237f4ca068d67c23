from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class Side(str, Enum):
    YES = "yes"
    NO = "no"


class Direction(str, Enum):
    ABOVE = "above"
    BELOW = "below"


def _parse_close_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(float(value), tz=timezone.utc)
    else:
        text = str(value or "").strip()
        if not text:
            raise ValueError("market payload missing close_time")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _ask_text(payload: dict[str, Any], dollars_key: str, cents_key: str) -> str | None:
    dollars = payload.get(dollars_key)
    if dollars is not None and str(dollars).strip():
        return str(dollars).strip()
    cents = payload.get(cents_key)
    if cents is None:
        return None
    try:
        return f"{float(cents) / 100.0:.4f}"
    except (TypeError, ValueError):
        return None


def parse_price(value: str | None) -> float | None:
    """Parse a decimal ask string; ``None`` when absent or not a finite number."""
    if value is None:
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price):
        return None
    return price


@dataclass(frozen=True)
class Market:
    ticker: str
    title: str
    close_time: datetime
    subtitle: Optional[str] = None
    event_ticker: Optional[str] = None
    status: Optional[str] = None
    yes_ask: Optional[str] = None
    no_ask: Optional[str] = None

    @classmethod
    def from_api(cls, payload: dict[str, Any], event_ticker: str | None = None) -> "Market":
        """Build a market from a Kalshi ``/markets`` or nested event entry."""
        return cls(
            ticker=str(payload.get("ticker") or "").strip(),
            title=str(payload.get("title") or ""),
            close_time=_parse_close_time(payload.get("close_time")),
            subtitle=payload.get("subtitle") or payload.get("yes_sub_title") or None,
            event_ticker=payload.get("event_ticker") or event_ticker or None,
            status=payload.get("status") or None,
            yes_ask=_ask_text(payload, "yes_ask_dollars", "yes_ask"),
            no_ask=_ask_text(payload, "no_ask_dollars", "no_ask"),
        )

    @property
    def yes_price(self) -> float | None:
        return parse_price(self.yes_ask)

    @property
    def no_price(self) -> float | None:
        return parse_price(self.no_ask)


@dataclass(frozen=True)
class OrderRequest:
    ticker: str
    side: Side
    price: float
    quantity: int


@dataclass(frozen=True)
class OrderResponse:
    order_id: str


@dataclass(frozen=True)
class ExchangeStatus:
    exchange_active: bool
    trading_active: bool
    exchange_estimated_resume_time: datetime | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "ExchangeStatus":
        resume_raw = payload.get("exchange_estimated_resume_time")
        resume = _parse_close_time(resume_raw) if resume_raw else None
        return cls(
            exchange_active=bool(payload.get("exchange_active", False)),
            trading_active=bool(payload.get("trading_active", False)),
            exchange_estimated_resume_time=resume,
        )
