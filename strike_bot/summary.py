"""Run summary rendering and Slack webhook delivery."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import httpx

from strike_bot.strategy import EventKind, StrategyReport

LOGGER = logging.getLogger(__name__)

MAX_HIGHLIGHTS = 6
MAX_ERROR_LINES = 6


class SlackPostError(RuntimeError):
    pass


def format_ttl(seconds: int) -> str:
    value = max(0, int(seconds))
    return f"TTL {value // 60}m{value % 60:02d}s"


def error_lines(error: BaseException, max_lines: int = MAX_ERROR_LINES) -> List[str]:
    """Top-level error followed by its chained causes, capped at *max_lines*."""
    lines = [f"Error: {error}"]
    cause = error.__cause__ or error.__context__
    seen = {id(error)}
    idx = 0
    while cause is not None and id(cause) not in seen:
        seen.add(id(cause))
        lines.append(f"  {idx}: {cause}")
        idx += 1
        cause = cause.__cause__ or cause.__context__
    if len(lines) > max_lines:
        lines = lines[:max_lines] + ["..."]
    return lines


def highlight_lines(report: StrategyReport, max_items: int = MAX_HIGHLIGHTS) -> List[str]:
    """One line per market that reached a skip or qualify verdict."""
    lines: List[str] = []
    pending: dict[str, dict] = {}
    for event in report.events:
        if event.kind is EventKind.EVALUATE:
            pending[event.ticker] = event.details
            continue
        if event.kind not in (EventKind.SKIP, EventKind.QUALIFY):
            continue
        details = pending.pop(event.ticker, None)
        if details is None:
            continue

        parts: List[str] = []
        if details.get("yes_ask") is not None and details.get("no_ask") is not None:
            parts.append(f"YES {details['yes_ask']} / NO {details['no_ask']}")
        if details.get("seconds_to_close") is not None:
            parts.append(format_ttl(details["seconds_to_close"]))
        info = " | ".join(parts)
        title = details.get("title") or event.ticker
        if info:
            lines.append(f"- *{title}* ({event.ticker}) | {info} | *{event.message}*")
        else:
            lines.append(f"- *{title}* ({event.ticker}) | *{event.message}*")
        if len(lines) >= max_items:
            break
    return lines


@dataclass(frozen=True)
class RunSummary:
    dry_run: bool
    report: Optional[StrategyReport] = None
    error: Optional[BaseException] = None
    order_ids: tuple[str, ...] = ()
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def mode(self) -> str:
        return "DRY_RUN" if self.dry_run else "LIVE"

    @property
    def ok(self) -> bool:
        return self.error is None

    def render(self) -> str:
        text = f"*Kalshi 15m bot run* `{self.mode}` `{self.finished_at.isoformat()}`"
        if self.report is not None:
            text += f"\nOpportunities: {len(self.report.decisions)}"
        if self.order_ids:
            text += f"\nOrders placed: {len(self.order_ids)}"
        if self.error is not None:
            text += "\nResult: ERROR"
            text += "\n\n*Error Details*"
            for line in error_lines(self.error):
                text += f"\n- {line}"
        else:
            text += "\nResult: OK"
        if self.report is not None:
            highlights = highlight_lines(self.report)
            if highlights:
                text += "\n\n*Highlights*\n" + "\n".join(highlights)
        return text


def post_slack_summary(
    webhook_url: str,
    text: str,
    timeout_seconds: float = 10.0,
    transport: httpx.BaseTransport | None = None,
) -> None:
    if not webhook_url.strip():
        return
    with httpx.Client(timeout=timeout_seconds, transport=transport) as client:
        response = client.post(webhook_url, json={"text": text})
    if not response.is_success:
        raise SlackPostError(f"slack webhook failed: {response.status_code} - {response.text}")
    LOGGER.debug("slack summary posted (%d chars)", len(text))
