"""Tests for run summary rendering and Slack delivery."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from strike_bot.config import BotSettings
from strike_bot.models import Market
from strike_bot.strategy import pick_opportunities
from strike_bot.summary import (
    RunSummary,
    SlackPostError,
    error_lines,
    format_ttl,
    highlight_lines,
    post_slack_summary,
)

NOW = datetime(2026, 2, 14, 14, 45, tzinfo=timezone.utc)


def _market(ticker: str, ttl: int, yes: str, no: str) -> Market:
    return Market(
        ticker=ticker,
        title=f"BTC above $105,000 in 15 min ({ticker})",
        close_time=NOW + timedelta(seconds=ttl),
        yes_ask=yes,
        no_ask=no,
    )


class TestFormatting:
    def test_format_ttl(self) -> None:
        assert format_ttl(125) == "TTL 2m05s"
        assert format_ttl(0) == "TTL 0m00s"

    def test_format_ttl_clamps_negative(self) -> None:
        assert format_ttl(-30) == "TTL 0m00s"

    def test_error_chain(self) -> None:
        try:
            try:
                raise ConnectionError("socket closed")
            except ConnectionError as exc:
                raise RuntimeError("get markets failed") from exc
        except RuntimeError as err:
            lines = error_lines(err)
        assert lines == ["Error: get markets failed", "  0: socket closed"]

    def test_error_chain_capped(self) -> None:
        err: BaseException = ValueError("root")
        for i in range(10):
            wrapper = RuntimeError(f"layer {i}")
            wrapper.__cause__ = err
            err = wrapper
        lines = error_lines(err, max_lines=3)
        assert len(lines) == 4
        assert lines[-1] == "..."


class TestHighlights:
    def test_one_line_per_verdict(self) -> None:
        report = pick_opportunities(
            BotSettings(),
            NOW,
            [_market("A", 125, "0.40", "0.55"), _market("B", -5, "0.40", "0.55")],
        )
        lines = highlight_lines(report)
        assert len(lines) == 2
        assert lines[0].startswith("- *BTC above $105,000 in 15 min (A)* (A) | YES 0.40 / NO 0.55 | TTL 2m05s | *slow:")
        assert "TTL 0m00s" in lines[1]
        assert lines[1].endswith("*market already closed (-5s)*")

    def test_capped(self) -> None:
        markets = [_market(f"M{i}", 300, "0.40", "0.55") for i in range(10)]
        report = pick_opportunities(BotSettings(), NOW, markets)
        assert len(highlight_lines(report)) == 6


class TestRunSummary:
    def test_ok_render(self) -> None:
        report = pick_opportunities(BotSettings(), NOW, [_market("A", 300, "0.40", "0.55")])
        text = RunSummary(dry_run=True, report=report, finished_at=NOW).render()
        assert text.startswith("*Kalshi 15m bot run* `DRY_RUN` `2026-02-14T14:45:00+00:00`")
        assert "\nOpportunities: 1" in text
        assert "\nResult: OK" in text
        assert "*Highlights*" in text

    def test_error_render(self) -> None:
        summary = RunSummary(dry_run=False, error=RuntimeError("KALSHI_API_KEY not set"))
        text = summary.render()
        assert summary.mode == "LIVE"
        assert not summary.ok
        assert "Result: ERROR" in text
        assert "- Error: KALSHI_API_KEY not set" in text
        assert "Opportunities" not in text

    def test_orders_placed_line(self) -> None:
        text = RunSummary(dry_run=False, order_ids=("ord-1", "ord-2")).render()
        assert "\nOrders placed: 2" in text
        assert "Orders placed" not in RunSummary(dry_run=True).render()


class TestPostSlack:
    def test_posts_text_payload(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, text="ok")

        post_slack_summary("https://hooks.slack.test/T/B/X", "hello", transport=httpx.MockTransport(handler))
        assert json.loads(captured[0].content) == {"text": "hello"}

    def test_blank_url_is_noop(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("should not be called")

        post_slack_summary("   ", "hello", transport=httpx.MockTransport(handler))

    def test_error_status_raises(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(404, text="no_service"))
        with pytest.raises(SlackPostError, match="404 - no_service"):
            post_slack_summary("https://hooks.slack.test/T/B/X", "hello", transport=transport)

    def test_redirect_is_not_success(self) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(302, headers={"Location": "https://slack.test/moved"}),
        )
        with pytest.raises(SlackPostError, match="302"):
            post_slack_summary("https://hooks.slack.test/T/B/X", "hello", transport=transport)
