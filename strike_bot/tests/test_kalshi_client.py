"""Tests for the Kalshi REST client against a mocked transport."""

from __future__ import annotations

import asyncio
import base64
import json
from dataclasses import replace
from typing import Any, Callable

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from strike_bot.config import BotSettings
from strike_bot.exchanges.kalshi import (
    KalshiApiError,
    KalshiClient,
    canonical_frequency,
    is_target_event,
    load_private_key,
    normalize_pem,
)
from strike_bot.models import OrderRequest, Side

_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _pem(fmt: serialization.PrivateFormat) -> str:
    return _KEY.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=fmt,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


def _market_payload(ticker: str, **extra: Any) -> dict[str, Any]:
    payload = {
        "ticker": ticker,
        "title": "BTC above $105,000 in 15 min",
        "close_time": "2026-02-14T15:00:00Z",
        "yes_ask_dollars": "0.4000",
        "no_ask_dollars": "0.5500",
        "status": "active",
    }
    payload.update(extra)
    return payload


def _client(
    handler: Callable[[httpx.Request], httpx.Response],
    **overrides: Any,
) -> KalshiClient:
    settings = replace(BotSettings(api_key="key-id"), **overrides)
    return KalshiClient(settings, transport=httpx.MockTransport(handler), private_key=_KEY)


def _run(coro):
    return asyncio.run(coro)


class TestPem:
    def test_escaped_single_line(self) -> None:
        pem = _pem(serialization.PrivateFormat.PKCS8)
        escaped = pem.strip().replace("\n", "\\n")
        assert normalize_pem(escaped) == pem.strip()

    def test_rewraps_flattened_body(self) -> None:
        pem = _pem(serialization.PrivateFormat.TraditionalOpenSSL)
        flattened = pem.replace("\n", " ")
        assert normalize_pem(flattened) == pem.strip()

    @pytest.mark.parametrize(
        "fmt",
        [serialization.PrivateFormat.PKCS8, serialization.PrivateFormat.TraditionalOpenSSL],
    )
    def test_load_from_settings(self, fmt: serialization.PrivateFormat) -> None:
        settings = BotSettings(api_key="k", private_key_pem=_pem(fmt).replace("\n", "\\n"))
        key = load_private_key(settings)
        assert key.key_size == 2048

    def test_load_from_path(self, tmp_path) -> None:
        path = tmp_path / "kalshi.pem"
        path.write_text(_pem(serialization.PrivateFormat.PKCS8), encoding="utf-8")
        key = load_private_key(BotSettings(api_key="k", private_key_path=str(path)))
        assert key.key_size == 2048

    def test_missing_key(self) -> None:
        with pytest.raises(ValueError, match="missing"):
            load_private_key(BotSettings(api_key="k"))

    def test_garbage_key(self) -> None:
        with pytest.raises(ValueError, match="failed to parse KALSHI_PRIVATE_KEY_PEM"):
            load_private_key(BotSettings(api_key="k", private_key_pem="not a key"))


class TestHelpers:
    @pytest.mark.parametrize("raw", ["15m", "15 min", "fifteen_min", "15-minutes", " 15MIN "])
    def test_canonical_fifteen(self, raw: str) -> None:
        assert canonical_frequency(raw) == "fifteen_min"

    def test_canonical_other(self) -> None:
        assert canonical_frequency("Hourly") == "hourly"
        assert canonical_frequency("  ") == ""

    def test_target_event(self) -> None:
        assert is_target_event("kxbtc15m-26feb141500", ["KXBTC15M"])
        assert not is_target_event("KXBTCD-26FEB14", ["KXBTC15M"])
        assert not is_target_event("KXBTC15M-1", [""])


class TestSigning:
    def test_headers_verify_with_public_key(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"exchange_active": True, "trading_active": True})

        client = _client(handler)
        status = _run(client.exchange_status())
        assert status is not None and status.trading_active

        request = seen[0]
        assert request.url.path == "/trade-api/v2/exchange/status"
        assert request.headers["KALSHI-ACCESS-KEY"] == "key-id"
        ts = request.headers["KALSHI-ACCESS-TIMESTAMP"]
        signature = base64.b64decode(request.headers["KALSHI-ACCESS-SIGNATURE"])
        _KEY.public_key().verify(
            signature,
            f"{ts}GET/trade-api/v2/exchange/status".encode("utf-8"),
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.DIGEST_LENGTH),
            hashes.SHA256(),
        )

    def test_inactive_status_with_resume_time(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "exchange_active": True,
                "trading_active": False,
                "exchange_estimated_resume_time": "2026-02-15T13:00:00Z",
            })

        status = _run(_client(handler).exchange_status())
        assert status is not None
        assert not status.trading_active
        assert status.exchange_estimated_resume_time.hour == 13


class TestListMarkets:
    def test_all_markets_paginates(self) -> None:
        calls: list[dict[str, str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            params = dict(request.url.params)
            calls.append(params)
            if "cursor" not in params:
                return httpx.Response(200, json={"markets": [_market_payload("M1")], "cursor": "abc"})
            return httpx.Response(200, json={"markets": [_market_payload("M2")], "cursor": ""})

        client = _client(handler, discover_btc_events=False)
        markets = _run(client.list_markets())
        assert [m.ticker for m in markets] == ["M1", "M2"]
        assert calls[0]["status"] == "open"
        assert calls[0]["limit"] == "1000"
        assert calls[1]["cursor"] == "abc"

    def test_event_discovery_filters_and_nests(self) -> None:
        seen_params: list[dict[str, str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/trade-api/v2/events"
            seen_params.append(dict(request.url.params))
            return httpx.Response(200, json={"events": [
                {
                    "event_ticker": "KXBTC15M-26FEB141500",
                    "title": "Bitcoin price",
                    "category": "Crypto",
                    "markets": [_market_payload("KXBTC15M-26FEB141500-T105000")],
                },
                {
                    "event_ticker": "KXFED-26MAR",
                    "title": "Fed decision",
                    "category": "Economics",
                    "markets": [_market_payload("KXFED-26MAR-T4")],
                },
            ]})

        client = _client(handler, event_series_tickers=["KXBTC15M"], min_close_ts=1_771_000_000)
        markets = _run(client.list_markets())
        assert [m.ticker for m in markets] == ["KXBTC15M-26FEB141500-T105000"]
        assert markets[0].event_ticker == "KXBTC15M-26FEB141500"
        assert seen_params[0]["series_ticker"] == "KXBTC15M"
        assert seen_params[0]["with_nested_markets"] == "true"
        assert seen_params[0]["min_close_ts"] == "1771000000"

    def test_event_discovery_falls_back_to_all_markets(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/events"):
                return httpx.Response(200, json={"events": []})
            return httpx.Response(200, json={"markets": [_market_payload("M1")]})

        markets = _run(_client(handler, event_series_tickers=["KXBTC15M"]).list_markets())
        assert [m.ticker for m in markets] == ["M1"]

    def test_series_discovery(self) -> None:
        market_queries: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/series"):
                assert request.url.params["category"] == "crypto"
                return httpx.Response(200, json={"series": [
                    {"ticker": "KXBTC15M", "frequency": "15 min"},
                    {"ticker": "KXBTCD", "frequency": "daily"},
                    {"ticker": "KXNOFREQ"},
                ]})
            market_queries.append(request.url.params["series_ticker"])
            return httpx.Response(200, json={"markets": [_market_payload("KXBTC15M-1")]})

        client = _client(handler, discover_btc_events=False, discover_series=True)
        markets = _run(client.list_markets())
        assert market_queries == ["KXBTC15M"]
        assert [m.ticker for m in markets] == ["KXBTC15M-1"]

    def test_series_without_match_falls_back(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/series"):
                return httpx.Response(200, json={"market_series": [{"ticker": "KXBTCD", "frequency": "daily"}]})
            assert "series_ticker" not in request.url.params
            return httpx.Response(200, json={"markets": [_market_payload("ALL-1")]})

        client = _client(handler, discover_btc_events=False, discover_series=True)
        assert [m.ticker for m in _run(client.list_markets())] == ["ALL-1"]

    def test_malformed_market_skipped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"markets": [
                _market_payload("GOOD"),
                _market_payload("BAD", close_time=None),
                "junk",
            ]})

        markets = _run(_client(handler, discover_btc_events=False).list_markets())
        assert [m.ticker for m in markets] == ["GOOD"]

    def test_cent_prices_converted(self) -> None:
        payload = _market_payload("CENTS")
        del payload["yes_ask_dollars"]
        del payload["no_ask_dollars"]
        payload.update(yes_ask=42, no_ask=57)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"markets": [payload]})

        markets = _run(_client(handler, discover_btc_events=False).list_markets())
        assert markets[0].yes_ask == "0.4200"
        assert markets[0].no_price == pytest.approx(0.57)

    def test_http_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="maintenance")

        with pytest.raises(KalshiApiError) as exc_info:
            _run(_client(handler, discover_btc_events=False).list_markets())
        assert exc_info.value.status_code == 503
        assert "maintenance" in str(exc_info.value)


class TestPlaceOrder:
    def test_yes_limit_order_body(self) -> None:
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path == "/trade-api/v2/portfolio/orders"
            bodies.append(request.content)
            return httpx.Response(201, json={"order": {"order_id": "ord-1"}})

        client = _client(handler, time_in_force="immediate_or_cancel")
        response = _run(client.place_order(OrderRequest("KXBTC15M-1", Side.YES, 0.95, 2)))
        assert response.order_id == "ord-1"

        body = json.loads(bodies[0])
        assert body == {
            "ticker": "KXBTC15M-1",
            "side": "yes",
            "action": "buy",
            "count": 2,
            "type": "limit",
            "time_in_force": "immediate_or_cancel",
            "yes_price_dollars": "0.9500",
        }

    def test_no_side_price_field(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert b'"no_price_dollars":"0.1000"' in request.content.replace(b" ", b"")
            return httpx.Response(200, json={"order_id": "top-level"})

        response = _run(_client(handler).place_order(OrderRequest("T", Side.NO, 0.1, 1)))
        assert response.order_id == "top-level"

    def test_missing_order_id(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"order": {}})

        with pytest.raises(KalshiApiError, match="missing order_id"):
            _run(_client(handler).place_order(OrderRequest("T", Side.YES, 0.5, 1)))


class TestResponseDecoding:
    def test_non_json_success_body_raises_api_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>gateway</html>")

        with pytest.raises(KalshiApiError, match="exchange status failed: invalid JSON body"):
            _run(_client(handler).exchange_status())
