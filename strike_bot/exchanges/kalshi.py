from __future__ import annotations

import base64
import logging
import time
from pathlib import Path
from typing import Any, AsyncIterator, Iterable

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from strike_bot.config import BotSettings
from strike_bot.crypto.classifier import is_crypto_text
from strike_bot.models import ExchangeStatus, Market, OrderRequest, OrderResponse, Side

from .base import ExchangeClient

LOGGER = logging.getLogger(__name__)

_PAGE_LIMIT = 1000
_PEM_LABELS = ("RSA PRIVATE KEY", "PRIVATE KEY")
_BASE64_CHARS = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/=")


class KalshiApiError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(f"{message}: {status_code} - {body}" if status_code else message)
        self.status_code = status_code
        self.body = body


# ── PEM handling ───────────────────────────────────────────────────


def _extract_pem_block(raw: str, label: str) -> str | None:
    begin = f"-----BEGIN {label}-----"
    end = f"-----END {label}-----"
    start = raw.find(begin)
    stop = raw.find(end)
    if start < 0 or stop < 0 or stop < start:
        return None
    return raw[start:stop + len(end)]


def _rewrap_pem_block(block: str, label: str) -> str:
    begin = f"-----BEGIN {label}-----"
    end = f"-----END {label}-----"
    body = block.replace(begin, "").replace(end, "")
    data = "".join(ch for ch in body if ch in _BASE64_CHARS)
    lines = [data[i:i + 64] for i in range(0, len(data), 64)]
    return "\n".join([begin, *lines, end])


def normalize_pem(raw: str) -> str:
    """Accept PEM text pasted into an env var (escaped newlines, single line, CRLF)."""
    pem = raw.strip().replace("\\n", "\n").replace("\r", "")
    for label in _PEM_LABELS:
        block = _extract_pem_block(pem, label)
        if block is not None:
            return _rewrap_pem_block(block, label)
    return pem


def load_private_key(settings: BotSettings):
    if settings.private_key_pem:
        pem_text = normalize_pem(settings.private_key_pem)
        source = "KALSHI_PRIVATE_KEY_PEM"
    elif settings.private_key_path:
        pem_text = normalize_pem(Path(settings.private_key_path).read_text(encoding="utf-8"))
        source = "KALSHI_PRIVATE_KEY_PATH"
    else:
        raise ValueError("missing KALSHI_PRIVATE_KEY_PEM or KALSHI_PRIVATE_KEY_PATH")

    try:
        return serialization.load_pem_private_key(pem_text.encode("utf-8"), password=None)
    except ValueError as exc:
        raise ValueError(f"failed to parse {source} (PKCS#1 or PKCS#8): {exc}") from exc


# ── discovery helpers ──────────────────────────────────────────────


def canonical_frequency(value: str) -> str:
    v = value.strip().lower()
    if not v:
        return ""
    v = v.replace("-", "_").replace(" ", "_")
    if v in {"15m", "15min", "15mins", "15_min", "15_mins", "15minutes", "15_minutes",
             "fifteenmin", "fifteen_mins"}:
        return "fifteen_min"
    return v


def is_target_event(event_ticker: str, prefixes: Iterable[str]) -> bool:
    ticker = event_ticker.upper()
    return any(prefix and ticker.startswith(prefix) for prefix in prefixes)


def _next_cursor(payload: dict[str, Any]) -> str | None:
    cursor = payload.get("cursor") or payload.get("next_cursor")
    return str(cursor) if cursor else None


class KalshiClient(ExchangeClient):
    """Signed REST client for the Kalshi trade API.

    Parameters
    ----------
    settings:
        Bot settings; credentials, discovery options and order options.
    timeout_seconds:
        Per-request timeout.
    transport:
        Optional httpx transport, mostly for tests.
    """

    venue = "kalshi"

    def __init__(
        self,
        settings: BotSettings,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        private_key: Any = None,
    ) -> None:
        self._settings = settings
        self._private_key = private_key if private_key is not None else load_private_key(settings)
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=timeout_seconds,
            transport=transport,
        )

    # ── ExchangeClient ─────────────────────────────────────────────

    async def list_markets(self) -> list[Market]:
        if self._settings.discover_btc_events:
            markets = await self.list_event_markets()
            if markets:
                return markets
            LOGGER.warning("event discovery returned no markets; falling back to full market list")
            return await self.list_all_markets()
        if self._settings.discover_series:
            return await self.list_series_markets()
        return await self.list_all_markets()

    async def place_order(self, order: OrderRequest) -> OrderResponse:
        body: dict[str, Any] = {
            "ticker": order.ticker,
            "side": order.side.value,
            "action": "buy",
            "count": order.quantity,
            "type": "limit",
            "time_in_force": self._settings.time_in_force,
        }
        if order.side is Side.YES:
            body["yes_price_dollars"] = f"{order.price:.4f}"
        else:
            body["no_price_dollars"] = f"{order.price:.4f}"

        payload = await self._request("POST", "/portfolio/orders", json=body, error="create order failed")
        nested = payload.get("order")
        if isinstance(nested, dict) and nested.get("order_id"):
            return OrderResponse(order_id=str(nested["order_id"]))
        if payload.get("order_id"):
            return OrderResponse(order_id=str(payload["order_id"]))
        raise KalshiApiError("missing order_id in create order response")

    async def exchange_status(self) -> ExchangeStatus | None:
        LOGGER.info("checking exchange status")
        payload = await self._request("GET", "/exchange/status", error="exchange status failed")
        return ExchangeStatus.from_api(payload)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── discovery strategies ───────────────────────────────────────

    async def list_all_markets(self) -> list[Market]:
        markets: list[Market] = []
        params = {"status": "open", "limit": _PAGE_LIMIT}
        async for page in self._paginate("/markets", params, error="get markets failed"):
            markets.extend(self._parse_markets(page.get("markets")))
        LOGGER.info("fetched %d markets total", len(markets))
        return markets

    async def list_event_markets(self) -> list[Market]:
        markets: list[Market] = []
        assets = self._settings.crypto_assets
        series_list = self._settings.event_series_tickers or [""]

        for series_ticker in series_list:
            params: dict[str, Any] = {
                "status": "open",
                "with_nested_markets": "true",
                "limit": self._settings.events_limit,
            }
            if series_ticker:
                params["series_ticker"] = series_ticker
            if self._settings.min_close_ts is not None:
                params["min_close_ts"] = self._settings.min_close_ts

            async for page in self._paginate("/events", params, error="get events failed"):
                for event in page.get("events") or []:
                    if not isinstance(event, dict):
                        continue
                    event_ticker = str(event.get("event_ticker") or "")
                    texts = (
                        str(event.get("title") or ""),
                        str(event.get("subtitle") or ""),
                        str(event.get("category") or ""),
                        event_ticker,
                    )
                    if not (
                        is_target_event(event_ticker, self._settings.event_ticker_prefixes)
                        or any(is_crypto_text(text, assets) for text in texts)
                    ):
                        continue
                    LOGGER.info(
                        "crypto event: %s [%s] %s",
                        event_ticker, event.get("category") or "uncategorized", event.get("title"),
                    )
                    markets.extend(self._parse_markets(event.get("markets"), event_ticker=event_ticker))

        LOGGER.info("fetched %d markets via events", len(markets))
        return markets

    async def list_series_markets(self) -> list[Market]:
        category = self._settings.series_category.strip()
        frequency = canonical_frequency(self._settings.series_frequency)

        series = await self.list_series(category)
        if not series:
            LOGGER.warning("series list empty for category=%r; falling back to full market list", category)
            return await self.list_all_markets()

        matched = [
            entry for entry in series
            if entry.get("frequency")
            and (not frequency or canonical_frequency(str(entry["frequency"])) == frequency)
        ]
        if not matched:
            LOGGER.warning(
                "no series matched category=%r frequency=%r (%d total); falling back to full market list",
                category, frequency, len(series),
            )
            return await self.list_all_markets()

        LOGGER.info("matched %d series for category=%r frequency=%r", len(matched), category, frequency)
        markets: list[Market] = []
        for entry in matched:
            series_ticker = str(entry.get("ticker") or "")
            params = {"status": "open", "series_ticker": series_ticker, "limit": _PAGE_LIMIT}
            async for page in self._paginate("/markets", params, error="get markets failed"):
                markets.extend(self._parse_markets(page.get("markets")))
        if not markets:
            LOGGER.warning("series discovery returned no markets; falling back to full market list")
            return await self.list_all_markets()
        LOGGER.info("fetched %d markets via series discovery", len(markets))
        return markets

    async def list_series(self, category: str) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": _PAGE_LIMIT}
        if category:
            params["category"] = category
        series: list[dict[str, Any]] = []
        async for page in self._paginate("/series", params, error="get series failed"):
            items = page.get("series") or page.get("market_series")
            if not isinstance(items, list):
                LOGGER.warning("series response missing array; treating as empty page")
                continue
            series.extend(item for item in items if isinstance(item, dict))
        return series

    # ── transport ──────────────────────────────────────────────────

    async def _paginate(
        self,
        path: str,
        params: dict[str, Any],
        error: str,
    ) -> AsyncIterator[dict[str, Any]]:
        cursor: str | None = None
        page = 0
        while True:
            page += 1
            query = dict(params)
            if cursor:
                query["cursor"] = cursor
            LOGGER.debug("GET %s page %d (cursor=%s)", path, page, cursor or "none")
            payload = await self._request("GET", path, params=query, error=error)
            yield payload
            cursor = _next_cursor(payload)
            if not cursor:
                break

    async def _request(self, method: str, path: str, error: str, **kwargs: Any) -> dict[str, Any]:
        full_path = f"{self._settings.api_prefix}{path}"
        headers = self._auth_headers(method, full_path)
        try:
            response = await self._client.request(method, full_path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise KalshiApiError(f"{error}: {exc}") from exc
        if response.status_code >= 400:
            raise KalshiApiError(error, response.status_code, response.text)
        try:
            payload = response.json()
        except ValueError as exc:
            raise KalshiApiError(f"{error}: invalid JSON body") from exc
        return payload if isinstance(payload, dict) else {"data": payload}

    def _auth_headers(self, method: str, full_path: str) -> dict[str, str]:
        ts_ms = str(int(time.time() * 1000))
        signing_path = full_path.split("?", 1)[0]
        message = f"{ts_ms}{method.upper()}{signing_path}".encode("utf-8")
        signature = self._private_key.sign(
            message,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.DIGEST_LENGTH),
            hashes.SHA256(),
        )
        return {
            "KALSHI-ACCESS-KEY": self._settings.api_key,
            "KALSHI-ACCESS-TIMESTAMP": ts_ms,
            "KALSHI-ACCESS-SIGNATURE": base64.b64encode(signature).decode("utf-8"),
            "Content-Type": "application/json",
        }

    @staticmethod
    def _parse_markets(raw: Any, event_ticker: str | None = None) -> list[Market]:
        if not isinstance(raw, list):
            return []
        markets: list[Market] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                markets.append(Market.from_api(item, event_ticker=event_ticker))
            except ValueError as exc:
                LOGGER.warning("skipping malformed market %s: %s", item.get("ticker"), exc)
        return markets
