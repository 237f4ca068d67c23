from __future__ import annotations

import logging
from typing import Sequence

from strike_bot.models import Market, OrderRequest, OrderResponse

from .base import ExchangeClient

LOGGER = logging.getLogger(__name__)


class MockClient(ExchangeClient):
    """Offline client for dry runs without credentials."""

    venue = "mock"

    def __init__(self, markets: Sequence[Market] | None = None) -> None:
        self._markets = list(markets or [])
        self.placed: list[OrderRequest] = []

    async def list_markets(self) -> list[Market]:
        return list(self._markets)

    async def place_order(self, order: OrderRequest) -> OrderResponse:
        self.placed.append(order)
        order_id = f"dry-{order.ticker}-{order.side.value}-{order.price:.4f}"
        LOGGER.debug("mock order %s", order_id)
        return OrderResponse(order_id=order_id)
