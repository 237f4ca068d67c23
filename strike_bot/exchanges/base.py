from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone

from strike_bot.models import ExchangeStatus, Market, OrderRequest, OrderResponse


class ExchangeClient(ABC):
    venue: str

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    @abstractmethod
    async def list_markets(self) -> list[Market]:
        raise NotImplementedError

    @abstractmethod
    async def place_order(self, order: OrderRequest) -> OrderResponse:
        raise NotImplementedError

    async def exchange_status(self) -> ExchangeStatus | None:
        """Exchange/trading availability. Returns None if not supported."""
        return None

    async def aclose(self) -> None:
        return None
