from .base import ExchangeClient
from .kalshi import KalshiApiError, KalshiClient
from .mock import MockClient

__all__ = ["ExchangeClient", "KalshiApiError", "KalshiClient", "MockClient"]
