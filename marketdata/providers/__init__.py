from .base import ProviderPrice, QuoteProvider
from .coingecko import CoinGeckoProvider
from .finnhub import FinnhubProvider

__all__ = ["CoinGeckoProvider", "FinnhubProvider", "ProviderPrice", "QuoteProvider"]
