from __future__ import annotations

from decimal import Decimal, InvalidOperation

import requests
from django.conf import settings

from marketdata.catalog import get_catalog_asset

from .base import ProviderPrice, QuoteProvider


class CoinGeckoProvider(QuoteProvider):
    """Crypto prices from CoinGecko's `simple/price` endpoint (USD)."""

    provider_name = "COINGECKO"
    url = "https://api.coingecko.com/api/v3/simple/price"

    def __init__(self, api_key: str | None = None, session: requests.Session | None = None):
        # The public endpoint works without a key; a demo key raises the rate limit.
        self.api_key = api_key or getattr(settings, "COINGECKO_API_KEY", "")
        self.session = session or requests.Session()
        self.timeout = getattr(settings, "PRICE_FETCH_TIMEOUT", 10)

    def fetch_quote(self, symbol: str) -> ProviderPrice | None:
        symbol = symbol.strip().upper()
        asset = get_catalog_asset(symbol)
        if asset is None or not asset.provider_id:
            return None
        coin_id = asset.provider_id

        headers = {"x-cg-demo-api-key": self.api_key} if self.api_key else {}
        resp = self.session.get(
            self.url,
            params={"ids": coin_id, "vs_currencies": "usd", "include_24hr_change": "true"},
            headers=headers,
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        row = data.get(coin_id) if isinstance(data, dict) else None
        if not isinstance(row, dict) or row.get("usd") in (None, ""):
            return None
        try:
            price = Decimal(str(row["usd"]))
            change_pct = (
                Decimal(str(row["usd_24h_change"]))
                if row.get("usd_24h_change") is not None
                else None
            )
        except (InvalidOperation, TypeError):
            return None
        if price <= 0:
            return None
        return ProviderPrice(symbol=symbol, price=price, percent_change=change_pct)
