from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation

import requests
from django.conf import settings

from .base import ProviderPrice, QuoteProvider


def _decimal_or_none(raw) -> Decimal | None:
    if raw in (None, ""):
        return None
    try:
        return Decimal(str(raw))
    except (InvalidOperation, TypeError):
        return None


class FinnhubProvider(QuoteProvider):
    """Stock quotes from Finnhub's `quote` endpoint."""

    provider_name = "FINNHUB"
    url = "https://finnhub.io/api/v1/quote"

    def __init__(self, api_key: str | None = None, session: requests.Session | None = None):
        self.api_key = (
            api_key
            or getattr(settings, "FINNHUB_API_KEY", "")
            or os.environ.get("FINNHUB_API_KEY")
        )
        if not self.api_key:
            raise RuntimeError("Missing FINNHUB_API_KEY")
        self.session = session or requests.Session()
        self.timeout = getattr(settings, "PRICE_FETCH_TIMEOUT", 10)

    def fetch_quote(self, symbol: str) -> ProviderPrice | None:
        """
        Docs: https://finnhub.io/docs/api/quote
        Payload keys: c (current), d (change), dp (percent change).
        """
        symbol = symbol.strip().upper()
        if not symbol:
            return None
        resp = self.session.get(
            self.url,
            params={"symbol": symbol, "token": self.api_key},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            return None
        price = _decimal_or_none(data.get("c"))
        # Finnhub answers unknown symbols with c=0 rather than an error.
        if price is None or price <= 0:
            return None
        return ProviderPrice(
            symbol=symbol,
            price=price,
            change=_decimal_or_none(data.get("d")),
            percent_change=_decimal_or_none(data.get("dp")),
        )
