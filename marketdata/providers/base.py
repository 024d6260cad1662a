from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class ProviderPrice:
    symbol: str
    price: Decimal
    change: Decimal | None = None
    percent_change: Decimal | None = None


class QuoteProvider:
    provider_name: str

    def fetch_quote(self, symbol: str) -> ProviderPrice | None:
        """
        Fetch the latest available price for one symbol.

        Returns None when the provider answered but had no usable price; transport
        errors propagate so the caller can decide on a fallback.
        """
        raise NotImplementedError
