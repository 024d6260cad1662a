"""
Reference tables of the assets players can put in a portfolio.

Each entry carries its asset class, so callers resolve STOCK vs CRYPTO once
when an asset enters a portfolio instead of re-checking list membership.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .models import AssetClass


@dataclass(frozen=True)
class CatalogAsset:
    symbol: str
    name: str
    asset_class: str
    provider_id: str = ""


POPULAR_STOCKS: tuple[CatalogAsset, ...] = (
    CatalogAsset("AAPL", "Apple", AssetClass.STOCK),
    CatalogAsset("MSFT", "Microsoft", AssetClass.STOCK),
    CatalogAsset("GOOGL", "Google", AssetClass.STOCK),
    CatalogAsset("AMZN", "Amazon", AssetClass.STOCK),
    CatalogAsset("NVDA", "NVIDIA", AssetClass.STOCK),
    CatalogAsset("TSLA", "Tesla", AssetClass.STOCK),
    CatalogAsset("META", "Meta", AssetClass.STOCK),
    CatalogAsset("BRK.B", "Berkshire Hathaway", AssetClass.STOCK),
    CatalogAsset("V", "Visa", AssetClass.STOCK),
    CatalogAsset("JPM", "JPMorgan Chase", AssetClass.STOCK),
    CatalogAsset("WMT", "Walmart", AssetClass.STOCK),
    CatalogAsset("MA", "Mastercard", AssetClass.STOCK),
    CatalogAsset("PG", "Procter & Gamble", AssetClass.STOCK),
    CatalogAsset("UNH", "UnitedHealth", AssetClass.STOCK),
    CatalogAsset("HD", "Home Depot", AssetClass.STOCK),
)

POPULAR_CRYPTO: tuple[CatalogAsset, ...] = (
    CatalogAsset("BTC", "Bitcoin", AssetClass.CRYPTO, "bitcoin"),
    CatalogAsset("ETH", "Ethereum", AssetClass.CRYPTO, "ethereum"),
    CatalogAsset("BNB", "BNB", AssetClass.CRYPTO, "binancecoin"),
    CatalogAsset("SOL", "Solana", AssetClass.CRYPTO, "solana"),
    CatalogAsset("XRP", "XRP", AssetClass.CRYPTO, "ripple"),
    CatalogAsset("ADA", "Cardano", AssetClass.CRYPTO, "cardano"),
    CatalogAsset("DOGE", "Dogecoin", AssetClass.CRYPTO, "dogecoin"),
    CatalogAsset("AVAX", "Avalanche", AssetClass.CRYPTO, "avalanche-2"),
    CatalogAsset("DOT", "Polkadot", AssetClass.CRYPTO, "polkadot"),
    CatalogAsset("MATIC", "Polygon", AssetClass.CRYPTO, "matic-network"),
    CatalogAsset("LINK", "Chainlink", AssetClass.CRYPTO, "chainlink"),
    CatalogAsset("UNI", "Uniswap", AssetClass.CRYPTO, "uniswap"),
    CatalogAsset("LTC", "Litecoin", AssetClass.CRYPTO, "litecoin"),
    CatalogAsset("XLM", "Stellar", AssetClass.CRYPTO, "stellar"),
    CatalogAsset("XMR", "Monero", AssetClass.CRYPTO, "monero"),
    CatalogAsset("ALGO", "Algorand", AssetClass.CRYPTO, "algorand"),
    CatalogAsset("ATOM", "Cosmos", AssetClass.CRYPTO, "cosmos"),
    CatalogAsset("NEAR", "NEAR Protocol", AssetClass.CRYPTO, "near"),
)

FALLBACK_STOCK_PRICE = Decimal("100")

FALLBACK_CRYPTO_PRICES: dict[str, Decimal] = {
    "bitcoin": Decimal("91000"),
    "ethereum": Decimal("3100"),
    "binancecoin": Decimal("620"),
    "solana": Decimal("235"),
    "ripple": Decimal("1.10"),
    "cardano": Decimal("0.98"),
    "dogecoin": Decimal("0.38"),
    "avalanche-2": Decimal("42"),
    "polkadot": Decimal("7.5"),
    "matic-network": Decimal("0.48"),
    "chainlink": Decimal("14.5"),
    "uniswap": Decimal("9.2"),
    "litecoin": Decimal("88"),
    "stellar": Decimal("0.42"),
    "monero": Decimal("158"),
    "algorand": Decimal("0.35"),
    "cosmos": Decimal("6.8"),
    "near": Decimal("5.6"),
}

_BY_SYMBOL: dict[str, CatalogAsset] = {a.symbol: a for a in POPULAR_STOCKS + POPULAR_CRYPTO}


def get_catalog_asset(symbol: str) -> CatalogAsset | None:
    return _BY_SYMBOL.get((symbol or "").strip().upper())


def asset_class_for_symbol(symbol: str) -> str:
    """Crypto if the symbol is in the crypto table, otherwise stock."""
    asset = get_catalog_asset(symbol)
    if asset is not None and asset.asset_class == AssetClass.CRYPTO:
        return AssetClass.CRYPTO
    return AssetClass.STOCK


def fallback_price(symbol: str) -> Decimal:
    asset = get_catalog_asset(symbol)
    if asset is not None and asset.asset_class == AssetClass.CRYPTO:
        return FALLBACK_CRYPTO_PRICES.get(asset.provider_id, FALLBACK_STOCK_PRICE)
    return FALLBACK_STOCK_PRICE


def list_catalog(*, asset_class: str | None = None, term: str = "") -> list[CatalogAsset]:
    if asset_class == AssetClass.CRYPTO:
        assets = list(POPULAR_CRYPTO)
    elif asset_class == AssetClass.STOCK:
        assets = list(POPULAR_STOCKS)
    else:
        assets = list(POPULAR_STOCKS + POPULAR_CRYPTO)

    term = (term or "").strip().lower()
    if term:
        assets = [a for a in assets if term in a.symbol.lower() or term in a.name.lower()]
    return assets
