from __future__ import annotations

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import requests
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from marketdata.catalog import (
    POPULAR_CRYPTO,
    POPULAR_STOCKS,
    asset_class_for_symbol,
    fallback_price,
    get_catalog_asset,
)
from marketdata.models import AssetClass, Instrument, Quote
from marketdata.providers import CoinGeckoProvider, FinnhubProvider, ProviderPrice, QuoteProvider

logger = logging.getLogger(__name__)

_SYMBOL_RE = re.compile(r"^[A-Z0-9][A-Z0-9.\-]{0,15}$")


def normalize_symbol(raw: str) -> str:
    sym = (raw or "").strip().upper()
    if not sym or not _SYMBOL_RE.match(sym):
        raise ValueError("Invalid symbol format.")
    return sym


def get_provider(asset_class: str) -> QuoteProvider:
    if asset_class == AssetClass.CRYPTO:
        return CoinGeckoProvider()
    return FinnhubProvider()


def fetch_quote(symbol: str) -> ProviderPrice | None:
    """
    Fetch one quote from the provider matching the symbol's asset class.
    Returns None on any provider failure; the failure is logged, never raised.
    """
    try:
        provider = get_provider(asset_class_for_symbol(symbol))
        return provider.fetch_quote(symbol)
    except (requests.RequestException, RuntimeError, ValueError) as e:
        logger.warning("Price lookup failed for %s: %s", symbol, e)
        return None


def _fetch_batch(symbols: list[str]) -> dict[str, ProviderPrice]:
    with ThreadPoolExecutor(max_workers=max(1, len(symbols))) as pool:
        quotes = list(pool.map(fetch_quote, symbols))
    return {sym: q for sym, q in zip(symbols, quotes) if q is not None}


def fetch_provider_prices(symbols: list[str]) -> dict[str, ProviderPrice]:
    """
    Fetch quotes for many symbols in batches of PRICE_FETCH_BATCH_SIZE parallel
    requests, pausing PRICE_FETCH_BATCH_DELAY seconds between batches.
    Only successfully fetched symbols are returned.
    """
    unique = list(dict.fromkeys(s.strip().upper() for s in symbols if s and s.strip()))
    batch_size = max(1, int(getattr(settings, "PRICE_FETCH_BATCH_SIZE", 6)))
    delay = float(getattr(settings, "PRICE_FETCH_BATCH_DELAY", 0.5))

    results: dict[str, ProviderPrice] = {}
    for start in range(0, len(unique), batch_size):
        if start and delay > 0:
            time.sleep(delay)
        results.update(_fetch_batch(unique[start:start + batch_size]))
    return results


def fetch_prices(symbols: list[str], *, fallbacks: dict[str, Decimal] | None = None) -> dict[str, Decimal]:
    """
    Price every symbol, never failing: a symbol the provider could not price
    gets its entry from `fallbacks` (normally the locked-in price), else the
    catalog fallback constant.
    """
    fallbacks = {k.upper(): v for k, v in (fallbacks or {}).items()}
    fetched = fetch_provider_prices(symbols)

    prices: dict[str, Decimal] = {}
    for raw in symbols:
        symbol = raw.strip().upper()
        if not symbol or symbol in prices:
            continue
        quote = fetched.get(symbol)
        if quote is not None:
            prices[symbol] = quote.price
            continue
        fallback = fallbacks.get(symbol)
        if fallback is None or fallback <= 0:
            fallback = fallback_price(symbol)
        logger.warning("Using fallback price %s for %s", fallback, symbol)
        prices[symbol] = fallback
    return prices


def get_or_create_instrument(symbol: str) -> Instrument:
    symbol = normalize_symbol(symbol)
    asset = get_catalog_asset(symbol)
    defaults = {
        "name": asset.name if asset else "",
        "asset_class": asset.asset_class if asset else AssetClass.STOCK,
        "provider_id": asset.provider_id if asset else "",
    }
    inst, _ = Instrument.objects.get_or_create(symbol=symbol, defaults=defaults)
    return inst


def store_quotes(quotes: list[ProviderPrice], *, as_of=None) -> int:
    """Persist fetched quotes into the cache; returns the number stored."""
    as_of = as_of or timezone.now()
    stored = 0
    with transaction.atomic():
        for q in quotes:
            inst = get_or_create_instrument(q.symbol)
            provider = (
                CoinGeckoProvider.provider_name
                if inst.asset_class == AssetClass.CRYPTO
                else FinnhubProvider.provider_name
            )
            Quote.objects.create(
                instrument=inst,
                as_of=as_of,
                price=q.price,
                change=q.change,
                percent_change=q.percent_change,
                provider_name=provider,
            )
            stored += 1
    return stored


def latest_cached_prices(symbols: list[str]) -> dict[str, Decimal]:
    """Most recent cached quote price per symbol; symbols never quoted are omitted."""
    wanted = {s.strip().upper() for s in symbols if s}
    if not wanted:
        return {}
    prices: dict[str, Decimal] = {}
    rows = (
        Quote.objects.filter(instrument__symbol__in=wanted)
        .order_by("instrument_id", "-as_of")
        .values_list("instrument__symbol", "price")
    )
    for symbol, price in rows:
        prices.setdefault(symbol, price)
    return prices


def indicative_price(symbol: str) -> Decimal:
    """Price shown while a portfolio is being built: cached quote, else fallback."""
    symbol = symbol.strip().upper()
    return latest_cached_prices([symbol]).get(symbol) or fallback_price(symbol)


def refresh_catalog_quotes() -> tuple[int, list[str]]:
    """
    Fetch and cache quotes for every catalog asset.
    Returns (stored_count, missing_symbols).
    """
    symbols = [a.symbol for a in POPULAR_STOCKS + POPULAR_CRYPTO]
    fetched = fetch_provider_prices(symbols)
    missing = [s for s in symbols if s not in fetched]
    stored = store_quotes(list(fetched.values()))
    return stored, missing
