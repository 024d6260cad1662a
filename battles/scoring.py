"""
Portfolio scoring and rewards.

Everything here is a pure function of its arguments so it can be exercised
without the database: portfolio validation, percentage returns against a
locked cost basis, winner determination and XP. Rank lives with the player
profile in accounts.models.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Protocol

PORTFOLIO_NOTIONAL = Decimal("1000000")
MIN_ASSETS = 7
MAX_ASSETS = 13
MIN_ALLOCATION_PCT = Decimal("7.5")
MAX_ALLOCATION_PCT = Decimal("20")
ALLOCATION_TOLERANCE = Decimal("0.01")

BASE_XP_WIN = 100
BASE_XP_LOSS = 25
MAX_BONUS_XP = 100
XP_PER_MARGIN_POINT = 10

PCT_QUANT = Decimal("0.01")


class HeldAsset(Protocol):
    symbol: str
    price: Decimal
    amount: Decimal


@dataclass(frozen=True)
class PortfolioEntry:
    """An asset a player picked, before it is persisted on a battle."""

    symbol: str
    name: str
    asset_class: str
    percentage: Decimal
    price: Decimal

    @property
    def amount(self) -> Decimal:
        return allocation_amount(self.percentage)


@dataclass(frozen=True)
class BattleOutcome:
    creator_return: Decimal
    opponent_return: Decimal
    margin: Decimal
    creator_won: bool
    is_draw: bool
    creator_xp: int
    opponent_xp: int


def allocation_amount(percentage: Decimal) -> Decimal:
    return (Decimal(percentage) / Decimal("100") * PORTFOLIO_NOTIONAL).quantize(
        PCT_QUANT, rounding=ROUND_HALF_UP
    )


def validate_portfolio(entries: Iterable[PortfolioEntry]) -> None:
    """Raise ValueError describing the first rule the portfolio breaks."""
    entries = list(entries)
    if not (MIN_ASSETS <= len(entries) <= MAX_ASSETS):
        raise ValueError(f"Select between {MIN_ASSETS} and {MAX_ASSETS} assets.")

    symbols = [e.symbol for e in entries]
    if len(set(symbols)) != len(symbols):
        raise ValueError("Each asset can only be added once.")

    if len({e.asset_class for e in entries}) != 1:
        raise ValueError("Cannot mix stocks and crypto in one portfolio.")

    total = Decimal("0")
    for e in entries:
        pct = Decimal(e.percentage)
        if not pct.is_finite() or pct < MIN_ALLOCATION_PCT or pct > MAX_ALLOCATION_PCT:
            raise ValueError(
                f"{e.symbol} allocation must be between {MIN_ALLOCATION_PCT}% and {MAX_ALLOCATION_PCT}%."
            )
        total += pct
    if abs(total - Decimal("100")) >= ALLOCATION_TOLERANCE:
        raise ValueError("Allocations must total 100%.")


def is_portfolio_valid(entries: Iterable[PortfolioEntry]) -> bool:
    try:
        validate_portfolio(entries)
    except ValueError:
        return False
    return True


def portfolio_asset_class(entries: Iterable[PortfolioEntry]) -> str | None:
    classes = {e.asset_class for e in entries}
    return classes.pop() if len(classes) == 1 else None


def calculate_portfolio_return(
    assets: Iterable[HeldAsset],
    current_prices: Mapping[str, Decimal],
    starting_prices: Mapping[str, Decimal] | None = None,
) -> Decimal:
    """
    Percentage return of a portfolio against the fixed notional.

    Cost basis is the locked starting price when one exists, otherwise the
    asset's own price. A symbol missing from `current_prices` is valued at its
    cost basis; an asset with no positive basis is valued at its dollar amount.
    """
    assets = list(assets)
    if not assets:
        return Decimal("0")

    starting_prices = starting_prices or {}
    current_total = Decimal("0")
    for asset in assets:
        amount = Decimal(asset.amount)
        basis = Decimal(starting_prices.get(asset.symbol) or asset.price or 0)
        if basis <= 0:
            current_total += amount
            continue
        current = Decimal(current_prices.get(asset.symbol) or basis)
        current_total += amount / basis * current

    return (current_total - PORTFOLIO_NOTIONAL) / PORTFOLIO_NOTIONAL * Decimal("100")


def asset_return_pct(
    asset: HeldAsset,
    current_prices: Mapping[str, Decimal],
    starting_prices: Mapping[str, Decimal] | None = None,
) -> Decimal:
    """Percentage move of one holding from its cost basis, 2 dp."""
    basis = Decimal((starting_prices or {}).get(asset.symbol) or asset.price or 0)
    if basis <= 0:
        return Decimal("0.00")
    current = Decimal(current_prices.get(asset.symbol) or basis)
    return ((current - basis) / basis * Decimal("100")).quantize(PCT_QUANT, rounding=ROUND_HALF_UP)


def allocation_weight(asset: HeldAsset) -> Decimal:
    return (Decimal(asset.amount) / PORTFOLIO_NOTIONAL * Decimal("100")).quantize(
        PCT_QUANT, rounding=ROUND_HALF_UP
    )


def calculate_xp(won: bool, margin: Decimal) -> int:
    if not won:
        return BASE_XP_LOSS
    bonus = min(Decimal(margin) * XP_PER_MARGIN_POINT, Decimal(MAX_BONUS_XP))
    return math.floor(BASE_XP_WIN + bonus)


def determine_outcome(
    creator_assets: Iterable[HeldAsset],
    opponent_assets: Iterable[HeldAsset],
    current_prices: Mapping[str, Decimal],
    starting_prices: Mapping[str, Decimal] | None = None,
) -> BattleOutcome:
    """
    Score both sides. The strictly greater return wins; equal returns are a
    draw where both players get the participation XP.
    """
    creator_raw = calculate_portfolio_return(creator_assets, current_prices, starting_prices)
    opponent_raw = calculate_portfolio_return(opponent_assets, current_prices, starting_prices)
    margin = abs(creator_raw - opponent_raw).quantize(PCT_QUANT, rounding=ROUND_HALF_UP)

    is_draw = creator_raw == opponent_raw
    creator_won = creator_raw > opponent_raw
    if is_draw:
        creator_xp = opponent_xp = BASE_XP_LOSS
    else:
        creator_xp = calculate_xp(creator_won, margin)
        opponent_xp = calculate_xp(not creator_won, margin)

    return BattleOutcome(
        creator_return=creator_raw.quantize(PCT_QUANT, rounding=ROUND_HALF_UP),
        opponent_return=opponent_raw.quantize(PCT_QUANT, rounding=ROUND_HALF_UP),
        margin=margin,
        creator_won=creator_won,
        is_draw=is_draw,
        creator_xp=creator_xp,
        opponent_xp=opponent_xp,
    )
