from __future__ import annotations

from datetime import datetime

from .models import Battle, PortfolioAsset
from .status import battle_day, derive_status, format_time_remaining


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _username(user) -> str | None:
    return user.get_username() if user is not None else None


def _price_map(prices: dict) -> dict[str, str]:
    return {sym: str(price) for sym, price in prices.items()}


def asset_to_document(asset: PortfolioAsset) -> dict:
    return {
        "symbol": asset.symbol,
        "name": asset.name,
        "assetClass": asset.asset_class,
        "price": str(asset.price),
        "amount": str(asset.amount),
    }


def result_to_document(battle: Battle) -> dict | None:
    if not battle.is_settled:
        return None
    result = battle.result
    return {
        "winner": _username(result.winner),
        "loser": _username(result.loser),
        "isDraw": result.is_draw,
        "creatorReturn": str(result.creator_return),
        "opponentReturn": str(result.opponent_return),
        "margin": str(result.margin),
        "xpAwarded": result.xp_awarded,
    }


def battle_to_document(battle: Battle, *, now: datetime | None = None) -> dict:
    """
    JSON-ready record of one battle, using the same keys as the shared
    battle document the game clients exchange.
    """
    opponent_portfolio = battle.opponent_portfolio
    return {
        "id": battle.pk,
        "challengeCode": battle.challenge_code,
        "portfolioName": battle.portfolio_name,
        "assetClass": battle.asset_class,
        "creator": _username(battle.creator),
        "opponent": _username(battle.opponent),
        "creatorPortfolio": [asset_to_document(a) for a in battle.creator_portfolio],
        "opponentPortfolio": [asset_to_document(a) for a in opponent_portfolio] if battle.opponent_id else None,
        "status": derive_status(battle, now),
        "startDate": _iso(battle.start_at),
        "endDate": _iso(battle.end_at),
        "startingPrices": _price_map(battle.locked_prices()) if battle.starting_prices else None,
        "endingPrices": _price_map(battle.closing_prices()) if battle.ending_prices else None,
        "result": result_to_document(battle),
        "createdAt": _iso(battle.created_at),
        "completedAt": _iso(battle.completed_at),
        "timeRemaining": format_time_remaining(battle, now),
        "day": battle_day(battle, now),
    }
