from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from accounts.services import award_battle_result
from marketdata.catalog import get_catalog_asset
from marketdata.services import fetch_prices, indicative_price, normalize_symbol

from .models import Battle, BattleArchiveEntry, BattleResult, BattleStatus, PortfolioAsset, PortfolioSide
from .scoring import PortfolioEntry, determine_outcome, portfolio_asset_class, validate_portfolio
from .serializers import battle_to_document
from .status import battle_duration, derive_status, needs_settlement, waiting_q

logger = logging.getLogger(__name__)

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 100


@dataclass(frozen=True)
class BattleActionResult:
    ok: bool
    message: str
    battle: Battle | None = None
    meta: dict | None = None

    @property
    def reason(self) -> str | None:
        return (self.meta or {}).get("reason")


def _fail(message: str, reason: str, **extra) -> BattleActionResult:
    return BattleActionResult(ok=False, message=message, meta={"reason": reason, **extra})


def _battle_queryset():
    return Battle.objects.select_related("creator", "opponent", "result").prefetch_related("assets")


def build_portfolio_entries(pct_by_symbol: dict[str, Decimal | str]) -> list[PortfolioEntry]:
    """
    Turn {symbol: percentage} into portfolio entries priced at the latest
    cached quote. Raises ValueError for unknown symbols or bad percentages.
    """
    entries: list[PortfolioEntry] = []
    for raw_symbol, raw_pct in pct_by_symbol.items():
        symbol = normalize_symbol(raw_symbol)
        asset = get_catalog_asset(symbol)
        if asset is None:
            raise ValueError(f"Unknown asset: {symbol}.")
        try:
            pct = Decimal(str(raw_pct))
        except (InvalidOperation, TypeError):
            raise ValueError(f"Invalid percent for {symbol}.")
        if not pct.is_finite():
            raise ValueError(f"Invalid percent for {symbol}.")
        entries.append(
            PortfolioEntry(
                symbol=symbol,
                name=asset.name,
                asset_class=asset.asset_class,
                percentage=pct,
                price=indicative_price(symbol),
            )
        )
    return entries


def generate_challenge_code(now: datetime | None = None) -> str:
    """
    Six characters from an alphabet without look-alikes (0/O, 1/I), unique
    among waiting battles. After MAX_CODE_ATTEMPTS collisions a two-digit
    timestamp suffix is appended.
    """
    taken = set(Battle.objects.filter(waiting_q(now)).values_list("challenge_code", flat=True))
    code = ""
    for _ in range(MAX_CODE_ATTEMPTS):
        code = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
        if code not in taken:
            return code
    logger.warning("Challenge code space exhausted after %s attempts; adding suffix", MAX_CODE_ATTEMPTS)
    return f"{code}{int(time.time() * 1000) % 100:02d}"


def _asset_rows(battle: Battle, side: str, entries: list[PortfolioEntry], prices: dict[str, Decimal] | None = None):
    prices = prices or {}
    return [
        PortfolioAsset(
            battle=battle,
            side=side,
            position=idx,
            symbol=e.symbol,
            name=e.name,
            asset_class=e.asset_class,
            price=prices.get(e.symbol, e.price),
            amount=e.amount,
        )
        for idx, e in enumerate(entries)
    ]


def create_battle(
    *,
    creator,
    entries: list[PortfolioEntry],
    portfolio_name: str,
    now: datetime | None = None,
) -> BattleActionResult:
    portfolio_name = (portfolio_name or "").strip()
    if not portfolio_name:
        return _fail("Please name your portfolio.", "MISSING_NAME")
    try:
        validate_portfolio(entries)
    except ValueError as e:
        return _fail(str(e), "INVALID_PORTFOLIO")

    with transaction.atomic():
        battle = Battle.objects.create(
            challenge_code=generate_challenge_code(now),
            portfolio_name=portfolio_name,
            creator=creator,
            asset_class=portfolio_asset_class(entries),
            status=BattleStatus.WAITING,
        )
        PortfolioAsset.objects.bulk_create(_asset_rows(battle, PortfolioSide.CREATOR, entries))

    logger.info("Battle %s created by %s with code %s", battle.pk, creator, battle.challenge_code)
    return BattleActionResult(
        ok=True,
        message=f"Battle created. Share code {battle.challenge_code}.",
        battle=_battle_queryset().get(pk=battle.pk),
    )


def find_waiting_battle(challenge_code: str, now: datetime | None = None) -> Battle | None:
    return (
        _battle_queryset()
        .filter(waiting_q(now), challenge_code=challenge_code)
        .order_by("-created_at")
        .first()
    )


def join_battle(
    *,
    challenge_code: str,
    joiner,
    entries: list[PortfolioEntry],
    now: datetime | None = None,
) -> BattleActionResult:
    """
    Join a waiting battle and lock starting prices for both portfolios.

    Prices are fetched outside the transaction; the battle row is then
    re-read under lock and re-checked before anything is written.
    """
    now = now or timezone.now()
    code = (challenge_code or "").strip().upper()
    if not code:
        return _fail("Please enter a challenge code.", "MISSING_CODE")
    try:
        validate_portfolio(entries)
    except ValueError as e:
        return _fail(str(e), "INVALID_PORTFOLIO")

    battle = find_waiting_battle(code, now)
    if battle is None:
        return _fail(f"Battle not found or already started: {code}.", "NOT_FOUND")
    if battle.creator_id == joiner.pk:
        return _fail("You cannot join your own battle.", "SELF_JOIN")

    joiner_class = portfolio_asset_class(entries)
    if joiner_class != battle.asset_class:
        return _fail(
            f"This battle requires a {battle.get_asset_class_display().lower()} portfolio.",
            "TYPE_MISMATCH",
            required=battle.asset_class,
            provided=joiner_class,
        )

    creator_assets = battle.creator_portfolio
    fallbacks: dict[str, Decimal] = {a.symbol: a.price for a in creator_assets}
    for e in entries:
        fallbacks.setdefault(e.symbol, e.price)
    symbols = list(dict.fromkeys([a.symbol for a in creator_assets] + [e.symbol for e in entries]))
    starting_prices = fetch_prices(symbols, fallbacks=fallbacks)

    with transaction.atomic():
        locked = Battle.objects.select_for_update().get(pk=battle.pk)
        if locked.opponent_id or derive_status(locked, now) != BattleStatus.WAITING:
            return _fail(f"Battle not found or already started: {code}.", "NOT_FOUND")

        locked.opponent = joiner
        locked.start_at = now
        locked.end_at = now + battle_duration()
        locked.starting_prices = {sym: str(price) for sym, price in starting_prices.items()}
        locked.status = BattleStatus.ACTIVE
        locked.save(
            update_fields=["opponent", "start_at", "end_at", "starting_prices", "status", "updated_at"]
        )

        for asset in PortfolioAsset.objects.filter(battle=locked, side=PortfolioSide.CREATOR):
            asset.price = starting_prices.get(asset.symbol, asset.price)
            asset.save(update_fields=["price"])
        PortfolioAsset.objects.bulk_create(
            _asset_rows(locked, PortfolioSide.OPPONENT, entries, starting_prices)
        )

    logger.info("Battle %s joined by %s; %s price(s) locked", battle.pk, joiner, len(starting_prices))
    return BattleActionResult(
        ok=True,
        message="Battle joined. Prices are locked in.",
        battle=_battle_queryset().get(pk=battle.pk),
    )


def settle_battle(battle: Battle, *, now: datetime | None = None) -> Battle | None:
    """
    Capture ending prices, score both portfolios and write the result.

    Returns the settled battle, or None when it was not due or another
    process settled it first.
    """
    now = now or timezone.now()
    if not needs_settlement(battle, now):
        return None

    creator_assets = battle.creator_portfolio
    opponent_assets = battle.opponent_portfolio
    locked_in = battle.locked_prices()
    fallbacks = {a.symbol: locked_in.get(a.symbol, a.price) for a in creator_assets + opponent_assets}
    ending_prices = fetch_prices(list(fallbacks.keys()), fallbacks=fallbacks)
    outcome = determine_outcome(creator_assets, opponent_assets, ending_prices, locked_in)

    if outcome.is_draw:
        winner_id = loser_id = None
    elif outcome.creator_won:
        winner_id, loser_id = battle.creator_id, battle.opponent_id
    else:
        winner_id, loser_id = battle.opponent_id, battle.creator_id

    with transaction.atomic():
        locked = Battle.objects.select_for_update().get(pk=battle.pk)
        if BattleResult.objects.filter(battle=locked).exists():
            return None
        try:
            with transaction.atomic():
                BattleResult.objects.create(
                    battle=locked,
                    winner_id=winner_id,
                    loser_id=loser_id,
                    is_draw=outcome.is_draw,
                    creator_return=outcome.creator_return,
                    opponent_return=outcome.opponent_return,
                    margin=outcome.margin,
                    creator_xp=outcome.creator_xp,
                    opponent_xp=outcome.opponent_xp,
                )
        except IntegrityError:
            return None

        locked.ending_prices = {sym: str(price) for sym, price in ending_prices.items()}
        locked.completed_at = now
        locked.status = BattleStatus.COMPLETED
        locked.save(update_fields=["ending_prices", "completed_at", "status", "updated_at"])

    logger.info(
        "Battle %s settled: creator %s%% vs opponent %s%% (margin %s)",
        battle.pk,
        outcome.creator_return,
        outcome.opponent_return,
        outcome.margin,
    )
    return _battle_queryset().get(pk=battle.pk)


def run_settlement_pass(
    battles: list[Battle] | None = None,
    now: datetime | None = None,
    *,
    viewer=None,
) -> list[Battle]:
    """
    Settle every battle that has reached its end time and has no result yet.

    Returns the battles in their updated state. Battles already settled pass
    through untouched. When `viewer` takes part in a battle settled here, their
    reward is applied immediately; the other participant is credited by
    accounts.services.reconcile_rewards on their next visit.
    """
    now = now or timezone.now()
    if battles is None:
        battles = list(
            _battle_queryset().filter(opponent__isnull=False, result__isnull=True, end_at__lte=now)
        )

    updated: list[Battle] = []
    for battle in battles:
        settled = settle_battle(battle, now=now) if needs_settlement(battle, now) else None
        if settled is None:
            updated.append(battle)
            continue
        if viewer is not None and settled.is_participant(viewer):
            award_battle_result(user=viewer, battle=settled)
        updated.append(settled)
    return updated


def archive_battle(*, battle: Battle, user, now: datetime | None = None) -> BattleActionResult:
    """Copy a settled battle into the user's history and hide it from their active list."""
    now = now or timezone.now()
    if not battle.is_participant(user):
        return _fail("You are not in this battle.", "NOT_PARTICIPANT")
    if derive_status(battle, now) != BattleStatus.COMPLETED or not battle.is_settled:
        return _fail("Only completed battles can be archived.", "NOT_COMPLETED")

    entry, created = BattleArchiveEntry.objects.get_or_create(
        user=user,
        battle=battle,
        defaults={"archived_at": now, "snapshot": battle_to_document(battle, now=now)},
    )
    if created:
        logger.info("Battle %s archived by %s", battle.pk, user)
    return BattleActionResult(
        ok=True,
        message="Battle archived." if created else "Battle already archived.",
        battle=battle,
        meta={"archived_at": entry.archived_at.isoformat()},
    )


def battles_for_user(user) -> list[Battle]:
    """The user's battles that they have not archived, newest first."""
    archived_ids = BattleArchiveEntry.objects.filter(user=user).values_list("battle_id", flat=True)
    return list(
        _battle_queryset()
        .filter(Q(creator=user) | Q(opponent=user))
        .exclude(pk__in=archived_ids)
        .order_by("-created_at")
    )


def battle_history(user) -> list[BattleArchiveEntry]:
    return list(BattleArchiveEntry.objects.filter(user=user).order_by("-archived_at", "-id"))


def purge_stale_battles(now: datetime | None = None) -> int:
    """Delete never-joined battles older than STALE_WAITING_BATTLE_HOURS."""
    now = now or timezone.now()
    cutoff = now - timedelta(hours=settings.STALE_WAITING_BATTLE_HOURS)
    _, per_model = Battle.objects.filter(opponent__isnull=True, created_at__lt=cutoff).delete()
    deleted = per_model.get(Battle._meta.label, 0)
    if deleted:
        logger.info("Purged %s stale waiting battle(s) created before %s", deleted, cutoff.isoformat())
    return deleted
