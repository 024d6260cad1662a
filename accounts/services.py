from __future__ import annotations

import logging

from django.db import IntegrityError, transaction
from django.db.models import F, Q

from battles.models import Battle

from .models import PlayerProfile, RewardLedgerEntry, RewardOutcome

logger = logging.getLogger(__name__)


def get_or_create_profile(user) -> PlayerProfile:
    profile = PlayerProfile.objects.filter(user=user).first()
    if profile is not None:
        return profile

    base = user.get_username()[:32]
    suffixed = f"{base[:24]}-{user.pk}"
    display_name = suffixed if PlayerProfile.objects.filter(display_name__iexact=base).exists() else base
    try:
        with transaction.atomic():
            profile, _ = PlayerProfile.objects.get_or_create(user=user, defaults={"display_name": display_name})
    except IntegrityError:
        # Another profile claimed the name (or this user's profile) concurrently.
        profile = PlayerProfile.objects.filter(user=user).first()
        if profile is None:
            profile = PlayerProfile.objects.create(user=user, display_name=suffixed)
    return profile


def _outcome_for(battle: Battle, user) -> str:
    result = battle.result
    if result.is_draw:
        return RewardOutcome.DRAW
    return RewardOutcome.WIN if result.winner_id == user.pk else RewardOutcome.LOSS


def award_battle_result(*, user, battle: Battle) -> bool:
    """
    Credit `user` with the XP and win/loss/draw from a settled battle.

    Returns True when the reward was applied by this call, False when the
    battle is unsettled, the user did not play, or the reward was already
    recorded in the ledger.
    """
    if not battle.is_settled or not battle.is_participant(user):
        return False

    outcome = _outcome_for(battle, user)
    xp = battle.result.xp_for(user) or 0
    counter = {
        RewardOutcome.WIN: "wins",
        RewardOutcome.LOSS: "losses",
        RewardOutcome.DRAW: "draws",
    }[outcome]

    with transaction.atomic():
        profile = get_or_create_profile(user)
        try:
            with transaction.atomic():
                RewardLedgerEntry.objects.create(user=user, battle=battle, outcome=outcome, xp_delta=xp)
        except IntegrityError:
            return False

        PlayerProfile.objects.filter(pk=profile.pk).update(
            xp=F("xp") + xp,
            **{counter: F(counter) + 1},
        )

    logger.info("Awarded %s XP (%s) to %s for battle %s", xp, outcome, user, battle.pk)
    return True


def reconcile_rewards(user) -> int:
    """Apply every settled-battle reward still missing from the user's ledger."""
    pending = (
        Battle.objects.filter(Q(creator=user) | Q(opponent=user), result__isnull=False)
        .exclude(reward_entries__user=user)
        .select_related("result", "creator", "opponent")
    )
    applied = 0
    for battle in pending:
        if award_battle_result(user=user, battle=battle):
            applied += 1
    return applied
