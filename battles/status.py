from __future__ import annotations

from datetime import datetime, timedelta

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from .models import BattleStatus

DAY = timedelta(days=1)
MAX_BATTLE_DAY = 5


def battle_duration() -> timedelta:
    return timedelta(seconds=settings.BATTLE_DURATION_SECONDS)


def derive_status(battle, now: datetime | None = None) -> str:
    """
    Authoritative battle status, computed from the record and the clock:

    - no opponent, or opponent without start time: waiting
    - now >= end: completed
    - start <= now < end: active
    - anything else: waiting
    """
    now = now or timezone.now()
    if not battle.opponent_id or not battle.start_at:
        return BattleStatus.WAITING
    if battle.end_at and now >= battle.end_at:
        return BattleStatus.COMPLETED
    if now >= battle.start_at:
        return BattleStatus.ACTIVE
    return BattleStatus.WAITING


def waiting_q(now: datetime | None = None) -> Q:
    """Queryset filter matching battles whose derived status is waiting."""
    now = now or timezone.now()
    return (
        Q(opponent__isnull=True)
        | Q(start_at__isnull=True)
        | Q(start_at__gt=now)
    )


def needs_settlement(battle, now: datetime | None = None) -> bool:
    if not battle.opponent_id or battle.is_settled:
        return False
    return derive_status(battle, now) == BattleStatus.COMPLETED


def remaining_time(battle, now: datetime | None = None) -> timedelta:
    if not battle.end_at:
        return timedelta(0)
    now = now or timezone.now()
    return max(timedelta(0), battle.end_at - now)


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


def format_time_remaining(battle, now: datetime | None = None) -> str:
    """
    "2 days, 3 hours remaining", "5 hours, 12 min remaining", "7 min remaining",
    or "Battle Complete" once the end time has passed.
    """
    if not battle.end_at:
        return "Waiting for opponent"

    remaining = remaining_time(battle, now)
    if remaining <= timedelta(0):
        return "Battle Complete"

    total_seconds = int(remaining.total_seconds())
    days, rest = divmod(total_seconds, 24 * 60 * 60)
    hours, rest = divmod(rest, 60 * 60)
    minutes = rest // 60

    if days > 0:
        return f"{_plural(days, 'day')}, {_plural(hours, 'hour')} remaining"
    if hours > 0:
        return f"{_plural(hours, 'hour')}, {minutes} min remaining"
    return f"{minutes} min remaining"


def battle_day(battle, now: datetime | None = None) -> int:
    """1-based day of the battle, capped at 5; 0 before it starts."""
    if not battle.start_at:
        return 0
    now = now or timezone.now()
    if now < battle.start_at:
        return 0
    elapsed = now - battle.start_at
    return min(elapsed // DAY + 1, MAX_BATTLE_DAY)
