from django.conf import settings
from django.db import models


class Rank(models.TextChoices):
    BEGINNER = "BEGINNER", "Beginner"
    VETERAN = "VETERAN", "Veteran"
    EXPERT = "EXPERT", "Expert"
    MASTER = "MASTER", "Master"


# Minimum XP for each rank, highest first.
RANK_THRESHOLDS = [
    (5000, Rank.MASTER),
    (2000, Rank.EXPERT),
    (500, Rank.VETERAN),
]


def determine_rank(xp: int) -> str:
    for threshold, rank in RANK_THRESHOLDS:
        if xp >= threshold:
            return rank
    return Rank.BEGINNER


class PlayerProfile(models.Model):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="player_profile"
    )
    display_name = models.CharField(max_length=32, unique=True)

    xp = models.PositiveIntegerField(default=0)
    wins = models.PositiveIntegerField(default=0)
    losses = models.PositiveIntegerField(default=0)
    draws = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.display_name

    @property
    def rank(self) -> str:
        return determine_rank(self.xp)

    @property
    def battles_played(self) -> int:
        return self.wins + self.losses + self.draws


class RewardOutcome(models.TextChoices):
    WIN = "WIN", "Win"
    LOSS = "LOSS", "Loss"
    DRAW = "DRAW", "Draw"


class RewardLedgerEntry(models.Model):
    """
    One row per (user, battle) reward applied to a profile. The unique
    constraint keeps a battle from crediting the same player twice.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="reward_entries"
    )
    battle = models.ForeignKey(
        "battles.Battle", on_delete=models.CASCADE, related_name="reward_entries"
    )
    outcome = models.CharField(max_length=8, choices=RewardOutcome.choices)
    xp_delta = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["user", "battle"], name="uniq_reward_user_battle"),
        ]

    def __str__(self) -> str:
        return f"{self.user_id}:{self.battle_id}:{self.outcome}+{self.xp_delta}"
