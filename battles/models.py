from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from marketdata.models import AssetClass


class BattleStatus(models.TextChoices):
    WAITING = "waiting", "Waiting"
    ACTIVE = "active", "Active"
    COMPLETED = "completed", "Completed"


class PortfolioSide(models.TextChoices):
    CREATOR = "CREATOR", "Creator"
    OPPONENT = "OPPONENT", "Opponent"


class Battle(models.Model):
    challenge_code = models.CharField(max_length=8, db_index=True)
    portfolio_name = models.CharField(max_length=100)

    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="battles_created"
    )
    opponent = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="battles_joined",
        blank=True,
        null=True,
    )
    asset_class = models.CharField(max_length=16, choices=AssetClass.choices)

    # Informational only; the authoritative status is battles.status.derive_status().
    status = models.CharField(
        max_length=16, choices=BattleStatus.choices, default=BattleStatus.WAITING
    )

    start_at = models.DateTimeField(blank=True, null=True)
    end_at = models.DateTimeField(blank=True, null=True)

    # symbol -> price snapshots, written once each.
    starting_prices = models.JSONField(blank=True, null=True, encoder=DjangoJSONEncoder)
    ending_prices = models.JSONField(blank=True, null=True, encoder=DjangoJSONEncoder)

    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["challenge_code", "opponent"], name="battle_code_opponent_idx"),
            models.Index(fields=["end_at"], name="battle_end_at_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.challenge_code}:{self.portfolio_name}"

    def clean(self) -> None:
        super().clean()
        if self.opponent_id and self.opponent_id == self.creator_id:
            raise ValidationError({"opponent": "Creator cannot battle themselves."})
        if self.start_at and self.end_at and self.end_at <= self.start_at:
            raise ValidationError({"end_at": "End time must be after start time."})

    @property
    def creator_portfolio(self) -> list["PortfolioAsset"]:
        return [a for a in self.assets.all() if a.side == PortfolioSide.CREATOR]

    @property
    def opponent_portfolio(self) -> list["PortfolioAsset"]:
        return [a for a in self.assets.all() if a.side == PortfolioSide.OPPONENT]

    @property
    def is_settled(self) -> bool:
        try:
            return self.result is not None
        except BattleResult.DoesNotExist:
            return False

    def is_participant(self, user) -> bool:
        user_id = getattr(user, "pk", user)
        return user_id is not None and user_id in (self.creator_id, self.opponent_id)

    def locked_prices(self) -> dict[str, Decimal]:
        return {sym: Decimal(str(p)) for sym, p in (self.starting_prices or {}).items()}

    def closing_prices(self) -> dict[str, Decimal]:
        return {sym: Decimal(str(p)) for sym, p in (self.ending_prices or {}).items()}


class PortfolioAsset(models.Model):
    battle = models.ForeignKey(Battle, on_delete=models.CASCADE, related_name="assets")
    side = models.CharField(max_length=16, choices=PortfolioSide.choices)
    position = models.PositiveSmallIntegerField(default=0)

    symbol = models.CharField(max_length=16)
    name = models.CharField(max_length=200, blank=True)
    asset_class = models.CharField(max_length=16, choices=AssetClass.choices)

    # Price when added to the portfolio; rewritten to the locked starting price on join.
    price = models.DecimalField(max_digits=20, decimal_places=6)
    # Dollar allocation of the fixed notional portfolio.
    amount = models.DecimalField(max_digits=20, decimal_places=2)

    class Meta:
        ordering = ["side", "position"]
        constraints = [
            models.UniqueConstraint(
                fields=["battle", "side", "symbol"], name="uniq_portfolio_asset_battle_side_symbol"
            ),
        ]

    def __str__(self) -> str:
        return f"{self.battle_id}:{self.side}:{self.symbol}"


class BattleResult(models.Model):
    # One-to-one: a battle can be settled at most once.
    battle = models.OneToOneField(
        Battle, on_delete=models.CASCADE, primary_key=True, related_name="result"
    )
    winner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="battles_won",
        blank=True,
        null=True,
    )
    loser = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="battles_lost",
        blank=True,
        null=True,
    )
    is_draw = models.BooleanField(default=False)

    creator_return = models.DecimalField(max_digits=12, decimal_places=2)
    opponent_return = models.DecimalField(max_digits=12, decimal_places=2)
    margin = models.DecimalField(max_digits=12, decimal_places=2)

    creator_xp = models.PositiveIntegerField()
    opponent_xp = models.PositiveIntegerField()

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(is_draw=True, winner__isnull=True, loser__isnull=True)
                    | models.Q(is_draw=False, winner__isnull=False, loser__isnull=False)
                ),
                name="battleresult_draw_xor_winner",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.battle_id}:{'draw' if self.is_draw else self.winner_id}"

    @property
    def xp_awarded(self) -> dict[str, int]:
        battle = self.battle
        return {
            battle.creator.get_username(): self.creator_xp,
            battle.opponent.get_username(): self.opponent_xp,
        }

    def xp_for(self, user) -> int | None:
        user_id = getattr(user, "pk", user)
        if user_id == self.battle.creator_id:
            return self.creator_xp
        if user_id == self.battle.opponent_id:
            return self.opponent_xp
        return None


class BattleArchiveEntry(models.Model):
    """Per-user history of archived battles; appended to, never rewritten."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="battle_archive"
    )
    battle = models.ForeignKey(Battle, on_delete=models.CASCADE, related_name="archive_entries")
    archived_at = models.DateTimeField()
    snapshot = models.JSONField(encoder=DjangoJSONEncoder)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["user", "battle"], name="uniq_archive_user_battle"),
        ]
        indexes = [
            models.Index(fields=["user", "-archived_at"], name="archive_user_archived_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.user_id}:{self.battle_id}@{self.archived_at.isoformat()}"
