from __future__ import annotations

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import migrations, models
import django.db.models.deletion


ASSET_CLASS_CHOICES = [("STOCK", "Stock"), ("CRYPTO", "Crypto")]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Battle",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("challenge_code", models.CharField(db_index=True, max_length=8)),
                ("portfolio_name", models.CharField(max_length=100)),
                ("asset_class", models.CharField(choices=ASSET_CLASS_CHOICES, max_length=16)),
                (
                    "status",
                    models.CharField(
                        choices=[("waiting", "Waiting"), ("active", "Active"), ("completed", "Completed")],
                        default="waiting",
                        max_length=16,
                    ),
                ),
                ("start_at", models.DateTimeField(blank=True, null=True)),
                ("end_at", models.DateTimeField(blank=True, null=True)),
                ("starting_prices", models.JSONField(blank=True, encoder=DjangoJSONEncoder, null=True)),
                ("ending_prices", models.JSONField(blank=True, encoder=DjangoJSONEncoder, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "creator",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="battles_created",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "opponent",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="battles_joined",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["challenge_code", "opponent"], name="battle_code_opponent_idx"),
                    models.Index(fields=["end_at"], name="battle_end_at_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PortfolioAsset",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "side",
                    models.CharField(
                        choices=[("CREATOR", "Creator"), ("OPPONENT", "Opponent")],
                        max_length=16,
                    ),
                ),
                ("position", models.PositiveSmallIntegerField(default=0)),
                ("symbol", models.CharField(max_length=16)),
                ("name", models.CharField(blank=True, max_length=200)),
                ("asset_class", models.CharField(choices=ASSET_CLASS_CHOICES, max_length=16)),
                ("price", models.DecimalField(decimal_places=6, max_digits=20)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=20)),
                (
                    "battle",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="assets",
                        to="battles.battle",
                    ),
                ),
            ],
            options={
                "ordering": ["side", "position"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("battle", "side", "symbol"),
                        name="uniq_portfolio_asset_battle_side_symbol",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BattleResult",
            fields=[
                (
                    "battle",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        primary_key=True,
                        related_name="result",
                        serialize=False,
                        to="battles.battle",
                    ),
                ),
                ("is_draw", models.BooleanField(default=False)),
                ("creator_return", models.DecimalField(decimal_places=2, max_digits=12)),
                ("opponent_return", models.DecimalField(decimal_places=2, max_digits=12)),
                ("margin", models.DecimalField(decimal_places=2, max_digits=12)),
                ("creator_xp", models.PositiveIntegerField()),
                ("opponent_xp", models.PositiveIntegerField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "winner",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="battles_won",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "loser",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="battles_lost",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.CheckConstraint(
                        condition=(
                            models.Q(is_draw=True, winner__isnull=True, loser__isnull=True)
                            | models.Q(is_draw=False, winner__isnull=False, loser__isnull=False)
                        ),
                        name="battleresult_draw_xor_winner",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BattleArchiveEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("archived_at", models.DateTimeField()),
                ("snapshot", models.JSONField(encoder=DjangoJSONEncoder)),
                (
                    "battle",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="archive_entries",
                        to="battles.battle",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="battle_archive",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["user", "-archived_at"], name="archive_user_archived_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("user", "battle"), name="uniq_archive_user_battle"),
                ],
            },
        ),
    ]
