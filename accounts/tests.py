from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.test import Client, SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone

from battles.models import Battle, BattleResult, BattleStatus

from .models import PlayerProfile, Rank, RewardLedgerEntry, determine_rank
from .services import award_battle_result, get_or_create_profile, reconcile_rewards


class RankTests(SimpleTestCase):
    def test_rank_boundaries(self):
        self.assertEqual(determine_rank(0), Rank.BEGINNER)
        self.assertEqual(determine_rank(499), Rank.BEGINNER)
        self.assertEqual(determine_rank(500), Rank.VETERAN)
        self.assertEqual(determine_rank(1999), Rank.VETERAN)
        self.assertEqual(determine_rank(2000), Rank.EXPERT)
        self.assertEqual(determine_rank(4999), Rank.EXPERT)
        self.assertEqual(determine_rank(5000), Rank.MASTER)

    def test_profile_rank_follows_xp(self):
        self.assertEqual(PlayerProfile(xp=650).rank, Rank.VETERAN)


class RewardTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.alice = User.objects.create_user(username="alice", password="pw")
        self.bob = User.objects.create_user(username="bob", password="pw")
        now = timezone.now()
        self.battle = Battle.objects.create(
            challenge_code="RWDTST",
            portfolio_name="R",
            creator=self.alice,
            opponent=self.bob,
            asset_class="STOCK",
            status=BattleStatus.COMPLETED,
            start_at=now - timedelta(days=2),
            end_at=now - timedelta(days=1),
            completed_at=now - timedelta(days=1),
        )

    def _settle(self, *, draw=False):
        return BattleResult.objects.create(
            battle=self.battle,
            winner=None if draw else self.alice,
            loser=None if draw else self.bob,
            is_draw=draw,
            creator_return=Decimal("4.20"),
            opponent_return=Decimal("4.20") if draw else Decimal("1.00"),
            margin=Decimal("0.00") if draw else Decimal("3.20"),
            creator_xp=25 if draw else 132,
            opponent_xp=25,
        )

    def test_award_is_applied_once(self):
        self._settle()
        self.assertTrue(award_battle_result(user=self.alice, battle=self.battle))
        self.assertFalse(award_battle_result(user=self.alice, battle=self.battle))

        profile = PlayerProfile.objects.get(user=self.alice)
        self.assertEqual((profile.xp, profile.wins, profile.losses, profile.draws), (132, 1, 0, 0))
        self.assertEqual(RewardLedgerEntry.objects.filter(user=self.alice).count(), 1)

    def test_unsettled_battle_awards_nothing(self):
        self.assertFalse(award_battle_result(user=self.alice, battle=self.battle))
        self.assertFalse(RewardLedgerEntry.objects.exists())

    def test_reconcile_credits_missing_rewards(self):
        self._settle()
        award_battle_result(user=self.alice, battle=self.battle)

        self.assertEqual(reconcile_rewards(self.bob), 1)
        self.assertEqual(reconcile_rewards(self.bob), 0)
        self.assertEqual(reconcile_rewards(self.alice), 0)

        bob = PlayerProfile.objects.get(user=self.bob)
        self.assertEqual((bob.xp, bob.wins, bob.losses), (25, 0, 1))

    def test_draw_counts_for_both(self):
        self._settle(draw=True)
        reconcile_rewards(self.alice)
        reconcile_rewards(self.bob)
        for user in (self.alice, self.bob):
            profile = PlayerProfile.objects.get(user=user)
            self.assertEqual((profile.xp, profile.draws), (25, 1))

    def test_default_display_name_avoids_collisions(self):
        PlayerProfile.objects.create(user=self.bob, display_name="alice")
        profile = get_or_create_profile(self.alice)
        self.assertEqual(profile.display_name, f"alice-{self.alice.pk}")

    def test_display_name_collision_ignores_case(self):
        PlayerProfile.objects.create(user=self.bob, display_name="ALICE")
        profile = get_or_create_profile(self.alice)
        self.assertEqual(profile.display_name, f"alice-{self.alice.pk}")

    def test_display_name_race_falls_back_to_suffix(self):
        with patch.object(PlayerProfile.objects, "get_or_create", side_effect=IntegrityError("duplicate")):
            profile = get_or_create_profile(self.alice)
        self.assertEqual(profile.display_name, f"alice-{self.alice.pk}")
        self.assertEqual(PlayerProfile.objects.filter(user=self.alice).count(), 1)

    def test_battles_played_counts_awarded_battles(self):
        self._settle()
        award_battle_result(user=self.alice, battle=self.battle)
        profile = PlayerProfile.objects.get(user=self.alice)
        self.assertEqual(profile.battles_played, 1)


class AccountViewTests(TestCase):
    def test_signup_creates_profile_and_logs_in(self):
        client = Client()
        resp = client.post(
            reverse("accounts:signup"),
            {
                "username": "newbie",
                "display_name": "Newbie",
                "password1": "s3cure-Passw0rd!",
                "password2": "s3cure-Passw0rd!",
            },
        )
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["profile"]["rank"], Rank.BEGINNER)

        resp = client.get(reverse("accounts:profile"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["profile"]["displayName"], "Newbie")
        self.assertEqual(resp.json()["profile"]["xp"], 0)
        self.assertEqual(resp.json()["profile"]["battlesPlayed"], 0)

    def test_signup_rejects_taken_display_name(self):
        User = get_user_model()
        PlayerProfile.objects.create(user=User.objects.create_user(username="x", password="pw"), display_name="Taken")
        resp = Client().post(
            reverse("accounts:signup"),
            {
                "username": "other",
                "display_name": "taken",
                "password1": "s3cure-Passw0rd!",
                "password2": "s3cure-Passw0rd!",
            },
        )
        self.assertEqual(resp.status_code, 400)
        self.assertIn("display_name", resp.json()["fields"])
