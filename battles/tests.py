from __future__ import annotations

import io
import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import DatabaseError
from django.test import Client, SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone

from accounts.models import PlayerProfile
from marketdata.models import Instrument, Quote

from .models import Battle, BattleArchiveEntry, BattleResult, BattleStatus, PortfolioAsset, PortfolioSide
from .scoring import (
    PortfolioEntry,
    calculate_portfolio_return,
    calculate_xp,
    determine_outcome,
    is_portfolio_valid,
    validate_portfolio,
)
from .serializers import battle_to_document
from .services import (
    archive_battle,
    battles_for_user,
    build_portfolio_entries,
    create_battle,
    generate_challenge_code,
    join_battle,
    purge_stale_battles,
    run_settlement_pass,
    settle_battle,
)
from .status import battle_day, derive_status, format_time_remaining

CREATOR_PICKS = {
    "AAPL": "20",
    "MSFT": "20",
    "GOOGL": "15",
    "AMZN": "15",
    "NVDA": "10",
    "TSLA": "10",
    "META": "10",
}
OPPONENT_PICKS = {
    "V": "20",
    "JPM": "20",
    "WMT": "15",
    "MA": "15",
    "PG": "10",
    "UNH": "10",
    "HD": "10",
}
CRYPTO_PICKS = {
    "BTC": "20",
    "ETH": "20",
    "BNB": "15",
    "SOL": "15",
    "XRP": "10",
    "ADA": "10",
    "DOGE": "10",
}


def _entries(picks, price=Decimal("100"), asset_class="STOCK"):
    return [
        PortfolioEntry(symbol=s, name=s, asset_class=asset_class, percentage=Decimal(p), price=price)
        for s, p in picks.items()
    ]


def _flat_prices(overrides=None):
    overrides = overrides or {}

    def _fetch(symbols, fallbacks=None):
        return {s: overrides.get(s, Decimal("100")) for s in symbols}

    return _fetch


class DeriveStatusTests(SimpleTestCase):
    def setUp(self):
        self.now = timezone.now()

    def test_no_opponent_is_waiting(self):
        battle = Battle(creator_id=1)
        self.assertEqual(derive_status(battle, self.now), BattleStatus.WAITING)

    def test_opponent_without_start_is_waiting(self):
        battle = Battle(creator_id=1, opponent_id=2)
        self.assertEqual(derive_status(battle, self.now), BattleStatus.WAITING)

    def test_active_then_completed(self):
        battle = Battle(
            creator_id=1,
            opponent_id=2,
            start_at=self.now,
            end_at=self.now + timedelta(days=1),
        )
        self.assertEqual(derive_status(battle, self.now), BattleStatus.ACTIVE)
        self.assertEqual(derive_status(battle, self.now + timedelta(hours=23)), BattleStatus.ACTIVE)
        self.assertEqual(derive_status(battle, self.now + timedelta(days=1)), BattleStatus.COMPLETED)

    def test_status_never_goes_backwards_as_time_advances(self):
        battle = Battle(
            creator_id=1,
            opponent_id=2,
            start_at=self.now + timedelta(hours=1),
            end_at=self.now + timedelta(hours=3),
        )
        order = [BattleStatus.WAITING, BattleStatus.ACTIVE, BattleStatus.COMPLETED]
        seen = [derive_status(battle, self.now + timedelta(minutes=30 * i)) for i in range(10)]
        indexes = [order.index(s) for s in seen]
        self.assertEqual(indexes, sorted(indexes))
        self.assertEqual(seen[-1], BattleStatus.COMPLETED)


class TimeRemainingTests(SimpleTestCase):
    def setUp(self):
        self.now = timezone.now()

    def _battle(self, remaining):
        return Battle(creator_id=1, opponent_id=2, start_at=self.now - timedelta(hours=1), end_at=self.now + remaining)

    def test_days_and_hours(self):
        self.assertEqual(
            format_time_remaining(self._battle(timedelta(days=2, hours=3, minutes=5)), self.now),
            "2 days, 3 hours remaining",
        )
        self.assertEqual(
            format_time_remaining(self._battle(timedelta(days=1, hours=1)), self.now),
            "1 day, 1 hour remaining",
        )

    def test_hours_and_minutes(self):
        self.assertEqual(
            format_time_remaining(self._battle(timedelta(hours=5, minutes=12)), self.now),
            "5 hours, 12 min remaining",
        )

    def test_minutes_only(self):
        self.assertEqual(format_time_remaining(self._battle(timedelta(minutes=7)), self.now), "7 min remaining")

    def test_past_end_is_complete(self):
        self.assertEqual(
            format_time_remaining(self._battle(-timedelta(minutes=1)), self.now), "Battle Complete"
        )

    def test_no_end_is_waiting(self):
        self.assertEqual(format_time_remaining(Battle(creator_id=1), self.now), "Waiting for opponent")

    def test_battle_day_is_capped(self):
        battle = self._battle(timedelta(days=1))
        self.assertEqual(battle_day(battle, self.now), 1)
        self.assertEqual(battle_day(battle, self.now + timedelta(days=1)), 2)
        self.assertEqual(battle_day(battle, self.now + timedelta(days=30)), 5)
        self.assertEqual(battle_day(Battle(creator_id=1), self.now), 0)


class ScoringTests(SimpleTestCase):
    def test_portfolio_validity(self):
        self.assertTrue(is_portfolio_valid(_entries(CREATOR_PICKS)))
        # six assets
        self.assertFalse(is_portfolio_valid(_entries(dict(list(CREATOR_PICKS.items())[:6]))))
        # allocation above the maximum
        self.assertFalse(
            is_portfolio_valid(
                _entries({"AAPL": "25", "MSFT": "15", "GOOGL": "15", "AMZN": "15", "NVDA": "10", "TSLA": "10", "META": "10"})
            )
        )
        # total of 99.5
        self.assertFalse(
            is_portfolio_valid(
                _entries({"AAPL": "20", "MSFT": "20", "GOOGL": "15", "AMZN": "15", "NVDA": "10", "TSLA": "10", "META": "9.5"})
            )
        )
        mixed = _entries(CREATOR_PICKS)
        mixed[0] = PortfolioEntry("BTC", "Bitcoin", "CRYPTO", Decimal("20"), Decimal("100"))
        self.assertFalse(is_portfolio_valid(mixed))

    def test_asset_count_bounds(self):
        thirteen = {s: "7.69" for s in list(CREATOR_PICKS) + list(OPPONENT_PICKS)[:6]}
        thirteen["AAPL"] = "7.72"
        self.assertEqual(len(thirteen), 13)
        self.assertTrue(is_portfolio_valid(_entries(thirteen)))

        fourteen = {s: "7.5" for s in list(CREATOR_PICKS) + list(OPPONENT_PICKS)}
        self.assertEqual(len(fourteen), 14)
        with self.assertRaisesMessage(ValueError, "Select between 7 and 13 assets."):
            validate_portfolio(_entries(fourteen))

    def test_allocation_bounds_are_inclusive(self):
        edges = {"AAPL": "20", "MSFT": "20", "GOOGL": "20", "AMZN": "7.5", "NVDA": "7.5", "TSLA": "7.5", "META": "17.5"}
        self.assertTrue(is_portfolio_valid(_entries(edges)))

        below = dict(CREATOR_PICKS, NVDA="7.49", TSLA="12.51")
        with self.assertRaisesMessage(ValueError, "NVDA allocation"):
            validate_portfolio(_entries(below))
        above = dict(CREATOR_PICKS, AAPL="20.01", MSFT="19.99")
        with self.assertRaisesMessage(ValueError, "AAPL allocation"):
            validate_portfolio(_entries(above))

    def test_total_off_by_tolerance_is_invalid(self):
        self.assertFalse(is_portfolio_valid(_entries(dict(CREATOR_PICKS, META="10.01"))))
        self.assertFalse(is_portfolio_valid(_entries(dict(CREATOR_PICKS, META="9.99"))))

    def test_non_finite_allocation_is_invalid(self):
        for raw in ("NaN", "Infinity", "-Infinity"):
            with self.subTest(raw=raw):
                self.assertFalse(is_portfolio_valid(_entries(dict(CREATOR_PICKS, AAPL=raw))))

    def test_total_within_tolerance_is_valid(self):
        picks = dict(CREATOR_PICKS, META="10.005")
        self.assertTrue(is_portfolio_valid(_entries(picks)))

    def test_return_ignores_asset_order(self):
        assets = _entries(CREATOR_PICKS)
        prices = {"AAPL": Decimal("113.7"), "MSFT": Decimal("91.3"), "NVDA": Decimal("140")}
        forward = calculate_portfolio_return(assets, prices)
        backward = calculate_portfolio_return(list(reversed(assets)), prices)
        self.assertEqual(forward.quantize(Decimal("0.0001")), backward.quantize(Decimal("0.0001")))

    def test_return_uses_locked_starting_price(self):
        assets = _entries({"AAPL": "100"}, price=Decimal("999"))
        ret = calculate_portfolio_return(assets, {"AAPL": Decimal("110")}, {"AAPL": Decimal("100")})
        self.assertEqual(ret, Decimal("10"))

    def test_empty_portfolio_returns_zero(self):
        self.assertEqual(calculate_portfolio_return([], {}), Decimal("0"))

    def test_xp(self):
        self.assertEqual(calculate_xp(True, Decimal("3.0")), 130)
        self.assertEqual(calculate_xp(True, Decimal("3.27")), 132)
        self.assertEqual(calculate_xp(True, Decimal("10")), 200)
        self.assertEqual(calculate_xp(True, Decimal("25")), 200)
        self.assertEqual(calculate_xp(False, Decimal("25")), 25)

    def test_equal_returns_are_a_draw(self):
        outcome = determine_outcome(_entries(CREATOR_PICKS), _entries(OPPONENT_PICKS), {}, {})
        self.assertTrue(outcome.is_draw)
        self.assertEqual((outcome.creator_xp, outcome.opponent_xp), (25, 25))
        self.assertEqual(outcome.margin, Decimal("0.00"))


class BattleLifecycleTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.alice = User.objects.create_user(username="alice", password="pw")
        self.bob = User.objects.create_user(username="bob", password="pw")
        self.carol = User.objects.create_user(username="carol", password="pw")
        # Far enough back that a one-day battle joined at t0 has already ended.
        self.t0 = timezone.now() - timedelta(days=3)

    def _create(self, picks=CREATOR_PICKS, name="Alpha"):
        result = create_battle(creator=self.alice, entries=build_portfolio_entries(picks), portfolio_name=name)
        self.assertTrue(result.ok, result.message)
        return result.battle

    @patch("battles.services.fetch_prices", side_effect=_flat_prices())
    def _join(self, battle, mock_fetch, picks=OPPONENT_PICKS, user=None, now=None):
        return join_battle(
            challenge_code=battle.challenge_code,
            joiner=user or self.bob,
            entries=build_portfolio_entries(picks),
            now=now or self.t0,
        )

    def test_create_battle_persists_creator_portfolio(self):
        battle = self._create()
        self.assertEqual(derive_status(battle), BattleStatus.WAITING)
        self.assertEqual(len(battle.challenge_code), 6)
        self.assertEqual(battle.asset_class, "STOCK")
        self.assertEqual([a.symbol for a in battle.creator_portfolio], list(CREATOR_PICKS))
        self.assertEqual(battle.creator_portfolio[0].amount, Decimal("200000.00"))

    def test_create_requires_name(self):
        result = create_battle(
            creator=self.alice, entries=build_portfolio_entries(CREATOR_PICKS), portfolio_name="   "
        )
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, "MISSING_NAME")
        self.assertFalse(Battle.objects.exists())

    def test_create_rejects_invalid_portfolio(self):
        picks = dict(list(CREATOR_PICKS.items())[:6])
        result = create_battle(creator=self.alice, entries=build_portfolio_entries(picks), portfolio_name="A")
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, "INVALID_PORTFOLIO")

    def test_unknown_symbol_is_rejected(self):
        with self.assertRaises(ValueError):
            build_portfolio_entries({"NOPE": "10"})

    def test_join_locks_prices_and_activates(self):
        battle = self._create()
        result = self._join(battle)
        self.assertTrue(result.ok, result.message)

        battle = result.battle
        self.assertEqual(battle.opponent, self.bob)
        self.assertEqual(battle.start_at, self.t0)
        self.assertEqual(battle.end_at, self.t0 + timedelta(days=1))
        self.assertEqual(derive_status(battle, self.t0), BattleStatus.ACTIVE)
        self.assertEqual(set(battle.starting_prices), set(CREATOR_PICKS) | set(OPPONENT_PICKS))
        self.assertEqual(len(battle.opponent_portfolio), 7)
        locked = battle.locked_prices()
        for asset in battle.assets.all():
            self.assertEqual(asset.price, locked[asset.symbol])

    def test_join_twice_is_not_found(self):
        battle = self._create()
        self.assertTrue(self._join(battle).ok)
        again = self._join(battle, user=self.carol)
        self.assertFalse(again.ok)
        self.assertEqual(again.reason, "NOT_FOUND")

    def test_join_own_battle_is_rejected(self):
        battle = self._create()
        result = self._join(battle, user=self.alice)
        self.assertEqual(result.reason, "SELF_JOIN")
        battle.refresh_from_db()
        self.assertIsNone(battle.opponent_id)

    def test_join_requires_matching_asset_class(self):
        battle = self._create()
        result = self._join(battle, picks=CRYPTO_PICKS)
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, "TYPE_MISMATCH")
        self.assertEqual(result.meta["required"], "STOCK")

    def test_stock_portfolio_cannot_join_crypto_battle(self):
        battle = self._create(picks=CRYPTO_PICKS, name="Coins")
        self.assertEqual(battle.asset_class, "CRYPTO")
        result = self._join(battle, picks=OPPONENT_PICKS)
        self.assertEqual(result.reason, "TYPE_MISMATCH")
        battle.refresh_from_db()
        self.assertIsNone(battle.opponent_id)
        self.assertEqual(derive_status(battle), BattleStatus.WAITING)

    def test_join_unknown_code(self):
        self._create()
        result = join_battle(
            challenge_code="zzzzzz", joiner=self.bob, entries=build_portfolio_entries(OPPONENT_PICKS)
        )
        self.assertEqual(result.reason, "NOT_FOUND")

    def test_join_blank_code(self):
        result = join_battle(challenge_code=" ", joiner=self.bob, entries=build_portfolio_entries(OPPONENT_PICKS))
        self.assertEqual(result.reason, "MISSING_CODE")

    def test_challenge_code_falls_back_to_suffix_when_exhausted(self):
        Battle.objects.create(
            challenge_code="AAAAAA", portfolio_name="x", creator=self.alice, asset_class="STOCK"
        )
        with patch("battles.services.secrets.choice", return_value="A"):
            code = generate_challenge_code()
        self.assertEqual(len(code), 8)
        self.assertTrue(code.startswith("AAAAAA"))
        self.assertTrue(code[6:].isdigit())

    def test_challenge_code_ignores_active_battles(self):
        Battle.objects.create(
            challenge_code="AAAAAA",
            portfolio_name="x",
            creator=self.alice,
            opponent=self.bob,
            asset_class="STOCK",
            start_at=self.t0 - timedelta(hours=1),
            end_at=self.t0 + timedelta(hours=1),
        )
        with patch("battles.services.secrets.choice", return_value="A"):
            self.assertEqual(generate_challenge_code(self.t0), "AAAAAA")

    def test_full_battle_settles_once_and_rewards_winner(self):
        battle = self._create()
        self.assertTrue(self._join(battle).ok)
        after_end = self.t0 + timedelta(days=1, seconds=1)

        # Nothing to settle while the battle is running.
        self.assertEqual(run_settlement_pass(now=self.t0 + timedelta(hours=2)), [])

        closing = {s: Decimal("110") for s in CREATOR_PICKS}
        with patch("battles.services.fetch_prices", side_effect=_flat_prices(closing)):
            settled = run_settlement_pass(now=after_end, viewer=self.alice)
            again = run_settlement_pass(now=after_end + timedelta(seconds=10), viewer=self.alice)

        self.assertEqual(len(settled), 1)
        self.assertEqual(again, [])
        self.assertEqual(BattleResult.objects.count(), 1)

        result = BattleResult.objects.get(battle=battle)
        self.assertEqual(result.winner, self.alice)
        self.assertEqual(result.loser, self.bob)
        self.assertFalse(result.is_draw)
        self.assertEqual(result.creator_return, Decimal("10.00"))
        self.assertEqual(result.opponent_return, Decimal("0.00"))
        self.assertEqual(result.margin, Decimal("10.00"))
        self.assertEqual(result.xp_awarded, {"alice": 200, "bob": 25})

        battle.refresh_from_db()
        self.assertEqual(battle.completed_at, after_end)
        self.assertEqual(Decimal(battle.ending_prices["AAPL"]), Decimal("110"))
        self.assertEqual(Decimal(battle.starting_prices["AAPL"]), Decimal("100"))
        doc = battle_to_document(self._snapshot(battle), now=after_end)
        self.assertEqual(doc["endingPrices"]["AAPL"], "110")
        self.assertEqual(doc["startingPrices"]["V"], "100")

        alice =PlayerProfile.objects.get(user=self.alice)
        self.assertEqual((alice.xp, alice.wins, alice.losses), (200, 1, 0))
        # Bob was not the viewer; his reward waits for reconciliation.
        self.assertFalse(PlayerProfile.objects.filter(user=self.bob, xp__gt=0).exists())

    def test_settlement_falls_back_to_locked_prices_and_draws(self):
        battle = self._create()
        self.assertTrue(self._join(battle).ok)

        with patch("marketdata.services.fetch_provider_prices", return_value={}):
            settled = run_settlement_pass(now=self.t0 + timedelta(days=2), viewer=self.bob)

        self.assertEqual(len(settled), 1)
        result = BattleResult.objects.get(battle=battle)
        self.assertTrue(result.is_draw)
        self.assertIsNone(result.winner)
        self.assertEqual((result.creator_xp, result.opponent_xp), (25, 25))
        bob = PlayerProfile.objects.get(user=self.bob)
        self.assertEqual((bob.xp, bob.draws), (25, 1))

    def test_explicit_battles_pass_through_unsettled(self):
        battle = self._create()
        out = run_settlement_pass([battle], self.t0)
        self.assertEqual(out, [battle])
        self.assertFalse(BattleResult.objects.exists())

    def _snapshot(self, battle):
        return (
            Battle.objects.select_related("creator", "opponent", "result")
            .prefetch_related("assets")
            .get(pk=battle.pk)
        )

    def test_stale_snapshot_does_not_settle_twice(self):
        battle = self._create()
        self.assertTrue(self._join(battle).ok)
        stale = self._snapshot(battle)
        after_end = self.t0 + timedelta(days=1, seconds=1)

        closing = {s: Decimal("110") for s in CREATOR_PICKS}
        with patch("battles.services.fetch_prices", side_effect=_flat_prices(closing)):
            self.assertEqual(len(run_settlement_pass(now=after_end)), 1)

        crash = {s: Decimal("50") for s in CREATOR_PICKS}
        with patch("battles.services.fetch_prices", side_effect=_flat_prices(crash)):
            out = run_settlement_pass([stale], after_end + timedelta(minutes=5), viewer=self.alice)

        self.assertEqual(out, [stale])
        self.assertEqual(BattleResult.objects.count(), 1)
        result = BattleResult.objects.get(battle=battle)
        self.assertEqual(result.creator_return, Decimal("10.00"))
        self.assertEqual(result.winner, self.alice)
        battle.refresh_from_db()
        self.assertEqual(Decimal(battle.ending_prices["AAPL"]), Decimal("110"))

    def test_concurrent_result_insert_is_treated_as_settled(self):
        battle = self._create()
        self.assertTrue(self._join(battle).ok)
        stale = self._snapshot(battle)
        after_end = self.t0 + timedelta(days=1, seconds=1)
        with patch("battles.services.fetch_prices", side_effect=_flat_prices()):
            run_settlement_pass(now=after_end)

        # The existence check misses the row, so the insert itself collides.
        unseen = MagicMock(exists=MagicMock(return_value=False))
        with patch("battles.services.fetch_prices", side_effect=_flat_prices({"AAPL": Decimal("50")})):
            with patch.object(BattleResult.objects, "filter", return_value=unseen):
                self.assertIsNone(settle_battle(stale, now=after_end))

        self.assertEqual(BattleResult.objects.count(), 1)
        self.assertEqual(BattleResult.objects.get(battle=battle).creator_return, Decimal("0.00"))

    def _settled_battle(self):
        battle = self._create()
        self.assertTrue(self._join(battle).ok)
        with patch("battles.services.fetch_prices", side_effect=_flat_prices()):
            return run_settlement_pass(now=self.t0 + timedelta(days=1, minutes=1))[0]

    def test_archive_hides_battle_for_that_user_only(self):
        battle = self._settled_battle()
        result = archive_battle(battle=battle, user=self.alice)
        self.assertTrue(result.ok)

        entry = BattleArchiveEntry.objects.get(user=self.alice, battle=battle)
        self.assertEqual(entry.snapshot["challengeCode"], battle.challenge_code)
        self.assertEqual(entry.snapshot["status"], BattleStatus.COMPLETED)
        self.assertNotIn(battle, battles_for_user(self.alice))
        self.assertIn(battle, battles_for_user(self.bob))
        self.assertTrue(BattleResult.objects.filter(battle=battle).exists())

        again = archive_battle(battle=battle, user=self.alice)
        self.assertTrue(again.ok)
        self.assertEqual(BattleArchiveEntry.objects.filter(user=self.alice).count(), 1)

    def test_archive_requires_participant_and_completion(self):
        battle = self._create()
        self.assertEqual(archive_battle(battle=battle, user=self.carol).reason, "NOT_PARTICIPANT")
        self.assertEqual(archive_battle(battle=battle, user=self.alice).reason, "NOT_COMPLETED")

    def test_purge_removes_only_stale_waiting_battles(self):
        stale = self._create(name="Stale")
        fresh = self._create(name="Fresh")
        Battle.objects.filter(pk=stale.pk).update(created_at=timezone.now() - timedelta(hours=25))

        self.assertEqual(purge_stale_battles(), 1)
        self.assertFalse(Battle.objects.filter(pk=stale.pk).exists())
        self.assertTrue(Battle.objects.filter(pk=fresh.pk).exists())
        self.assertFalse(PortfolioAsset.objects.filter(battle_id=stale.pk).exists())


class BattleCommandTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.alice = User.objects.create_user(username="alice", password="pw")
        self.bob = User.objects.create_user(username="bob", password="pw")
        now = timezone.now()
        self.battle = Battle.objects.create(
            challenge_code="CMDTST",
            portfolio_name="Cmd",
            creator=self.alice,
            opponent=self.bob,
            asset_class="STOCK",
            status=BattleStatus.ACTIVE,
            start_at=now - timedelta(days=2),
            end_at=now - timedelta(days=1),
            starting_prices={s: "100" for s in list(CREATOR_PICKS) + list(OPPONENT_PICKS)},
        )
        for side, picks in ((PortfolioSide.CREATOR, CREATOR_PICKS), (PortfolioSide.OPPONENT, OPPONENT_PICKS)):
            for idx, entry in enumerate(_entries(picks)):
                PortfolioAsset.objects.create(
                    battle=self.battle,
                    side=side,
                    position=idx,
                    symbol=entry.symbol,
                    name=entry.name,
                    asset_class=entry.asset_class,
                    price=entry.price,
                    amount=entry.amount,
                )

    def test_settle_command_is_idempotent(self):
        closing = {s: Decimal("95") for s in CREATOR_PICKS}
        with patch("battles.services.fetch_prices", side_effect=_flat_prices(closing)):
            out = io.StringIO()
            call_command("settle_completed_battles", stdout=out)
            call_command("settle_completed_battles", stdout=out)

        text = out.getvalue()
        self.assertIn("winner=bob", text)
        self.assertIn("Settled 1 battle(s).", text)
        self.assertIn("Settled 0 battle(s).", text)
        self.assertEqual(BattleResult.objects.get(battle=self.battle).winner, self.bob)

    def test_export_battles_outputs_documents(self):
        out = io.StringIO()
        call_command("export_battles", stdout=out)
        payload = json.loads(out.getvalue())
        doc = payload["battles"][str(self.battle.pk)]
        self.assertEqual(doc["challengeCode"], "CMDTST")
        self.assertEqual(doc["status"], BattleStatus.COMPLETED)
        self.assertEqual(len(doc["creatorPortfolio"]), 7)
        self.assertIsNone(doc["result"])

    def test_purge_command_reports_count(self):
        out = io.StringIO()
        call_command("purge_stale_battles", stdout=out)
        self.assertIn("Purged 0 stale battle(s)", out.getvalue())


class BattleViewTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.alice = User.objects.create_user(username="alice", password="pw")
        self.bob = User.objects.create_user(username="bob", password="pw")
        self.client = Client()
        self.client.login(username="alice", password="pw")

    def _post_create(self, picks=CREATOR_PICKS, name="Alpha"):
        data = {f"pct_{s}": p for s, p in picks.items()}
        data["portfolio_name"] = name
        return self.client.post(reverse("battles:create"), data)

    def test_create_and_list(self):
        resp = self._post_create()
        self.assertEqual(resp.status_code, 201)
        battle = resp.json()["battle"]
        self.assertEqual(battle["status"], "waiting")
        self.assertEqual(battle["timeRemaining"], "Waiting for opponent")

        resp = self.client.get(reverse("battles:list"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([b["id"] for b in resp.json()["battles"]], [battle["id"]])

    def test_create_invalid_portfolio_is_400(self):
        resp = self._post_create(picks=dict(list(CREATOR_PICKS.items())[:3]))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "INVALID_PORTFOLIO")

    def test_create_with_nan_allocation_is_400(self):
        resp = self._post_create(picks=dict(CREATOR_PICKS, AAPL="NaN"))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "INVALID_PORTFOLIO")
        self.assertFalse(Battle.objects.exists())

    def test_detail_reports_live_holdings(self):
        battle_id = self._post_create().json()["battle"]["id"]
        with patch("battles.services.fetch_prices", side_effect=_flat_prices()):
            joined = join_battle(
                challenge_code=Battle.objects.get(pk=battle_id).challenge_code,
                joiner=self.bob,
                entries=build_portfolio_entries(OPPONENT_PICKS),
            )
        self.assertTrue(joined.ok, joined.message)

        aapl = Instrument.objects.create(symbol="AAPL", name="Apple")
        Quote.objects.create(instrument=aapl, as_of=timezone.now(), price=Decimal("100.025"), provider_name="finnhub")

        resp = self.client.get(reverse("battles:detail", args=[battle_id]))
        self.assertEqual(resp.status_code, 200)
        live = resp.json()["battle"]["liveReturns"]
        # 0.005% rounds half up.
        self.assertEqual(live["creator"], "0.01")
        self.assertEqual(live["opponent"], "0.00")
        rows = {row["symbol"]: row for row in live["creatorHoldings"]}
        self.assertEqual(rows["AAPL"], {"symbol": "AAPL", "weightPct": "20.00", "returnPct": "0.03"})
        self.assertEqual(rows["META"]["returnPct"], "0.00")
        self.assertEqual(len(live["opponentHoldings"]), 7)

    def test_join_via_view(self):
        code = self._post_create().json()["battle"]["challengeCode"]
        bob = Client()
        bob.login(username="bob", password="pw")
        data = {f"pct_{s}": p for s, p in OPPONENT_PICKS.items()}
        data["challenge_code"] = code.lower()
        with patch("battles.services.fetch_prices", side_effect=_flat_prices()):
            resp = bob.post(reverse("battles:join"), data)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["battle"]["status"], "active")

        with patch("battles.services.fetch_prices", side_effect=_flat_prices()):
            resp = bob.post(reverse("battles:join"), data)
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"], "NOT_FOUND")

    def test_detail_forbidden_for_outsider(self):
        battle_id = self._post_create().json()["battle"]["id"]
        bob = Client()
        bob.login(username="bob", password="pw")
        resp = bob.get(reverse("battles:detail", args=[battle_id]))
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(self.client.get(reverse("battles:detail", args=[999999])).status_code, 404)

    def test_store_failure_is_503(self):
        with patch("battles.views.battles_for_user", side_effect=DatabaseError("down")):
            resp = self.client.get(reverse("battles:list"))
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["error"], "STORE_UNAVAILABLE")

    def test_history_is_empty_until_archive(self):
        resp = self.client.get(reverse("battles:history"))
        self.assertEqual(resp.json(), {"ok": True, "history": []})
