from __future__ import annotations

import functools
import logging
from decimal import ROUND_HALF_UP

from django.contrib.auth.decorators import login_required
from django.db import DatabaseError
from django.http import JsonResponse
from django.utils import timezone
from django.views.decorators.http import require_GET, require_POST

from accounts.services import reconcile_rewards
from marketdata.services import latest_cached_prices

from .forms import CreateBattleForm, JoinBattleForm
from .models import Battle, BattleStatus
from .scoring import PCT_QUANT, allocation_weight, asset_return_pct, calculate_portfolio_return
from .serializers import battle_to_document
from .services import (
    BattleActionResult,
    archive_battle,
    battle_history,
    battles_for_user,
    create_battle,
    join_battle,
    run_settlement_pass,
)
from .status import derive_status

logger = logging.getLogger(__name__)

REASON_STATUS = {
    "NOT_FOUND": 404,
    "NOT_PARTICIPANT": 403,
}


def store_errors_as_503(view):
    @functools.wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except DatabaseError:
            logger.exception("Battle store unavailable during %s", view.__name__)
            return JsonResponse({"ok": False, "error": "STORE_UNAVAILABLE"}, status=503)

    return wrapper


def _failure(result: BattleActionResult) -> JsonResponse:
    payload = {"ok": False, "error": result.reason, "message": result.message}
    extra = {k: v for k, v in (result.meta or {}).items() if k != "reason"}
    if extra:
        payload["meta"] = extra
    return JsonResponse(payload, status=REASON_STATUS.get(result.reason, 400))


def _form_failure(form, reason: str) -> JsonResponse:
    messages = [str(m) for m in form.non_field_errors()]
    for field, errors in form.errors.items():
        if field != "__all__":
            messages.extend(f"{field}: {e}" for e in errors)
    return JsonResponse({"ok": False, "error": reason, "message": " ".join(messages)}, status=400)


def _holding_rows(assets, current, locked) -> list[dict]:
    return [
        {
            "symbol": a.symbol,
            "weightPct": str(allocation_weight(a)),
            "returnPct": str(asset_return_pct(a, current, locked)),
        }
        for a in assets
    ]


def _live_returns(battle: Battle, now) -> dict | None:
    """Returns against the latest cached quotes while the battle runs."""
    if derive_status(battle, now) != BattleStatus.ACTIVE:
        return None
    locked = battle.locked_prices()
    current = {**locked, **latest_cached_prices(list(locked.keys()))}

    def _total(assets) -> str:
        return str(
            calculate_portfolio_return(assets, current, locked).quantize(PCT_QUANT, rounding=ROUND_HALF_UP)
        )

    return {
        "creator": _total(battle.creator_portfolio),
        "opponent": _total(battle.opponent_portfolio),
        "creatorHoldings": _holding_rows(battle.creator_portfolio, current, locked),
        "opponentHoldings": _holding_rows(battle.opponent_portfolio, current, locked),
    }


@login_required
@require_GET
@store_errors_as_503
def battle_list(request):
    now = timezone.now()
    battles = run_settlement_pass(battles_for_user(request.user), now, viewer=request.user)
    reconcile_rewards(request.user)
    return JsonResponse({"ok": True, "battles": [battle_to_document(b, now=now) for b in battles]})


@login_required
@require_POST
@store_errors_as_503
def battle_create(request):
    form = CreateBattleForm(request.POST)
    if not form.is_valid():
        return _form_failure(form, "INVALID_PORTFOLIO")

    result = create_battle(
        creator=request.user,
        entries=form.cleaned_data["entries"],
        portfolio_name=form.cleaned_data["portfolio_name"],
    )
    if not result.ok:
        return _failure(result)
    return JsonResponse(
        {"ok": True, "message": result.message, "battle": battle_to_document(result.battle)},
        status=201,
    )


@login_required
@require_POST
@store_errors_as_503
def battle_join(request):
    form = JoinBattleForm(request.POST)
    if not form.is_valid():
        return _form_failure(form, "INVALID_PORTFOLIO")

    result = join_battle(
        challenge_code=form.cleaned_data["challenge_code"],
        joiner=request.user,
        entries=form.cleaned_data["entries"],
    )
    if not result.ok:
        return _failure(result)
    return JsonResponse({"ok": True, "message": result.message, "battle": battle_to_document(result.battle)})


def _get_battle(battle_id: int) -> Battle | None:
    return (
        Battle.objects.select_related("creator", "opponent", "result")
        .prefetch_related("assets")
        .filter(pk=battle_id)
        .first()
    )


@login_required
@require_GET
@store_errors_as_503
def battle_detail(request, battle_id: int):
    battle = _get_battle(battle_id)
    if battle is None:
        return JsonResponse({"ok": False, "error": "NOT_FOUND"}, status=404)
    if not battle.is_participant(request.user):
        return JsonResponse({"ok": False, "error": "NOT_PARTICIPANT"}, status=403)

    now = timezone.now()
    battle = run_settlement_pass([battle], now, viewer=request.user)[0]
    doc = battle_to_document(battle, now=now)
    doc["liveReturns"] = _live_returns(battle, now)
    return JsonResponse({"ok": True, "battle": doc})


@login_required
@require_POST
@store_errors_as_503
def battle_archive(request, battle_id: int):
    battle = _get_battle(battle_id)
    if battle is None:
        return JsonResponse({"ok": False, "error": "NOT_FOUND"}, status=404)

    result = archive_battle(battle=battle, user=request.user)
    if not result.ok:
        return _failure(result)
    return JsonResponse({"ok": True, "message": result.message, **(result.meta or {})})


@login_required
@require_GET
@store_errors_as_503
def battle_history_view(request):
    entries = battle_history(request.user)
    return JsonResponse(
        {
            "ok": True,
            "history": [
                {**entry.snapshot, "archivedAt": entry.archived_at.isoformat()} for entry in entries
            ],
        }
    )
