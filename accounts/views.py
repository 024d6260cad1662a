from __future__ import annotations

from django.contrib.auth import login
from django.contrib.auth.decorators import login_required
from django.db import transaction
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST

from .forms import SignupForm
from .models import PlayerProfile
from .services import get_or_create_profile


def _profile_payload(profile: PlayerProfile) -> dict:
    return {
        "username": profile.user.get_username(),
        "displayName": profile.display_name,
        "xp": profile.xp,
        "rank": profile.rank,
        "wins": profile.wins,
        "losses": profile.losses,
        "draws": profile.draws,
        "battlesPlayed": profile.battles_played,
    }


@require_POST
def signup(request):
    if request.user.is_authenticated:
        return JsonResponse({"ok": False, "error": "ALREADY_SIGNED_IN"}, status=400)

    form = SignupForm(request.POST)
    if not form.is_valid():
        return JsonResponse(
            {"ok": False, "error": "INVALID_SIGNUP", "fields": form.errors.get_json_data()},
            status=400,
        )

    with transaction.atomic():
        user = form.save()
        profile = PlayerProfile.objects.create(user=user, display_name=form.cleaned_data["display_name"])
    login(request, user, backend="django.contrib.auth.backends.ModelBackend")
    return JsonResponse({"ok": True, "profile": _profile_payload(profile)}, status=201)


@login_required
@require_GET
def profile(request):
    profile = get_or_create_profile(request.user)
    return JsonResponse({"ok": True, "profile": _profile_payload(profile)})
