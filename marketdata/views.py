from __future__ import annotations

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_GET

from .catalog import fallback_price, list_catalog
from .models import AssetClass
from .services import latest_cached_prices


@login_required
@require_GET
def asset_catalog(request):
    raw_type = (request.GET.get("type") or "").strip().upper()
    if raw_type and raw_type not in AssetClass.values:
        return JsonResponse({"ok": False, "error": "INVALID_ASSET_CLASS"}, status=400)

    assets = list_catalog(asset_class=raw_type or None, term=request.GET.get("q") or "")
    cached = latest_cached_prices([a.symbol for a in assets])
    rows = [
        {
            "symbol": a.symbol,
            "name": a.name,
            "assetClass": a.asset_class,
            "price": str(cached.get(a.symbol) or fallback_price(a.symbol)),
            "cached": a.symbol in cached,
        }
        for a in assets
    ]
    return JsonResponse({"ok": True, "assets": rows})
