import io

from django.contrib import admin
from django.contrib import messages
from django.core.exceptions import PermissionDenied
from django.core.management import call_command

from .models import Battle, BattleArchiveEntry, BattleResult, PortfolioAsset
from .status import derive_status, format_time_remaining


def _can_run_ops(request) -> bool:
    """
    Gate operational admin actions behind an explicit permission check.
    Default: allow staff with change permission on Battle (or superuser).
    """
    user = getattr(request, "user", None)
    if not user or not user.is_authenticated:
        return False
    if not user.is_active or not user.is_staff:
        return False
    if user.is_superuser:
        return True
    return user.has_perm("battles.change_battle")


def _run_command_and_capture(*cmd_args, **cmd_kwargs) -> str:
    buf = io.StringIO()
    call_command(*cmd_args, stdout=buf, stderr=buf, **cmd_kwargs)
    return (buf.getvalue() or "").strip()


@admin.action(description="Ops: settle completed battles now")
def ops_settle_completed_battles(modeladmin, request, queryset):
    if not _can_run_ops(request):
        raise PermissionDenied
    out = _run_command_and_capture("settle_completed_battles")
    msg = out.splitlines()[-1] if out else "settle_completed_battles completed."
    modeladmin.message_user(request, msg, level=messages.SUCCESS)


@admin.action(description="Ops: purge stale waiting battles")
def ops_purge_stale_battles(modeladmin, request, queryset):
    if not _can_run_ops(request):
        raise PermissionDenied
    out = _run_command_and_capture("purge_stale_battles")
    msg = out.splitlines()[-1] if out else "purge_stale_battles completed."
    modeladmin.message_user(request, msg, level=messages.SUCCESS)


class PortfolioAssetInline(admin.TabularInline):
    model = PortfolioAsset
    extra = 0
    fields = ("side", "position", "symbol", "name", "asset_class", "price", "amount")
    readonly_fields = fields
    can_delete = False


class BattleResultInline(admin.StackedInline):
    model = BattleResult
    extra = 0
    readonly_fields = (
        "winner",
        "loser",
        "is_draw",
        "creator_return",
        "opponent_return",
        "margin",
        "creator_xp",
        "opponent_xp",
        "created_at",
    )
    can_delete = False


@admin.register(Battle)
class BattleAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "challenge_code",
        "portfolio_name",
        "creator",
        "opponent",
        "asset_class",
        "live_status",
        "time_remaining",
        "created_at",
    )
    list_filter = ("asset_class", "status")
    search_fields = ("challenge_code", "portfolio_name", "creator__username", "opponent__username")
    raw_id_fields = ("creator", "opponent")
    readonly_fields = ("starting_prices", "ending_prices", "created_at", "completed_at", "updated_at")
    inlines = [PortfolioAssetInline, BattleResultInline]
    actions = [ops_settle_completed_battles, ops_purge_stale_battles]

    @admin.display(description="Status")
    def live_status(self, obj):
        return derive_status(obj)

    @admin.display(description="Time remaining")
    def time_remaining(self, obj):
        return format_time_remaining(obj)


@admin.register(BattleResult)
class BattleResultAdmin(admin.ModelAdmin):
    list_display = ("battle", "winner", "loser", "is_draw", "creator_return", "opponent_return", "margin")
    list_filter = ("is_draw",)
    raw_id_fields = ("battle", "winner", "loser")


@admin.register(BattleArchiveEntry)
class BattleArchiveEntryAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "battle", "archived_at")
    search_fields = ("user__username", "battle__challenge_code")
    raw_id_fields = ("user", "battle")
