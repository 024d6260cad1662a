from django.contrib import admin

from .models import PlayerProfile, RewardLedgerEntry


@admin.register(PlayerProfile)
class PlayerProfileAdmin(admin.ModelAdmin):
    list_display = ("id", "display_name", "user", "xp", "rank", "wins", "losses", "draws")
    search_fields = ("display_name", "user__username", "user__email")
    readonly_fields = ("created_at", "updated_at")


@admin.register(RewardLedgerEntry)
class RewardLedgerEntryAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "battle", "outcome", "xp_delta", "created_at")
    list_filter = ("outcome",)
    search_fields = ("user__username",)
    raw_id_fields = ("user", "battle")
