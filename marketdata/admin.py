from django.contrib import admin

from .models import Instrument, Quote


@admin.register(Instrument)
class InstrumentAdmin(admin.ModelAdmin):
    list_display = ("id", "symbol", "name", "asset_class", "provider_id", "updated_at")
    list_filter = ("asset_class",)
    search_fields = ("symbol", "name", "provider_id")


@admin.register(Quote)
class QuoteAdmin(admin.ModelAdmin):
    list_display = ("id", "instrument", "as_of", "price", "percent_change", "provider_name")
    list_filter = ("provider_name",)
    search_fields = ("instrument__symbol",)
    readonly_fields = (
        "instrument",
        "as_of",
        "price",
        "change",
        "percent_change",
        "provider_name",
    )
