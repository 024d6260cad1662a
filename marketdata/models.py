from django.db import models


class AssetClass(models.TextChoices):
    STOCK = "STOCK", "Stock"
    CRYPTO = "CRYPTO", "Crypto"


class Instrument(models.Model):
    symbol = models.CharField(max_length=16, unique=True)
    name = models.CharField(max_length=200, blank=True)
    asset_class = models.CharField(
        max_length=16, choices=AssetClass.choices, default=AssetClass.STOCK
    )
    # Provider-side identifier (CoinGecko coin id for crypto); blank for stocks.
    provider_id = models.CharField(max_length=64, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.symbol


class Quote(models.Model):
    instrument = models.ForeignKey(
        Instrument, on_delete=models.CASCADE, related_name="quotes"
    )
    as_of = models.DateTimeField()

    price = models.DecimalField(max_digits=20, decimal_places=6)
    change = models.DecimalField(max_digits=20, decimal_places=6, blank=True, null=True)
    percent_change = models.DecimalField(max_digits=20, decimal_places=6, blank=True, null=True)

    provider_name = models.CharField(max_length=50)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["instrument", "as_of", "provider_name"],
                name="uniq_quote_instrument_asof_provider",
            ),
        ]
        indexes = [
            models.Index(fields=["instrument", "-as_of"], name="md_quote_inst_asof_idx"),
            models.Index(fields=["provider_name", "as_of"], name="md_quote_provider_asof_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.instrument.symbol}@{self.as_of.isoformat()}"
