from __future__ import annotations

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Instrument",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("symbol", models.CharField(max_length=16, unique=True)),
                ("name", models.CharField(blank=True, max_length=200)),
                (
                    "asset_class",
                    models.CharField(
                        choices=[("STOCK", "Stock"), ("CRYPTO", "Crypto")],
                        default="STOCK",
                        max_length=16,
                    ),
                ),
                ("provider_id", models.CharField(blank=True, max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name="Quote",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("as_of", models.DateTimeField()),
                ("price", models.DecimalField(decimal_places=6, max_digits=20)),
                ("change", models.DecimalField(blank=True, decimal_places=6, max_digits=20, null=True)),
                ("percent_change", models.DecimalField(blank=True, decimal_places=6, max_digits=20, null=True)),
                ("provider_name", models.CharField(max_length=50)),
                (
                    "instrument",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="quotes",
                        to="marketdata.instrument",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["instrument", "-as_of"], name="md_quote_inst_asof_idx"),
                    models.Index(fields=["provider_name", "as_of"], name="md_quote_provider_asof_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("instrument", "as_of", "provider_name"),
                        name="uniq_quote_instrument_asof_provider",
                    ),
                ],
            },
        ),
    ]
