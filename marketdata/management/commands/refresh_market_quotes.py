from __future__ import annotations

import time

from django.conf import settings
from django.core.management.base import BaseCommand

from marketdata.services import refresh_catalog_quotes


class Command(BaseCommand):
    help = "Fetch and cache latest quotes for every catalog asset (cron-friendly)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--interval",
            type=int,
            default=None,
            help=(
                "Keep running and refresh every N seconds. "
                f"Omit to run once (suggested: {settings.QUOTE_REFRESH_SECONDS})."
            ),
        )

    def handle(self, *args, **options):
        interval = options.get("interval")
        while True:
            stored, missing = refresh_catalog_quotes()
            self.stdout.write(f"Stored {stored} quote(s).")
            if missing:
                self.stdout.write(f"Missing: {', '.join(missing[:50])}{'...' if len(missing) > 50 else ''}")
            if not interval:
                return
            time.sleep(interval)
