from __future__ import annotations

import time

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from battles.services import run_settlement_pass


class Command(BaseCommand):
    help = "Settle battles whose end time has passed (cron-friendly, idempotent)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--interval",
            type=int,
            default=None,
            help=(
                "Keep running and check every N seconds. "
                f"Omit to run once (suggested: {settings.SETTLEMENT_POLL_SECONDS})."
            ),
        )

    def handle(self, *args, **options):
        interval = options.get("interval")
        while True:
            now = timezone.now()
            battles = run_settlement_pass(now=now)
            settled = [b for b in battles if b.is_settled]
            for battle in settled:
                result = battle.result
                winner = "draw" if result.is_draw else result.winner.get_username()
                self.stdout.write(f"SETTLED battle={battle.pk} code={battle.challenge_code} winner={winner}")
            self.stdout.write(f"Settled {len(settled)} battle(s).")
            if not interval:
                return
            time.sleep(interval)
