from __future__ import annotations

from django.conf import settings
from django.core.management.base import BaseCommand

from battles.services import purge_stale_battles


class Command(BaseCommand):
    help = "Delete waiting battles nobody joined within STALE_WAITING_BATTLE_HOURS."

    def handle(self, *args, **options):
        deleted = purge_stale_battles()
        self.stdout.write(
            f"Purged {deleted} stale battle(s) older than {settings.STALE_WAITING_BATTLE_HOURS}h."
        )
