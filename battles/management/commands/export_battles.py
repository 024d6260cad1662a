from __future__ import annotations

import json

from django.core.management.base import BaseCommand
from django.core.serializers.json import DjangoJSONEncoder

from battles.models import Battle
from battles.serializers import battle_to_document


class Command(BaseCommand):
    help = "Dump every battle as a JSON document keyed by battle id."

    def add_arguments(self, parser):
        parser.add_argument("--indent", type=int, default=2)
        parser.add_argument(
            "--status",
            choices=["waiting", "active", "completed"],
            default=None,
            help="Only export battles whose live status matches.",
        )

    def handle(self, *args, **options):
        battles = (
            Battle.objects.select_related("creator", "opponent", "result")
            .prefetch_related("assets")
            .order_by("id")
        )
        documents = {}
        for battle in battles:
            doc = battle_to_document(battle)
            if options["status"] and doc["status"] != options["status"]:
                continue
            documents[str(battle.pk)] = doc
        self.stdout.write(json.dumps({"battles": documents}, cls=DjangoJSONEncoder, indent=options["indent"]))
