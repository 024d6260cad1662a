from __future__ import annotations

from django.urls import re_path

from . import consumers

websocket_urlpatterns = [
    re_path(r"^ws/battles/(?P<battle_id>\d+)/$", consumers.BattleStreamConsumer.as_asgi()),
]
