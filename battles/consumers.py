from __future__ import annotations

import asyncio
import json
from typing import Any

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.conf import settings

from .models import Battle, BattleStatus
from .serializers import result_to_document
from .status import battle_day, derive_status, format_time_remaining


def _status_frame(battle_id: int, user_id: int) -> dict[str, Any]:
    battle = (
        Battle.objects.select_related("creator", "opponent", "result")
        .filter(pk=battle_id)
        .first()
    )
    if battle is None:
        return {"type": "error", "error": "NOT_FOUND"}
    if not battle.is_participant(user_id):
        return {"type": "error", "error": "NOT_PARTICIPANT"}
    return {
        "type": "status",
        "battleId": battle.pk,
        "status": derive_status(battle),
        "timeRemaining": format_time_remaining(battle),
        "day": battle_day(battle),
        "result": result_to_document(battle),
    }


class BattleStreamConsumer(AsyncWebsocketConsumer):
    """
    Pushes a status frame for one battle every BATTLE_STREAM_INTERVAL seconds
    until the battle has a result. Only participants may subscribe.
    """

    stream_task: asyncio.Task | None = None

    async def connect(self):
        await self.accept()

        user = self.scope.get("user")
        if not user or not user.is_authenticated:
            await self.send_json({"type": "error", "error": "NOT_AUTHENTICATED"})
            await self.close(code=4401)
            return

        self.battle_id = int(self.scope["url_route"]["kwargs"]["battle_id"])
        self.user_id = user.pk

        frame = await database_sync_to_async(_status_frame)(self.battle_id, self.user_id)
        await self.send_json(frame)
        if frame["type"] == "error":
            await self.close(code=4404 if frame["error"] == "NOT_FOUND" else 4403)
            return

        if not self._finished(frame):
            self.stream_task = asyncio.create_task(self._stream_loop())

    async def disconnect(self, code):
        if self.stream_task:
            self.stream_task.cancel()
        self.stream_task = None

    async def send_json(self, payload: dict[str, Any]):
        await self.send(text_data=json.dumps(payload))

    @staticmethod
    def _finished(frame: dict[str, Any]) -> bool:
        return frame.get("status") == BattleStatus.COMPLETED and frame.get("result") is not None

    async def _stream_loop(self):
        interval = float(getattr(settings, "BATTLE_STREAM_INTERVAL", 2))
        while True:
            await asyncio.sleep(interval)
            frame = await database_sync_to_async(_status_frame)(self.battle_id, self.user_id)
            await self.send_json(frame)
            if frame["type"] == "error" or self._finished(frame):
                return
