import json

from channels.generic.websocket import AsyncWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from clinic.services.security import ALERTS_GROUP


class AlertsConsumer(AsyncWebsocketConsumer):
    """Pushes security alerts and sync completions to signed-in staff.

    Non-super staff only receive alerts raised in their own clinic.
    """
    GROUP = ALERTS_GROUP

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        if not getattr(user, "is_authenticated", False) or getattr(user, "is_deleted", False):
            await self.close(code=4001)
            return
        self.is_super = getattr(user, "role", None) == "super"
        self.warehouse_id = str(user.warehouse_id) if getattr(user, "warehouse_id", None) else None
        await self.channel_layer.group_add(self.GROUP, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(self.GROUP, self.channel_name)

    async def security_alert(self, event):
        # event: {"type": "security.alert", "warehouseId": ..., "activityId": ..., "severity": ...}
        if self.is_super or event.get("warehouseId") == self.warehouse_id:
            await self.send(json.dumps(event))

    async def sync_finished(self, event):
        await self.send(json.dumps(event))
