# fixifly/consumers.py

import json
import logging

from channels.generic.websocket import AsyncWebsocketConsumer

logger = logging.getLogger(__name__)


class NotificationConsumer(AsyncWebsocketConsumer):
    """Pushes a user's notifications as the outbox dispatcher delivers them."""

    async def connect(self):
        self.user_id = self.scope['url_route']['kwargs']['user_id']
        user = self.scope.get('user')

        # Only the owner may listen on their own group
        if user is None or not user.is_authenticated or user.id != int(self.user_id):
            logger.warning(f"Rejected notification socket for user {self.user_id}")
            await self.close()
            return

        self.room_group_name = f'notifications_{self.user_id}'

        await self.channel_layer.group_add(
            self.room_group_name,
            self.channel_name
        )
        await self.accept()

        await self.send(text_data=json.dumps({
            'message': f'Connected to notifications for user {self.user_id}'
        }))

    async def disconnect(self, close_code):
        if hasattr(self, 'room_group_name'):
            await self.channel_layer.group_discard(
                self.room_group_name,
                self.channel_name
            )

    async def send_notification(self, event):
        await self.send(text_data=json.dumps({
            'message': event['message']
        }))
