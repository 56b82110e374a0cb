import asyncio
import json
import redis.asyncio as redis
from typing import Optional

from pair_app.config import settings
from pair_app.core.log import log, error_log
from pair_app.services.whatsapp_bridge import WhatsAppBridge, whatsapp_bridge


class RedisSubscriber:
    """Subscribe to the bridge's Redis channel and route session events"""

    def __init__(self, bridge: Optional[WhatsAppBridge] = None, channel: Optional[str] = None):
        self.bridge = bridge or whatsapp_bridge
        self.channel = channel or settings.events_channel
        self.redis = None
        self.pubsub = None
        self.running = False

    async def connect(self):
        self.redis = redis.from_url(settings.redis_url)
        self.pubsub = self.redis.pubsub()
        await self.pubsub.subscribe(self.channel)

    async def start(self):
        """Start listening for events"""
        if not self.redis:
            await self.connect()

        self.running = True
        log("REDIS", f"Subscriber started on {self.channel}")

        while self.running:
            try:
                message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message:
                    self.handle_message(message)
            except Exception as e:
                error_log("REDIS", f"Subscriber error: {e}")
                await asyncio.sleep(1)

    async def stop(self):
        """Stop the subscriber"""
        self.running = False
        if self.pubsub:
            await self.pubsub.unsubscribe(self.channel)
        if self.redis:
            await self.redis.close()
        self.redis = None
        self.pubsub = None

    def handle_message(self, message):
        """Handle incoming Redis message. Dispatch is synchronous so per-session order is kept."""
        try:
            data = json.loads(message["data"])
        except (TypeError, ValueError) as e:
            error_log("REDIS", f"Dropping malformed event: {e}")
            return

        if not isinstance(data, dict):
            error_log("REDIS", f"Dropping non-object event: {data!r}")
            return

        session_id = data.get("sessionId")
        if not session_id:
            return

        if not self.bridge.dispatch(session_id, data):
            log("REDIS", f"No live connection for {session_id}, ignoring {data.get('type')}")


redis_subscriber = RedisSubscriber()
