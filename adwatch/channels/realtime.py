"""
Realtime channel over Redis pub/sub.

Each scope maps to one channel, ``{prefix}:{scope}``; the message is an
envelope ``{"event": ..., "payload": ...}`` that the websocket gateway
forwards to the clients joined to that room.
"""

from typing import Any, Dict

from adwatch.errors import ChannelError
from adwatch.interfaces.notifications import RealtimePublisher
from adwatch.storage.redis_client import RedisClient, RedisClientError


class RedisRealtimePublisher(RealtimePublisher):
    """
    RealtimePublisher over a connected RedisClient.

    Example:
        >>> publisher = RedisRealtimePublisher(redis_client, channel_prefix="realtime")
        >>> await publisher.publish("user_42", "new_alert", payload)
    """

    def __init__(self, client: RedisClient, channel_prefix: str = "realtime") -> None:
        self.client = client
        self.channel_prefix = channel_prefix

    def channel_for(self, scope: str) -> str:
        """Pub/sub channel of a scope."""
        return f"{self.channel_prefix}:{scope}"

    async def publish(self, scope: str, event: str, payload: Dict[str, Any]) -> None:
        try:
            await self.client.publish(self.channel_for(scope), {"event": event, "payload": payload})
        except RedisClientError as e:
            raise ChannelError(f"Realtime publish failed: {e}", channel="realtime", scope=scope) from e
