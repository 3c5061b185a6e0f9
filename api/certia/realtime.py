"""Row-change fan-out for read views. Writes never depend on it."""

import logging
import redis
import redis.asyncio as aioredis
from .config import REDIS_URL, REALTIME_CHANNEL
from .utils import canonical_json

logger = logging.getLogger(__name__)

_client = None

def _get_client():
    global _client
    if _client is None:
        _client = redis.Redis.from_url(REDIS_URL, socket_timeout=2, socket_connect_timeout=2)
    return _client

def publish_change(event: str, submission) -> None:
    payload = {
        "table": "submission",
        "event": event,
        "id": submission.id,
        "template_id": submission.template_id,
        "client_id": submission.client_id,
        "status": submission.status,
        "version": submission.version,
    }
    try:
        _get_client().publish(REALTIME_CHANNEL, canonical_json(payload))
    except redis.RedisError as exc:
        logger.warning("realtime publish for submission %s failed: %s", submission.id, exc)

async def subscribe():
    """Yields raw change payloads until the consumer goes away."""
    client = aioredis.Redis.from_url(REDIS_URL)
    pubsub = client.pubsub()
    await pubsub.subscribe(REALTIME_CHANNEL)
    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            data = message.get("data")
            yield data.decode() if isinstance(data, bytes) else data
    finally:
        await pubsub.unsubscribe(REALTIME_CHANNEL)
        await pubsub.aclose()
        await client.aclose()
