import json
from typing import Any

import redis.asyncio as aioredis

# Upper bound kept on worker streams; older, already-consumed entries are trimmed.
STREAM_MAXLEN = 100_000


async def init_redis(redis_url: str, max_connections: int = 20) -> aioredis.Redis:
    """Create and return an async Redis client, verifying connectivity with a ping."""
    client = aioredis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )
    await client.ping()
    return client


async def close_redis(client: aioredis.Redis) -> None:
    """Close the async Redis client connection."""
    await client.aclose()


async def append_to_stream(
    client: aioredis.Redis, stream: str, payload: dict[str, Any]
) -> str:
    """Append a JSON payload to a Redis stream and return the entry id."""
    return await client.xadd(
        stream,
        {"payload": json.dumps(payload)},
        maxlen=STREAM_MAXLEN,
        approximate=True,
    )


async def publish_json(client: aioredis.Redis, channel: str, payload: dict[str, Any]) -> int:
    """Publish a JSON payload on a pub/sub channel; returns the receiver count."""
    return await client.publish(channel, json.dumps(payload, default=str))
