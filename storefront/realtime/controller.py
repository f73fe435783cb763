import asyncio
import json
import logging

from quart import Blueprint, Response

from ..common.config import settings
from ..common.redis_client import get_redis

bp = Blueprint("realtime", __name__)

_logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 5.0


def format_event(raw) -> str:
    """Turn a channel message into an SSE frame named after its ``type``."""
    try:
        payload = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except ValueError:
        payload = {"type": "message", "data": raw}
    if not isinstance(payload, dict):
        payload = {"type": "message", "data": payload}
    event_type = payload.get("type", "message")
    return f"event: {event_type}\ndata: {json.dumps(payload)}\n\n"


async def _close_pubsub(pubsub) -> None:
    if pubsub is None:
        return
    try:
        await pubsub.unsubscribe(settings.REDIS_EVENTS_CHANNEL)
        await pubsub.aclose()
    except Exception as e:
        _logger.debug("Pubsub close failed | err=%s", e)


@bp.get("/events")
async def sse_events():
    if not settings.REDIS_ENABLED:
        return Response("realtime events are disabled\n", status=503, mimetype="text/plain")

    async def gen():
        pubsub = None
        backoff = 1.0
        # Advise client on retry
        yield "retry: 3000\n\n"
        try:
            while True:
                try:
                    if pubsub is None:
                        r = await get_redis()
                        pubsub = r.pubsub(ignore_subscribe_messages=True)
                        await pubsub.subscribe(settings.REDIS_EVENTS_CHANNEL)
                    message = await pubsub.get_message(timeout=KEEPALIVE_SECONDS)
                    if message:
                        yield format_event(message.get("data"))
                    else:
                        # Keep-alive to prevent closes by proxies
                        yield ": keep-alive\n\n"
                    backoff = 1.0
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    _logger.warning("Event stream lost Redis, retrying | err=%s", e)
                    yield f": redis-error, retrying in {int(backoff)}s\n\n"
                    await asyncio.sleep(backoff)
                    backoff = min(backoff * 2, 15.0)
                    await _close_pubsub(pubsub)
                    pubsub = None
        finally:
            await _close_pubsub(pubsub)

    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
        "Connection": "keep-alive",
    }
    return Response(gen(), mimetype="text/event-stream", headers=headers)
