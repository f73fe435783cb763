import asyncio
import json
from typing import Optional

from aiokafka import AIOKafkaProducer

from .config import settings

_producer: Optional[AIOKafkaProducer] = None
_producer_lock = asyncio.Lock()

CONNECT_ATTEMPTS = 5


async def get_producer() -> AIOKafkaProducer:
    global _producer
    if _producer is None:
        async with _producer_lock:
            if _producer is None:
                backoff = 1.0
                last_exc: Optional[BaseException] = None
                for _ in range(CONNECT_ATTEMPTS):  # ~ 1+2+4+8+16 ~= 31s
                    producer = AIOKafkaProducer(
                        bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                        key_serializer=lambda k: str(k).encode("utf-8"),
                        value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                    )
                    try:
                        await producer.start()
                        _producer = producer
                        break
                    except Exception as e:
                        last_exc = e
                        await producer.stop()
                        await asyncio.sleep(backoff)
                        backoff = min(backoff * 2, 30.0)
                if _producer is None:
                    # Propagate the last error after retries
                    raise last_exc or RuntimeError("Kafka producer start failed")
    return _producer


async def publish(topic: str, key, payload: dict) -> None:
    producer = await get_producer()
    await producer.send_and_wait(topic, payload, key=key)


async def close_producer() -> None:
    global _producer
    if _producer is not None:
        await _producer.stop()
        _producer = None
