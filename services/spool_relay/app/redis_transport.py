"""
Spool Relay — Redis Streams トランスポート

Pub/Sub は fire-and-forget なので使わず、Streams のコンシューマグループで
at-least-once を実現する。

  XREADGROUP : next   (起動直後は自分の Pending を先に読み直す)
  XACK       : commit
  XADD       : publish ({"key": ..., "value": ...})

ACK していないエントリは Pending Entries List に残るので、
rewind は Pending の読み直しに戻すだけでよい。
"""

import asyncio
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError, ResponseError

from .errors import PublishError, TransportError
from .transport import Message

logger = logging.getLogger(__name__)

PENDING = "0"
NEW = ">"


class RedisStreamTransport:
    def __init__(
        self,
        redis: aioredis.Redis,
        inbound_stream: str,
        outbound_stream: str,
        group: str,
        consumer: str = "spool-relay",
        *,
        block_ms: int = 1000,
    ):
        self.redis = redis
        self.inbound_stream = inbound_stream
        self.outbound_stream = outbound_stream
        self.group = group
        self.consumer = consumer
        self.block_ms = block_ms
        self._cursor = PENDING
        self._group_ready = False

    async def ensure_group(self) -> None:
        try:
            await self.redis.xgroup_create(
                self.inbound_stream, self.group, id="0", mkstream=True
            )
            logger.info("Created consumer group %s on %s", self.group, self.inbound_stream)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise TransportError(f"cannot create consumer group: {e}") from e
        self._group_ready = True

    async def next(self, shutdown_event: asyncio.Event) -> Message | None:
        try:
            if not self._group_ready:
                await self.ensure_group()
            while not shutdown_event.is_set():
                raw = await self.redis.xreadgroup(
                    self.group,
                    self.consumer,
                    {self.inbound_stream: self._cursor},
                    count=1,
                    block=None if self._cursor == PENDING else self.block_ms,
                )
                entries = raw[0][1] if raw else []
                if not entries:
                    # Pending を読み切ったら新着に切り替える
                    self._cursor = NEW
                    continue
                entry_id, fields = entries[0]
                # 削除済みエントリは Pending に fields=None で残る
                return self._to_message(entry_id, fields or {})
        except RedisError as e:
            raise TransportError(f"redis read failed: {e}") from e
        return None

    def _to_message(self, entry_id, fields: dict) -> Message:
        entry_id = entry_id.decode() if isinstance(entry_id, bytes) else str(entry_id)
        key = fields.get(b"key", fields.get("key"))
        value = fields.get(b"value", fields.get("value"))
        if isinstance(key, str):
            key = key.encode()
        if isinstance(value, str):
            value = value.encode()
        return Message(
            key=key or None,
            value=value or b"",
            topic=self.inbound_stream,
            offset=entry_id,
            raw=entry_id,
        )

    async def commit(self, message: Message) -> None:
        try:
            await self.redis.xack(self.inbound_stream, self.group, message.offset)
        except RedisError as e:
            raise TransportError(f"redis ack failed: {e}") from e

    async def publish(
        self, key: bytes | None, value: bytes, *, topic: str | None = None
    ) -> None:
        stream = topic or self.outbound_stream
        try:
            await self.redis.xadd(stream, {"key": key or b"", "value": value})
        except RedisError as e:
            raise PublishError(f"redis publish to {stream} failed: {e}") from e

    async def rewind(self, message: Message) -> None:
        self._cursor = PENDING
        logger.info("Rewinding %s to pending entries (from %s)", self.inbound_stream, message.offset)

    async def close(self) -> None:
        await self.redis.aclose()
