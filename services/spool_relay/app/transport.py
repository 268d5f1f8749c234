"""
Spool Relay — トランスポート (ブローカー抽象)

パイプラインはブローカーを直接知らない。次の操作だけを使う:

  next(shutdown_event) : 次のメッセージを待つ (シャットダウンで None)
  commit(message)      : オフセットをコミットする
  publish(key, value)  : 送信トピックに発行する
  rewind(message)      : 未コミットのメッセージを再配信させる

実装は Kafka (kafka_transport) と Redis Streams (redis_transport)。
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class Message:
    key: bytes | None
    value: bytes
    topic: str
    partition: int = 0
    offset: int | str = 0
    raw: Any = None


class Transport(Protocol):
    async def next(self, shutdown_event: asyncio.Event) -> Message | None: ...

    async def commit(self, message: Message) -> None: ...

    async def publish(
        self, key: bytes | None, value: bytes, *, topic: str | None = None
    ) -> None: ...

    async def rewind(self, message: Message) -> None: ...

    async def close(self) -> None: ...
