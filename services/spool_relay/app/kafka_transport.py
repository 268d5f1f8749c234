"""
Spool Relay — Kafka トランスポート (confluent-kafka)

  - 自動コミット無効。処理結果に応じて明示的にコミットする
  - poll はブロッキングなのでワーカースレッドで 1 秒ずつ実行し、
    その間に shutdown_event を確認する
  - 送信は produce + flush。配送コールバックでエラーを拾う
  - 未コミットのまま先へ進むとオフセットが追い越されるため、
    再配信が必要なメッセージは seek で巻き戻す
"""

import asyncio
import logging

from confluent_kafka import Consumer, KafkaError, KafkaException, Producer, TopicPartition

from .errors import PublishError, TransportError
from .transport import Message

logger = logging.getLogger(__name__)


class KafkaTransport:
    def __init__(
        self,
        brokers: list[str],
        inbound_topic: str,
        outbound_topic: str,
        group_id: str,
        *,
        poll_timeout: float = 1.0,
        flush_timeout: float = 10.0,
        consumer: Consumer | None = None,
        producer: Producer | None = None,
    ):
        bootstrap = ",".join(brokers)
        self.inbound_topic = inbound_topic
        self.outbound_topic = outbound_topic
        self.poll_timeout = poll_timeout
        self.flush_timeout = flush_timeout
        self._consumer = consumer or Consumer({
            "bootstrap.servers": bootstrap,
            "group.id": group_id,
            "auto.offset.reset": "earliest",
            "enable.auto.commit": False,
        })
        self._producer = producer or Producer({"bootstrap.servers": bootstrap})
        self._consumer.subscribe([inbound_topic])
        logger.info("Subscribed to %s as group=%s", inbound_topic, group_id)

    async def next(self, shutdown_event: asyncio.Event) -> Message | None:
        while not shutdown_event.is_set():
            msg = await asyncio.to_thread(self._consumer.poll, self.poll_timeout)
            if msg is None:
                continue
            err = msg.error()
            if err is not None:
                if err.code() == KafkaError._PARTITION_EOF:
                    continue
                raise TransportError(f"kafka poll error: {err}")
            return Message(
                key=msg.key(),
                value=msg.value() or b"",
                topic=msg.topic(),
                partition=msg.partition(),
                offset=msg.offset(),
                raw=msg,
            )
        return None

    async def commit(self, message: Message) -> None:
        try:
            await asyncio.to_thread(
                self._consumer.commit, message=message.raw, asynchronous=False
            )
        except KafkaException as e:
            raise TransportError(f"kafka commit failed: {e}") from e

    async def publish(
        self, key: bytes | None, value: bytes, *, topic: str | None = None
    ) -> None:
        topic = topic or self.outbound_topic
        errors: list = []

        def on_delivery(err, _msg) -> None:
            if err is not None:
                errors.append(err)

        try:
            self._producer.produce(topic, key=key, value=value, on_delivery=on_delivery)
            remaining = await asyncio.to_thread(self._producer.flush, self.flush_timeout)
        except (KafkaException, BufferError) as e:
            raise PublishError(f"kafka produce to {topic} failed: {e}") from e
        if errors:
            raise PublishError(f"kafka delivery to {topic} failed: {errors[0]}")
        if remaining:
            raise PublishError(f"kafka delivery to {topic} timed out")

    async def rewind(self, message: Message) -> None:
        tp = TopicPartition(message.topic, message.partition, message.offset)
        try:
            await asyncio.to_thread(self._consumer.seek, tp)
        except KafkaException as e:
            raise TransportError(f"kafka seek failed: {e}") from e
        logger.info(
            "Rewound %s[%s] to offset %s", message.topic, message.partition, message.offset
        )

    async def close(self) -> None:
        await asyncio.to_thread(self._producer.flush, self.flush_timeout)
        await asyncio.to_thread(self._consumer.close)
