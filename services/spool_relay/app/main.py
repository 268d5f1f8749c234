"""
Spool Relay — FastAPI エントリーポイント

SpoolTransferReady イベントを受信し、Spoolman で在庫ロケーションを
更新して SpoolTransferComplete イベントを再発行するリレーサービス。
リレー本体は lifespan でバックグラウンドタスクとして起動する。

┌──────────────┐  ready   ┌────────────┐  complete  ┌──────────────┐
│ Kafka/Redis  │ ───────▶ │ Spool Relay │ ─────────▶ │ Kafka/Redis  │
│ (受信トピック) │          └─────┬──────┘            │ (送信トピック) │
└──────────────┘                │ HTTP               └──────────────┘
                       ┌────────▼─────────┐
                       │  Spoolman API     │
                       │  (在庫管理)        │
                       └──────────────────┘

シャットダウン (SIGINT/SIGTERM は uvicorn が受ける):
  1. shutdown_event をセット → 新しいメッセージは取得しない
  2. 処理中のメッセージを drain_timeout まで待つ
  3. それでも終わらなければタスクをキャンセル
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI

from .config import Settings, load_settings
from .inventory import InventoryClient
from .pipeline import RelayPipeline
from .relay import run_relay
from .transport import Transport

logger = logging.getLogger(__name__)


def build_transport(settings: Settings) -> Transport:
    if settings.transport == "redis":
        from .redis_transport import RedisStreamTransport

        return RedisStreamTransport(
            aioredis.from_url(settings.redis_url),
            settings.consumer_topic,
            settings.producer_topic,
            settings.consumer_group,
        )

    from .kafka_transport import KafkaTransport

    return KafkaTransport(
        settings.kafka_brokers,
        settings.consumer_topic,
        settings.producer_topic,
        settings.consumer_group,
    )


async def _stop_relay(task: asyncio.Task, drain_timeout: float) -> None:
    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=drain_timeout)
    except asyncio.TimeoutError:
        logger.warning("Relay did not drain within %.1fs; cancelling", drain_timeout)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    except Exception:
        logger.exception("Relay task failed")


def create_app(
    settings: Settings | None = None,
    *,
    transport: Transport | None = None,
    inventory: InventoryClient | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """起動時にリレーをバックグラウンドタスクとして開始する。"""
        cfg = settings or load_settings()
        logger.info("Starting Spool Relay")
        logger.info("Brokers: %s (%s)", cfg.kafka_brokers, cfg.transport)
        logger.info("Consumer Topic: %s", cfg.consumer_topic)
        logger.info("Producer Topic: %s", cfg.producer_topic)
        logger.info("Consumer Group: %s", cfg.consumer_group)

        relay_transport = transport or build_transport(cfg)
        client = inventory or InventoryClient(
            cfg.spoolman_api_url,
            locations_endpoint=cfg.locations_endpoint,
            timeout=cfg.http_timeout,
        )
        pipeline = RelayPipeline(
            client, relay_transport, dead_letter_topic=cfg.dead_letter_topic
        )

        shutdown_event = asyncio.Event()
        relay_task = asyncio.create_task(
            run_relay(
                relay_transport,
                pipeline,
                shutdown_event,
                redelivery_delay=cfg.redelivery_delay,
            )
        )
        app.state.relay_task = relay_task
        try:
            yield
        finally:
            logger.info("Shutdown signal received, stopping...")
            shutdown_event.set()
            await _stop_relay(relay_task, cfg.drain_timeout)
            try:
                await client.aclose()
            finally:
                await relay_transport.close()
            logger.info("Service stopped")

    app = FastAPI(title="Spool Relay Service", lifespan=lifespan)
    app.state.relay_task = None

    @app.get("/health")
    async def health():
        task = app.state.relay_task
        running = task is not None and not task.done()
        return {
            "status": "ok",
            "service": "spool-relay",
            "relay": "running" if running else "stopped",
        }

    return app


app = create_app()
