"""
Spool Relay — リレーランナー

トランスポートからメッセージを 1 件ずつ取り出し、パイプラインに渡し、
返ってきた Outcome に従ってコミット・巻き戻しを行う。
メッセージは到着順に直列処理する (同じスプールへの更新順序を守るため)。

shutdown_event がセットされたら新しいメッセージの取得をやめる。
"""

import asyncio
import dataclasses
import logging

from .errors import AbortReason, TransportError
from .pipeline import Outcome, RelayPipeline, Stage
from .transport import Message, Transport

logger = logging.getLogger(__name__)


async def _pause(shutdown_event: asyncio.Event, seconds: float) -> None:
    """seconds だけ待つ。シャットダウンが来たらすぐ戻る。"""
    try:
        await asyncio.wait_for(shutdown_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def handle_outcome(
    transport: Transport, message: Message, outcome: Outcome
) -> Outcome:
    if outcome.commit:
        try:
            await transport.commit(message)
        except TransportError:
            # 送信済みのイベントは取り消さない (下流はスプール ID で冪等)
            logger.exception("Error committing message at offset %s", message.offset)
            return outcome
        return dataclasses.replace(outcome, trail=(*outcome.trail, Stage.COMMITTED))

    if outcome.reason is AbortReason.PUBLISH_FAILURE:
        try:
            await transport.rewind(message)
        except TransportError:
            logger.exception("Error rewinding message at offset %s", message.offset)
    return outcome


async def run_relay(
    transport: Transport,
    pipeline: RelayPipeline,
    shutdown_event: asyncio.Event,
    *,
    redelivery_delay: float = 1.0,
    error_backoff: float = 1.0,
) -> int:
    """
    shutdown_event がセットされるまでメッセージを処理し続ける。

    戻り値は処理したメッセージ数。
    """
    handled = 0
    logger.info("Starting to consume messages...")

    while not shutdown_event.is_set():
        try:
            message = await transport.next(shutdown_event)
        except TransportError:
            logger.exception("Error fetching message")
            await _pause(shutdown_event, error_backoff)
            continue
        if message is None:
            break

        logger.info("Received message: key=%r offset=%s", message.key, message.offset)
        logger.debug("Message value: %r", message.value)

        outcome = await pipeline.process(message, shutdown_event)
        outcome = await handle_outcome(transport, message, outcome)
        handled += 1

        trail = " → ".join(s.value for s in outcome.trail)
        if outcome.forwarded:
            logger.info("Successfully processed and forwarded message (%s)", trail)
        elif outcome.reason is AbortReason.CANCELLED:
            logger.info("Processing interrupted by shutdown; message left uncommitted")
            break
        elif outcome.reason is AbortReason.PUBLISH_FAILURE:
            logger.error(
                "Publish failed after spool update; message will be redelivered: %s",
                outcome.detail,
            )
            await _pause(shutdown_event, redelivery_delay)
        else:
            logger.warning(
                "Skipped message (%s at %s): %s",
                outcome.reason.value, outcome.reached.value, outcome.detail,
            )

    logger.info("Relay stopped after %d message(s)", handled)
    return handled
