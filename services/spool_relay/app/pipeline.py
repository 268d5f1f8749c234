"""
Spool Relay — メッセージ処理パイプライン

1 メッセージごとの状態機械。後戻りはしない。

  RECEIVED → DECODED → VALIDATED → ENRICHED → UPDATED → FORWARDED → COMMITTED
                 └──────────┴───────────┴──────────┴──────────┴──▶ ABORTED

  ┌──────────────────────────────────────────────────────────────┐
  │  1. デコード          失敗 → ABORTED, コミット (ポイズン)       │
  │  2. ロケーション検証  失敗・不一致 → ABORTED, コミット          │
  │  3. スプール取得      失敗 → ABORTED, コミット                  │
  │  4. スプール移動      失敗 → ABORTED, コミット (何も変わらない) │
  │  5. 完了イベント送信  失敗 → ABORTED, コミットしない (再配信)   │
  │  6. コミット          (Runner が行う)                           │
  └──────────────────────────────────────────────────────────────┘

ステップ 5 だけは再配信させる。Spoolman の更新は既に適用されているので、
ここでスキップすると移動が下流に通知されないまま失われる。

再配信時の注意: 2 回目の処理では「移動前のロケーション」が既に移動先に
なっているため、old_location の異なる完了イベントが 2 件出ることがある。
下流はスプール ID で冪等に処理すること。

ステップ 1〜4 はシャットダウンで中断する (コミットしない)。
ステップ 5 以降は UPDATED を通過しているので最後まで実行する。
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, TypeVar

from . import codec
from .errors import AbortReason, RelayError
from .events import CompleteEvent, ReadyEvent, build_location
from .inventory import InventoryClient
from .transport import Message, Transport

logger = logging.getLogger(__name__)

T = TypeVar("T")

# デッドレターに送るのは何度処理しても成功しないメッセージだけ
DEAD_LETTER_REASONS = frozenset({AbortReason.MALFORMED, AbortReason.INVALID})


class Stage(str, Enum):
    RECEIVED = "received"
    DECODED = "decoded"
    VALIDATED = "validated"
    ENRICHED = "enriched"
    UPDATED = "updated"
    FORWARDED = "forwarded"
    COMMITTED = "committed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class Outcome:
    """1 メッセージの処理結果。Runner はこれだけを見てコミットを判断する"""
    stage: Stage
    reached: Stage
    reason: AbortReason | None = None
    commit: bool = True
    complete_event: CompleteEvent | None = None
    trail: tuple[Stage, ...] = ()
    detail: str = ""

    @property
    def forwarded(self) -> bool:
        return self.stage is Stage.FORWARDED

    @property
    def aborted(self) -> bool:
        return self.reason is not None


class ShutdownRequested(Exception):
    pass


class _Run:
    """1 メッセージ分の遷移記録"""

    def __init__(self) -> None:
        self.trail: list[Stage] = [Stage.RECEIVED]

    @property
    def stage(self) -> Stage:
        return self.trail[-1]

    def advance(self, stage: Stage) -> None:
        self.trail.append(stage)

    def abort(self, reason: AbortReason, detail: str = "") -> Outcome:
        return Outcome(
            stage=Stage.ABORTED,
            reached=self.stage,
            reason=reason,
            commit=reason not in (AbortReason.PUBLISH_FAILURE, AbortReason.CANCELLED),
            trail=(*self.trail, Stage.ABORTED),
            detail=detail,
        )


class RelayPipeline:
    def __init__(
        self,
        inventory: InventoryClient,
        transport: Transport,
        *,
        dead_letter_topic: str | None = None,
    ):
        self.inventory = inventory
        self.transport = transport
        self.dead_letter_topic = dead_letter_topic

    async def process(self, message: Message, shutdown_event: asyncio.Event) -> Outcome:
        run = _Run()
        try:
            outcome = await self._process(run, message, shutdown_event)
        except ShutdownRequested:
            outcome = run.abort(AbortReason.CANCELLED, "shutdown requested")
        except RelayError as e:
            outcome = run.abort(e.reason, str(e))

        if outcome.reason in DEAD_LETTER_REASONS and self.dead_letter_topic:
            await self._dead_letter(message, outcome)
        return outcome

    async def _process(
        self, run: _Run, message: Message, shutdown_event: asyncio.Event
    ) -> Outcome:
        # ── Step 1: デコード ────────────────────────
        if shutdown_event.is_set():
            raise ShutdownRequested()
        ready = codec.decode_ready(message.value)
        run.advance(Stage.DECODED)
        logger.debug("Decoded ready event: %s", ready)

        # ── Step 2: ロケーション検証 ────────────────
        locations = await self._until_shutdown(
            self.inventory.list_locations(), shutdown_event
        )
        if ready.location_id not in locations:
            return run.abort(
                AbortReason.INVALID, f"unknown location {ready.location_id!r}"
            )
        run.advance(Stage.VALIDATED)

        # ── Step 3: 移動前のスプール情報を取得 ──────
        spool = await self._until_shutdown(
            self.inventory.get_spool(ready.spool_id), shutdown_event
        )
        run.advance(Stage.ENRICHED)

        # ── Step 4: スプールを移動 ──────────────────
        await self._until_shutdown(
            self.inventory.update_spool_location(ready.spool_id, ready.location_id),
            shutdown_event,
        )
        run.advance(Stage.UPDATED)

        # ── Step 5: 完了イベントを送信 (ここからは中断しない) ──
        return await self._forward(run, message, ready, spool.current_location_id)

    async def _forward(
        self, run: _Run, message: Message, ready: ReadyEvent, old_location_id: str
    ) -> Outcome:
        event = CompleteEvent(
            ready_event=ready, old_location=build_location(old_location_id)
        )
        # encode の失敗は決定的なので再配信しても直らない → コミットする
        value = codec.encode_complete(event)
        await self.transport.publish(message.key, value)
        run.advance(Stage.FORWARDED)
        return Outcome(
            stage=Stage.FORWARDED,
            reached=Stage.FORWARDED,
            commit=True,
            complete_event=event,
            trail=tuple(run.trail),
        )

    async def _until_shutdown(
        self, aw: Awaitable[T], shutdown_event: asyncio.Event
    ) -> T:
        """aw を実行し、先にシャットダウンが来たら中断して ShutdownRequested を投げる。"""
        if shutdown_event.is_set():
            if asyncio.iscoroutine(aw):
                aw.close()
            raise ShutdownRequested()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(shutdown_event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            raise ShutdownRequested()
        return task.result()

    async def _dead_letter(self, message: Message, outcome: Outcome) -> None:
        envelope = {
            "error": outcome.detail,
            "reason": outcome.reason.value,
            "stage": outcome.reached.value,
            "raw": message.value.decode("utf-8", errors="replace"),
            "event_time": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self.transport.publish(
                message.key,
                json.dumps(envelope).encode("utf-8"),
                topic=self.dead_letter_topic,
            )
            logger.info("Sent message to dead letter topic %s", self.dead_letter_topic)
        except RelayError:
            logger.exception("Failed to publish to dead letter topic %s", self.dead_letter_topic)
