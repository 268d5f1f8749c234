"""
Spool Relay — エラー分類

各コンポーネントは例外を投げるだけで、コミットするかどうかは
パイプラインだけが決める。例外は reason (AbortReason) を持ち、
パイプラインはそれをそのまま Outcome に載せる。

  TRANSIENT       : ネットワーク・API が利用不可 (リトライせずスキップ)
  MALFORMED       : ペイロード・レスポンスを解釈できない
  INVALID         : 在庫システムに存在しないロケーション
  NOT_FOUND       : スプールが存在しない
  REJECTED        : 更新が拒否された
  PUBLISH_FAILURE : 送信失敗 (唯一の再配信ケース)
  CANCELLED       : シャットダウンによる中断
"""

from enum import Enum


class AbortReason(str, Enum):
    TRANSIENT = "transient"
    MALFORMED = "malformed"
    INVALID = "invalid"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    PUBLISH_FAILURE = "publish_failure"
    CANCELLED = "cancelled"


class RelayError(Exception):
    reason: AbortReason = AbortReason.TRANSIENT


class MalformedEventError(RelayError, ValueError):
    """ペイロードをイベントとして解釈できない"""
    reason = AbortReason.MALFORMED


# ── Inventory (Spoolman) ─────────────────────────


class InventoryError(RelayError):
    pass


class InventoryUnavailable(InventoryError):
    reason = AbortReason.TRANSIENT


class InventoryMalformed(InventoryError):
    reason = AbortReason.MALFORMED


class SpoolNotFound(InventoryError):
    reason = AbortReason.NOT_FOUND


class UpdateRejected(InventoryError):
    reason = AbortReason.REJECTED


# ── Transport ────────────────────────────────────


class TransportError(RelayError):
    pass


class PublishError(TransportError):
    reason = AbortReason.PUBLISH_FAILURE
