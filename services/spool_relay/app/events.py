"""
Spool Relay — イベント定義

ストリームを流れる 2 種類のイベントと、Spoolman から取得する
スプール情報のモデル。

  SpoolTransferReady    : スプールを指定ロケーションへ移動したい (受信)
  SpoolTransferComplete : 移動が完了した。移動前のロケーションを含む (送信)
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, StrictStr


class ReadyEvent(BaseModel):
    """スプール移動の準備完了イベント"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    spool_id: StrictStr
    location_id: StrictStr


class Location(BaseModel):
    """ロケーション。現状 name は id と同じ値になる"""
    model_config = ConfigDict(frozen=True)

    id: StrictStr
    name: StrictStr


class CompleteEvent(BaseModel):
    """
    スプール移動の完了イベント

    ワイヤ上では ready_event のフィールドがトップレベルに展開される。
    (codec.encode_complete を参照)
    """
    model_config = ConfigDict(frozen=True)

    ready_event: ReadyEvent
    old_location: Location


class SpoolRecord(BaseModel):
    """Spoolman のスプール情報 (このサービスでは読み取り専用)"""
    model_config = ConfigDict(frozen=True)

    spool_id: str
    current_location_id: str
    raw: dict[str, Any] = {}


def build_location(location_id: str) -> Location:
    # ロケーション名を引く API はまだ無いので id をそのまま名前に使う
    return Location(id=location_id, name=location_id)
