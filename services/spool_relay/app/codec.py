"""
Spool Relay — イベントコーデック

イベントとバイト列 (UTF-8 JSON) の相互変換。
バージョンフィールドは持たない。

送信イベントのワイヤ形式:
  {"spool_id": "42", "location_id": "shelf-3",
   "old_location": {"id": "shelf-1", "name": "shelf-1"}}
"""

import json

from pydantic import ValidationError

from .errors import MalformedEventError
from .events import CompleteEvent, Location, ReadyEvent


def _load_object(data: bytes) -> dict:
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedEventError(f"payload is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedEventError(
            f"payload must be a JSON object, got {type(payload).__name__}"
        )
    return payload


def _dump(payload: dict) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def decode_ready(data: bytes) -> ReadyEvent:
    payload = _load_object(data)
    try:
        return ReadyEvent.model_validate(payload)
    except ValidationError as e:
        raise MalformedEventError(f"invalid ready event: {e}") from e


def encode_ready(event: ReadyEvent) -> bytes:
    return _dump(event.model_dump())


def encode_complete(event: CompleteEvent) -> bytes:
    """ready_event をトップレベルに展開して old_location を追加する。"""
    try:
        payload = event.ready_event.model_dump()
        payload["old_location"] = event.old_location.model_dump()
        return _dump(payload)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"cannot encode complete event: {e}") from e


def decode_complete(data: bytes) -> CompleteEvent:
    payload = _load_object(data)
    try:
        return CompleteEvent(
            ready_event=ReadyEvent.model_validate(payload),
            old_location=Location.model_validate(payload.get("old_location")),
        )
    except ValidationError as e:
        raise MalformedEventError(f"invalid complete event: {e}") from e
