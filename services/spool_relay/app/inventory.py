"""
Spool Relay — Inventory クライアント (Spoolman API)

  GET   /location          → ロケーション ID の配列
  GET   /setting/locations → {"value": "<JSON 文字列の配列>"} (設定ラッパー形式)
  GET   /spool/{id}        → スプール情報 (location = 現在のロケーション)
  PATCH /spool/{id}        → {"location": "<id>"} でスプールを移動

ロケーション一覧は 2 種類のレスポンス形式が歴史的に存在するため、
どちらのエンドポイントを使っても両方の形式を受け付ける。
"""

import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from .errors import (
    InventoryMalformed,
    InventoryUnavailable,
    SpoolNotFound,
    UpdateRejected,
)
from .events import SpoolRecord

logger = logging.getLogger(__name__)


def parse_locations(payload: Any) -> frozenset[str]:
    """
    ロケーション一覧レスポンスを解釈する。

    - 配列: ["shelf-1", "shelf-2"]
    - 設定ラッパー: {"value": "[\"shelf-1\", \"shelf-2\"]"}
    """
    if isinstance(payload, dict):
        if "value" not in payload:
            raise InventoryMalformed("settings response has no 'value' field")
        payload = payload["value"]
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise InventoryMalformed(f"settings value is not JSON: {e}") from e

    if not isinstance(payload, list) or not all(isinstance(v, str) for v in payload):
        raise InventoryMalformed("locations must be an array of strings")
    return frozenset(payload)


def parse_spool(spool_id: str, payload: Any) -> SpoolRecord:
    if not isinstance(payload, dict):
        raise InventoryMalformed("spool response must be a JSON object")
    location = payload.get("location")
    if location is not None and not isinstance(location, str):
        raise InventoryMalformed("spool location must be a string")
    return SpoolRecord(
        spool_id=str(payload.get("id", spool_id)),
        current_location_id=location or "",
        raw=payload,
    )


def _spool_path(spool_id: str) -> str:
    # id はイベント由来なのでパス区切りやドットセグメントをそのまま通さない
    if spool_id in ("", ".", "..") or not spool_id.isprintable():
        raise InventoryMalformed(f"invalid spool id {spool_id!r}")
    return f"/spool/{quote(spool_id, safe='')}"


class InventoryClient:
    """Spoolman API の非同期クライアント"""

    def __init__(
        self,
        base_url: str,
        *,
        locations_endpoint: str = "/location",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.locations_endpoint = "/" + locations_endpoint.lstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.InvalidURL as e:
            raise InventoryMalformed(f"{method} {path!r} is not a valid URL: {e}") from e
        except httpx.HTTPError as e:
            raise InventoryUnavailable(f"{method} {path} failed: {e}") from e
        logger.debug(
            "Spoolman API response: %s %s -> %s %s",
            method, path, resp.status_code, resp.text,
        )
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise InventoryMalformed(f"response is not JSON: {e}") from e

    async def list_locations(self) -> frozenset[str]:
        """有効なロケーション ID を毎回すべて取得する (キャッシュなし)"""
        resp = await self._request("GET", self.locations_endpoint)
        if not resp.is_success:
            raise InventoryUnavailable(
                f"listing locations returned HTTP {resp.status_code}"
            )
        return parse_locations(self._json(resp))

    async def get_spool(self, spool_id: str) -> SpoolRecord:
        resp = await self._request("GET", _spool_path(spool_id))
        if resp.status_code == 404:
            raise SpoolNotFound(f"spool {spool_id} not found")
        if not resp.is_success:
            raise InventoryUnavailable(
                f"fetching spool {spool_id} returned HTTP {resp.status_code}"
            )
        return parse_spool(spool_id, self._json(resp))

    async def update_spool_location(self, spool_id: str, location_id: str) -> None:
        """
        スプールを指定ロケーションに移動する。

        同じメッセージが再配信されても同じ移動先を再適用するだけなので
        実用上は無害 (ただし他のフィールドとのアトミック性は保証しない)。
        """
        resp = await self._request(
            "PATCH", _spool_path(spool_id), json={"location": location_id}
        )
        if resp.is_server_error:
            raise InventoryUnavailable(
                f"updating spool {spool_id} returned HTTP {resp.status_code}"
            )
        if not resp.is_success:
            raise UpdateRejected(
                f"update of spool {spool_id} rejected: HTTP {resp.status_code} {resp.text}"
            )
