"""Shared fixtures for spool relay tests."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.events import SpoolRecord
from app.transport import Message


@pytest.fixture
def make_message():
    def _make(value: bytes, key: bytes | None = b"42", offset: int = 7) -> Message:
        return Message(
            key=key, value=value, topic="spool-transfer-ready", partition=0, offset=offset
        )

    return _make


@pytest.fixture
def transport() -> MagicMock:
    mock = MagicMock()
    mock.next = AsyncMock()
    mock.commit = AsyncMock()
    mock.publish = AsyncMock()
    mock.rewind = AsyncMock()
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def inventory() -> MagicMock:
    mock = MagicMock()
    mock.list_locations = AsyncMock(return_value=frozenset({"shelf-3", "shelf-4"}))
    mock.get_spool = AsyncMock(
        return_value=SpoolRecord(spool_id="42", current_location_id="shelf-1")
    )
    mock.update_spool_location = AsyncMock(return_value=None)
    mock.aclose = AsyncMock()
    return mock


@pytest.fixture
def shutdown_event() -> asyncio.Event:
    return asyncio.Event()
