"""Shared fakes for the media sync tests.

Messages, attachments and embeds are plain namespaces exposing the same
attributes py-cord objects do, so the pipeline runs without a gateway.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest

from common.stores import DestinationCache, MonitoredChannelStore, SyncLedger

BASE_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_attachment(url: str, content_type: Optional[str] = "image/png"):
    return SimpleNamespace(url=url, content_type=content_type)


def make_embed(image=None, thumbnail=None, video=None):
    def proxy(url):
        return SimpleNamespace(url=url) if url else SimpleNamespace()

    return SimpleNamespace(image=proxy(image), thumbnail=proxy(thumbnail), video=proxy(video))


def make_message(
    msg_id: int,
    *,
    minutes: int = 0,
    bot: bool = False,
    attachments=None,
    embeds=None,
):
    return SimpleNamespace(
        id=msg_id,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        author=SimpleNamespace(bot=bot, name="user"),
        attachments=list(attachments or []),
        embeds=list(embeds or []),
    )


class FakeSource:
    """A channel history served newest first, one page per call."""

    def __init__(self, messages: List):
        self.messages = sorted(messages, key=lambda m: m.id, reverse=True)
        self.calls: List[tuple] = []

    async def fetch_page(self, limit, before=None):
        self.calls.append((limit, before))
        pool = [m for m in self.messages if before is None or m.id < before]
        return pool[:limit]


class FakeStore:
    """In-memory remote store recording every call."""

    name = "Fake Storage"

    def __init__(self):
        self.find_by_name = AsyncMock(return_value=None)
        self.create = AsyncMock(side_effect=self._create)
        self.upload = AsyncMock(side_effect=self._upload)
        self.test_connection = AsyncMock(return_value=True)
        self.close = AsyncMock(return_value=None)
        self.uploads: List[tuple] = []
        self._next = 0

    async def _create(self, name):
        self._next += 1
        return f"container-{self._next}"

    async def _upload(self, data, filename, container_id, mime_type):
        self.uploads.append((data, filename, container_id, mime_type))
        return f"https://example.test/{filename}"


@pytest.fixture
def ledger(tmp_path):
    return SyncLedger(tmp_path / "synced-messages.json")


@pytest.fixture
def album_cache(tmp_path):
    return DestinationCache(tmp_path / "album-cache.json")


@pytest.fixture
def monitored(tmp_path):
    return MonitoredChannelStore(tmp_path / "monitored-channels.json")


@pytest.fixture
def fake_store():
    return FakeStore()
