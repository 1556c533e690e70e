# =============================================================================
#  Mediacord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, List, Optional

import aiohttp

from common import logctx
from common.config import UploadPolicy
from common.stores import SyncLedger
from mediabot.destinations import ContainerNotFound, DestinationResolver, RemoteStore
from mediabot.history import PAGE_SIZE, MessageSource, collect_history
from mediabot.media import (
    MediaTask,
    download_media,
    extract_media,
    filename_for,
    mime_type_for,
)

logger = logging.getLogger("mediabot")


class SyncSetupError(Exception):
    """A sync run could not start; nothing was uploaded."""


@dataclass(frozen=True)
class SyncWindow:
    cutoff: Optional[datetime] = None
    limit: Optional[int] = None
    description: str = ""


@dataclass(frozen=True)
class SyncProgress:
    total: int
    uploaded: int
    failed: int

    @property
    def done(self) -> int:
        return self.uploaded + self.failed


@dataclass
class SyncResult:
    messages: int = 0
    total: int = 0
    uploaded: int = 0
    failed: int = 0


@dataclass
class Destination:
    """The container a run uploads into; container_id changes on self-heal."""

    name: str
    container_id: str


ProgressCallback = Callable[[SyncProgress], Awaitable[None]]


def parse_since(value: str) -> datetime:
    try:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    except (AttributeError, ValueError):
        raise SyncSetupError(
            "Invalid date format. Use YYYY-MM-DD (e.g., 2024-01-01)"
        ) from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_sync_window(
    *,
    days: Optional[int] = None,
    since: Optional[str] = None,
    limit: Optional[int] = None,
    default_days: int = 7,
    now: Optional[datetime] = None,
) -> SyncWindow:
    """
    Precedence: limit, then days, then since, then the default day window.
    """
    now = now or datetime.now(timezone.utc)

    if limit is not None:
        if limit <= 0:
            raise SyncSetupError("`limit` must be a positive number.")
        return SyncWindow(limit=limit, description=f"up to {limit} messages")

    if days is not None:
        if days <= 0:
            raise SyncSetupError("`days` must be a positive number.")
        return SyncWindow(
            cutoff=now - timedelta(days=days), description=f"last {days} days"
        )

    if since:
        return SyncWindow(cutoff=parse_since(since), description=f"since {since}")

    return SyncWindow(
        cutoff=now - timedelta(days=default_days),
        description=f"last {default_days} days (default)",
    )


def build_tasks(messages: Iterable[Any], channel_id, ledger: SyncLedger) -> List[MediaTask]:
    """
    Flatten the media of every human, not-yet-synced message into tasks,
    preserving message order and per-message media order.
    """
    tasks: List[MediaTask] = []
    for msg in messages:
        if getattr(msg.author, "bot", False):
            continue
        if ledger.is_synced(channel_id, msg.id):
            logger.debug("Message %s already synced, skipping", msg.id)
            continue
        for idx, url in enumerate(extract_media(msg)):
            tasks.append(MediaTask(message=msg, url=url, index=idx))
    return tasks


class MediaUploader:
    """download -> name -> classify -> upload for a single MediaTask."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        store: RemoteStore,
        resolver: DestinationResolver,
    ):
        self.session = session
        self.store = store
        self.resolver = resolver

    async def upload(self, task: MediaTask, dest: Destination) -> str:
        data = await download_media(self.session, task.url)
        filename = filename_for(task.url, task.message_id, task.index)
        mime_type = mime_type_for(task.url)

        logger.debug("[📤] Uploading %s (%s, %d bytes)", filename, mime_type, len(data))
        container_id = dest.container_id
        try:
            return await self.store.upload(data, filename, container_id, mime_type)
        except ContainerNotFound:
            dest.container_id = await self.resolver.refresh(dest.name, container_id)
            logger.info(
                "[♻️] Retrying %s against fresh container %s",
                filename,
                dest.container_id,
            )
            return await self.store.upload(data, filename, dest.container_id, mime_type)


class UploadOrchestrator:
    """
    Drains a task queue through a MediaUploader according to an
    UploadPolicy. A failing task is counted and logged; it never stops
    the rest of the queue.
    """

    def __init__(
        self,
        uploader: MediaUploader,
        ledger: SyncLedger,
        policy: UploadPolicy,
    ):
        self.uploader = uploader
        self.ledger = ledger
        self.policy = policy

    async def _attempt(self, task: MediaTask, dest: Destination) -> bool:
        try:
            link = await self.uploader.upload(task, dest)
        except Exception as e:
            logger.error(
                "[⛔] Failed to upload media %d of message %s: %s",
                task.index,
                task.message_id,
                e,
            )
            return False
        logger.debug("Uploaded media %d of message %s -> %s", task.index, task.message_id, link)
        return True

    async def _report(self, progress: Optional[ProgressCallback], result: SyncResult) -> None:
        if progress is None:
            return
        try:
            await progress(SyncProgress(result.total, result.uploaded, result.failed))
        except Exception:
            logger.warning("[⚠️] Progress update failed", exc_info=True)

    def _mark(self, channel_id, tasks: List[MediaTask], outcomes: List[bool]) -> None:
        for task, ok in zip(tasks, outcomes):
            if ok:
                self.ledger.mark_synced(channel_id, task.message_id)

    async def run(
        self,
        channel_id,
        tasks: List[MediaTask],
        dest: Destination,
        progress: Optional[ProgressCallback] = None,
    ) -> SyncResult:
        result = SyncResult(total=len(tasks))
        if self.policy.serial:
            await self._run_serial(channel_id, tasks, dest, result, progress)
        else:
            await self._run_batched(channel_id, tasks, dest, result, progress)
        return result

    async def _run_batched(self, channel_id, tasks, dest, result, progress) -> None:
        width = self.policy.concurrency
        for start in range(0, len(tasks), width):
            batch = tasks[start : start + width]
            outcomes = await asyncio.gather(
                *(self._attempt(t, dest) for t in batch), return_exceptions=True
            )
            outcomes = [o is True for o in outcomes]
            result.uploaded += sum(outcomes)
            result.failed += len(outcomes) - sum(outcomes)
            self._mark(channel_id, batch, outcomes)
            await self._report(progress, result)

    async def _run_serial(self, channel_id, tasks, dest, result, progress) -> None:
        every = self.policy.progress_every
        for pos, task in enumerate(tasks, start=1):
            ok = await self._attempt(task, dest)
            if ok:
                result.uploaded += 1
            else:
                result.failed += 1
            self._mark(channel_id, [task], [ok])

            if pos % every == 0 or pos == len(tasks):
                await self._report(progress, result)
            if pos < len(tasks) and self.policy.delay > 0:
                await asyncio.sleep(self.policy.delay)


class SyncPipeline:
    """
    Backfill one channel: collect history, drop already-synced messages,
    resolve the destination, upload, persist the ledger once at the end.
    """

    def __init__(
        self,
        ledger: SyncLedger,
        resolver: DestinationResolver,
        orchestrator: UploadOrchestrator,
        *,
        page_size: int = PAGE_SIZE,
        page_delay: float = 1.0,
    ):
        self.ledger = ledger
        self.resolver = resolver
        self.orchestrator = orchestrator
        self.page_size = page_size
        self.page_delay = page_delay

    async def run(
        self,
        source: MessageSource,
        channel_id,
        channel_name: str,
        window: SyncWindow,
        progress: Optional[ProgressCallback] = None,
    ) -> SyncResult:
        chan_tok = logctx.sync_channel_name.set(channel_name)
        run_tok = logctx.sync_run_id.set(uuid.uuid4().hex[:8])
        try:
            return await self._run(source, channel_id, channel_name, window, progress)
        finally:
            logctx.sync_run_id.reset(run_tok)
            logctx.sync_channel_name.reset(chan_tok)

    async def _run(self, source, channel_id, channel_name, window, progress) -> SyncResult:
        logger.info("[🔄] Starting sync, filter: %s", window.description)

        try:
            messages = await collect_history(
                source,
                cutoff=window.cutoff,
                limit=window.limit,
                page_size=self.page_size,
                page_delay=self.page_delay,
            )
        except Exception as e:
            raise SyncSetupError(f"Could not read channel history: {e}") from e

        tasks = build_tasks(messages, channel_id, self.ledger)
        considered = len({t.message_id for t in tasks})
        logger.info(
            "[🔄] Collected %d messages, %d media items to upload",
            len(messages),
            len(tasks),
        )
        if not tasks:
            return SyncResult(messages=considered)

        try:
            container_id = await self.resolver.resolve(channel_name)
        except Exception as e:
            raise SyncSetupError(f"Could not resolve destination: {e}") from e

        dest = Destination(name=channel_name, container_id=container_id)
        try:
            result = await self.orchestrator.run(channel_id, tasks, dest, progress)
        finally:
            self.ledger.persist()

        result.messages = considered
        logger.info(
            "[✅] Sync complete: %d/%d uploaded, %d failed",
            result.uploaded,
            result.total,
            result.failed,
        )
        return result
