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
from datetime import datetime
from typing import Any, List, Optional, Protocol

import discord

logger = logging.getLogger("mediabot")

PAGE_SIZE = 100


class MessageSource(Protocol):
    async def fetch_page(
        self, limit: int, before: Optional[int] = None
    ) -> List[Any]:
        """Up to `limit` messages older than `before`, newest first."""
        ...


class DiscordChannelSource:
    """Adapts a text channel's history iterator to one page per call."""

    def __init__(self, channel: discord.abc.Messageable):
        self.channel = channel

    async def fetch_page(self, limit: int, before: Optional[int] = None) -> List[Any]:
        kwargs: dict = {"limit": limit, "oldest_first": False}
        if before is not None:
            kwargs["before"] = discord.Object(id=int(before))
        return [m async for m in self.channel.history(**kwargs)]


async def collect_history(
    source: MessageSource,
    *,
    cutoff: Optional[datetime] = None,
    limit: Optional[int] = None,
    page_size: int = PAGE_SIZE,
    page_delay: float = 1.0,
) -> List[Any]:
    """
    Walk a channel backwards page by page and return the selected messages
    oldest first.

    Stops on an empty page, on the first page reaching past `cutoff` (keeping
    only messages at or after it), or once `limit` messages were fetched.
    A full page is followed by `page_delay` seconds of sleep.
    """
    collected: List[Any] = []
    fetched = 0
    before: Optional[int] = None

    while True:
        want = min(page_size, limit - fetched) if limit is not None else page_size
        if want <= 0:
            break

        page = await source.fetch_page(want, before)
        if not page:
            logger.debug("No more messages to fetch")
            break

        fetched += len(page)
        oldest = page[-1]
        before = oldest.id

        if cutoff is not None and oldest.created_at < cutoff:
            collected.extend(m for m in page if m.created_at >= cutoff)
            logger.debug("Reached cutoff date %s", cutoff.isoformat())
            break

        collected.extend(page)

        if limit is not None and fetched >= limit:
            break

        if len(page) == page_size and page_delay > 0:
            await asyncio.sleep(page_delay)

    collected.reverse()
    return collected
