# =============================================================================
#  Mediacord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional
from urllib.parse import urlparse

import aiohttp

DEFAULT_EXTENSION = ".jpg"
DEFAULT_MIME_TYPE = "image/jpeg"

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".heic": "image/heic",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
}

_MEDIA_PREFIXES = ("image/", "video/")


class MediaDownloadError(Exception):
    """Fetching a media URL failed (network error or non-2xx response)."""


@dataclass(frozen=True)
class MediaTask:
    message: Any
    url: str
    index: int

    @property
    def message_id(self) -> str:
        return str(self.message.id)


def _embed_url(embed, field: str) -> Optional[str]:
    proxy = getattr(embed, field, None)
    url = getattr(proxy, "url", None)
    return url if isinstance(url, str) and url else None


def extract_media(message) -> List[str]:
    """
    Every image/video URL carried by a message, attachments first, then for
    each embed its image, thumbnail and video URLs in that order. Duplicates
    are kept.
    """
    urls: List[str] = []

    for att in getattr(message, "attachments", None) or []:
        ctype = getattr(att, "content_type", None) or ""
        if ctype.startswith(_MEDIA_PREFIXES) and att.url:
            urls.append(att.url)

    for embed in getattr(message, "embeds", None) or []:
        for field in ("image", "thumbnail", "video"):
            url = _embed_url(embed, field)
            if url:
                urls.append(url)

    return urls


def _extension(url: str) -> str:
    try:
        path = urlparse(url).path
    except ValueError:
        return ""
    return os.path.splitext(path)[1].lower()


def filename_for(url: str, message_id, index: int, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S-%f")
    ext = _extension(url) or DEFAULT_EXTENSION
    return f"{message_id}_{index}_{stamp}{ext}"


def mime_type_for(url: str) -> str:
    return MIME_TYPES.get(_extension(url), DEFAULT_MIME_TYPE)


async def download_media(session: aiohttp.ClientSession, url: str) -> bytes:
    try:
        async with session.get(url) as resp:
            resp.raise_for_status()
            return await resp.read()
    except aiohttp.ClientResponseError as e:
        raise MediaDownloadError(f"HTTP {e.status} downloading {url}") from e
    except aiohttp.ClientError as e:
        raise MediaDownloadError(f"{type(e).__name__} downloading {url}: {e}") from e
