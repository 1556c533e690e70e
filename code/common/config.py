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
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)
CURRENT_VERSION = "v1.2.0"

BACKEND_DRIVE = "drive"
BACKEND_PHOTOS = "photos"


@dataclass(frozen=True)
class UploadPolicy:
    """
    How the upload orchestrator drains its task queue for one backend.

    concurrency > 1 runs fixed-size fan-out batches, concurrency == 1 runs
    strictly serial uploads with `delay` seconds between tasks.
    """

    concurrency: int = 3
    delay: float = 0.0
    progress_every: int = 5

    @property
    def serial(self) -> bool:
        return self.concurrency <= 1


def _parse_id_list(raw: Optional[str]) -> list[int]:
    out: list[int] = []
    for tok in str(raw or "").split(","):
        tok = tok.strip()
        if tok:
            try:
                out.append(int(tok))
            except ValueError:
                logger.warning("[⚠️] Ignoring non-numeric id %r in id list", tok)
    return out


class Config:
    def __init__(self, logger: Optional[logging.Logger] = None):
        def _str(key: str, env_default: Optional[str] = None) -> Optional[str]:
            v = os.getenv(key)
            if v is None or v.strip() == "":
                v = env_default
            return v

        def _int(key: str, env_default: str = "0") -> int:
            raw = _str(key, env_default)
            try:
                return int(str(raw).strip())
            except Exception:
                try:
                    return int(env_default)
                except Exception:
                    return 0

        def _float(key: str, env_default: str = "0") -> float:
            raw = _str(key, env_default)
            try:
                return float(str(raw).strip())
            except Exception:
                return float(env_default)

        self.logger = (logger or logging.getLogger(__name__)).getChild(
            self.__class__.__name__
        )

        self.DISCORD_TOKEN = _str("DISCORD_TOKEN")
        self.LOG_LEVEL = (_str("LOG_LEVEL", "INFO") or "INFO").upper()

        self.COMMAND_USERS = _parse_id_list(_str("COMMAND_USERS", ""))
        self.COMMAND_GUILD_IDS = _parse_id_list(_str("COMMAND_GUILD_IDS", ""))

        self.DATA_DIR = Path(_str("DATA_DIR", "./data") or "./data")
        self.MONITORED_CHANNELS_FILE = self.DATA_DIR / "monitored-channels.json"
        self.SYNCED_MESSAGES_FILE = self.DATA_DIR / "synced-messages.json"
        self.ALBUM_CACHE_FILE = self.DATA_DIR / "album-cache.json"

        backend = (_str("STORAGE_BACKEND", BACKEND_DRIVE) or BACKEND_DRIVE).lower()
        if backend not in (BACKEND_DRIVE, BACKEND_PHOTOS):
            self.logger.warning(
                "[⚠️] Unknown STORAGE_BACKEND %r, falling back to %s",
                backend,
                BACKEND_DRIVE,
            )
            backend = BACKEND_DRIVE
        self.STORAGE_BACKEND = backend

        self.GOOGLE_CREDENTIALS_PATH = _str(
            "GOOGLE_CREDENTIALS_PATH", "./google-credentials.json"
        )
        self.GOOGLE_DRIVE_FOLDER_ID = _str("GOOGLE_DRIVE_FOLDER_ID")

        self.GOOGLE_OAUTH_CREDENTIALS_PATH = _str(
            "GOOGLE_OAUTH_CREDENTIALS_PATH", "./oauth-credentials.json"
        )
        self.GOOGLE_TOKEN_PATH = _str(
            "GOOGLE_TOKEN_PATH", str(self.DATA_DIR / "google-token.json")
        )
        self.GOOGLE_AUTH_CODE = _str("GOOGLE_AUTH_CODE")

        self.DRIVE_UPLOAD_CONCURRENCY = max(1, _int("DRIVE_UPLOAD_CONCURRENCY", "3"))
        self.PHOTOS_UPLOAD_CONCURRENCY = max(
            1, _int("PHOTOS_UPLOAD_CONCURRENCY", "1")
        )
        self.PHOTOS_UPLOAD_DELAY_SECONDS = max(
            0.0, _float("PHOTOS_UPLOAD_DELAY_SECONDS", "1.0")
        )
        self.PROGRESS_EVERY = max(1, _int("PROGRESS_EVERY", "5"))

        self.SYNC_DEFAULT_DAYS = max(1, _int("SYNC_DEFAULT_DAYS", "7"))
        self.HISTORY_PAGE_DELAY_SECONDS = max(
            0.0, _float("HISTORY_PAGE_DELAY_SECONDS", "1.0")
        )

    def upload_policy(self) -> UploadPolicy:
        """
        Drive tolerates overlapping requests; Photos rejects them with quota
        errors, so it defaults to one upload at a time with a pause between.
        """
        if self.STORAGE_BACKEND == BACKEND_PHOTOS:
            return UploadPolicy(
                concurrency=self.PHOTOS_UPLOAD_CONCURRENCY,
                delay=self.PHOTOS_UPLOAD_DELAY_SECONDS,
                progress_every=self.PROGRESS_EVERY,
            )
        return UploadPolicy(
            concurrency=self.DRIVE_UPLOAD_CONCURRENCY,
            delay=0.0,
            progress_every=self.PROGRESS_EVERY,
        )
