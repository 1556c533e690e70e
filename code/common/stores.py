# =============================================================================
#  Mediacord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Set

logger = logging.getLogger(__name__)


class JsonSnapshotStore:
    """
    A small in-memory structure mirrored to a single JSON file.

    load() replaces the in-memory state with whatever is on disk. A missing
    file means "start empty"; an unreadable or wrongly shaped file is logged
    and also yields an empty state. save() rewrites the whole snapshot
    atomically and never raises.
    """

    label = "snapshot"

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def _serialize(self) -> Any:
        raise NotImplementedError

    def _deserialize(self, data: Any) -> None:
        raise NotImplementedError

    def _reset(self) -> None:
        raise NotImplementedError

    def load(self) -> None:
        self._reset()
        if not self.path.exists():
            logger.debug("No %s file at %s, starting empty", self.label, self.path)
            return
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            logger.warning(
                "[⚠️] Could not read %s file %s (%s), starting empty",
                self.label,
                self.path,
                e,
            )
            return

        if not isinstance(data, dict):
            logger.warning(
                "[⚠️] %s file %s is not a JSON object, starting empty",
                self.label,
                self.path,
            )
            return

        self._deserialize(data)
        logger.info("[📂] Loaded %s from %s", self.label, self.path)

    def save(self) -> bool:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(self._serialize(), fh, indent=2)
            os.replace(tmp, self.path)
        except Exception:
            logger.exception("[⛔] Failed to save %s to %s", self.label, self.path)
            return False
        logger.debug("Saved %s to %s", self.label, self.path)
        return True


def _load_id_sets(data: dict, label: str) -> Dict[str, Set[str]]:
    out: Dict[str, Set[str]] = {}
    for key, ids in data.items():
        if not isinstance(ids, list):
            logger.warning("[⚠️] Skipping malformed %s entry for %s", label, key)
            continue
        members = {str(x) for x in ids if isinstance(x, (str, int))}
        if members:
            out[str(key)] = members
    return out


class MonitoredChannelStore(JsonSnapshotStore):
    """guild id -> set of channel ids watched for new media."""

    label = "monitored channels"

    def __init__(self, path):
        super().__init__(path)
        self._guilds: Dict[str, Set[str]] = {}

    def _reset(self) -> None:
        self._guilds = {}

    def _serialize(self) -> dict:
        return {gid: sorted(chans) for gid, chans in self._guilds.items() if chans}

    def _deserialize(self, data: dict) -> None:
        self._guilds = _load_id_sets(data, self.label)

    def channels_for(self, guild_id) -> Set[str]:
        return set(self._guilds.get(str(guild_id), ()))

    def is_monitored(self, guild_id, channel_id) -> bool:
        return str(channel_id) in self._guilds.get(str(guild_id), ())

    def add(self, guild_id, channel_id) -> bool:
        chans = self._guilds.setdefault(str(guild_id), set())
        if str(channel_id) in chans:
            return False
        chans.add(str(channel_id))
        self.save()
        return True

    def remove(self, guild_id, channel_id) -> bool:
        gid = str(guild_id)
        chans = self._guilds.get(gid)
        if not chans or str(channel_id) not in chans:
            return False
        chans.discard(str(channel_id))
        if not chans:
            del self._guilds[gid]
        self.save()
        return True

    def guild_count(self) -> int:
        return len(self._guilds)


class SyncLedger(JsonSnapshotStore):
    """
    channel id -> message ids whose media has already been uploaded.

    Membership means "do not upload this message again", not "this message
    had media".
    """

    label = "synced messages"

    def __init__(self, path):
        super().__init__(path)
        self._channels: Dict[str, Set[str]] = {}

    def _reset(self) -> None:
        self._channels = {}

    def _serialize(self) -> dict:
        return {cid: sorted(ids) for cid, ids in self._channels.items()}

    def _deserialize(self, data: dict) -> None:
        self._channels = _load_id_sets(data, self.label)

    def is_synced(self, channel_id, message_id) -> bool:
        return str(message_id) in self._channels.get(str(channel_id), ())

    def mark_synced(self, channel_id, message_id) -> bool:
        ids = self._channels.setdefault(str(channel_id), set())
        if str(message_id) in ids:
            return False
        ids.add(str(message_id))
        return True

    def count(self, channel_id) -> int:
        return len(self._channels.get(str(channel_id), ()))

    def persist(self) -> bool:
        return self.save()


class DestinationCache(JsonSnapshotStore):
    """
    Destination name (the channel name) -> remote folder/album id.

    A cached id may already be gone remotely; callers treat failures against
    it as a reason to invalidate, not as fatal.
    """

    label = "album cache"

    def __init__(self, path):
        super().__init__(path)
        self._ids: Dict[str, str] = {}

    def _reset(self) -> None:
        self._ids = {}

    def _serialize(self) -> dict:
        return dict(self._ids)

    def _deserialize(self, data: dict) -> None:
        for name, cid in data.items():
            if isinstance(cid, str) and cid.strip():
                self._ids[str(name)] = cid
            else:
                logger.warning("[⚠️] Skipping malformed album cache entry %r", name)

    def get(self, name: str) -> Optional[str]:
        return self._ids.get(name)

    def set(self, name: str, container_id: str) -> None:
        self._ids[name] = container_id
        self.save()

    def invalidate(self, name: str) -> None:
        if self._ids.pop(name, None) is not None:
            self.save()

    def __len__(self) -> int:
        return len(self._ids)
