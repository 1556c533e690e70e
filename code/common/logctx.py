# =============================================================================
#  Mediacord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================


import contextvars
import logging

sync_channel_name = contextvars.ContextVar("sync_channel_name", default=None)
sync_run_id = contextvars.ContextVar("sync_run_id", default=None)


def format_prefix() -> str:
    """
    Build a prefix like "[#general][a1b2c3d4] " when a sync run is active
    in this task/context, else "".
    """
    chan = sync_channel_name.get()
    run = sync_run_id.get()

    parts = []
    if chan:
        parts.append(f"[#{chan}]")
    if run:
        parts.append(f"[{run}]")

    return "".join(parts) + " " if parts else ""


class SyncPrefixFilter(logging.Filter):
    """
    Prepend the active sync context to every log line.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            prefix = format_prefix()
        except Exception:
            prefix = ""

        if prefix and not getattr(record, "_sync_prefix_injected", False):
            record.msg = prefix + str(record.msg)
            record._sync_prefix_injected = True
        return True
