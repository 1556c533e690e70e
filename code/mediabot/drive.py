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
import io
import logging
from typing import Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from mediabot.destinations import ContainerNotFound, RemoteStoreError

logger = logging.getLogger("mediabot")

SCOPES = ["https://www.googleapis.com/auth/drive.file"]
FOLDER_MIME = "application/vnd.google-apps.folder"


def _q_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveStore:
    """
    Folders in Google Drive as containers.

    The discovery client is blocking, so every call runs in a worker thread.
    """

    name = "Google Drive"

    def __init__(self, service, root_folder_id: Optional[str] = None):
        self.service = service
        self.root_folder_id = root_folder_id or None

    @classmethod
    def from_service_account(
        cls, credentials_path: str, root_folder_id: Optional[str] = None
    ) -> "GoogleDriveStore":
        creds = service_account.Credentials.from_service_account_file(
            credentials_path, scopes=SCOPES
        )
        service = build("drive", "v3", credentials=creds, cache_discovery=False)
        logger.info("[✅] Google Drive initialized")
        return cls(service, root_folder_id)

    def _folder_query(self, name: str) -> str:
        q = (
            f"name = '{_q_escape(name)}' "
            f"and mimeType = '{FOLDER_MIME}' "
            "and trashed = false"
        )
        if self.root_folder_id:
            q += f" and '{_q_escape(self.root_folder_id)}' in parents"
        return q

    def _find_sync(self, name: str) -> Optional[str]:
        resp = (
            self.service.files()
            .list(q=self._folder_query(name), fields="files(id, name)", spaces="drive")
            .execute()
        )
        files = resp.get("files") or []
        return files[0]["id"] if files else None

    def _create_sync(self, name: str) -> str:
        body = {"name": name, "mimeType": FOLDER_MIME}
        if self.root_folder_id:
            body["parents"] = [self.root_folder_id]
        folder = self.service.files().create(body=body, fields="id").execute()
        return folder["id"]

    def _upload_sync(
        self, data: bytes, filename: str, container_id: str, mime_type: str
    ) -> str:
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=False)
        try:
            resp = (
                self.service.files()
                .create(
                    body={"name": filename, "parents": [container_id]},
                    media_body=media,
                    fields="id, webViewLink",
                )
                .execute()
            )
        except HttpError as e:
            if getattr(e.resp, "status", None) == 404:
                raise ContainerNotFound(container_id, "Drive reports parent folder missing") from e
            raise RemoteStoreError(f"Drive upload failed: {e}") from e
        return resp.get("webViewLink") or resp["id"]

    async def find_by_name(self, name: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._find_sync, name)
        except HttpError as e:
            raise RemoteStoreError(f"Drive folder search failed: {e}") from e

    async def create(self, name: str) -> str:
        try:
            return await asyncio.to_thread(self._create_sync, name)
        except HttpError as e:
            raise RemoteStoreError(f"Drive folder create failed: {e}") from e

    async def upload(
        self, data: bytes, filename: str, container_id: str, mime_type: str
    ) -> str:
        return await asyncio.to_thread(
            self._upload_sync, data, filename, container_id, mime_type
        )

    async def test_connection(self) -> bool:
        try:
            about = await asyncio.to_thread(
                lambda: self.service.about().get(fields="user").execute()
            )
        except Exception:
            logger.exception("[⛔] Google Drive connection test failed")
            return False
        user = (about.get("user") or {}).get("emailAddress", "?")
        logger.info("[✅] Google Drive reachable as %s", user)
        return True

    async def close(self) -> None:
        with_close = getattr(self.service, "close", None)
        if callable(with_close):
            await asyncio.to_thread(with_close)
