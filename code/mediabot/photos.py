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
import json
import logging
import os
import time
from typing import Any, Optional

import aiohttp
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from mediabot.destinations import ContainerNotFound, RemoteStoreError, SearchUnsupported

logger = logging.getLogger("mediabot")

SCOPES = ["https://www.googleapis.com/auth/photoslibrary"]

API_BASE = "https://photoslibrary.googleapis.com/v1"
UPLOADS_URL = f"{API_BASE}/uploads"
BATCH_CREATE_URL = f"{API_BASE}/mediaItems:batchCreate"
ALBUMS_URL = f"{API_BASE}/albums"

MAX_UPLOAD_BYTES = 200 * 1024 * 1024

_STALE_ALBUM_STATUSES = {"NOT_FOUND", "PERMISSION_DENIED", "INVALID_ARGUMENT"}


class PhotosAuthError(RemoteStoreError):
    """No usable OAuth token and no authorization code to obtain one."""


def load_credentials(
    client_secrets_path: str,
    token_path: str,
    auth_code: Optional[str] = None,
) -> Credentials:
    """
    Load the cached user token, refreshing it when expired. Without a token
    the one-time GOOGLE_AUTH_CODE is exchanged and the result written back.
    """
    creds: Optional[Credentials] = None
    if os.path.exists(token_path):
        creds = Credentials.from_authorized_user_file(token_path, SCOPES)
        logger.info("[📄] Token file scopes: %s", " ".join(creds.scopes or []) or "not specified")

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())
            _write_token(token_path, creds)
            return creds
        except Exception as e:
            logger.error("[⛔] Token refresh failed, need to re-authenticate: %s", e)

    with open(client_secrets_path, "r", encoding="utf-8") as fh:
        secrets = json.load(fh)
    block = secrets.get("installed") or secrets.get("web") or {}
    redirect = (block.get("redirect_uris") or ["urn:ietf:wg:oauth:2.0:oob"])[0]

    flow = Flow.from_client_secrets_file(
        client_secrets_path, scopes=SCOPES, redirect_uri=redirect
    )
    if not auth_code:
        auth_url, _ = flow.authorization_url(access_type="offline", prompt="consent")
        logger.warning(
            "[🔑] Google Photos authorization required.\n"
            "  1. Open: %s\n"
            "  2. Sign in and allow access\n"
            "  3. Put the code in .env as GOOGLE_AUTH_CODE and restart",
            auth_url,
        )
        raise PhotosAuthError("GOOGLE_AUTH_CODE not set and no valid token on disk")

    flow.fetch_token(code=auth_code)
    creds = flow.credentials
    _write_token(token_path, creds)
    logger.info("[✅] Token saved to %s, GOOGLE_AUTH_CODE can be removed", token_path)
    return creds


def _write_token(token_path: str, creds: Credentials) -> None:
    parent = os.path.dirname(token_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(token_path, "w", encoding="utf-8") as fh:
        fh.write(creds.to_json())


async def _error_status(resp: aiohttp.ClientResponse) -> tuple[str, str]:
    """(google rpc status, message) from an error body, best effort."""
    try:
        body = await resp.json(content_type=None)
    except Exception:
        return "", (await resp.text())[:200]
    err = (body or {}).get("error") or {}
    return str(err.get("status") or ""), str(err.get("message") or "")


class GooglePhotosStore:
    """Albums in Google Photos as containers, driven over the REST API."""

    name = "Google Photos"

    def __init__(self, session: aiohttp.ClientSession, credentials: Credentials):
        self.session = session
        self.credentials = credentials
        self._token_lock = asyncio.Lock()

    async def _headers(self, **extra: str) -> dict:
        async with self._token_lock:
            if not self.credentials.valid:
                await asyncio.to_thread(self.credentials.refresh, Request())
        headers = {"Authorization": f"Bearer {self.credentials.token}"}
        headers.update(extra)
        return headers

    async def find_by_name(self, name: str) -> Optional[str]:
        page_token: Optional[str] = None
        while True:
            params: dict[str, Any] = {"pageSize": 50}
            if page_token:
                params["pageToken"] = page_token
            async with self.session.get(
                ALBUMS_URL, headers=await self._headers(), params=params
            ) as resp:
                if resp.status == 403:
                    raise SearchUnsupported("album listing forbidden by token scope")
                if resp.status != 200:
                    status, msg = await _error_status(resp)
                    raise RemoteStoreError(
                        f"album list failed (HTTP {resp.status} {status}): {msg}"
                    )
                data = await resp.json()

            for album in data.get("albums") or []:
                if album.get("title") == name:
                    return album["id"]

            page_token = data.get("nextPageToken")
            if not page_token:
                return None

    async def create(self, name: str) -> str:
        async with self.session.post(
            ALBUMS_URL,
            headers=await self._headers(),
            json={"album": {"title": name}},
        ) as resp:
            if resp.status != 200:
                status, msg = await _error_status(resp)
                raise RemoteStoreError(
                    f"album create failed (HTTP {resp.status} {status}): {msg}"
                )
            data = await resp.json()
        return data["id"]

    async def _upload_bytes(self, data: bytes, filename: str, mime_type: str) -> str:
        headers = await self._headers(
            **{
                "Content-Type": "application/octet-stream",
                "X-Goog-Upload-Content-Type": mime_type,
                "X-Goog-Upload-File-Name": filename,
                "X-Goog-Upload-Protocol": "raw",
            }
        )
        async with self.session.post(UPLOADS_URL, headers=headers, data=data) as resp:
            if resp.status != 200:
                status, msg = await _error_status(resp)
                raise RemoteStoreError(
                    f"byte upload failed (HTTP {resp.status} {status}): {msg}"
                )
            return await resp.text()

    async def upload(
        self, data: bytes, filename: str, container_id: str, mime_type: str
    ) -> str:
        if not data:
            raise RemoteStoreError("Empty buffer provided")
        if len(data) > MAX_UPLOAD_BYTES:
            raise RemoteStoreError(
                f"File too large: {len(data)} bytes (max: {MAX_UPLOAD_BYTES})"
            )

        upload_token = await self._upload_bytes(data, filename, mime_type)

        payload = {
            "albumId": container_id,
            "newMediaItems": [
                {
                    "description": filename,
                    "simpleMediaItem": {
                        "fileName": filename,
                        "uploadToken": upload_token,
                    },
                }
            ],
        }
        async with self.session.post(
            BATCH_CREATE_URL, headers=await self._headers(), json=payload
        ) as resp:
            if resp.status != 200:
                status, msg = await _error_status(resp)
                if resp.status == 404 or status in _STALE_ALBUM_STATUSES:
                    raise ContainerNotFound(container_id, f"{status}: {msg}")
                raise RemoteStoreError(
                    f"batchCreate failed (HTTP {resp.status} {status}): {msg}"
                )
            body = await resp.json()

        results = body.get("newMediaItemResults") or []
        if not results:
            raise RemoteStoreError("No media item result in batchCreate response")
        result = results[0]
        st = result.get("status") or {}
        if st.get("code", 0) != 0 and st.get("message") not in ("Success", "OK"):
            raise RemoteStoreError(f"Google Photos API error: {st.get('message')}")

        item = result.get("mediaItem") or {}
        link = item.get("productUrl")
        if not link:
            raise RemoteStoreError("Failed to get product URL from upload response")
        logger.info("[☁️] Uploaded %s", filename)
        return link

    async def share_album(self, album_id: str) -> Optional[str]:
        """Share an album read-only and return its shareable URL."""
        opts = {"sharedAlbumOptions": {"isCollaborative": False, "isCommentable": False}}
        try:
            async with self.session.post(
                f"{ALBUMS_URL}/{album_id}:share", headers=await self._headers(), json=opts
            ) as resp:
                if resp.status == 404:
                    raise ContainerNotFound(album_id)
                resp.raise_for_status()
                shared = await resp.json()
            url = (shared.get("shareInfo") or {}).get("shareableUrl")
            if url:
                return url
            async with self.session.get(
                f"{ALBUMS_URL}/{album_id}", headers=await self._headers()
            ) as resp:
                resp.raise_for_status()
                album = await resp.json()
            return (album.get("shareInfo") or {}).get("shareableUrl")
        except aiohttp.ClientError as e:
            logger.error("[⛔] Error getting album share link: %s", e)
            return None

    async def test_connection(self) -> bool:
        title = f"API Test {int(time.time() * 1000)}"
        try:
            album_id = await self.create(title)
        except Exception:
            logger.exception("[⛔] Google Photos API connection FAILED")
            return False
        logger.info("[✅] Google Photos API reachable, created test album %r (%s)", title, album_id)
        return True

    async def close(self) -> None:
        return None
