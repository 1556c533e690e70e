"""Adapter tests: HTTP / API failures map onto the structured store errors."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from mediabot.destinations import ContainerNotFound, RemoteStoreError, SearchUnsupported
from mediabot.drive import GoogleDriveStore
from mediabot.photos import GooglePhotosStore


# =============================================================================
# GOOGLE PHOTOS
# =============================================================================


class _Resp:
    def __init__(self, status=200, json_body=None, text=""):
        self.status = status
        self._json = json_body
        self._text = text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self, content_type="application/json"):
        if self._json is None:
            raise ValueError("no json")
        return self._json

    async def text(self):
        return self._text

    def raise_for_status(self):
        return None


class _Session:
    """Replays queued responses for post() and get() in order."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def _next(self, method, url, kwargs):
        self.requests.append((method, url, kwargs))
        return self.responses.pop(0)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)


def _photos(responses):
    creds = SimpleNamespace(valid=True, token="tok")
    session = _Session(responses)
    return GooglePhotosStore(session, creds), session


@pytest.mark.asyncio
async def test_photos_upload_returns_product_url():
    store, session = _photos(
        [
            _Resp(200, text="upload-token"),
            _Resp(
                200,
                {
                    "newMediaItemResults": [
                        {"status": {"message": "Success"}, "mediaItem": {"productUrl": "https://photos/x"}}
                    ]
                },
            ),
        ]
    )

    link = await store.upload(b"img", "1_0.png", "album-1", "image/png")

    assert link == "https://photos/x"
    batch = session.requests[1][2]["json"]
    assert batch["albumId"] == "album-1"
    assert batch["newMediaItems"][0]["simpleMediaItem"]["uploadToken"] == "upload-token"
    assert session.requests[0][2]["headers"]["X-Goog-Upload-Content-Type"] == "image/png"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, body",
    [
        (404, {"error": {"status": "NOT_FOUND", "message": "gone"}}),
        (400, {"error": {"status": "INVALID_ARGUMENT", "message": "Invalid album ID"}}),
        (403, {"error": {"status": "PERMISSION_DENIED", "message": "not app created"}}),
    ],
)
async def test_photos_stale_album_is_container_not_found(status, body):
    store, _ = _photos([_Resp(200, text="upload-token"), _Resp(status, body)])

    with pytest.raises(ContainerNotFound) as exc:
        await store.upload(b"img", "1_0.png", "album-1", "image/png")
    assert exc.value.container_id == "album-1"


@pytest.mark.asyncio
async def test_photos_quota_error_is_plain_store_error():
    store, _ = _photos(
        [_Resp(200, text="t"), _Resp(429, {"error": {"status": "RESOURCE_EXHAUSTED", "message": "quota"}})]
    )
    with pytest.raises(RemoteStoreError) as exc:
        await store.upload(b"img", "1_0.png", "album-1", "image/png")
    assert not isinstance(exc.value, ContainerNotFound)


@pytest.mark.asyncio
async def test_photos_rejects_empty_payload_without_calls():
    store, session = _photos([])
    with pytest.raises(RemoteStoreError, match="Empty"):
        await store.upload(b"", "x.png", "album-1", "image/png")
    assert session.requests == []


@pytest.mark.asyncio
async def test_photos_find_follows_pages():
    store, session = _photos(
        [
            _Resp(200, {"albums": [{"title": "other", "id": "a"}], "nextPageToken": "p2"}),
            _Resp(200, {"albums": [{"title": "general", "id": "b"}]}),
        ]
    )
    assert await store.find_by_name("general") == "b"
    assert session.requests[1][2]["params"]["pageToken"] == "p2"


@pytest.mark.asyncio
async def test_photos_forbidden_listing_is_search_unsupported():
    store, _ = _photos([_Resp(403, {"error": {"status": "PERMISSION_DENIED"}})])
    with pytest.raises(SearchUnsupported):
        await store.find_by_name("general")


# =============================================================================
# GOOGLE DRIVE
# =============================================================================


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": str(status)}), b"{}")


@pytest.mark.asyncio
async def test_drive_missing_parent_is_container_not_found():
    service = MagicMock()
    service.files.return_value.create.return_value.execute.side_effect = _http_error(404)
    store = GoogleDriveStore(service)

    with pytest.raises(ContainerNotFound):
        await store.upload(b"img", "a.png", "folder-1", "image/png")


@pytest.mark.asyncio
async def test_drive_find_scopes_query_to_root_folder():
    service = MagicMock()
    service.files.return_value.list.return_value.execute.return_value = {
        "files": [{"id": "f-1", "name": "it's"}]
    }
    store = GoogleDriveStore(service, root_folder_id="root-9")

    assert await store.find_by_name("it's") == "f-1"
    q = service.files.return_value.list.call_args.kwargs["q"]
    assert "name = 'it\\'s'" in q
    assert "'root-9' in parents" in q


@pytest.mark.asyncio
async def test_drive_upload_returns_web_view_link():
    service = MagicMock()
    service.files.return_value.create.return_value.execute.return_value = {
        "id": "file-1",
        "webViewLink": "https://drive/file-1",
    }
    store = GoogleDriveStore(service)

    assert await store.upload(b"img", "a.png", "folder-1", "image/png") == "https://drive/file-1"
    body = service.files.return_value.create.call_args.kwargs["body"]
    assert body == {"name": "a.png", "parents": ["folder-1"]}
