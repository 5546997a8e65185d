"""
Upload flows through the carousel and board-of-directors routes.

Files land on real disk under the test UPLOAD_DIR and are fetched back through
the /uploads static mount; the database session is an AsyncMock.
"""

import os
import uuid
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from cms_api.database import get_db
from cms_api.main import app
from cms_api.models.board_member import BoardMember
from cms_api.models.carousel import CarouselItem
from cms_api.services.storage import (
    LocalDiskBackend,
    UploadArtifactManager,
    UploadPayload,
    get_upload_manager,
)

JPEG = b"\xff\xd8\xff\xe0" + bytes(i % 251 for i in range(10 * 1024 - 6)) + b"\xff\xd9"

SLIDE_FORM = {
    "title": "Save with Fixed Deposit",
    "description": "Earn up to 12% per annum",
    "button_title": "Open account",
    "link": "https://bank.example/deposits",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _populate(obj):
    if getattr(obj, "id", None) is None:
        obj.id = uuid.uuid4()
    obj.created_at = obj.created_at or datetime.utcnow()
    obj.updated_at = datetime.utcnow()


def _session(existing=None) -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    session.refresh = AsyncMock(side_effect=_populate)
    result = MagicMock()
    result.scalar_one_or_none.return_value = existing
    session.execute = AsyncMock(return_value=result)
    return session


@pytest.fixture
def uploads(upload_root):
    manager = UploadArtifactManager(LocalDiskBackend(upload_root))
    app.dependency_overrides[get_upload_manager] = lambda: manager
    return manager


def _use_session(session):
    async def _get_db():
        yield session

    app.dependency_overrides[get_db] = _get_db


def _files(upload_root, category):
    folder = os.path.join(upload_root, category)
    return set(os.listdir(folder)) if os.path.isdir(folder) else set()


def _jpeg(name: str) -> UploadPayload:
    return UploadPayload(content=JPEG, original_name=name, mime_type="image/jpeg")


def _path_of(locator: str) -> str:
    return locator[len("http://test"):]


# ---------------------------------------------------------------------------
# Carousel
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_slide_serves_uploaded_banner(client, auth_headers, uploads, upload_root):
    session = _session()
    _use_session(session)

    response = await client.post(
        "/api/v1/carousel",
        headers=auth_headers,
        data=SLIDE_FORM,
        files={"image": ("banner.jpg", JPEG, "image/jpeg")},
    )

    assert response.status_code == 201
    locator = response.json()["image"]
    assert locator.startswith("http://test/uploads/carousel/")
    assert locator.endswith(".jpg")
    session.commit.assert_awaited_once()

    served = await client.get(_path_of(locator))
    assert served.status_code == 200
    assert served.headers["content-type"] == "image/jpeg"
    assert served.content == JPEG


@pytest.mark.asyncio
async def test_create_slide_requires_image(client, auth_headers, uploads):
    _use_session(_session())
    response = await client.post("/api/v1/carousel", headers=auth_headers, data=SLIDE_FORM)
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Image is required"


@pytest.mark.asyncio
async def test_create_slide_rejects_unsupported_type(client, auth_headers, uploads, upload_root):
    _use_session(_session())
    before = _files(upload_root, "carousel")

    response = await client.post(
        "/api/v1/carousel",
        headers=auth_headers,
        data=SLIDE_FORM,
        files={"image": ("notes.txt", b"hello", "text/plain")},
    )

    assert response.status_code == 400
    assert _files(upload_root, "carousel") == before


@pytest.mark.asyncio
async def test_failed_commit_leaves_no_orphan_file(client, auth_headers, uploads, upload_root):
    session = _session()
    session.commit = AsyncMock(side_effect=RuntimeError("connection reset"))
    _use_session(session)
    before = _files(upload_root, "carousel")

    response = await client.post(
        "/api/v1/carousel",
        headers=auth_headers,
        data=SLIDE_FORM,
        files={"image": ("banner.jpg", JPEG, "image/jpeg")},
    )

    assert response.status_code == 500
    assert _files(upload_root, "carousel") == before


@pytest.mark.asyncio
async def test_update_slide_swaps_banner(client, auth_headers, uploads, upload_root):
    old = await uploads.store(_jpeg("old.jpg"), "carousel", "http://test")
    item = CarouselItem(
        id=uuid.uuid4(),
        image=old.public_locator,
        created_at=datetime.utcnow(),
        **SLIDE_FORM,
    )
    _use_session(_session(existing=item))

    response = await client.put(
        f"/api/v1/carousel/{item.id}",
        headers=auth_headers,
        data={"title": "New rates"},
        files={"image": ("new.png", b"\x89PNG\r\n\x1a\n" + JPEG, "image/png")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "New rates"
    assert body["image"] != old.public_locator
    assert body["image"].endswith(".png")
    assert old.storage_key not in _files(upload_root, "carousel")
    assert (await client.get(_path_of(body["image"]))).status_code == 200
    assert (await client.get(_path_of(old.public_locator))).status_code == 404


@pytest.mark.asyncio
async def test_update_without_image_keeps_banner(client, auth_headers, uploads, upload_root):
    old = await uploads.store(_jpeg("keep.jpg"), "carousel", "http://test")
    item = CarouselItem(
        id=uuid.uuid4(), image=old.public_locator, created_at=datetime.utcnow(), **SLIDE_FORM
    )
    _use_session(_session(existing=item))

    response = await client.put(
        f"/api/v1/carousel/{item.id}", headers=auth_headers, data={"link": "https://bank.example/new"}
    )

    assert response.status_code == 200
    assert response.json()["image"] == old.public_locator
    assert old.storage_key in _files(upload_root, "carousel")


@pytest.mark.asyncio
async def test_delete_slide_removes_banner(client, auth_headers, uploads, upload_root):
    old = await uploads.store(_jpeg("gone.jpg"), "carousel", "http://test")
    item = CarouselItem(
        id=uuid.uuid4(), image=old.public_locator, created_at=datetime.utcnow(), **SLIDE_FORM
    )
    session = _session(existing=item)
    _use_session(session)

    response = await client.delete(f"/api/v1/carousel/{item.id}", headers=auth_headers)

    assert response.status_code == 204
    session.delete.assert_awaited_once_with(item)
    assert old.storage_key not in _files(upload_root, "carousel")


@pytest.mark.asyncio
async def test_carousel_writes_require_auth(client, uploads):
    _use_session(_session())
    response = await client.post(
        "/api/v1/carousel",
        data=SLIDE_FORM,
        files={"image": ("banner.jpg", JPEG, "image/jpeg")},
    )
    assert response.status_code in (401, 403)


# ---------------------------------------------------------------------------
# Board of directors
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_member_without_photo(client, auth_headers, uploads):
    _use_session(_session())

    response = await client.post(
        "/api/v1/board-of-directors",
        headers=auth_headers,
        data={"title": "Chairperson", "full_name": "Amani Mushi", "position": "1"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["photo"] is None
    assert body["position"] == 1


@pytest.mark.asyncio
async def test_member_photo_lives_in_its_own_namespace(client, auth_headers, uploads, upload_root):
    _use_session(_session())

    response = await client.post(
        "/api/v1/board-of-directors",
        headers=auth_headers,
        data={"title": "Director", "full_name": "Neema Said"},
        files={"photo": ("neema.webp", b"RIFF....WEBPVP8 " + JPEG, "image/webp")},
    )

    assert response.status_code == 201
    locator = response.json()["photo"]
    assert "/uploads/board-of-directors/" in locator
    key = locator.rsplit("/", 1)[-1]
    assert key in _files(upload_root, "board-of-directors")
    assert key not in _files(upload_root, "carousel")


@pytest.mark.asyncio
async def test_delete_member_without_photo(client, auth_headers, uploads):
    member = BoardMember(
        id=uuid.uuid4(), title="Director", full_name="Juma Ali", position=2, created_at=datetime.utcnow()
    )
    session = _session(existing=member)
    _use_session(session)

    response = await client.delete(f"/api/v1/board-of-directors/{member.id}", headers=auth_headers)

    assert response.status_code == 204
    session.commit.assert_awaited_once()
