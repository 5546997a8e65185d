"""
Homepage carousel: /api/v1/carousel

Each slide owns exactly one banner image stored under the "carousel" upload
category. Writes that fail after the image is stored remove the new image
before the error is returned.
"""

import uuid
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
    status,
)
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from cms_api.database import get_db
from cms_api.middleware.auth import get_current_user
from cms_api.middleware.uploads import read_upload, request_base_url, upload_failed
from cms_api.models.carousel import CarouselItem
from cms_api.schemas.carousel import CarouselResponse
from cms_api.schemas.common import PaginatedResponse, build_pagination, sort_column
from cms_api.services.storage import (
    StorageWriteError,
    UploadArtifactManager,
    get_upload_manager,
)

logger = structlog.get_logger()
router = APIRouter()

CATEGORY = "carousel"
SORTABLE = {"created_at", "updated_at", "title"}


def _to_response(c: CarouselItem) -> CarouselResponse:
    return CarouselResponse(
        id=str(c.id),
        title=c.title,
        description=c.description,
        button_title=c.button_title,
        link=c.link,
        image=c.image,
        created_at=c.created_at.isoformat() if c.created_at else "",
        updated_at=c.updated_at.isoformat() if c.updated_at else None,
    )


async def _get_or_404(db: AsyncSession, item_id: str) -> CarouselItem:
    try:
        pk = uuid.UUID(item_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid ID format")
    item = (
        await db.execute(select(CarouselItem).where(CarouselItem.id == pk))
    ).scalar_one_or_none()
    if not item:
        raise HTTPException(status_code=404, detail="Carousel item not found")
    return item


@router.get("", response_model=PaginatedResponse[CarouselResponse])
async def list_carousel_items(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
):
    total = (await db.execute(select(func.count(CarouselItem.id)))).scalar() or 0
    result = await db.execute(
        select(CarouselItem)
        .order_by(sort_column(CarouselItem, sort_by, sort_order, SORTABLE, "created_at"))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(c) for c in result.scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{item_id}", response_model=CarouselResponse)
async def get_carousel_item(item_id: str, db: AsyncSession = Depends(get_db)):
    return _to_response(await _get_or_404(db, item_id))


@router.post("", response_model=CarouselResponse, status_code=status.HTTP_201_CREATED)
async def create_carousel_item(
    request: Request,
    title: str = Form(..., min_length=1, max_length=50),
    description: str = Form(..., min_length=1, max_length=150),
    button_title: str = Form(..., min_length=1, max_length=100),
    link: str = Form(..., min_length=1, max_length=500),
    image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    uploads: UploadArtifactManager = Depends(get_upload_manager),
):
    payload = await read_upload(image)
    if payload is None:
        raise HTTPException(status_code=400, detail="Image is required")

    try:
        artifact = await uploads.store(payload, CATEGORY, request_base_url(request))
    except StorageWriteError:
        raise upload_failed()

    item = CarouselItem(
        title=title,
        description=description,
        button_title=button_title,
        link=link,
        image=artifact.public_locator,
    )
    try:
        db.add(item)
        await db.commit()
        await db.refresh(item)
    except Exception:
        await uploads.delete(artifact.public_locator, CATEGORY)
        raise

    logger.info("carousel_item_created", item_id=str(item.id), user_id=current_user["user_id"])
    return _to_response(item)


@router.put("/{item_id}", response_model=CarouselResponse)
async def update_carousel_item(
    item_id: str,
    request: Request,
    title: Optional[str] = Form(None, min_length=1, max_length=50),
    description: Optional[str] = Form(None, min_length=1, max_length=150),
    button_title: Optional[str] = Form(None, min_length=1, max_length=100),
    link: Optional[str] = Form(None, min_length=1, max_length=500),
    image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    uploads: UploadArtifactManager = Depends(get_upload_manager),
):
    item = await _get_or_404(db, item_id)
    payload = await read_upload(image)

    for field, val in {
        "title": title,
        "description": description,
        "button_title": button_title,
        "link": link,
    }.items():
        if val is not None:
            setattr(item, field, val)

    old_image = item.image
    new_image = None
    if payload is not None:
        try:
            new_image = (
                await uploads.store(payload, CATEGORY, request_base_url(request))
            ).public_locator
        except StorageWriteError:
            raise upload_failed()
        item.image = new_image

    try:
        await db.commit()
        await db.refresh(item)
    except Exception:
        if new_image:
            await uploads.delete(new_image, CATEGORY)
        raise

    # Retire the previous banner only once the slide points at the new one
    if new_image and old_image:
        await uploads.delete(old_image, CATEGORY)

    logger.info("carousel_item_updated", item_id=item_id, user_id=current_user["user_id"])
    return _to_response(item)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_carousel_item(
    item_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    uploads: UploadArtifactManager = Depends(get_upload_manager),
):
    item = await _get_or_404(db, item_id)
    image = item.image
    await db.delete(item)
    await db.commit()
    await uploads.delete(image, CATEGORY)
    logger.info("carousel_item_deleted", item_id=item_id, user_id=current_user["user_id"])
