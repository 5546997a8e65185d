"""Board of directors: /api/v1/board-of-directors"""

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
from cms_api.models.board_member import BoardMember
from cms_api.schemas.board_member import BoardMemberResponse
from cms_api.schemas.common import PaginatedResponse, build_pagination, sort_column
from cms_api.services.storage import (
    StorageWriteError,
    UploadArtifactManager,
    get_upload_manager,
)

logger = structlog.get_logger()
router = APIRouter()

CATEGORY = "board-of-directors"
SORTABLE = {"position", "full_name", "created_at"}


def _to_response(m: BoardMember) -> BoardMemberResponse:
    return BoardMemberResponse(
        id=str(m.id),
        position=m.position,
        title=m.title,
        full_name=m.full_name,
        linkedin_link=m.linkedin_link,
        photo=m.photo,
        created_at=m.created_at.isoformat() if m.created_at else "",
        updated_at=m.updated_at.isoformat() if m.updated_at else None,
    )


async def _get_or_404(db: AsyncSession, member_id: str) -> BoardMember:
    try:
        pk = uuid.UUID(member_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid board member ID")
    member = (
        await db.execute(select(BoardMember).where(BoardMember.id == pk))
    ).scalar_one_or_none()
    if not member:
        raise HTTPException(status_code=404, detail="Board member not found")
    return member


@router.get("", response_model=PaginatedResponse[BoardMemberResponse])
async def list_board_members(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("position"),
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
):
    total = (await db.execute(select(func.count(BoardMember.id)))).scalar() or 0
    result = await db.execute(
        select(BoardMember)
        .order_by(sort_column(BoardMember, sort_by, sort_order, SORTABLE, "position"))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    members = [_to_response(m) for m in result.scalars().all()]
    return PaginatedResponse(data=members, pagination=build_pagination(page, limit, total))


@router.get("/{member_id}", response_model=BoardMemberResponse)
async def get_board_member(member_id: str, db: AsyncSession = Depends(get_db)):
    return _to_response(await _get_or_404(db, member_id))


@router.post("", response_model=BoardMemberResponse, status_code=status.HTTP_201_CREATED)
async def create_board_member(
    request: Request,
    title: str = Form(..., min_length=1, max_length=200),
    full_name: str = Form(..., min_length=1, max_length=200),
    position: int = Form(0, ge=0),
    linkedin_link: Optional[str] = Form(None, max_length=500),
    photo: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    uploads: UploadArtifactManager = Depends(get_upload_manager),
):
    payload = await read_upload(photo)
    photo_url = None
    if payload is not None:
        try:
            photo_url = (
                await uploads.store(payload, CATEGORY, request_base_url(request))
            ).public_locator
        except StorageWriteError:
            raise upload_failed()

    member = BoardMember(
        position=position,
        title=title,
        full_name=full_name,
        linkedin_link=linkedin_link or None,
        photo=photo_url,
    )
    try:
        db.add(member)
        await db.commit()
        await db.refresh(member)
    except Exception:
        if photo_url:
            await uploads.delete(photo_url, CATEGORY)
        raise

    logger.info("board_member_created", member_id=str(member.id), user_id=current_user["user_id"])
    return _to_response(member)


@router.put("/{member_id}", response_model=BoardMemberResponse)
async def update_board_member(
    member_id: str,
    request: Request,
    title: Optional[str] = Form(None, min_length=1, max_length=200),
    full_name: Optional[str] = Form(None, min_length=1, max_length=200),
    position: Optional[int] = Form(None, ge=0),
    linkedin_link: Optional[str] = Form(None, max_length=500),
    photo: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    uploads: UploadArtifactManager = Depends(get_upload_manager),
):
    member = await _get_or_404(db, member_id)
    payload = await read_upload(photo)

    if title is not None:
        member.title = title
    if full_name is not None:
        member.full_name = full_name
    if position is not None:
        member.position = position
    if linkedin_link is not None:
        member.linkedin_link = linkedin_link or None

    old_photo = member.photo
    new_photo = None
    if payload is not None:
        try:
            new_photo = (
                await uploads.store(payload, CATEGORY, request_base_url(request))
            ).public_locator
        except StorageWriteError:
            raise upload_failed()
        member.photo = new_photo

    try:
        await db.commit()
        await db.refresh(member)
    except Exception:
        if new_photo:
            await uploads.delete(new_photo, CATEGORY)
        raise

    if new_photo and old_photo:
        await uploads.delete(old_photo, CATEGORY)

    logger.info("board_member_updated", member_id=member_id, user_id=current_user["user_id"])
    return _to_response(member)


@router.delete("/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_board_member(
    member_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    uploads: UploadArtifactManager = Depends(get_upload_manager),
):
    member = await _get_or_404(db, member_id)
    photo = member.photo
    await db.delete(member)
    await db.commit()
    if photo:
        await uploads.delete(photo, CATEGORY)
    logger.info("board_member_deleted", member_id=member_id, user_id=current_user["user_id"])
