from fastapi import APIRouter, Depends, HTTPException, Response, status
from typing import List
import logging
import uuid

from draftsync.core.auth import get_current_owner
from draftsync.core.exceptions import (
    ConflictError, DraftSyncError, DraftValidationError, NotFoundError, TransientIOError
)
from draftsync.db.repositories.draft_repository import DraftRepository
from draftsync.domains.drafts.entities import Draft
from draftsync.domains.drafts.schemas import (
    DraftCreate, DraftListResponse, DraftPatch, DraftSnapshot, DraftUpdateRequest,
    DraftVersionCreate, RestoreVersionRequest
)
from draftsync.domains.versioning import engine
from draftsync.domains.versioning.schemas import VersionDiff

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/drafts", tags=["drafts"])


def get_repository() -> DraftRepository:
    return DraftRepository()


def _http_error(exc: DraftSyncError) -> HTTPException:
    """Ошибки хранилища в HTTP-статусы"""
    if isinstance(exc, DraftValidationError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, TransientIOError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=exc.message)


@router.get("/", response_model=DraftListResponse)
async def list_drafts(
    owner_id: uuid.UUID = Depends(get_current_owner),
    repo: DraftRepository = Depends(get_repository)
):
    """Активные версии неархивных черновиков владельца"""
    try:
        drafts = await repo.list_drafts(owner_id)
    except DraftSyncError as e:
        raise _http_error(e)
    return DraftListResponse(drafts=[draft.to_snapshot() for draft in drafts], total=len(drafts))


@router.get("/archived", response_model=DraftListResponse)
async def list_archived_drafts(
    owner_id: uuid.UUID = Depends(get_current_owner),
    repo: DraftRepository = Depends(get_repository)
):
    try:
        drafts = await repo.list_archived(owner_id)
    except DraftSyncError as e:
        raise _http_error(e)
    return DraftListResponse(drafts=[draft.to_snapshot() for draft in drafts], total=len(drafts))


@router.post("/", response_model=DraftSnapshot, status_code=status.HTTP_201_CREATED)
async def create_draft(
    draft_data: DraftCreate,
    owner_id: uuid.UUID = Depends(get_current_owner),
    repo: DraftRepository = Depends(get_repository)
):
    """Создание нового черновика (версия 1)"""
    draft = Draft.create_draft(
        owner_id,
        draft_data.name,
        draft_data.template_id,
        content=draft_data.content,
        metadata=draft_data.metadata,
        origin=draft_data.origin,
        source_artifact_id=draft_data.source_artifact_id
    )
    try:
        saved = await repo.create(owner_id, draft)
    except DraftSyncError as e:
        raise _http_error(e)
    return saved.to_snapshot()


@router.get("/{draft_id}", response_model=DraftSnapshot)
async def get_draft(
    draft_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_current_owner),
    repo: DraftRepository = Depends(get_repository)
):
    try:
        draft = await repo.get(owner_id, draft_id, touch=True)
    except DraftSyncError as e:
        raise _http_error(e)
    return draft.to_snapshot()


@router.patch("/{draft_id}", response_model=DraftSnapshot)
async def update_draft(
    draft_id: uuid.UUID,
    update_data: DraftUpdateRequest,
    owner_id: uuid.UUID = Depends(get_current_owner),
    repo: DraftRepository = Depends(get_repository)
):
    """Изменение имени, шаблона или метаданных без новой версии"""
    patch = DraftPatch.model_validate(
        update_data.model_dump(exclude_unset=True, exclude={"expected_version"})
    )
    try:
        draft = await repo.update(owner_id, draft_id, update_data.expected_version, patch)
    except DraftSyncError as e:
        raise _http_error(e)
    return draft.to_snapshot()


@router.post("/{draft_id}/versions", response_model=DraftSnapshot, status_code=status.HTTP_201_CREATED)
async def create_version(
    draft_id: uuid.UUID,
    version_data: DraftVersionCreate,
    response: Response,
    owner_id: uuid.UUID = Depends(get_current_owner),
    repo: DraftRepository = Depends(get_repository)
):
    """
    Новая версия поверх draft_id. 409, если draft_id уже не активная версия
    или его версия не равна expected_version. Без изменений содержимого
    возвращается текущая версия со статусом 200.
    """
    try:
        parent = await repo.get(owner_id, draft_id)
        if parent.version != version_data.expected_version or not parent.is_active:
            raise ConflictError(
                f"Draft {draft_id} was modified elsewhere",
                draft_id, version_data.expected_version, parent.version
            )

        metadata = version_data.metadata or parent.metadata
        digest = engine.content_hash(version_data.content, metadata)
        if not engine.should_version(parent.content_hash, digest):
            response.status_code = status.HTTP_200_OK
            return parent.to_snapshot()

        candidate = engine.mint_version(parent, version_data.content, metadata, version_data.origin)
        saved = await repo.append_version(owner_id, parent.id, parent.version, candidate)
    except DraftSyncError as e:
        raise _http_error(e)
    return saved.to_snapshot()


@router.get("/{draft_id}/family", response_model=List[DraftSnapshot])
async def get_family(
    draft_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_current_owner),
    repo: DraftRepository = Depends(get_repository)
):
    """Все версии линии, от новых к старым"""
    try:
        family = await repo.list_family(owner_id, draft_id)
    except DraftSyncError as e:
        raise _http_error(e)
    return [draft.to_snapshot() for draft in family]


@router.get("/{draft_id}/compare/{other_id}", response_model=VersionDiff)
async def compare_versions(
    draft_id: uuid.UUID,
    other_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_current_owner),
    repo: DraftRepository = Depends(get_repository)
):
    try:
        a = await repo.get(owner_id, draft_id)
        b = await repo.get(owner_id, other_id)
    except DraftSyncError as e:
        raise _http_error(e)
    return engine.diff(a, b)


@router.post("/{draft_id}/restore-version", response_model=DraftSnapshot, status_code=status.HTTP_201_CREATED)
async def restore_version(
    draft_id: uuid.UUID,
    restore_data: RestoreVersionRequest,
    response: Response,
    owner_id: uuid.UUID = Depends(get_current_owner),
    repo: DraftRepository = Depends(get_repository)
):
    """Старая версия линии становится новой активной версией"""
    try:
        family = await repo.list_family(owner_id, draft_id)
        candidate = engine.restore(family, restore_data.version_id)
        tip = engine.get_tip(family)
        if candidate is None:
            response.status_code = status.HTTP_200_OK
            return tip.to_snapshot()
        saved = await repo.append_version(owner_id, tip.id, tip.version, candidate)
    except DraftSyncError as e:
        raise _http_error(e)
    logger.info(f"Restored version {restore_data.version_id} as version {saved.version}")
    return saved.to_snapshot()


@router.post("/{draft_id}/archive")
async def archive_draft(
    draft_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_current_owner),
    repo: DraftRepository = Depends(get_repository)
):
    try:
        count = await repo.archive(owner_id, draft_id)
    except DraftSyncError as e:
        raise _http_error(e)
    return {"archived": count}


@router.post("/{draft_id}/unarchive", response_model=DraftSnapshot)
async def unarchive_draft(
    draft_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_current_owner),
    repo: DraftRepository = Depends(get_repository)
):
    try:
        tip = await repo.restore_archived(owner_id, draft_id)
    except DraftSyncError as e:
        raise _http_error(e)
    return tip.to_snapshot()


@router.delete("/{draft_id}")
async def delete_draft(
    draft_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_current_owner),
    repo: DraftRepository = Depends(get_repository)
):
    """Безвозвратное удаление всей линии версий"""
    try:
        count = await repo.permanent_delete(owner_id, draft_id)
    except DraftSyncError as e:
        raise _http_error(e)
    return {"deleted": count}
