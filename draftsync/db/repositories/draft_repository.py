from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, List, TYPE_CHECKING
import logging
import uuid

from sqlalchemy import select, update, delete, and_
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from draftsync.core.db import SessionLocal
from draftsync.core.exceptions import (
    ConflictError, DraftValidationError, NotFoundError, TransientIOError
)
from draftsync.db.models.draft import ResumeDraft as DraftModel
from draftsync.domains.drafts.schemas import DraftContent, DraftMetadata, DraftPatch

if TYPE_CHECKING:
    from draftsync.domains.drafts.entities import Draft

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite отдает даты без часового пояса
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DraftRepository:
    """Удаленное хранилище черновиков. Каждый запрос ограничен владельцем."""

    def __init__(self, session_factory: async_sessionmaker = SessionLocal):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        async with self.session_factory() as session:
            try:
                yield session
            except IntegrityError as exc:
                raise DraftValidationError(f"Integrity violation: {exc.orig}") from exc
            except DBAPIError as exc:
                logger.warning(f"Draft store unavailable: {exc.__class__.__name__}")
                raise TransientIOError(f"Draft store unavailable: {exc.orig}") from exc
            except TimeoutError as exc:
                logger.warning("Draft store request timed out")
                raise TransientIOError("Draft store request timed out") from exc

    @staticmethod
    def _require_owner(owner_id: uuid.UUID) -> None:
        if owner_id is None:
            raise DraftValidationError("owner_id is required")

    async def _get_model(self, session: AsyncSession, owner_id: uuid.UUID, draft_id: uuid.UUID) -> DraftModel:
        result = await session.execute(
            select(DraftModel).where(
                and_(DraftModel.id == draft_id, DraftModel.owner_id == owner_id)
            )
        )
        db_draft = result.scalar_one_or_none()
        if db_draft is None:
            raise NotFoundError(f"Draft {draft_id} not found", draft_id)
        return db_draft

    async def create(self, owner_id: uuid.UUID, draft: "Draft") -> "Draft":
        """Создание корня новой линии версий"""
        self._require_owner(owner_id)
        if draft.owner_id != owner_id:
            raise DraftValidationError("Draft owner does not match the authenticated owner", draft.id)

        db_draft = DraftModel(
            id=draft.id,
            owner_id=owner_id,
            name=draft.name,
            template_id=draft.template_id,
            source_artifact_id=draft.source_artifact_id,
            content=draft.content.model_dump(mode="json"),
            draft_metadata=draft.metadata.model_dump(mode="json"),
            version=1,
            is_active=True,
            archived=False,
            parent_draft_id=None,
            root_draft_id=draft.id,
            origin_source=draft.origin.value,
            content_hash=draft.content_hash,
            created_at=draft.created_at,
            updated_at=draft.updated_at
        )

        async with self._session() as session:
            session.add(db_draft)
            await session.commit()
            await session.refresh(db_draft)
            logger.info(f"Created draft {db_draft.id} for owner {owner_id}")
            return self._to_domain(db_draft)

    async def get(self, owner_id: uuid.UUID, draft_id: uuid.UUID, touch: bool = False) -> "Draft":
        """Получение черновика по id; touch обновляет last_accessed_at"""
        self._require_owner(owner_id)
        async with self._session() as session:
            db_draft = await self._get_model(session, owner_id, draft_id)
            if touch:
                db_draft.last_accessed_at = datetime.now(timezone.utc)
                await session.commit()
                await session.refresh(db_draft)
            return self._to_domain(db_draft)

    async def list_drafts(self, owner_id: uuid.UUID, active_only: bool = True) -> List["Draft"]:
        """Черновики владельца без архивных; active_only оставляет только активные версии"""
        self._require_owner(owner_id)
        conditions = [DraftModel.owner_id == owner_id, DraftModel.archived == False]  # noqa: E712
        if active_only:
            conditions.append(DraftModel.is_active == True)  # noqa: E712

        async with self._session() as session:
            result = await session.execute(
                select(DraftModel)
                .where(and_(*conditions))
                .order_by(DraftModel.updated_at.desc(), DraftModel.version.desc())
            )
            return [self._to_domain(db_draft) for db_draft in result.scalars().all()]

    async def list_archived(self, owner_id: uuid.UUID) -> List["Draft"]:
        """Активные версии архивных линий"""
        self._require_owner(owner_id)
        async with self._session() as session:
            result = await session.execute(
                select(DraftModel)
                .where(
                    and_(
                        DraftModel.owner_id == owner_id,
                        DraftModel.archived == True,  # noqa: E712
                        DraftModel.is_active == True  # noqa: E712
                    )
                )
                .order_by(DraftModel.updated_at.desc())
            )
            return [self._to_domain(db_draft) for db_draft in result.scalars().all()]

    async def list_family(self, owner_id: uuid.UUID, draft_id: uuid.UUID) -> List["Draft"]:
        """Все версии линии, от новых к старым"""
        self._require_owner(owner_id)
        async with self._session() as session:
            member = await self._get_model(session, owner_id, draft_id)
            result = await session.execute(
                select(DraftModel)
                .where(
                    and_(
                        DraftModel.owner_id == owner_id,
                        DraftModel.root_draft_id == member.root_draft_id
                    )
                )
                .order_by(DraftModel.version.desc())
            )
            return [self._to_domain(db_draft) for db_draft in result.scalars().all()]

    async def get_tip(self, owner_id: uuid.UUID, draft_id: uuid.UUID) -> "Draft":
        """Активная версия линии, в которую входит draft_id"""
        self._require_owner(owner_id)
        async with self._session() as session:
            member = await self._get_model(session, owner_id, draft_id)
            result = await session.execute(
                select(DraftModel)
                .where(
                    and_(
                        DraftModel.owner_id == owner_id,
                        DraftModel.root_draft_id == member.root_draft_id,
                        DraftModel.is_active == True  # noqa: E712
                    )
                )
                .order_by(DraftModel.version.desc())
                .limit(1)
            )
            db_draft = result.scalar_one_or_none()
            if db_draft is None:
                raise NotFoundError(f"Lineage of draft {draft_id} has no active version", draft_id)
            return self._to_domain(db_draft)

    async def update(
        self,
        owner_id: uuid.UUID,
        draft_id: uuid.UUID,
        expected_version: int,
        patch: DraftPatch
    ) -> "Draft":
        """
        Изменение без новой версии, только если сохраненная версия равна ожидаемой
        и черновик все еще активен. Иначе ConflictError, изменения не применяются.
        """
        self._require_owner(owner_id)
        values = {}
        if patch.name is not None:
            values["name"] = patch.name
        if patch.template_id is not None:
            values["template_id"] = patch.template_id
        if "source_artifact_id" in patch.model_fields_set:
            values["source_artifact_id"] = patch.source_artifact_id

        async with self._session() as session:
            current = await self._get_model(session, owner_id, draft_id)
            if current.version != expected_version or not current.is_active:
                raise ConflictError(
                    f"Draft {draft_id} was modified elsewhere",
                    draft_id, expected_version, current.version
                )

            if patch.metadata is not None:
                stored = DraftMetadata.model_validate(current.draft_metadata or {})
                # Порядок секций входит в хэш, его меняет только новая версия
                if stored.section_order != patch.metadata.section_order:
                    raise DraftValidationError("Section order changes require a new version", draft_id)
                values["draft_metadata"] = patch.metadata.model_dump(mode="json")

            values["updated_at"] = datetime.now(timezone.utc)
            stmt = (
                update(DraftModel)
                .where(
                    and_(
                        DraftModel.id == draft_id,
                        DraftModel.owner_id == owner_id,
                        DraftModel.version == expected_version,
                        DraftModel.is_active == True  # noqa: E712
                    )
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise ConflictError(
                    f"Draft {draft_id} was modified elsewhere", draft_id, expected_version
                )
            await session.commit()

            await session.refresh(current)
            return self._to_domain(current)

    async def append_version(
        self,
        owner_id: uuid.UUID,
        parent_id: uuid.UUID,
        expected_version: int,
        draft: "Draft"
    ) -> "Draft":
        """
        Новая версия линии: в одной транзакции родитель становится неактивным
        (только если его версия равна ожидаемой) и вставляется потомок.
        Проигравший в гонке получает ConflictError.
        """
        self._require_owner(owner_id)
        if draft.owner_id != owner_id:
            raise DraftValidationError("Draft owner does not match the authenticated owner", draft.id)
        if draft.parent_draft_id != parent_id or draft.version != expected_version + 1:
            raise DraftValidationError(
                f"Version {draft.version} is not a child of version {expected_version}", draft.id
            )

        now = datetime.now(timezone.utc)
        async with self._session() as session:
            result = await session.execute(
                update(DraftModel)
                .where(
                    and_(
                        DraftModel.id == parent_id,
                        DraftModel.owner_id == owner_id,
                        DraftModel.version == expected_version,
                        DraftModel.is_active == True  # noqa: E712
                    )
                )
                .values(is_active=False, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            parent = await self._get_model(session, owner_id, parent_id)
            if result.rowcount == 0:
                logger.info(
                    f"Version conflict on draft {parent_id}: expected {expected_version}, "
                    f"stored {parent.version}, active={parent.is_active}"
                )
                raise ConflictError(
                    f"Draft {parent_id} was modified elsewhere",
                    parent_id, expected_version, parent.version
                )

            db_draft = DraftModel(
                id=draft.id,
                owner_id=owner_id,
                name=draft.name,
                template_id=draft.template_id,
                source_artifact_id=draft.source_artifact_id,
                content=draft.content.model_dump(mode="json"),
                draft_metadata=draft.metadata.model_dump(mode="json"),
                version=draft.version,
                is_active=True,
                archived=parent.archived,
                parent_draft_id=parent_id,
                root_draft_id=parent.root_draft_id,
                origin_source=draft.origin.value,
                content_hash=draft.content_hash,
                created_at=draft.created_at,
                updated_at=draft.updated_at
            )
            session.add(db_draft)
            await session.commit()
            await session.refresh(db_draft)
            logger.info(f"Draft lineage {db_draft.root_draft_id} advanced to version {db_draft.version}")
            return self._to_domain(db_draft)

    async def _set_archived(self, owner_id: uuid.UUID, draft_id: uuid.UUID, archived: bool) -> int:
        self._require_owner(owner_id)
        async with self._session() as session:
            member = await self._get_model(session, owner_id, draft_id)
            result = await session.execute(
                update(DraftModel)
                .where(
                    and_(
                        DraftModel.owner_id == owner_id,
                        DraftModel.root_draft_id == member.root_draft_id
                    )
                )
                .values(archived=archived)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def archive(self, owner_id: uuid.UUID, draft_id: uuid.UUID) -> int:
        """Мягкое удаление всей линии версий, номера версий не меняются"""
        count = await self._set_archived(owner_id, draft_id, True)
        logger.info(f"Archived {count} versions of draft {draft_id}")
        return count

    async def restore_archived(self, owner_id: uuid.UUID, draft_id: uuid.UUID) -> "Draft":
        """Возврат линии из архива, возвращает активную версию"""
        await self._set_archived(owner_id, draft_id, False)
        return await self.get_tip(owner_id, draft_id)

    async def permanent_delete(self, owner_id: uuid.UUID, draft_id: uuid.UUID) -> int:
        """Безвозвратное удаление всей линии версий"""
        self._require_owner(owner_id)
        async with self._session() as session:
            member = await self._get_model(session, owner_id, draft_id)
            result = await session.execute(
                delete(DraftModel).where(
                    and_(
                        DraftModel.owner_id == owner_id,
                        DraftModel.root_draft_id == member.root_draft_id
                    )
                )
            )
            await session.commit()
            logger.warning(f"Permanently deleted {result.rowcount} versions of draft {draft_id}")
            return result.rowcount

    def _to_domain(self, db_draft: DraftModel) -> "Draft":
        """Преобразование модели БД в доменную сущность"""
        from draftsync.domains.drafts.entities import Draft

        return Draft(
            id=db_draft.id,
            owner_id=db_draft.owner_id,
            name=db_draft.name,
            template_id=db_draft.template_id,
            content=DraftContent.model_validate(db_draft.content or {}),
            metadata=DraftMetadata.model_validate(db_draft.draft_metadata or {}),
            version=db_draft.version,
            is_active=db_draft.is_active,
            archived=db_draft.archived,
            parent_draft_id=db_draft.parent_draft_id,
            root_draft_id=db_draft.root_draft_id,
            origin=db_draft.origin_source,
            content_hash=db_draft.content_hash,
            source_artifact_id=db_draft.source_artifact_id,
            created_at=_aware(db_draft.created_at),
            updated_at=_aware(db_draft.updated_at),
            last_accessed_at=_aware(db_draft.last_accessed_at)
        )
