"""
Контроллер сессии черновиков: единственная точка входа для UI.

Состояние в памяти состоит из двух слоев: подтвержденные хранилищем активные
версии (по одной на линию) и отображаемые черновики, которые могут отличаться
от подтвержденных после undo/redo или clear_draft. Публичные операции никогда
не выбрасывают исключения: при ошибке возвращается None, а ошибка лежит в error.
"""

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from draftsync.cache.local_cache import LocalDraftCache
from draftsync.core.config import settings
from draftsync.core.exceptions import DraftSyncError, DraftValidationError, NotFoundError
from draftsync.db.repositories.draft_repository import DraftRepository
from draftsync.domains.drafts.entities import Draft, utcnow
from draftsync.domains.drafts.schemas import (
    DraftContent, DraftMetadata, DraftOrigin, DraftPatch, SectionKind, SectionPayload,
    SectionState, build_section
)
from draftsync.domains.session.history import UndoHistory
from draftsync.domains.session.retry import WriteRetry
from draftsync.domains.versioning import engine
from draftsync.domains.versioning.schemas import VersionDiff

logger = logging.getLogger(__name__)

ContentBuild = Callable[[Draft], Tuple[DraftContent, DraftMetadata]]


class SessionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    SYNCED = "synced"


@dataclass
class VersionResult:
    """Итог версионируемой операции; minted=False означает, что содержимое не изменилось"""
    draft: Draft
    minted: bool


@dataclass
class ExportView:
    draft: Draft
    sections: List[SectionPayload] = field(default_factory=list)

    @property
    def section_order(self) -> List[SectionKind]:
        return [SectionKind(section.kind) for section in self.sections]


class DraftSession:
    """Сессия одного пользователя: черновики, активный черновик, история, синхронизация"""

    def __init__(
        self,
        user_id: uuid.UUID,
        store: DraftRepository,
        cache: Optional[LocalDraftCache] = None,
        retry: Optional[WriteRetry] = None,
        history_limit: int = settings.undo_history_limit,
        sync_interval_seconds: float = settings.background_sync_seconds
    ):
        if user_id is None:
            raise DraftValidationError("user_id is required")
        self.user_id = user_id
        self.store = store
        self.cache = cache or LocalDraftCache()
        self.retry = retry or WriteRetry()
        self.history = UndoHistory(history_limit)
        self.sync_interval_seconds = sync_interval_seconds

        self.status = SessionStatus.UNINITIALIZED
        self.error: Optional[DraftSyncError] = None
        # Результат фоновой сверки, отдельно от ошибок операций пользователя
        self.sync_error: Optional[DraftSyncError] = None
        self.drafts: List[Draft] = []
        self.active_draft_id: Optional[uuid.UUID] = None
        self.pending_content: Optional[DraftContent] = None
        self.applied_sections: set = set()

        self._tips: Dict[uuid.UUID, Draft] = {}
        self._locks: Dict[uuid.UUID, asyncio.Lock] = {}
        self._inflight = 0
        self._sync_task: Optional[asyncio.Task] = None

    # --- Жизненный цикл ---

    @classmethod
    async def open(cls, user_id: uuid.UUID, store: DraftRepository, **kwargs) -> "DraftSession":
        """Вход пользователя: сессия с кэшем и сверкой с хранилищем"""
        session = cls(user_id, store, **kwargs)
        await session.start()
        return session

    async def start(self) -> "DraftSession":
        self.status = SessionStatus.LOADING
        entry = self.cache.load(self.user_id, allow_stale=True)
        if entry is not None:
            snapshots = [Draft.from_snapshot(snapshot) for snapshot in entry.drafts]
            # Содержимое должно совпадать с подтвержденным хэшем
            cached = [
                draft for draft in snapshots
                if engine.content_hash(draft.content, draft.metadata) == draft.content_hash
            ]
            if len(cached) < len(snapshots):
                logger.warning(
                    f"Dropped {len(snapshots) - len(cached)} unconfirmed cached drafts for user {self.user_id}"
                )
            self.drafts = cached
            self._tips = {draft.root_draft_id: draft.copy() for draft in cached}
            if entry.active_draft_id and self._find(entry.active_draft_id):
                self.active_draft_id = entry.active_draft_id
                self.history.reset(self._find(entry.active_draft_id), "load")
            logger.info(f"Rendered {len(cached)} cached drafts for user {self.user_id}")
        self.status = SessionStatus.READY

        await self.sync_with_remote()
        return self

    async def close(self) -> None:
        """Выход пользователя: остановка синхронизации, очистка кэша и памяти"""
        await self.stop_background_sync()
        self.cache.clear(self.user_id)
        self.drafts = []
        self._tips = {}
        self._locks = {}
        self.active_draft_id = None
        self.pending_content = None
        self.applied_sections = set()
        self.history.clear()
        self.error = None
        self.sync_error = None
        self.status = SessionStatus.UNINITIALIZED
        logger.info(f"Closed draft session for user {self.user_id}")

    async def sync_with_remote(self) -> Optional[List[Draft]]:
        return await self._run("sync", self._sync())

    def start_background_sync(self, interval_seconds: Optional[float] = None) -> None:
        if self._sync_task is not None and not self._sync_task.done():
            return
        interval = interval_seconds or self.sync_interval_seconds
        self._sync_task = asyncio.create_task(self._sync_loop(interval))

    async def stop_background_sync(self) -> None:
        task, self._sync_task = self._sync_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _sync_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self._run("background sync", self._sync(), background=True)

    # --- Чтение ---

    @property
    def is_loading(self) -> bool:
        return self._inflight > 0

    def get_active_draft(self) -> Optional[Draft]:
        if self.active_draft_id is None:
            return None
        return self._find(self.active_draft_id)

    def can_undo(self) -> bool:
        return self.history.can_undo()

    def can_redo(self) -> bool:
        return self.history.can_redo()

    def export_view(self) -> Optional[ExportView]:
        """Активный черновик и его видимые секции в порядке отображения"""
        draft = self.get_active_draft()
        if draft is None:
            return None
        sections = [
            build_section(kind, getattr(draft.content, kind.value))
            for kind in draft.visible_sections()
        ]
        return ExportView(draft=draft.copy(), sections=sections)

    # --- Управление черновиками ---

    async def create_draft(
        self,
        name: str,
        template_id: str = "classic",
        job_id: Optional[int] = None,
        job_title: Optional[str] = None,
        job_company: Optional[str] = None,
        source_artifact_id: Optional[str] = None
    ) -> Optional[Draft]:
        return await self._run("create", self._create_draft(
            name, template_id, job_id, job_title, job_company, source_artifact_id
        ))

    async def _create_draft(self, name, template_id, job_id, job_title, job_company, source_artifact_id) -> Draft:
        name = self._valid_name(name)
        metadata = DraftMetadata(job_id=job_id, job_title=job_title, job_company=job_company)
        draft = Draft.create_draft(
            self.user_id, name, template_id, metadata=metadata, source_artifact_id=source_artifact_id
        )
        saved = await self._create_remote(draft, "create")

        self._confirm(saved)
        self.active_draft_id = saved.id
        self.applied_sections = set()
        self.history.reset(saved, "create")
        self._save_cache()
        return self._view(saved.root_draft_id)

    async def load_all(self) -> Optional[List[Draft]]:
        return await self._run("load_all", self._load_all())

    async def _load_all(self) -> List[Draft]:
        drafts = await self._sync()
        # Без выбранного черновика активным становится первый
        if self.active_draft_id is None and drafts:
            self.active_draft_id = drafts[0].id
            self.history.reset(drafts[0], "load")
            self._save_cache()
        return drafts

    async def load_one(self, draft_id: uuid.UUID) -> Optional[Draft]:
        return await self._run("load_one", self._load_one(draft_id))

    async def _load_one(self, draft_id: uuid.UUID) -> Draft:
        async def attempt(refetch: bool) -> Draft:
            draft = await self.store.get(self.user_id, draft_id, touch=True)
            if not draft.is_active:
                draft = await self.store.get_tip(self.user_id, draft_id)
            return draft

        saved = await self.retry.run(attempt, label="load_one")
        if saved.archived:
            raise NotFoundError(f"Draft {draft_id} is archived", draft_id)
        self._confirm(saved)
        self.active_draft_id = saved.id
        self.pending_content = None
        self.applied_sections = set()
        self.history.reset(saved, "load")
        self._save_cache()
        return self._view(saved.root_draft_id)

    def deselect(self) -> None:
        self.active_draft_id = None
        self.pending_content = None
        self.applied_sections = set()
        self.history.clear()
        self._save_cache()

    async def rename(self, draft_id: uuid.UUID, name: str) -> Optional[Draft]:
        return await self._run("rename", self._rename(draft_id, name))

    async def _rename(self, draft_id: uuid.UUID, name: str) -> Draft:
        name = self._valid_name(name)
        root_id = await self._root_for(draft_id)
        return await self._patch(root_id, "rename", lambda current: DraftPatch(name=name))

    async def delete(self, draft_id: uuid.UUID) -> Optional[bool]:
        """Архивирование всей линии версий"""
        return await self._run("delete", self._delete(draft_id))

    async def _delete(self, draft_id: uuid.UUID) -> bool:
        root_id = await self._root_for(draft_id)
        async with self._lock(root_id):
            await self.retry.run(lambda refetch: self.store.archive(self.user_id, root_id), label="delete")
        self._forget(root_id)
        self._save_cache()
        return True

    async def restore(self, draft_id: uuid.UUID) -> Optional[Draft]:
        """Возврат линии из архива"""
        return await self._run("restore", self._restore(draft_id))

    async def _restore(self, draft_id: uuid.UUID) -> Draft:
        tip = await self.retry.run(
            lambda refetch: self.store.restore_archived(self.user_id, draft_id), label="restore"
        )
        self._confirm(tip)
        self._save_cache()
        return self._view(tip.root_draft_id)

    async def permanent_delete(self, draft_id: uuid.UUID) -> Optional[bool]:
        return await self._run("permanent_delete", self._permanent_delete(draft_id))

    async def _permanent_delete(self, draft_id: uuid.UUID) -> bool:
        root_id = await self._root_for(draft_id)
        async with self._lock(root_id):
            await self.retry.run(
                lambda refetch: self.store.permanent_delete(self.user_id, draft_id), label="permanent_delete"
            )
        self._forget(root_id)
        self._save_cache()
        return True

    async def list_archived(self) -> Optional[List[Draft]]:
        return await self._run("list_archived", self.retry.run(
            lambda refetch: self.store.list_archived(self.user_id), label="list_archived"
        ))

    async def duplicate(self, draft_id: uuid.UUID, name: Optional[str] = None) -> Optional[Draft]:
        return await self._run("duplicate", self._duplicate(draft_id, name))

    async def _duplicate(self, draft_id: uuid.UUID, name: Optional[str]) -> Draft:
        view = self._find(draft_id)
        if view is not None:
            source = self._tips.get(view.root_draft_id) or view
        else:
            source = await self.retry.run(
                lambda refetch: self.store.get_tip(self.user_id, draft_id), label="duplicate"
            )
        name = self._valid_name(name) if name is not None else f"{source.name} (Copy)"
        copy = Draft.create_draft(
            self.user_id,
            name,
            source.template_id,
            content=source.content.model_copy(deep=True),
            metadata=source.metadata.model_copy(deep=True),
            origin=DraftOrigin.DUPLICATE,
            source_artifact_id=source.source_artifact_id
        )
        saved = await self._create_remote(copy, "duplicate")
        self._confirm(saved)
        self._save_cache()
        return self._view(saved.root_draft_id)

    async def set_job_link(
        self,
        job_id: Optional[int],
        job_title: Optional[str] = None,
        job_company: Optional[str] = None
    ) -> Optional[Draft]:
        return await self._run("set_job_link", self._set_job_link(job_id, job_title, job_company))

    async def _set_job_link(self, job_id, job_title, job_company) -> Draft:
        active = self._require_active()

        def make_patch(current: Draft) -> DraftPatch:
            metadata = current.metadata.model_copy(update={
                "job_id": job_id, "job_title": job_title, "job_company": job_company,
                "last_modified": utcnow()
            })
            return DraftPatch(metadata=metadata)

        return await self._patch(active.root_draft_id, "set_job_link", make_patch)

    async def change_template(self, template_id: str) -> Optional[Draft]:
        return await self._run("change_template", self._change_template(template_id))

    async def _change_template(self, template_id: str) -> Draft:
        active = self._require_active()
        patch = DraftPatch(template_id=template_id)
        return await self._patch(active.root_draft_id, "change_template", lambda current: patch)

    # --- Правка содержимого ---

    def set_pending_content(self, content: Union[DraftContent, Dict[str, Any]]) -> Optional[DraftContent]:
        """Сгенерированное содержимое, ожидающее применения"""
        try:
            self.pending_content = DraftContent.model_validate(content)
        except ValidationError as exc:
            self._record_failure("set_pending_content", DraftValidationError(str(exc)))
            return None
        self.applied_sections = set()
        return self.pending_content

    def clear_pending_content(self) -> None:
        self.pending_content = None
        self.applied_sections = set()

    async def apply_pending(self, kind: Optional[SectionKind] = None) -> Optional[VersionResult]:
        if self.pending_content is None:
            self._record_failure("apply_pending", DraftValidationError("No generated content to apply"))
            return None
        if kind is None:
            return await self.apply_all(self.pending_content)
        kind = SectionKind(kind)
        return await self.apply_section(kind, getattr(self.pending_content, kind.value))

    async def apply_section(self, kind: SectionKind, content: Any) -> Optional[VersionResult]:
        """Применение сгенерированной секции к активному черновику"""
        return await self._run("apply_section", self._write_section(
            kind, content, SectionState.APPLIED, DraftOrigin.GENERATION, "apply"
        ))

    async def edit_section(self, kind: SectionKind, content: Any) -> Optional[VersionResult]:
        """Ручная правка секции"""
        return await self._run("edit_section", self._write_section(
            kind, content, SectionState.EDITED, DraftOrigin.MANUAL, "edit"
        ))

    async def _write_section(self, kind, content, state: SectionState, origin: DraftOrigin, verb: str) -> VersionResult:
        kind = SectionKind(kind)
        section = build_section(kind, content)
        active = self._require_active()

        def build(source: Draft) -> Tuple[DraftContent, DraftMetadata]:
            return (
                source.content.with_section(section),
                source.metadata.with_section_state(kind, state, utcnow())
            )

        result = await self._versioned(active.root_draft_id, f"{verb}-{kind.value}", origin, build)
        if state == SectionState.APPLIED:
            self.applied_sections.add(kind)
        return result

    async def apply_all(self, content: Union[DraftContent, Dict[str, Any]]) -> Optional[VersionResult]:
        """Применение всех непустых сгенерированных секций одной версией"""
        return await self._run("apply_all", self._apply_all(content))

    async def _apply_all(self, content) -> VersionResult:
        payload = DraftContent.model_validate(content)
        kinds = [kind for kind in SectionKind if not payload.section_is_empty(kind)]
        if not kinds:
            raise DraftValidationError("Nothing to apply: generated content is empty")
        active = self._require_active()

        def build(source: Draft) -> Tuple[DraftContent, DraftMetadata]:
            now = utcnow()
            new_content, metadata = source.content, source.metadata
            for kind in kinds:
                new_content = new_content.with_section(build_section(kind, getattr(payload, kind.value)))
                metadata = metadata.with_section_state(kind, SectionState.APPLIED, now)
            return new_content, metadata

        result = await self._versioned(active.root_draft_id, "apply-all", DraftOrigin.GENERATION, build)
        self.applied_sections.update(kinds)
        return result

    async def toggle_section_visibility(self, kind: SectionKind, visible: Optional[bool] = None) -> Optional[Draft]:
        """Видимость секции: правка на месте, без новой версии и вне истории undo"""
        return await self._run("toggle_section_visibility", self._toggle(kind, visible))

    async def _toggle(self, kind, visible: Optional[bool]) -> Draft:
        kind = SectionKind(kind)
        active = self._require_active()
        if visible is None:
            visible = not active.metadata.section(kind).visible

        def make_patch(current: Draft) -> DraftPatch:
            return DraftPatch(metadata=current.metadata.with_visibility(kind, visible, utcnow()))

        return await self._patch(active.root_draft_id, "toggle_visibility", make_patch)

    async def reorder_sections(self, order: List[SectionKind]) -> Optional[VersionResult]:
        return await self._run("reorder_sections", self._reorder(order))

    async def _reorder(self, order: List[SectionKind]) -> VersionResult:
        active = self._require_active()
        try:
            active.metadata.reordered(order, utcnow())
        except ValueError as exc:
            raise DraftValidationError(str(exc), active.id) from exc

        def build(source: Draft) -> Tuple[DraftContent, DraftMetadata]:
            return source.content, source.metadata.reordered(order, utcnow())

        return await self._versioned(active.root_draft_id, "reorder", DraftOrigin.MANUAL, build)

    def clear_draft(self) -> Optional[Draft]:
        """Сброс содержимого активного черновика только в памяти"""
        active = self.get_active_draft()
        if active is None:
            self._record_failure("clear_draft", DraftValidationError("No active draft"))
            return None
        now = utcnow()
        active.content = DraftContent()
        metadata = active.metadata
        for kind in SectionKind:
            metadata = metadata.with_section_state(kind, SectionState.EMPTY, now)
        active.metadata = metadata
        self.applied_sections = set()
        self.history.reset(active, "clear")
        return active

    # --- Версии ---

    async def restore_version(self, version_id: uuid.UUID) -> Optional[VersionResult]:
        """Восстановление старой версии как новой версии поверх текущей"""
        return await self._run("restore_version", self._restore_version(version_id))

    async def _restore_version(self, version_id: uuid.UUID) -> VersionResult:
        root_id = await self._root_for(version_id)

        async def attempt(refetch: bool) -> VersionResult:
            family = await self.store.list_family(self.user_id, version_id)
            tip = engine.get_tip(family)
            candidate = engine.restore(family, version_id)
            if candidate is None:
                return VersionResult(tip, minted=False)
            saved = await self.store.append_version(self.user_id, tip.id, tip.version, candidate)
            return VersionResult(saved, minted=True)

        return await self._locked_version(root_id, "restore-version", attempt)

    async def compare_versions(self, a_id: uuid.UUID, b_id: uuid.UUID) -> Optional[VersionDiff]:
        return await self._run("compare_versions", self._compare(a_id, b_id))

    async def _compare(self, a_id: uuid.UUID, b_id: uuid.UUID) -> VersionDiff:
        a = await self.retry.run(lambda refetch: self.store.get(self.user_id, a_id), label="compare")
        b = await self.retry.run(lambda refetch: self.store.get(self.user_id, b_id), label="compare")
        return engine.diff(a, b)

    async def get_version_history(self, draft_id: uuid.UUID) -> Optional[List[Draft]]:
        """Все версии линии, от новых к старым"""
        return await self._run("get_version_history", self.retry.run(
            lambda refetch: self.store.list_family(self.user_id, draft_id), label="version_history"
        ))

    # --- Undo / redo ---

    def undo(self) -> Optional[Draft]:
        return self._show_snapshot(self.history.undo())

    def redo(self) -> Optional[Draft]:
        return self._show_snapshot(self.history.redo())

    def _show_snapshot(self, snapshot: Optional[Draft]) -> Optional[Draft]:
        if snapshot is None:
            return None
        view = self._view(snapshot.root_draft_id)
        if view is None:
            return None
        # Видимость не входит в историю и остается текущей
        visibility = {section.kind: section.visible for section in view.metadata.sections}
        sections = [
            section.model_copy(update={"visible": visibility.get(section.kind, section.visible)})
            for section in snapshot.metadata.sections
        ]
        view.content = snapshot.content.model_copy(deep=True)
        view.metadata = view.metadata.model_copy(update={"sections": sections})
        return view

    # --- Запись в хранилище ---

    async def _create_remote(self, draft: Draft, label: str) -> Draft:
        async def attempt(refetch: bool) -> Draft:
            # Повтор после таймаута: черновик мог быть уже создан
            if refetch:
                with contextlib.suppress(NotFoundError):
                    return await self.store.get(self.user_id, draft.id)
            return await self.store.create(self.user_id, draft)

        return await self.retry.run(attempt, label=label)

    async def _versioned(
        self,
        root_id: uuid.UUID,
        action: str,
        origin: DraftOrigin,
        build: ContentBuild
    ) -> VersionResult:
        async def attempt(refetch: bool) -> VersionResult:
            if refetch or root_id not in self._tips:
                current = await self.store.get_tip(self.user_id, root_id)
                source = current
            else:
                current = self._tips[root_id]
                source = self._view(root_id) or current

            content, metadata = build(source)
            if not engine.should_version(current.content_hash, engine.content_hash(content, metadata)):
                return VersionResult(current.copy(), minted=False)
            candidate = engine.mint_version(current, content, metadata, origin)
            saved = await self.store.append_version(self.user_id, current.id, current.version, candidate)
            return VersionResult(saved, minted=True)

        return await self._locked_version(root_id, action, attempt)

    async def _locked_version(
        self,
        root_id: uuid.UUID,
        action: str,
        attempt: Callable[[bool], Awaitable[VersionResult]]
    ) -> VersionResult:
        async with self._lock(root_id):
            before = self._view(root_id)
            before = before.copy() if before else None
            result = await self.retry.run(attempt, label=action)

            self._confirm(result.draft)
            if not result.minted:
                logger.debug(f"{action}: content unchanged, no new version for lineage {root_id}")
                return VersionResult(self._view(root_id), minted=False)

            self._save_cache()
            if self._root_of_active() == root_id:
                if not self.history.entries and before is not None:
                    self.history.reset(before, "baseline")
                self.history.push(result.draft, action)
            logger.info(f"{action}: lineage {root_id} is now at version {result.draft.version}")
            return VersionResult(self._view(root_id), minted=True)

    async def _patch(self, root_id: uuid.UUID, action: str, make_patch: Callable[[Draft], DraftPatch]) -> Draft:
        async with self._lock(root_id):
            async def attempt(refetch: bool) -> Draft:
                if refetch or root_id not in self._tips:
                    current = await self.store.get_tip(self.user_id, root_id)
                else:
                    current = self._tips[root_id]
                return await self.store.update(self.user_id, current.id, current.version, make_patch(current))

            saved = await self.retry.run(attempt, label=action)
            self._confirm(saved, keep_local_edits=True)
            self._save_cache()
            return self._view(root_id)

    # --- Сверка с хранилищем ---

    async def _sync(self) -> List[Draft]:
        remote = await self.retry.run(lambda refetch: self.store.list_drafts(self.user_id), label="sync")

        views = {view.root_draft_id: view for view in self.drafts}
        drafts: List[Draft] = []
        tips: Dict[uuid.UUID, Draft] = {}
        for tip in remote:
            root_id = tip.root_draft_id
            local_tip = self._tips.get(root_id)
            view = views.get(root_id)

            if view is not None and local_tip is not None and (
                self._lock(root_id).locked() or local_tip.version > tip.version
            ):
                # Локальная версия новее или запись еще идет
                drafts.append(view)
                tips[root_id] = local_tip
                continue

            tips[root_id] = tip
            same_tip = local_tip is not None and local_tip.id == tip.id
            if view is not None and same_tip and self._is_dirty(view):
                drafts.append(self._merge(view, tip))
            else:
                drafts.append(tip.copy())

        self.drafts = drafts
        self._tips = tips

        active_root = self._root_of_active()
        if active_root is not None and active_root not in tips:
            logger.info(f"Active draft lineage {active_root} no longer exists remotely")
            self.active_draft_id = None
            self.history.clear()
        elif active_root is not None:
            self.active_draft_id = self._view(active_root).id

        self._save_cache()
        self.status = SessionStatus.SYNCED
        logger.info(f"Synced {len(drafts)} drafts for user {self.user_id}")
        return list(self.drafts)

    # --- Вспомогательное ---

    async def _run(self, label: str, operation: Awaitable, background: bool = False):
        """Выполняет операцию без исключений; фоновые операции не трогают self.error"""
        self._inflight += 1
        if not background:
            self.error = None
        try:
            result = await operation
            if background:
                self.sync_error = None
            return result
        except ValidationError as exc:
            self._record_failure(label, DraftValidationError(str(exc)), background)
        except DraftSyncError as exc:
            self._record_failure(label, exc, background)
        except Exception as exc:
            logger.exception(f"Unexpected error in {label}")
            self._record_failure(label, DraftSyncError(f"{label} failed: {exc}"), background)
        finally:
            self._inflight -= 1
        return None

    def _record_failure(self, label: str, exc: DraftSyncError, background: bool = False) -> None:
        if background:
            self.sync_error = exc
        else:
            self.error = exc
        if not isinstance(exc, DraftValidationError) and self.status != SessionStatus.UNINITIALIZED:
            self.status = SessionStatus.READY
        logger.warning(f"{label} failed: {exc.__class__.__name__}: {exc}")

    def _lock(self, root_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(root_id)
        if lock is None:
            lock = self._locks[root_id] = asyncio.Lock()
        return lock

    def _find(self, draft_id: uuid.UUID) -> Optional[Draft]:
        return next((draft for draft in self.drafts if draft.id == draft_id), None)

    def _view(self, root_id: uuid.UUID) -> Optional[Draft]:
        return next((draft for draft in self.drafts if draft.root_draft_id == root_id), None)

    def _root_of_active(self) -> Optional[uuid.UUID]:
        active = self.get_active_draft()
        return active.root_draft_id if active else None

    async def _root_for(self, draft_id: uuid.UUID) -> uuid.UUID:
        view = self._find(draft_id)
        if view is not None:
            return view.root_draft_id
        # Старая версия или черновик вне памяти
        member = await self.retry.run(lambda refetch: self.store.get(self.user_id, draft_id), label="resolve")
        return member.root_draft_id

    def _require_active(self) -> Draft:
        active = self.get_active_draft()
        if active is None:
            raise DraftValidationError("No active draft")
        return active

    @staticmethod
    def _valid_name(name: Optional[str]) -> str:
        if name is None or not name.strip():
            raise DraftValidationError("Draft name cannot be empty")
        return name.strip()

    def _is_dirty(self, view: Draft) -> bool:
        tip = self._tips.get(view.root_draft_id)
        if tip is None:
            return False
        return engine.content_hash(view.content, view.metadata) != tip.content_hash

    @staticmethod
    def _merge(view: Draft, saved: Draft) -> Draft:
        """Подтвержденная версия с локальным содержимым и порядком секций из view"""
        merged = saved.copy()
        merged.content = view.content.model_copy(deep=True)
        visibility = {section.kind: section.visible for section in saved.metadata.sections}
        sections = [
            section.model_copy(update={"visible": visibility.get(section.kind, section.visible)})
            for section in view.metadata.sections
        ]
        merged.metadata = saved.metadata.model_copy(update={"sections": sections})
        return merged

    def _confirm(self, saved: Draft, keep_local_edits: bool = False) -> None:
        """Подтвержденная хранилищем версия становится активной версией своей линии"""
        root_id = saved.root_draft_id
        view = self._view(root_id)
        was_active = view is not None and view.id == self.active_draft_id
        previous_tip = self._tips.get(root_id)
        dirty = (
            keep_local_edits and view is not None and previous_tip is not None
            and previous_tip.version == saved.version and self._is_dirty(view)
        )
        self._tips[root_id] = saved.copy()
        new_view = self._merge(view, saved) if dirty else saved.copy()

        if view is None:
            self.drafts.append(new_view)
        else:
            self.drafts[self.drafts.index(view)] = new_view
        if was_active:
            self.active_draft_id = new_view.id

    def _forget(self, root_id: uuid.UUID) -> None:
        view = self._view(root_id)
        if view is not None:
            self.drafts.remove(view)
            if view.id == self.active_draft_id:
                self.active_draft_id = None
                self.pending_content = None
                self.history.clear()
        self._tips.pop(root_id, None)
        self._locks.pop(root_id, None)

    def _save_cache(self) -> None:
        """В кэш попадают только подтвержденные версии, а не локальные представления"""
        confirmed = [self._tips.get(view.root_draft_id, view) for view in self.drafts]
        self.cache.save(self.user_id, confirmed, self.active_draft_id)
