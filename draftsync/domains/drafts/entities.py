import uuid
from datetime import datetime, timezone
from typing import Optional, List

from draftsync.domains.drafts.schemas import (
    DraftContent, DraftMetadata, DraftOrigin, DraftSnapshot, SectionKind
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Draft:
    """Сущность черновика: один версионированный снимок резюме"""

    def __init__(
        self,
        id: uuid.UUID,
        owner_id: uuid.UUID,
        name: str,
        template_id: str = "classic",
        content: Optional[DraftContent] = None,
        metadata: Optional[DraftMetadata] = None,
        version: int = 1,
        is_active: bool = True,
        archived: bool = False,
        parent_draft_id: Optional[uuid.UUID] = None,
        root_draft_id: Optional[uuid.UUID] = None,
        origin: DraftOrigin = DraftOrigin.MANUAL,
        content_hash: str = "",
        source_artifact_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        last_accessed_at: Optional[datetime] = None
    ):
        self.id = id
        self.owner_id = owner_id
        self.name = name
        self.template_id = template_id
        self.content = content or DraftContent()
        self.metadata = metadata or DraftMetadata()
        self.version = version
        self.is_active = is_active
        self.archived = archived
        self.parent_draft_id = parent_draft_id
        self.root_draft_id = root_draft_id or id
        self.origin = DraftOrigin(origin)
        self.content_hash = content_hash
        self.source_artifact_id = source_artifact_id
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at
        self.last_accessed_at = last_accessed_at

    @classmethod
    def create_draft(
        cls,
        owner_id: uuid.UUID,
        name: str,
        template_id: str = "classic",
        content: Optional[DraftContent] = None,
        metadata: Optional[DraftMetadata] = None,
        origin: DraftOrigin = DraftOrigin.MANUAL,
        source_artifact_id: Optional[str] = None
    ) -> "Draft":
        """Создание корня новой линии версий (версия 1)"""
        from draftsync.domains.versioning.engine import content_hash

        content = content or DraftContent()
        metadata = metadata or DraftMetadata()
        now = utcnow()
        metadata = metadata.model_copy(update={"last_modified": now})
        draft_id = uuid.uuid4()
        return cls(
            id=draft_id,
            owner_id=owner_id,
            name=name,
            template_id=template_id,
            content=content,
            metadata=metadata,
            version=1,
            is_active=True,
            parent_draft_id=None,
            root_draft_id=draft_id,
            origin=origin,
            content_hash=content_hash(content, metadata),
            source_artifact_id=source_artifact_id,
            created_at=now,
            updated_at=now
        )

    @property
    def is_root(self) -> bool:
        return self.parent_draft_id is None

    def visible_sections(self) -> List[SectionKind]:
        """Видимые секции в порядке отображения"""
        return [section.kind for section in self.metadata.sections if section.visible]

    def copy(self) -> "Draft":
        """Независимая копия (для истории undo/redo и кэша)"""
        return Draft.from_snapshot(self.to_snapshot())

    def to_snapshot(self) -> DraftSnapshot:
        return DraftSnapshot.model_validate(self)

    @classmethod
    def from_snapshot(cls, snapshot: DraftSnapshot) -> "Draft":
        return cls(
            id=snapshot.id,
            owner_id=snapshot.owner_id,
            name=snapshot.name,
            template_id=snapshot.template_id,
            content=snapshot.content.model_copy(deep=True),
            metadata=snapshot.metadata.model_copy(deep=True),
            version=snapshot.version,
            is_active=snapshot.is_active,
            archived=snapshot.archived,
            parent_draft_id=snapshot.parent_draft_id,
            root_draft_id=snapshot.root_draft_id,
            origin=snapshot.origin,
            content_hash=snapshot.content_hash,
            source_artifact_id=snapshot.source_artifact_id,
            created_at=snapshot.created_at,
            updated_at=snapshot.updated_at,
            last_accessed_at=snapshot.last_accessed_at
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Draft):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return (
            f"Draft(id={self.id}, name={self.name}, version={self.version}, "
            f"active={self.is_active})"
        )
