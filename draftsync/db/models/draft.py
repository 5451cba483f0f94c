from sqlalchemy import Column, String, Integer, Boolean, DateTime, JSON, UUID, Index

from draftsync.db.base import BaseModel


class ResumeDraft(BaseModel):
    __tablename__ = "resume_drafts"

    owner_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    template_id = Column(String(64), nullable=False, default="classic")
    source_artifact_id = Column(String(255), nullable=True)
    content = Column(JSON, nullable=False, default=dict)
    # атрибут metadata зарезервирован декларативной базой
    draft_metadata = Column("metadata", JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    archived = Column(Boolean, nullable=False, default=False)
    parent_draft_id = Column(UUID(as_uuid=True), nullable=True)
    root_draft_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    origin_source = Column(String(32), nullable=False, default="manual")
    content_hash = Column(String(64), nullable=False)
    last_accessed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_resume_drafts_owner_active", "owner_id", "is_active", "archived"),
    )
