from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field

from draftsync.domains.drafts.schemas import DraftSnapshot


class CacheEntry(BaseModel):
    """Запись локального кэша: снимок коллекции черновиков одного пользователя"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    drafts: List[DraftSnapshot] = Field(default_factory=list)
    active_draft_id: Optional[uuid.UUID] = Field(None, alias="activeDraftId")
    last_synced_at: datetime = Field(alias="lastSyncedAt")
    schema_version: int = Field(alias="schemaVersion")


@dataclass(frozen=True)
class Freshness:
    is_fresh: bool
    age_ms: Optional[int] = None
