from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, Field


class TextDiff(BaseModel):
    """Полнотекстовая разница длинного поля (summary)"""
    old: str
    new: str
    unified: List[str] = Field(default_factory=list)


class ListDiff(BaseModel):
    """Разница плоского списка (skills)"""
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)


class RecordChange(BaseModel):
    key: str
    before: Dict[str, Any]
    after: Dict[str, Any]
    changed_fields: List[str] = Field(default_factory=list)


class RecordListDiff(BaseModel):
    """Разница списка записей по стабильному ключу"""
    added: List[Dict[str, Any]] = Field(default_factory=list)
    removed: List[Dict[str, Any]] = Field(default_factory=list)
    modified: List[RecordChange] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)


class VersionDiff(BaseModel):
    """Результат сравнения двух версий черновика"""
    from_id: uuid.UUID
    to_id: uuid.UUID
    from_version: int
    to_version: int
    summary: Optional[TextDiff] = None
    skills: Optional[ListDiff] = None
    experience: Optional[RecordListDiff] = None
    education: Optional[RecordListDiff] = None
    projects: Optional[RecordListDiff] = None
    section_order_changed: bool = False

    @property
    def has_changes(self) -> bool:
        return any([
            self.summary, self.skills, self.experience,
            self.education, self.projects, self.section_order_changed
        ])
