from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
import uuid

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class SectionKind(str, Enum):
    """Типы секций резюме (порядок задает каноническую раскладку)"""
    SUMMARY = "summary"
    SKILLS = "skills"
    EXPERIENCE = "experience"
    EDUCATION = "education"
    PROJECTS = "projects"


class SectionState(str, Enum):
    EMPTY = "empty"
    APPLIED = "applied"
    FROM_SOURCE = "from-source"
    EDITED = "edited"


class DraftOrigin(str, Enum):
    """Откуда появилась версия черновика"""
    MANUAL = "manual"
    GENERATION = "generation"
    AUTO_SAVE = "auto-save"
    RESTORE = "restore"
    DUPLICATE = "duplicate"
    IMPORT = "import"


CANONICAL_SECTION_ORDER = [kind for kind in SectionKind]


# --- Содержимое черновика ---

class ExperienceEntry(BaseModel):
    employment_id: Optional[str] = None
    role: str = ""
    company: str = ""
    dates: Optional[str] = None
    bullets: List[str] = Field(default_factory=list)


class EducationEntry(BaseModel):
    degree: str = ""
    institution: str = ""
    graduation_date: Optional[str] = None
    details: List[str] = Field(default_factory=list)


class ProjectEntry(BaseModel):
    name: str
    role: Optional[str] = None
    bullets: List[str] = Field(default_factory=list)


class DraftContent(BaseModel):
    """Структурированное содержимое резюме"""
    summary: str = ""
    skills: List[str] = Field(default_factory=list)
    experience: List[ExperienceEntry] = Field(default_factory=list)
    education: List[EducationEntry] = Field(default_factory=list)
    projects: List[ProjectEntry] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def none_summary_is_empty(cls, v):
        return "" if v is None else v

    def with_section(self, section: "SectionPayload") -> "DraftContent":
        """Копия содержимого с замененной секцией"""
        if section.kind == SectionKind.SUMMARY:
            return self.model_copy(update={"summary": section.text}, deep=True)
        return self.model_copy(update={section.kind: list(section.items)}, deep=True)

    def section_is_empty(self, kind: SectionKind) -> bool:
        return not getattr(self, kind.value)


# --- Секции как закрытое объединение с дискриминатором kind ---

class SummarySection(BaseModel):
    kind: Literal["summary"] = "summary"
    text: str = ""


class SkillsSection(BaseModel):
    kind: Literal["skills"] = "skills"
    items: List[str] = Field(default_factory=list)

    @field_validator("items")
    @classmethod
    def strip_skills(cls, v):
        return [skill.strip() for skill in v if skill and skill.strip()]


class ExperienceSection(BaseModel):
    kind: Literal["experience"] = "experience"
    items: List[ExperienceEntry] = Field(default_factory=list)


class EducationSection(BaseModel):
    kind: Literal["education"] = "education"
    items: List[EducationEntry] = Field(default_factory=list)


class ProjectsSection(BaseModel):
    kind: Literal["projects"] = "projects"
    items: List[ProjectEntry] = Field(default_factory=list)


SectionPayload = Annotated[
    Union[SummarySection, SkillsSection, ExperienceSection, EducationSection, ProjectsSection],
    Field(discriminator="kind"),
]

section_adapter = TypeAdapter(SectionPayload)


def build_section(kind, content) -> SectionPayload:
    """Сборка секции из сырого содержимого: строка для summary, список для остальных"""
    kind = SectionKind(kind)
    if isinstance(content, BaseModel) and getattr(content, "kind", None) == kind:
        return content
    if kind == SectionKind.SUMMARY:
        return section_adapter.validate_python({"kind": kind.value, "text": content})
    return section_adapter.validate_python({"kind": kind.value, "items": content})


# --- Метаданные ---

class SectionMeta(BaseModel):
    kind: SectionKind
    visible: bool = True
    state: SectionState = SectionState.EMPTY
    last_updated: Optional[datetime] = None


def default_sections() -> List[SectionMeta]:
    return [SectionMeta(kind=kind) for kind in CANONICAL_SECTION_ORDER]


class DraftMetadata(BaseModel):
    """Метаданные секций и привязка к вакансии"""
    sections: List[SectionMeta] = Field(default_factory=default_sections)
    job_id: Optional[int] = None
    job_title: Optional[str] = None
    job_company: Optional[str] = None
    last_modified: Optional[datetime] = None

    @field_validator("sections")
    @classmethod
    def validate_sections(cls, v):
        kinds = [section.kind for section in v]
        if len(set(kinds)) != len(kinds):
            raise ValueError("Duplicate section kinds in metadata")
        # Недостающие секции дописываются в конец в каноническом порядке
        missing = [SectionMeta(kind=kind) for kind in CANONICAL_SECTION_ORDER if kind not in kinds]
        return list(v) + missing

    def section(self, kind: SectionKind) -> SectionMeta:
        for section in self.sections:
            if section.kind == kind:
                return section
        raise KeyError(kind)

    @property
    def section_order(self) -> List[SectionKind]:
        return [section.kind for section in self.sections]

    def with_section_state(self, kind: SectionKind, state: SectionState, at: datetime) -> "DraftMetadata":
        sections = [
            section.model_copy(update={"state": state, "last_updated": at})
            if section.kind == kind else section.model_copy()
            for section in self.sections
        ]
        return self.model_copy(update={"sections": sections, "last_modified": at})

    def with_visibility(self, kind: SectionKind, visible: bool, at: datetime) -> "DraftMetadata":
        sections = [
            section.model_copy(update={"visible": visible})
            if section.kind == kind else section.model_copy()
            for section in self.sections
        ]
        return self.model_copy(update={"sections": sections, "last_modified": at})

    def reordered(self, order: List[SectionKind], at: datetime) -> "DraftMetadata":
        """Новый порядок секций; порядок должен содержать все секции ровно один раз"""
        order = [SectionKind(kind) for kind in order]
        current = self.section_order
        missing = [kind.value for kind in current if kind not in order]
        if missing or len(order) != len(current):
            raise ValueError(f"Section order must list every section once, missing: {', '.join(missing) or 'none'}")
        by_kind = {section.kind: section for section in self.sections}
        sections = [by_kind[kind].model_copy() for kind in order]
        return self.model_copy(update={"sections": sections, "last_modified": at})


# --- Снимок черновика для кэша и API ---

class DraftSnapshot(BaseModel):
    """Сериализуемый снимок черновика (даты в ISO-8601)"""
    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    template_id: str
    content: DraftContent
    metadata: DraftMetadata
    version: int
    is_active: bool
    archived: bool = False
    parent_draft_id: Optional[uuid.UUID] = None
    root_draft_id: uuid.UUID
    origin: DraftOrigin
    content_hash: str
    source_artifact_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    last_accessed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DraftPatch(BaseModel):
    """Изменения черновика без выпуска новой версии"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    template_id: Optional[str] = Field(None, min_length=1, max_length=64)
    source_artifact_id: Optional[str] = None
    metadata: Optional[DraftMetadata] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip() if v else v


# --- Схемы HTTP API ---

class DraftCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    template_id: str = Field("classic", min_length=1, max_length=64)
    content: DraftContent = Field(default_factory=DraftContent)
    metadata: DraftMetadata = Field(default_factory=DraftMetadata)
    source_artifact_id: Optional[str] = None
    origin: DraftOrigin = DraftOrigin.MANUAL

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip()


class DraftUpdateRequest(DraftPatch):
    expected_version: int = Field(..., ge=1)


class DraftVersionCreate(BaseModel):
    expected_version: int = Field(..., ge=1)
    content: DraftContent
    metadata: Optional[DraftMetadata] = None
    origin: DraftOrigin = DraftOrigin.MANUAL


class RestoreVersionRequest(BaseModel):
    version_id: uuid.UUID


class DraftListResponse(BaseModel):
    drafts: List[DraftSnapshot]
    total: int
