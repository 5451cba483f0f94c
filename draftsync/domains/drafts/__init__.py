from draftsync.domains.drafts.entities import Draft
from draftsync.domains.drafts.schemas import (
    SectionKind, SectionState, DraftOrigin, CANONICAL_SECTION_ORDER,
    ExperienceEntry, EducationEntry, ProjectEntry, DraftContent,
    SummarySection, SkillsSection, ExperienceSection, EducationSection, ProjectsSection,
    SectionPayload, build_section, SectionMeta, DraftMetadata, DraftSnapshot, DraftPatch,
    DraftCreate, DraftUpdateRequest, DraftVersionCreate, RestoreVersionRequest, DraftListResponse
)

__all__ = [
    "Draft",
    "SectionKind", "SectionState", "DraftOrigin", "CANONICAL_SECTION_ORDER",
    "ExperienceEntry", "EducationEntry", "ProjectEntry", "DraftContent",
    "SummarySection", "SkillsSection", "ExperienceSection", "EducationSection", "ProjectsSection",
    "SectionPayload", "build_section", "SectionMeta", "DraftMetadata", "DraftSnapshot", "DraftPatch",
    "DraftCreate", "DraftUpdateRequest", "DraftVersionCreate", "RestoreVersionRequest", "DraftListResponse"
]
