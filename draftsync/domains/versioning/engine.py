"""
Движок версий черновиков: хэш содержимого, выпуск версий, линии версий,
сравнение и восстановление. Чистые функции без ввода-вывода.
"""

import difflib
import hashlib
import json
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel

from draftsync.core.exceptions import DraftValidationError, NotFoundError
from draftsync.domains.drafts.entities import Draft, utcnow
from draftsync.domains.drafts.schemas import (
    DraftContent, DraftMetadata, DraftOrigin, EducationEntry, ExperienceEntry, ProjectEntry
)
from draftsync.domains.versioning.schemas import (
    ListDiff, RecordChange, RecordListDiff, TextDiff, VersionDiff
)


# --- Хэш ---

def _canonical_payload(content: DraftContent, metadata: DraftMetadata) -> str:
    if not isinstance(content, DraftContent):
        content = DraftContent.model_validate(content)
    if not isinstance(metadata, DraftMetadata):
        metadata = DraftMetadata.model_validate(metadata)
    payload = {
        "content": content.model_dump(mode="json"),
        # Видимость, состояния секций и привязка к вакансии в хэш не входят
        "section_order": [kind.value for kind in metadata.section_order],
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def content_hash(content: DraftContent, metadata: DraftMetadata) -> str:
    """SHA-256 от канонического JSON содержимого и порядка секций"""
    return hashlib.sha256(_canonical_payload(content, metadata).encode("utf-8")).hexdigest()


def should_version(old_digest: Optional[str], new_digest: str) -> bool:
    return old_digest != new_digest


# --- Выпуск версии ---

def mint_version(
    prev: Draft,
    content: DraftContent,
    metadata: DraftMetadata,
    origin: DraftOrigin
) -> Draft:
    """Несохраненная версия-потомок prev"""
    now = utcnow()
    metadata = metadata.model_copy(update={"last_modified": now})
    return Draft(
        id=uuid.uuid4(),
        owner_id=prev.owner_id,
        name=prev.name,
        template_id=prev.template_id,
        content=content.model_copy(deep=True),
        metadata=metadata,
        version=prev.version + 1,
        is_active=True,
        archived=prev.archived,
        parent_draft_id=prev.id,
        root_draft_id=prev.root_draft_id,
        origin=origin,
        content_hash=content_hash(content, metadata),
        source_artifact_id=prev.source_artifact_id,
        created_at=now,
        updated_at=now
    )


# --- Линия версий ---

def _root_of(draft: Draft, by_id: Dict[uuid.UUID, Draft]) -> uuid.UUID:
    seen = set()
    current = draft
    while current.parent_draft_id is not None and current.parent_draft_id in by_id:
        if current.id in seen:
            raise DraftValidationError(f"Cycle in lineage of draft {draft.id}", draft.id)
        seen.add(current.id)
        current = by_id[current.parent_draft_id]
    return current.id


def get_family(drafts: Iterable[Draft], member_id: uuid.UUID) -> List[Draft]:
    """Вся линия версий, к которой принадлежит member_id, от новых к старым"""
    by_id = {draft.id: draft for draft in drafts}
    member = by_id.get(member_id)
    if member is None:
        raise NotFoundError(f"Draft {member_id} not found", member_id)

    root_id = _root_of(member, by_id)
    family = [draft for draft in by_id.values() if _root_of(draft, by_id) == root_id]
    return sorted(family, key=lambda draft: draft.version, reverse=True)


def get_tip(family: List[Draft]) -> Draft:
    """Единственная активная версия линии"""
    active = [draft for draft in family if draft.is_active]
    if len(active) != 1:
        lineage = family[0].root_draft_id if family else None
        raise DraftValidationError(
            f"Lineage {lineage} has {len(active)} active members", lineage
        )
    return active[0]


def verify_lineage(family: List[Draft]) -> None:
    """Проверка инвариантов: одна активная версия, номера растут от родителя к потомку"""
    tip = get_tip(family)
    by_id = {draft.id: draft for draft in family}

    for draft in family:
        parent = by_id.get(draft.parent_draft_id) if draft.parent_draft_id else None
        if parent is not None and draft.version <= parent.version:
            raise DraftValidationError(
                f"Version {draft.version} of {draft.id} does not exceed parent version {parent.version}",
                draft.id
            )

    current = tip
    while current.parent_draft_id is not None:
        parent = by_id.get(current.parent_draft_id)
        if parent is None:
            raise DraftValidationError(f"Parent {current.parent_draft_id} missing from lineage", current.id)
        current = parent
    if current.version != 1:
        raise DraftValidationError(f"Lineage root {current.id} has version {current.version}", current.id)


# --- Сравнение ---

def _norm(value: Optional[str]) -> str:
    return " ".join((value or "").split()).casefold()


def _experience_key(entry: ExperienceEntry) -> str:
    return f"{_norm(entry.company)}|{_norm(entry.role)}"


def _education_key(entry: EducationEntry) -> str:
    return f"{_norm(entry.institution)}|{_norm(entry.degree)}"


def _project_key(entry: ProjectEntry) -> str:
    return _norm(entry.name)


def _keyed(records: List[BaseModel], key_fn: Callable[[Any], str]) -> Dict[str, Dict[str, Any]]:
    # Повторяющиеся ключи различаются порядком появления
    counts: Dict[str, int] = {}
    keyed: Dict[str, Dict[str, Any]] = {}
    for record in records:
        base = key_fn(record)
        occurrence = counts.get(base, 0)
        counts[base] = occurrence + 1
        key = base if occurrence == 0 else f"{base}#{occurrence}"
        keyed[key] = record.model_dump(mode="json")
    return keyed


def _diff_records(old: List[BaseModel], new: List[BaseModel], key_fn) -> Optional[RecordListDiff]:
    before = _keyed(old, key_fn)
    after = _keyed(new, key_fn)

    result = RecordListDiff(
        added=[record for key, record in after.items() if key not in before],
        removed=[record for key, record in before.items() if key not in after],
    )
    for key, record in after.items():
        if key in before and before[key] != record:
            changed = sorted(
                field for field in set(before[key]) | set(record)
                if before[key].get(field) != record.get(field)
            )
            result.modified.append(
                RecordChange(key=key, before=before[key], after=record, changed_fields=changed)
            )
    return None if result.is_empty else result


def _diff_list(old: List[str], new: List[str]) -> Optional[ListDiff]:
    old_set, new_set = set(old), set(new)
    added = list(dict.fromkeys(item for item in new if item not in old_set))
    removed = list(dict.fromkeys(item for item in old if item not in new_set))
    if not added and not removed:
        return None
    return ListDiff(added=added, removed=removed)


def _diff_text(old: str, new: str, from_label: str, to_label: str) -> Optional[TextDiff]:
    if old == new:
        return None
    unified = list(difflib.unified_diff(
        old.splitlines(), new.splitlines(),
        fromfile=from_label, tofile=to_label, lineterm=""
    ))
    return TextDiff(old=old, new=new, unified=unified)


def diff(a: Draft, b: Draft) -> VersionDiff:
    """Структурная разница: что изменилось при переходе от a к b"""
    return VersionDiff(
        from_id=a.id,
        to_id=b.id,
        from_version=a.version,
        to_version=b.version,
        summary=_diff_text(a.content.summary, b.content.summary, f"v{a.version}", f"v{b.version}"),
        skills=_diff_list(a.content.skills, b.content.skills),
        experience=_diff_records(a.content.experience, b.content.experience, _experience_key),
        education=_diff_records(a.content.education, b.content.education, _education_key),
        projects=_diff_records(a.content.projects, b.content.projects, _project_key),
        section_order_changed=a.metadata.section_order != b.metadata.section_order,
    )


def diff_by_id(drafts: Iterable[Draft], a_id: uuid.UUID, b_id: uuid.UUID) -> VersionDiff:
    by_id = {draft.id: draft for draft in drafts}
    for draft_id in (a_id, b_id):
        if draft_id not in by_id:
            raise NotFoundError(f"Version {draft_id} not found", draft_id)
    return diff(by_id[a_id], by_id[b_id])


# --- Восстановление ---

def restore(family: List[Draft], version_id: uuid.UUID) -> Optional[Draft]:
    """
    Восстановление старой версии как новой версии поверх текущей активной.
    История не переписывается и не ветвится. None, если содержимое совпадает с активной.
    """
    target = next((draft for draft in family if draft.id == version_id), None)
    if target is None:
        raise NotFoundError(f"Version {version_id} not found", version_id)

    tip = get_tip(family)
    now = utcnow()
    # Порядок и состояния секций берутся из восстанавливаемой версии, видимость и вакансия остаются текущими
    visibility = {section.kind: section.visible for section in tip.metadata.sections}
    sections = [
        section.model_copy(update={"visible": visibility.get(section.kind, section.visible)})
        for section in target.metadata.sections
    ]
    metadata = tip.metadata.model_copy(update={"sections": sections, "last_modified": now})

    if not should_version(tip.content_hash, content_hash(target.content, metadata)):
        return None
    return mint_version(tip, target.content, metadata, DraftOrigin.RESTORE)
