import uuid

import pytest

from draftsync.core.exceptions import DraftValidationError, NotFoundError
from draftsync.domains.drafts.entities import Draft
from draftsync.domains.drafts.schemas import (
    CANONICAL_SECTION_ORDER, DraftContent, DraftMetadata, DraftOrigin, ExperienceEntry, SectionKind
)
from draftsync.domains.versioning import engine


def _lineage(owner_id, skills_per_version):
    first = Draft.create_draft(owner_id, "Backend CV", content=DraftContent(skills=skills_per_version[0]))
    drafts = [first]
    for skills in skills_per_version[1:]:
        prev = drafts[-1]
        child = engine.mint_version(
            prev, prev.content.model_copy(update={"skills": skills}), prev.metadata, DraftOrigin.MANUAL
        )
        prev.is_active = False
        drafts.append(child)
    return drafts


def test_hash_is_stable_for_equal_content():
    a = DraftContent.model_validate({"summary": "Engineer", "skills": ["Python"]})
    b = DraftContent.model_validate({"skills": ["Python"], "summary": "Engineer"})

    assert engine.content_hash(a, DraftMetadata()) == engine.content_hash(b, DraftMetadata())


def test_hash_ignores_visibility_but_not_section_order():
    content = DraftContent(summary="Engineer")
    metadata = DraftMetadata()
    hidden = metadata.with_visibility(SectionKind.SKILLS, False, None)
    reordered = metadata.reordered(list(reversed(CANONICAL_SECTION_ORDER)), None)

    assert engine.content_hash(content, hidden) == engine.content_hash(content, metadata)
    assert engine.content_hash(content, reordered) != engine.content_hash(content, metadata)


def test_mint_version_links_child_to_parent():
    owner_id = uuid.uuid4()
    parent = Draft.create_draft(owner_id, "Backend CV")
    child = engine.mint_version(parent, DraftContent(skills=["Go"]), parent.metadata, DraftOrigin.GENERATION)

    assert child.version == 2
    assert child.parent_draft_id == parent.id
    assert child.root_draft_id == parent.id
    assert child.origin == DraftOrigin.GENERATION
    assert child.content_hash == engine.content_hash(child.content, child.metadata)
    assert child.id != parent.id


def test_family_is_newest_first_with_single_tip():
    drafts = _lineage(uuid.uuid4(), [["A"], ["B"], ["C"]])
    family = engine.get_family(drafts, drafts[0].id)

    assert [draft.version for draft in family] == [3, 2, 1]
    assert engine.get_tip(family).id == drafts[-1].id
    engine.verify_lineage(family)


def test_get_family_excludes_other_lineages():
    owner_id = uuid.uuid4()
    mine = _lineage(owner_id, [["A"], ["B"]])
    other = _lineage(owner_id, [["X"]])

    family = engine.get_family(mine + other, mine[1].id)

    assert {draft.id for draft in family} == {draft.id for draft in mine}


def test_get_family_unknown_member():
    with pytest.raises(NotFoundError):
        engine.get_family(_lineage(uuid.uuid4(), [["A"]]), uuid.uuid4())


def test_get_tip_rejects_two_active_members():
    drafts = _lineage(uuid.uuid4(), [["A"], ["B"]])
    drafts[0].is_active = True

    with pytest.raises(DraftValidationError):
        engine.get_tip(drafts)


def test_diff_reports_skill_changes():
    a, b = _lineage(uuid.uuid4(), [["Python", "Go"], ["Python", "Java"]])
    result = engine.diff(a, b)

    assert result.skills.added == ["Java"]
    assert result.skills.removed == ["Go"]
    assert result.summary is None
    assert result.has_changes


def test_diff_keys_experience_by_company_and_role():
    owner_id = uuid.uuid4()
    a = Draft.create_draft(owner_id, "CV", content=DraftContent(experience=[
        ExperienceEntry(role="Engineer", company="Acme", bullets=["Built APIs"]),
        ExperienceEntry(role="Intern", company="Initech"),
    ]))
    b = engine.mint_version(a, DraftContent(experience=[
        ExperienceEntry(role="engineer", company=" ACME ", bullets=["Built APIs", "Led migration"]),
        ExperienceEntry(role="Lead", company="Globex"),
    ]), a.metadata, DraftOrigin.MANUAL)

    result = engine.diff(a, b).experience

    assert [change.changed_fields for change in result.modified] == [["bullets", "company", "role"]]
    assert [record["company"] for record in result.added] == ["Globex"]
    assert [record["company"] for record in result.removed] == ["Initech"]


def test_diff_of_identical_versions_is_empty():
    draft = Draft.create_draft(uuid.uuid4(), "CV", content=DraftContent(summary="Same"))
    result = engine.diff(draft, draft.copy())

    assert not result.has_changes


def test_diff_by_id_missing_version():
    drafts = _lineage(uuid.uuid4(), [["A"]])

    with pytest.raises(NotFoundError):
        engine.diff_by_id(drafts, drafts[0].id, uuid.uuid4())


def test_restore_appends_on_top_of_tip():
    drafts = _lineage(uuid.uuid4(), [["A"], ["B"], ["C"], ["D"], ["E"]])
    v2, v5 = drafts[1], drafts[4]

    restored = engine.restore(drafts, v2.id)

    assert restored.version == 6
    assert restored.parent_draft_id == v5.id
    assert restored.root_draft_id == drafts[0].id
    assert restored.content.skills == ["B"]
    assert restored.origin == DraftOrigin.RESTORE
    # история не переписывается
    assert [draft.version for draft in drafts] == [1, 2, 3, 4, 5]


def test_restore_keeps_current_visibility():
    drafts = _lineage(uuid.uuid4(), [["A"], ["B"]])
    tip = drafts[-1]
    tip.metadata = tip.metadata.with_visibility(SectionKind.PROJECTS, False, None)

    restored = engine.restore(drafts, drafts[0].id)

    assert not restored.metadata.section(SectionKind.PROJECTS).visible


def test_restore_of_tip_content_is_noop():
    drafts = _lineage(uuid.uuid4(), [["A"], ["B"], ["A"]])

    assert engine.restore(drafts, drafts[0].id) is None
    assert engine.restore(drafts, drafts[2].id) is None


def test_restore_unknown_version():
    with pytest.raises(NotFoundError):
        engine.restore(_lineage(uuid.uuid4(), [["A"]]), uuid.uuid4())


def test_verify_lineage_rejects_non_increasing_versions():
    drafts = _lineage(uuid.uuid4(), [["A"], ["B"]])
    drafts[1].version = 1

    with pytest.raises(DraftValidationError):
        engine.verify_lineage(drafts)
