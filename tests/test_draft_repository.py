import uuid

import pytest

from draftsync.core.exceptions import ConflictError, DraftValidationError, NotFoundError
from draftsync.domains.drafts.entities import Draft
from draftsync.domains.drafts.schemas import (
    CANONICAL_SECTION_ORDER, DraftContent, DraftOrigin, DraftPatch, SectionKind
)
from draftsync.domains.versioning import engine


async def _create(store, owner_id, name="Backend CV", **kwargs):
    return await store.create(owner_id, Draft.create_draft(owner_id, name, **kwargs))


async def _append(store, owner_id, parent, skills):
    child = engine.mint_version(
        parent, parent.content.model_copy(update={"skills": skills}), parent.metadata, DraftOrigin.MANUAL
    )
    return await store.append_version(owner_id, parent.id, parent.version, child)


@pytest.mark.asyncio
async def test_create_and_get(store, owner_id):
    created = await _create(store, owner_id, content=DraftContent(summary="Engineer"))
    fetched = await store.get(owner_id, created.id)

    assert fetched.version == 1
    assert fetched.is_active
    assert fetched.root_draft_id == created.id
    assert fetched.content.summary == "Engineer"
    assert fetched.content_hash == created.content_hash
    assert fetched.created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_owner_isolation(store, owner_id):
    created = await _create(store, owner_id)
    stranger = uuid.uuid4()

    with pytest.raises(NotFoundError):
        await store.get(stranger, created.id)
    assert await store.list_drafts(stranger) == []
    with pytest.raises(NotFoundError):
        await store.archive(stranger, created.id)


@pytest.mark.asyncio
async def test_create_rejects_foreign_owner(store, owner_id):
    draft = Draft.create_draft(uuid.uuid4(), "Backend CV")

    with pytest.raises(DraftValidationError):
        await store.create(owner_id, draft)


@pytest.mark.asyncio
async def test_append_version_moves_the_tip(store, owner_id):
    v1 = await _create(store, owner_id)
    v2 = await _append(store, owner_id, v1, ["Python"])
    v3 = await _append(store, owner_id, v2, ["Python", "Go"])

    family = await store.list_family(owner_id, v1.id)

    assert [draft.version for draft in family] == [3, 2, 1]
    assert [draft.is_active for draft in family] == [True, False, False]
    assert all(draft.root_draft_id == v1.id for draft in family)
    assert (await store.get_tip(owner_id, v1.id)).id == v3.id
    engine.verify_lineage(family)


@pytest.mark.asyncio
async def test_append_version_conflict_on_stale_parent(store, owner_id):
    v1 = await _create(store, owner_id)
    first = engine.mint_version(v1, DraftContent(skills=["Go"]), v1.metadata, DraftOrigin.MANUAL)
    second = engine.mint_version(v1, DraftContent(skills=["Java"]), v1.metadata, DraftOrigin.MANUAL)

    await store.append_version(owner_id, v1.id, 1, first)
    with pytest.raises(ConflictError) as exc_info:
        await store.append_version(owner_id, v1.id, 1, second)

    assert exc_info.value.expected_version == 1
    tip = await store.get_tip(owner_id, v1.id)
    assert tip.id == first.id
    assert tip.content.skills == ["Go"]
    assert len(await store.list_family(owner_id, v1.id)) == 2


@pytest.mark.asyncio
async def test_append_version_rejects_skipped_version(store, owner_id):
    v1 = await _create(store, owner_id)
    child = engine.mint_version(v1, DraftContent(skills=["Go"]), v1.metadata, DraftOrigin.MANUAL)
    child.version = 5

    with pytest.raises(DraftValidationError):
        await store.append_version(owner_id, v1.id, 1, child)


@pytest.mark.asyncio
async def test_update_in_place_keeps_version(store, owner_id):
    v1 = await _create(store, owner_id)
    hidden = v1.metadata.with_visibility(SectionKind.PROJECTS, False, None)

    updated = await store.update(owner_id, v1.id, 1, DraftPatch(name="Platform CV", metadata=hidden))

    assert updated.version == 1
    assert updated.name == "Platform CV"
    assert not updated.metadata.section(SectionKind.PROJECTS).visible
    assert updated.content_hash == v1.content_hash


@pytest.mark.asyncio
async def test_update_with_stale_version_conflicts(store, owner_id):
    v1 = await _create(store, owner_id)
    await _append(store, owner_id, v1, ["Go"])

    with pytest.raises(ConflictError):
        await store.update(owner_id, v1.id, 1, DraftPatch(name="Renamed"))
    assert (await store.get(owner_id, v1.id)).name == "Backend CV"


@pytest.mark.asyncio
async def test_update_rejects_section_order_change(store, owner_id):
    v1 = await _create(store, owner_id)
    reordered = v1.metadata.reordered(list(reversed(CANONICAL_SECTION_ORDER)), None)

    with pytest.raises(DraftValidationError):
        await store.update(owner_id, v1.id, 1, DraftPatch(metadata=reordered))


@pytest.mark.asyncio
async def test_get_with_touch_records_access(store, owner_id):
    v1 = await _create(store, owner_id)
    assert v1.last_accessed_at is None

    touched = await store.get(owner_id, v1.id, touch=True)

    assert touched.last_accessed_at is not None


@pytest.mark.asyncio
async def test_archive_and_restore_whole_lineage(store, owner_id):
    v1 = await _create(store, owner_id)
    v2 = await _append(store, owner_id, v1, ["Go"])
    other = await _create(store, owner_id, name="Data CV")

    assert await store.archive(owner_id, v2.id) == 2

    assert [draft.id for draft in await store.list_drafts(owner_id)] == [other.id]
    assert [draft.id for draft in await store.list_archived(owner_id)] == [v2.id]

    restored = await store.restore_archived(owner_id, v1.id)

    assert restored.id == v2.id
    assert not restored.archived
    assert {draft.id for draft in await store.list_drafts(owner_id)} == {v2.id, other.id}


@pytest.mark.asyncio
async def test_versions_of_archived_lineage_stay_archived(store, owner_id):
    v1 = await _create(store, owner_id)
    await store.archive(owner_id, v1.id)

    v2 = await _append(store, owner_id, v1, ["Go"])

    assert v2.archived
    assert await store.list_drafts(owner_id) == []


@pytest.mark.asyncio
async def test_permanent_delete_removes_all_versions(store, owner_id):
    v1 = await _create(store, owner_id)
    v2 = await _append(store, owner_id, v1, ["Go"])

    assert await store.permanent_delete(owner_id, v1.id) == 2

    for draft_id in (v1.id, v2.id):
        with pytest.raises(NotFoundError):
            await store.get(owner_id, draft_id)


@pytest.mark.asyncio
async def test_list_drafts_can_include_history(store, owner_id):
    v1 = await _create(store, owner_id)
    await _append(store, owner_id, v1, ["Go"])

    assert len(await store.list_drafts(owner_id)) == 1
    assert len(await store.list_drafts(owner_id, active_only=False)) == 2
