import json
import uuid

from draftsync.cache.local_cache import LocalDraftCache
from draftsync.domains.drafts.entities import Draft
from draftsync.domains.drafts.schemas import DraftContent


def _drafts(owner_id):
    return [
        Draft.create_draft(owner_id, "Backend CV", content=DraftContent(skills=["Python"])),
        Draft.create_draft(owner_id, "Data CV"),
    ]


def test_save_then_load(cache, owner_id):
    drafts = _drafts(owner_id)

    assert cache.save(owner_id, drafts, drafts[0].id)
    entry = cache.load(owner_id)

    assert [snapshot.id for snapshot in entry.drafts] == [draft.id for draft in drafts]
    assert entry.active_draft_id == drafts[0].id
    assert entry.drafts[0].content.skills == ["Python"]
    assert Draft.from_snapshot(entry.drafts[0]).content_hash == drafts[0].content_hash


def test_wire_format_uses_camel_case(cache, owner_id):
    cache.save(owner_id, _drafts(owner_id))

    raw = json.loads(cache._path(owner_id).read_text(encoding="utf-8"))

    assert set(raw) == {"userId", "drafts", "activeDraftId", "lastSyncedAt", "schemaVersion"}
    assert raw["userId"] == str(owner_id)


def test_missing_entry(cache, owner_id):
    assert cache.load(owner_id) is None
    assert not cache.freshness(owner_id).is_fresh


def test_stale_entry_is_a_miss_unless_allowed(cache, clock, owner_id):
    cache.save(owner_id, _drafts(owner_id))
    clock.advance(seconds=301)

    assert cache.load(owner_id) is None
    assert cache.load(owner_id, allow_stale=True) is not None
    freshness = cache.freshness(owner_id)
    assert not freshness.is_fresh
    assert freshness.age_ms == 301_000


def test_fresh_entry_within_ttl(cache, clock, owner_id):
    cache.save(owner_id, _drafts(owner_id))
    clock.advance(seconds=299)

    assert cache.load(owner_id) is not None
    assert cache.freshness(owner_id).is_fresh


def test_schema_mismatch_is_a_miss(tmp_path, clock, owner_id):
    LocalDraftCache(tmp_path, schema_version=1, clock=clock).save(owner_id, _drafts(owner_id))

    assert LocalDraftCache(tmp_path, schema_version=2, clock=clock).load(owner_id) is None


def test_entry_of_another_user_is_a_miss(cache, owner_id):
    other_id = uuid.uuid4()
    cache.save(owner_id, _drafts(owner_id))
    cache._path(other_id).write_text(cache._path(owner_id).read_text(encoding="utf-8"), encoding="utf-8")

    assert cache.load(other_id) is None


def test_corrupt_entry_is_a_miss(cache, owner_id):
    cache.cache_dir.mkdir(parents=True, exist_ok=True)
    cache._path(owner_id).write_text("{not json", encoding="utf-8")

    assert cache.load(owner_id) is None


def test_write_failure_is_swallowed(tmp_path, clock, owner_id):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    cache = LocalDraftCache(blocker, clock=clock)

    assert cache.save(owner_id, _drafts(owner_id)) is False
    assert cache.load(owner_id) is None


def test_clear_one_user_or_everyone(cache, owner_id):
    other_id = uuid.uuid4()
    cache.save(owner_id, _drafts(owner_id))
    cache.save(other_id, _drafts(other_id))

    cache.clear(owner_id)
    assert cache.load(owner_id) is None
    assert cache.load(other_id) is not None

    cache.clear()
    assert cache.load(other_id) is None
