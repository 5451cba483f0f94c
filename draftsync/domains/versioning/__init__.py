from draftsync.domains.versioning.engine import (
    content_hash, should_version, mint_version, get_family, get_tip, verify_lineage,
    diff, diff_by_id, restore
)
from draftsync.domains.versioning.schemas import (
    TextDiff, ListDiff, RecordChange, RecordListDiff, VersionDiff
)

__all__ = [
    "content_hash", "should_version", "mint_version", "get_family", "get_tip", "verify_lineage",
    "diff", "diff_by_id", "restore",
    "TextDiff", "ListDiff", "RecordChange", "RecordListDiff", "VersionDiff"
]
