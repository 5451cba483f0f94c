from draftsync.db.models.draft import ResumeDraft

__all__ = [
    "ResumeDraft"
]
