from draftsync.db.repositories.draft_repository import DraftRepository

__all__ = [
    "DraftRepository"
]
