from draftsync.domains.session.controller import DraftSession, SessionStatus, VersionResult, ExportView
from draftsync.domains.session.history import UndoHistory, HistoryEntry
from draftsync.domains.session.retry import WriteRetry, AttemptOutcome, AttemptRecord, RetryTrace

__all__ = [
    "DraftSession", "SessionStatus", "VersionResult", "ExportView",
    "UndoHistory", "HistoryEntry",
    "WriteRetry", "AttemptOutcome", "AttemptRecord", "RetryTrace"
]
