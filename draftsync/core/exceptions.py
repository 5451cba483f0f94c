from typing import Optional
import uuid


class DraftSyncError(Exception):
    """Базовая ошибка синхронизации черновиков"""

    retryable = False

    def __init__(self, message: str, draft_id: Optional[uuid.UUID] = None):
        super().__init__(message)
        self.message = message
        self.draft_id = draft_id

    def __str__(self) -> str:
        return self.message


class DraftValidationError(DraftSyncError):
    """Некорректные входные данные, отклоняются до любого ввода-вывода"""


class NotFoundError(DraftSyncError):
    """Черновик или версия не найдены"""


class ConflictError(DraftSyncError):
    """Версия в хранилище не совпадает с ожидаемой"""

    retryable = True

    def __init__(
        self,
        message: str,
        draft_id: Optional[uuid.UUID] = None,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None
    ):
        super().__init__(message, draft_id)
        self.expected_version = expected_version
        self.actual_version = actual_version


class TransientIOError(DraftSyncError):
    """Таймаут или сетевая ошибка при обращении к хранилищу"""

    retryable = True


class CacheError(DraftSyncError):
    """Ошибка локального кэша, никогда не выходит наружу"""
