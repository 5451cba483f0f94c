from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional
import hashlib
import json
import logging
import os

from pydantic import ValidationError

from draftsync.cache.schemas import CacheEntry, Freshness
from draftsync.core.config import settings
from draftsync.core.exceptions import CacheError
from draftsync.domains.drafts.entities import Draft

logger = logging.getLogger(__name__)

CACHE_FILE_PREFIX = "resume_drafts_cache_"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _safe_unlink(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning(f"Could not remove cache file {path.name}: {exc}")


class LocalDraftCache:
    """
    Локальный кэш черновиков по пользователям с TTL.

    Кэш не является источником истины: любая ошибка чтения считается промахом,
    любая ошибка записи логируется и проглатывается.
    """

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        ttl_seconds: int = settings.cache_ttl_seconds,
        schema_version: int = settings.cache_schema_version,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.cache_dir = Path(cache_dir or settings.cache_dir)
        self.ttl_seconds = ttl_seconds
        self.schema_version = schema_version
        self._clock = clock

    def _path(self, user_id) -> Path:
        digest = hashlib.sha256(str(user_id).encode("utf-8")).hexdigest()[:32]
        return self.cache_dir / f"{CACHE_FILE_PREFIX}{digest}.json"

    def _age_ms(self, entry: CacheEntry) -> int:
        synced = entry.last_synced_at
        if synced.tzinfo is None:
            synced = synced.replace(tzinfo=timezone.utc)
        return max(0, int((self._clock() - synced).total_seconds() * 1000))

    def _read(self, user_id) -> Optional[CacheEntry]:
        path = self._path(user_id)
        if not path.exists():
            return None

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(f"Unreadable draft cache for user {user_id}: {exc}")
            return None

        if not isinstance(raw, dict):
            return None
        # Старая схема - промах, а не ошибка разбора
        if raw.get("schemaVersion") != self.schema_version:
            logger.info(f"Draft cache schema mismatch for user {user_id}, ignoring entry")
            return None
        if raw.get("userId") != str(user_id):
            logger.info("Draft cache belongs to another user, ignoring entry")
            return None

        try:
            return CacheEntry.model_validate(raw)
        except ValidationError as exc:
            logger.warning(f"Malformed draft cache for user {user_id}: {exc.error_count()} errors")
            return None

    def load(self, user_id, allow_stale: bool = False) -> Optional[CacheEntry]:
        """Запись кэша или None (нет записи, чужой пользователь, TTL, другая схема)"""
        entry = self._read(user_id)
        if entry is None:
            return None

        if not allow_stale and self._age_ms(entry) > self.ttl_seconds * 1000:
            logger.debug(f"Draft cache for user {user_id} is stale")
            return None
        return entry

    def save(self, user_id, drafts: Iterable[Draft], active_id=None) -> bool:
        """Перезапись кэша пользователя с отметкой lastSyncedAt=now"""
        try:
            entry = CacheEntry(
                user_id=str(user_id),
                drafts=[draft.to_snapshot() for draft in drafts],
                active_draft_id=active_id,
                last_synced_at=self._clock(),
                schema_version=self.schema_version
            )
            self._write(user_id, entry)
            return True
        except (CacheError, ValidationError, TypeError, ValueError) as exc:
            logger.warning(f"Failed to save draft cache for user {user_id}: {exc}")
            return False

    def _write(self, user_id, entry: CacheEntry) -> None:
        path = self._path(user_id)
        tmp_path = path.with_suffix(".tmp")
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(entry.model_dump_json(by_alias=True), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            _safe_unlink(tmp_path)
            raise CacheError(f"Cache write failed: {exc}") from exc

    def clear(self, user_id=None) -> None:
        """Очистка записи пользователя или всех записей (выход, смена пользователя)"""
        if user_id is not None:
            _safe_unlink(self._path(user_id))
            return

        if not self.cache_dir.exists():
            return
        for path in self.cache_dir.glob(f"{CACHE_FILE_PREFIX}*.json"):
            _safe_unlink(path)

    def freshness(self, user_id) -> Freshness:
        entry = self._read(user_id)
        if entry is None:
            return Freshness(is_fresh=False, age_ms=None)
        age_ms = self._age_ms(entry)
        return Freshness(is_fresh=age_ms <= self.ttl_seconds * 1000, age_ms=age_ms)
