from draftsync.cache.local_cache import LocalDraftCache
from draftsync.cache.schemas import CacheEntry, Freshness

__all__ = [
    "LocalDraftCache", "CacheEntry", "Freshness"
]
