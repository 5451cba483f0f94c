from draftsync.api.http.health import router as health_router
from draftsync.api.http.drafts import router as drafts_router

__all__ = [
    "health_router",
    "drafts_router"
]
