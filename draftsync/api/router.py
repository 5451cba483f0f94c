from fastapi import APIRouter
from draftsync.api.http import health_router, drafts_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(drafts_router)
