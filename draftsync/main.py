from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from draftsync.api.router import api_router
from draftsync.core.config import settings
from draftsync.core.db import create_all

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Локальная SQLite создается без миграций, Postgres ведет Alembic
    if settings.database_url.startswith("sqlite"):
        await create_all()
        logger.info("Local draft store schema is ready")
    yield


app = FastAPI(
    title="DraftSync",
    description="Хранилище версий черновиков резюме",
    version="1.0.0",
    lifespan=lifespan
)

# Настройка CORS для работы с frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/")
async def root():
    """Корневой эндпоинт"""
    return {
        "message": "DraftSync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }
