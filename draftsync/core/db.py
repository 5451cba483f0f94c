from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from draftsync.core.config import settings

# Базовый класс для моделей
Base = declarative_base()

# Асинхронный движок
engine = create_async_engine(settings.database_url, future=True, echo=settings.database_echo)

# Сессии
SessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


def build_session_factory(database_url: str, **engine_kwargs) -> async_sessionmaker:
    """Фабрика сессий для отдельной базы (тесты, фоновые процессы)"""
    custom_engine = create_async_engine(database_url, future=True, **engine_kwargs)
    return async_sessionmaker(bind=custom_engine, class_=AsyncSession, expire_on_commit=False)


async def create_all(session_factory: async_sessionmaker = SessionLocal) -> None:
    """Создание таблиц без миграций"""
    from draftsync.db import models  # noqa: F401  регистрирует модели в Base

    async with session_factory.kw["bind"].begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
