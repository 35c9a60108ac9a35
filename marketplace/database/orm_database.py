"""
SQLAlchemy ORM Database класс
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from marketplace.core.config import Config
from marketplace.database.orm_models import Base


logger = logging.getLogger(__name__)


class ORMDatabase:
    """Подключение к хранилищу заказов через SQLAlchemy ORM"""

    def __init__(self, database_url: str | None = None, echo: bool = False):
        """
        Инициализация ORM Database

        Args:
            database_url: URL базы данных (SQLite или PostgreSQL)
            echo: Логировать SQL запросы
        """
        self.database_url = database_url or Config.get_database_url()
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None
        self._is_sqlite = self.database_url.startswith("sqlite")

    def _engine_kwargs(self) -> dict:
        """Параметры движка в зависимости от СУБД"""
        if not self._is_sqlite:
            return {"pool_pre_ping": True, "pool_recycle": 3600}

        kwargs: dict = {
            # Ждём освобождения блокировки записи вместо мгновенной ошибки
            "connect_args": {"check_same_thread": False, "timeout": 30},
        }
        if ":memory:" in self.database_url:
            kwargs["poolclass"] = StaticPool
        return kwargs

    async def connect(self):
        """Подключение к базе данных"""
        try:
            logger.info("Инициализация подключения к БД...")

            self.engine = create_async_engine(
                self.database_url, echo=self.echo, **self._engine_kwargs()
            )

            if self._is_sqlite:
                event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

            self.session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,  # Важно для async работы
            )

            logger.info(f"OK: Подключено к базе данных (sqlite={self._is_sqlite})")
            logger.debug("Используйте 'alembic upgrade head' для применения миграций БД")

        except Exception as e:
            logger.error(f"ERROR: Ошибка подключения к БД: {e}")
            raise

    async def create_all(self):
        """Создание схемы (для тестов и локального запуска без alembic)"""
        if not self.engine:
            raise RuntimeError("База данных не подключена")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Схема БД создана")

    async def disconnect(self):
        """Отключение от базы данных"""
        if self.engine:
            await self.engine.dispose()
            logger.info("Отключено от базы данных")

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """
        Context manager для получения сессии

        Usage:
            async with db.get_session() as session:
                order = await session.get(Order, order_id)
                # Автоматический commit/rollback
        """
        if not self.session_factory:
            raise RuntimeError("База данных не подключена")

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.debug(f"Транзакция отменена (rollback): {e}")
                raise


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """PRAGMA foreign_keys для каждого нового соединения SQLite"""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
