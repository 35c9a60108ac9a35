"""
Базовый репозиторий для работы с базой данных
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Generic, TypeVar

from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.orm_database import ORMDatabase


logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Базовый класс для всех репозиториев

    Каждая операция открывает короткую сессию: репозитории никогда не держат
    транзакцию открытой на время сетевых вызовов.
    """

    def __init__(self, db: ORMDatabase):
        """
        Инициализация репозитория

        Args:
            db: Подключение к базе данных
        """
        self.db = db

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Контекстный менеджер для транзакций

        Yields:
            AsyncSession: commit при выходе, rollback при исключении
        """
        async with self.db.get_session() as session:
            yield session

    @staticmethod
    def _affected(result: CursorResult) -> int:
        """Количество строк, изменённых UPDATE"""
        return result.rowcount if result.rowcount is not None else 0
