"""
Репозиторий объявлений: доступность товаров на витрине
"""

import logging

from sqlalchemy import select, update

from marketplace.database.orm_models import Listing
from marketplace.repositories.base import BaseRepository
from marketplace.utils.helpers import get_now


logger = logging.getLogger(__name__)


class ListingRepository(BaseRepository[Listing]):
    """Репозиторий объявлений"""

    async def add(self, listing: Listing) -> Listing:
        """Добавление объявления"""
        async with self.session() as session:
            session.add(listing)
        return listing

    async def get_many(self, item_ids: list[str]) -> list[Listing]:
        """Объявления по списку ID"""
        if not item_ids:
            return []
        async with self.session() as session:
            result = await session.execute(select(Listing).where(Listing.id.in_(item_ids)))
            return list(result.scalars().all())

    async def set_availability(self, item_ids: list[str], available: bool, sold: bool) -> int:
        """
        Смена доступности товаров

        Args:
            item_ids: ID объявлений
            available: Показывать ли товар покупателям
            sold: Продан ли товар

        Returns:
            Количество обновлённых объявлений
        """
        if not item_ids:
            return 0

        async with self.session() as session:
            result = await session.execute(
                update(Listing)
                .where(Listing.id.in_(item_ids))
                .values(available=available, sold=sold, updated_at=get_now())
                .execution_options(synchronize_session=False)
            )
            updated = self._affected(result)

        logger.debug(f"Объявления {item_ids}: available={available}, sold={sold} ({updated})")
        return updated
