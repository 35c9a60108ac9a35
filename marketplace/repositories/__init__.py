"""
Repository pattern для работы с базой данных
"""

from marketplace.repositories.base import BaseRepository
from marketplace.repositories.exceptions import (
    EntityNotFoundError,
    RepositoryError,
)
from marketplace.repositories.listing_repository import ListingRepository
from marketplace.repositories.order_repository import OrderRepository, build_order_items
from marketplace.repositories.payout_repository import PayoutRepository


__all__ = [
    "BaseRepository",
    "EntityNotFoundError",
    "ListingRepository",
    "OrderRepository",
    "PayoutRepository",
    "RepositoryError",
    "build_order_items",
]
