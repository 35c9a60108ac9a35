"""
Database package: ORM модели и подключение к хранилищу заказов
"""

from marketplace.database.orm_database import ORMDatabase
from marketplace.database.orm_models import (
    Base,
    Listing,
    Order,
    OrderItem,
    OrderStatusHistory,
    PayoutTransaction,
)


__all__ = [
    "Base",
    "Listing",
    "ORMDatabase",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "PayoutTransaction",
]
