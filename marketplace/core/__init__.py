"""Ядро приложения - конфигурация и константы"""

from marketplace.core.config import Config, Settings
from marketplace.core.constants import (
    BlockReason,
    ErrorCode,
    NotificationChannel,
    OrderEvent,
    OrderStatus,
    PayoutStatus,
    PayoutTrigger,
    RefundStatus,
    TransferState,
)


__all__ = [
    "BlockReason",
    "Config",
    "ErrorCode",
    "NotificationChannel",
    "OrderEvent",
    "OrderStatus",
    "PayoutStatus",
    "PayoutTrigger",
    "RefundStatus",
    "Settings",
    "TransferState",
]
