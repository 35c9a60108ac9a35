"""
Сервисы ядра маркетплейса
"""

from marketplace.services.cart_splitter import CartSplitter
from marketplace.services.courier_quotes import CourierQuoteClient, fallback_quotes, select_quote
from marketplace.services.expiry_sweeper import ExpirySweeper, SweepResult
from marketplace.services.marketplace_service import MarketplaceService, OperationResult
from marketplace.services.notifications import (
    HttpNotificationTransport,
    LoggingNotificationTransport,
    Notification,
    NotificationDispatcher,
)
from marketplace.services.order_lifecycle import OrderLifecycleEngine, TransitionOutcome
from marketplace.services.payment_gateway import (
    PaymentVerification,
    PaystackGateway,
    RefundResult,
    TransferResult,
)
from marketplace.services.payout_settlement import (
    PayoutBatchResult,
    PayoutSettlementEngine,
    ReconcileResult,
)


__all__ = [
    "CartSplitter",
    "CourierQuoteClient",
    "ExpirySweeper",
    "HttpNotificationTransport",
    "LoggingNotificationTransport",
    "MarketplaceService",
    "Notification",
    "NotificationDispatcher",
    "OperationResult",
    "OrderLifecycleEngine",
    "PaymentVerification",
    "PaystackGateway",
    "PayoutBatchResult",
    "PayoutSettlementEngine",
    "ReconcileResult",
    "RefundResult",
    "SweepResult",
    "TransferResult",
    "TransitionOutcome",
    "fallback_quotes",
    "select_quote",
]
