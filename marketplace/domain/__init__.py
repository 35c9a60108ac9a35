"""
Domain layer для бизнес-логики
"""

from marketplace.domain.commission import CommissionSplit, calculate_commission, split_subtotal
from marketplace.domain.errors import (
    DeadlinePassedError,
    GatewayRequestNotSentError,
    IncompleteAddressError,
    InvalidTransitionError,
    MarketplaceError,
    OrderNotFoundError,
    PaymentMismatchError,
    UnauthorizedError,
    UpstreamUnavailableError,
    ValidationError,
)
from marketplace.domain.order_state_machine import (
    OrderStateMachine,
    OrderStateTransitionResult,
    Transition,
)
from marketplace.domain.payout_policy import PayoutEligibility


__all__ = [
    "CommissionSplit",
    "DeadlinePassedError",
    "GatewayRequestNotSentError",
    "IncompleteAddressError",
    "InvalidTransitionError",
    "MarketplaceError",
    "OrderNotFoundError",
    "OrderStateMachine",
    "OrderStateTransitionResult",
    "PaymentMismatchError",
    "PayoutEligibility",
    "Transition",
    "UnauthorizedError",
    "UpstreamUnavailableError",
    "ValidationError",
    "calculate_commission",
    "split_subtotal",
]
