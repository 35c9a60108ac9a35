"""Pydantic schemas package"""
from marketplace.schemas.cart import (
    Address,
    BlockedSeller,
    CartItem,
    CartSplitResult,
    CourierQuote,
    SellerCart,
    SellerProfile,
)
from marketplace.schemas.webhook import GatewayEvent, GatewayEventData


__all__ = [
    # Cart schemas
    "Address",
    "BlockedSeller",
    "CartItem",
    "CartSplitResult",
    "CourierQuote",
    # Gateway schemas
    "GatewayEvent",
    "GatewayEventData",
    "SellerCart",
    "SellerProfile",
]
