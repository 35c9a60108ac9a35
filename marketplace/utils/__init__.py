"""Утилиты и вспомогательные функции"""
from marketplace.utils.helpers import (
    format_amount,
    format_datetime,
    generate_payment_reference,
    generate_refund_reference,
    generate_transfer_reference,
    get_now,
    new_id,
    to_naive_utc,
    truncate_text,
)
from marketplace.utils.pii_masking import (
    mask_address,
    mask_code,
    mask_reference,
    safe_order_repr,
)
from marketplace.utils.retry import retry_on_http_error


__all__ = [
    # Format utilities
    "format_amount",
    "format_datetime",
    # References
    "generate_payment_reference",
    "generate_refund_reference",
    "generate_transfer_reference",
    # DateTime utilities
    "get_now",
    # PII Masking
    "mask_address",
    "mask_code",
    "mask_reference",
    "new_id",
    # Retry utilities
    "retry_on_http_error",
    "safe_order_repr",
    "to_naive_utc",
    "truncate_text",
]
