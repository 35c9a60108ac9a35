"""
Расчёт комиссии платформы

Все суммы - целые числа в минимальных единицах валюты (центы).
"""

from dataclasses import dataclass


BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class CommissionSplit:
    """Разделение суммы товаров между платформой и продавцом"""

    subtotal: int
    platform_commission: int
    seller_receives: int


def calculate_commission(subtotal: int, commission_bps: int) -> int:
    """
    Комиссия платформы с округлением вниз

    Args:
        subtotal: Сумма товаров
        commission_bps: Ставка в базисных пунктах (1000 = 10%)

    Returns:
        Комиссия в минимальных единицах
    """
    if subtotal < 0:
        raise ValueError("Сумма не может быть отрицательной")
    if not 0 <= commission_bps <= BPS_DENOMINATOR:
        raise ValueError(f"Недопустимая ставка комиссии: {commission_bps}")
    return subtotal * commission_bps // BPS_DENOMINATOR


def split_subtotal(subtotal: int, commission_bps: int) -> CommissionSplit:
    """
    Разделение суммы: seller_receives + platform_commission == subtotal

    Args:
        subtotal: Сумма товаров
        commission_bps: Ставка в базисных пунктах

    Returns:
        CommissionSplit
    """
    commission = calculate_commission(subtotal, commission_bps)
    return CommissionSplit(
        subtotal=subtotal,
        platform_commission=commission,
        seller_receives=subtotal - commission,
    )


def calculate_payout_amount(seller_amount: int, delivery_fee: int, delivery_fee_to_seller: bool) -> int:
    """Сумма выплаты продавцу с учётом правила распределения доставки"""
    if delivery_fee_to_seller:
        return seller_amount + delivery_fee
    return seller_amount
