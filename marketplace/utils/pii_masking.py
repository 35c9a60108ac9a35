"""
Утилиты для маскирования персональных данных (PII) в логах

Маскируются:
- Адреса покупателей и продавцов
- Коды получателей выплат
- Платёжные ссылки
"""

from typing import Any


def mask_address(address: dict[str, Any] | Any | None) -> str:
    """
    Маскирует адрес, оставляя город и провинцию

    Примеры:
        {"street": "12 Long St", "city": "Cape Town", ...} → Cape Town, Western Cape, ***

    Args:
        address: Адрес (dict или модель с атрибутами city/province)

    Returns:
        Маскированный адрес
    """
    if not address:
        return "[no address]"

    if isinstance(address, dict):
        city = address.get("city") or ""
        province = address.get("province") or ""
    else:
        city = getattr(address, "city", "") or ""
        province = getattr(address, "province", "") or ""

    visible = ", ".join(part for part in (city, province) if part)
    return f"{visible}, ***" if visible else "***"


def mask_code(code: str | None, visible: int = 4) -> str:
    """
    Маскирует код получателя или ссылку платежа

    Примеры:
        RCP_1a2b3c4d5e → RCP_****4d5e

    Args:
        code: Исходная строка
        visible: Сколько символов показывать в конце

    Returns:
        Маскированная строка
    """
    if not code:
        return "[no code]"

    if len(code) <= visible + 2:
        return "****"

    prefix = code[:4] if len(code) > visible + 6 else ""
    return f"{prefix}****{code[-visible:]}"


def safe_order_repr(order: Any) -> str:
    """
    Безопасное строковое представление заказа для логов

    Args:
        order: Заказ (ORM модель)

    Returns:
        Строка без PII
    """
    return (
        f"Order(id={getattr(order, 'id', None)}, status={getattr(order, 'status', None)}, "
        f"seller={getattr(order, 'seller_id', None)}, amount={getattr(order, 'amount', None)}, "
        f"delivery={mask_address(getattr(order, 'delivery_address', None))})"
    )


def mask_reference(reference: str | None) -> str:
    """
    Маскирует платёжную ссылку, сохраняя префикс типа (ord-, payout-, refund-)

    Примеры:
        ord-1a2b3c4d5e6f7a8b9c0d-12345678 → ord-****5678
    """
    if not reference:
        return "[no reference]"
    kind, sep, _ = reference.partition("-")
    if not sep or len(reference) <= 12:
        return mask_code(reference)
    return f"{kind}-****{reference[-4:]}"
