"""
Вспомогательные функции
"""

import logging
import uuid
from datetime import datetime, timezone


logger = logging.getLogger(__name__)


def get_now() -> datetime:
    """
    Получить текущее время в UTC

    Все даты в хранилище - naive UTC, чтобы сравнения в SQL и в Python
    давали одинаковый результат.

    Returns:
        naive datetime в UTC
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Приведение datetime к naive UTC

    Args:
        dt: datetime с таймзоной или naive (считается UTC)

    Returns:
        naive datetime в UTC
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """Новый непрозрачный идентификатор"""
    return str(uuid.uuid4())


def generate_payment_reference(order_id: str) -> str:
    """Ключ идемпотентности платежа для заказа"""
    return f"ord-{order_id.replace('-', '')[:20]}-{uuid.uuid4().hex[:8]}"


def generate_transfer_reference(order_id: str, attempt: int) -> str:
    """
    Ссылка на перевод: стабильна для попытки, уникальна для каждого вызова шлюза

    Args:
        order_id: ID заказа
        attempt: Номер попытки (retry_count + 1)
    """
    return f"payout-{order_id.replace('-', '')}-{attempt}"


def generate_refund_reference(order_id: str, attempt: int) -> str:
    """Ссылка на возврат для попытки"""
    return f"refund-{order_id.replace('-', '')}-{attempt}"


def format_amount(amount: int, currency: str = "ZAR") -> str:
    """
    Форматирование суммы из минимальных единиц

    Args:
        amount: Сумма в центах
        currency: Код валюты

    Returns:
        Строка вида "R 120.50"
    """
    symbols = {"ZAR": "R", "NGN": "₦", "USD": "$"}
    symbol = symbols.get(currency, currency)
    sign = "-" if amount < 0 else ""
    major, minor = divmod(abs(amount), 100)
    return f"{sign}{symbol} {major:,}.{minor:02d}".replace(",", " ")


def format_datetime(dt: datetime | None) -> str:
    """
    Форматирование даты и времени

    Args:
        dt: Дата (naive UTC)

    Returns:
        Строка "ДД.ММ.ГГГГ ЧЧ:ММ UTC"
    """
    if dt is None:
        return "-"
    return dt.strftime("%d.%m.%Y %H:%M UTC")


def truncate_text(text: str | None, max_length: int = 200) -> str:
    """Обрезка текста для логов и сообщений об ошибках"""
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
