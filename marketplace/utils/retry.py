"""
Retry механизм для HTTP запросов к внешним сервисам с экспоненциальным backoff

Применяется только к идемпотентным вызовам (уведомления, запрос тарифов).
Переводы денег через этот декоратор не проходят.
"""
import asyncio
import logging
from functools import wraps
from typing import Any, Callable, TypeVar

import httpx


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Статусы, при которых повтор имеет смысл
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Исключения, которые можно повторять
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,  # Таймауты соединения/чтения
    httpx.NetworkError,  # Сетевые ошибки
    httpx.RemoteProtocolError,  # Оборванный ответ
)


def _retry_after_seconds(response: httpx.Response) -> float | None:
    """Значение заголовка Retry-After в секундах"""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def retry_on_http_error(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    exceptions: tuple = RETRYABLE_EXCEPTIONS,
) -> Callable:
    """
    Декоратор для повтора HTTP запросов с экспоненциальным backoff

    Функция должна вернуть httpx.Response или бросить httpx исключение.
    При исчерпании попыток или неповторяемой ошибке возвращает None.

    Args:
        max_attempts: Максимальное количество попыток
        base_delay: Базовая задержка между попытками (секунды)
        max_delay: Максимальная задержка между попытками (секунды)
        exponential_base: База для экспоненциального роста задержки
        exceptions: Кортеж исключений для повтора

    Returns:
        Декоратор функции

    Example:
        @retry_on_http_error(max_attempts=5)
        async def send(client, payload):
            return await client.post("/notify", json=payload)
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T | None:
            for attempt in range(1, max_attempts + 1):
                delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)

                try:
                    result = await func(*args, **kwargs)

                except exceptions as e:
                    logger.warning(
                        "%s: %s occurred. Attempt %d/%d. Error: %s",
                        func.__name__,
                        type(e).__name__,
                        attempt,
                        max_attempts,
                        str(e),
                    )
                    if attempt < max_attempts:
                        await asyncio.sleep(delay)
                        continue
                    logger.error(
                        "%s: Max attempts reached. Giving up. Last error: %s",
                        func.__name__,
                        str(e),
                    )
                    return None

                except httpx.HTTPError as e:
                    # Ошибки, которые не имеет смысла повторять
                    logger.error(
                        "%s: Non-retryable error %s: %s. Not retrying.",
                        func.__name__,
                        type(e).__name__,
                        str(e),
                    )
                    return None

                if isinstance(result, httpx.Response) and result.status_code in RETRYABLE_STATUS_CODES:
                    retry_after = _retry_after_seconds(result)
                    wait_time = min(retry_after, max_delay) if retry_after is not None else delay
                    logger.warning(
                        "%s: HTTP %d. Attempt %d/%d",
                        func.__name__,
                        result.status_code,
                        attempt,
                        max_attempts,
                    )
                    if attempt < max_attempts:
                        await asyncio.sleep(wait_time)
                        continue
                    logger.error(
                        "%s: Max attempts reached with HTTP %d. Giving up.",
                        func.__name__,
                        result.status_code,
                    )
                    return None

                return result

            return None

        return wrapper

    return decorator
