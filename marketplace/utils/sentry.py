"""
Опциональная интеграция Sentry для error tracking
"""

import logging
from typing import Any

from marketplace.utils.pii_masking import mask_code


logger = logging.getLogger(__name__)

# Ключи, значения которых нельзя отправлять в Sentry в открытом виде
SENSITIVE_KEYS = frozenset(
    {
        "recipient",
        "recipient_code",
        "seller_recipient_code",
        "payment_reference",
        "authorization",
        "delivery_address",
        "pickup_address",
    }
)


def _scrub(value: Any) -> Any:
    """Рекурсивная очистка словарей от платёжных данных"""
    if isinstance(value, dict):
        return {
            key: (mask_code(str(item)) if key.lower() in SENSITIVE_KEYS else _scrub(item))
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_scrub(item) for item in value]
    return value


def scrub_event(event: dict, hint: dict | None = None) -> dict:
    """before_send хук: маскирует получателей выплат, ссылки и адреса"""
    for section in ("extra", "contexts", "request"):
        if section in event:
            event[section] = _scrub(event[section])
    return event


def init_sentry(dsn: str | None, environment: str = "development") -> str | None:
    """
    Инициализация Sentry для error tracking (опционально)

    Args:
        dsn: Sentry DSN (Config.SENTRY_DSN)
        environment: Окружение (Config.ENVIRONMENT)

    Returns:
        Sentry DSN если успешно, None если Sentry не настроен
    """
    if not dsn:
        logger.info("Sentry DSN не настроен, error tracking отключен")
        return None

    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration

        logging_integration = LoggingIntegration(
            level=logging.INFO,  # Breadcrumbs от INFO
            event_level=logging.ERROR,  # Ошибки выплат и переходов уходят как события
        )

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=0.1,
            integrations=[logging_integration],
            send_default_pii=False,
            before_send=scrub_event,
            attach_stacktrace=True,
            max_breadcrumbs=50,
        )

        logger.info(f"Sentry инициализирован (environment: {environment})")
        return dsn

    except ImportError:
        logger.warning(
            "Sentry SDK не установлен. Установите: pip install -e .[monitoring]"
        )
        return None
