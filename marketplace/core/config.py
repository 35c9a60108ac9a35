"""
Конфигурация приложения из переменных окружения
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()


def _get_int(name: str, default: int) -> int:
    """Чтение целого числа из окружения"""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _get_bool(name: str, default: bool) -> bool:
    """Чтение булева флага из окружения"""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_list(name: str) -> list[str]:
    """Чтение списка через запятую"""
    value = os.getenv(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    """Конфигурация сервиса"""

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOGS_DIR: str = os.getenv("LOGS_DIR", "logs")
    SENTRY_DSN: str | None = os.getenv("SENTRY_DSN")

    # База данных
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "data/marketplace.db")
    DATABASE_URL: str | None = os.getenv("DATABASE_URL")

    # Платёжный шлюз (Paystack)
    PAYSTACK_SECRET_KEY: str = os.getenv("PAYSTACK_SECRET_KEY", "")
    PAYSTACK_BASE_URL: str = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
    PAYMENT_CURRENCY: str = os.getenv("PAYMENT_CURRENCY", "ZAR")
    GATEWAY_TIMEOUT_SECONDS: int = _get_int("GATEWAY_TIMEOUT_SECONDS", 10)

    # Курьеры
    COURIER_API_URLS: list[str] = _get_list("COURIER_API_URLS")
    COURIER_API_KEY: str = os.getenv("COURIER_API_KEY", "")
    COURIER_TIMEOUT_SECONDS: int = _get_int("COURIER_TIMEOUT_SECONDS", 8)

    # Уведомления
    NOTIFICATION_SERVICE_URL: str | None = os.getenv("NOTIFICATION_SERVICE_URL")
    NOTIFICATION_API_KEY: str = os.getenv("NOTIFICATION_API_KEY", "")
    NOTIFICATION_TIMEOUT_SECONDS: int = _get_int("NOTIFICATION_TIMEOUT_SECONDS", 5)
    ADMIN_RECIPIENT: str = os.getenv("ADMIN_RECIPIENT", "admin")  # Получатель служебных уведомлений

    # Финансовые правила
    PLATFORM_COMMISSION_BPS: int = _get_int("PLATFORM_COMMISSION_BPS", 1000)  # 10%
    DELIVERY_FEE_TO_SELLER: bool = _get_bool("DELIVERY_FEE_TO_SELLER", True)

    # Жизненный цикл заказа (часы)
    COMMIT_WINDOW_HOURS: int = _get_int("COMMIT_WINDOW_HOURS", 48)
    COMMIT_REMINDER_HOURS: int = _get_int("COMMIT_REMINDER_HOURS", 24)
    DELIVERY_CONFIRMATION_TIMEOUT_HOURS: int = _get_int("DELIVERY_CONFIRMATION_TIMEOUT_HOURS", 72)

    # Выплаты
    PAYOUT_TRIGGER: str = os.getenv("PAYOUT_TRIGGER", "completed")
    PAYOUT_BATCH_SIZE: int = _get_int("PAYOUT_BATCH_SIZE", 10)
    MAX_PAYOUT_RETRIES: int = _get_int("MAX_PAYOUT_RETRIES", 3)
    PAYOUT_STALE_MINUTES: int = _get_int("PAYOUT_STALE_MINUTES", 30)
    MAX_REFUND_ATTEMPTS: int = _get_int("MAX_REFUND_ATTEMPTS", 3)

    # Интервалы фоновых задач (минуты)
    EXPIRY_SWEEP_INTERVAL_MINUTES: int = _get_int("EXPIRY_SWEEP_INTERVAL_MINUTES", 15)
    PAYOUT_SWEEP_INTERVAL_MINUTES: int = _get_int("PAYOUT_SWEEP_INTERVAL_MINUTES", 10)
    RECONCILE_INTERVAL_MINUTES: int = _get_int("RECONCILE_INTERVAL_MINUTES", 30)
    REMINDER_INTERVAL_MINUTES: int = _get_int("REMINDER_INTERVAL_MINUTES", 60)
    REFUND_RETRY_INTERVAL_MINUTES: int = _get_int("REFUND_RETRY_INTERVAL_MINUTES", 30)

    @classmethod
    def get_database_url(cls) -> str:
        """URL базы данных (DATABASE_URL или SQLite файл)"""
        if cls.DATABASE_URL:
            return cls.DATABASE_URL
        return f"sqlite+aiosqlite:///{cls.DATABASE_PATH}"

    @classmethod
    def validate(cls) -> bool:
        """
        Проверка обязательных настроек

        Returns:
            True если конфигурация корректна

        Raises:
            ValueError: Если не хватает обязательных параметров
        """
        if cls.ENVIRONMENT == "production" and not cls.PAYSTACK_SECRET_KEY:
            raise ValueError("PAYSTACK_SECRET_KEY не установлен")

        if not 0 <= cls.PLATFORM_COMMISSION_BPS <= 10000:
            raise ValueError("PLATFORM_COMMISSION_BPS должен быть в диапазоне 0..10000")

        if cls.PAYOUT_TRIGGER not in ("completed", "delivered", "collected_held"):
            raise ValueError(f"Неизвестный PAYOUT_TRIGGER: {cls.PAYOUT_TRIGGER}")

        if cls.MAX_PAYOUT_RETRIES < 1:
            raise ValueError("MAX_PAYOUT_RETRIES должен быть >= 1")

        return True


@dataclass(frozen=True)
class Settings:
    """
    Снимок настроек, который передаётся в движки явно

    Позволяет тестам конструировать настройки без monkeypatch глобального Config.
    """

    commission_bps: int = 1000
    delivery_fee_to_seller: bool = True
    commit_window_hours: int = 48
    commit_reminder_hours: int = 24
    delivery_confirmation_timeout_hours: int = 72
    payout_trigger: str = "completed"
    payout_batch_size: int = 10
    max_payout_retries: int = 3
    payout_stale_minutes: int = 30
    max_refund_attempts: int = 3
    currency: str = "ZAR"
    sweep_limit: int = 100

    @classmethod
    def from_config(cls) -> "Settings":
        """Построение настроек из Config"""
        return cls(
            commission_bps=Config.PLATFORM_COMMISSION_BPS,
            delivery_fee_to_seller=Config.DELIVERY_FEE_TO_SELLER,
            commit_window_hours=Config.COMMIT_WINDOW_HOURS,
            commit_reminder_hours=Config.COMMIT_REMINDER_HOURS,
            delivery_confirmation_timeout_hours=Config.DELIVERY_CONFIRMATION_TIMEOUT_HOURS,
            payout_trigger=Config.PAYOUT_TRIGGER,
            payout_batch_size=Config.PAYOUT_BATCH_SIZE,
            max_payout_retries=Config.MAX_PAYOUT_RETRIES,
            payout_stale_minutes=Config.PAYOUT_STALE_MINUTES,
            max_refund_attempts=Config.MAX_REFUND_ATTEMPTS,
            currency=Config.PAYMENT_CURRENCY,
        )
