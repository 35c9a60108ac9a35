"""
Фоновый процесс ядра маркетплейса: истечение заказов, выплаты, возвраты
"""

import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from marketplace.core.config import Config
from marketplace.database import ORMDatabase
from marketplace.services.scheduler import TaskScheduler
from marketplace.services.service_factory import ServiceFactory
from marketplace.utils.sentry import init_sentry


"""
Логирование:
- Пишем в LOGS_DIR/marketplace.log с ротацией
- Если нет прав на запись (напр., read-only volume), остаёмся только с консолью
"""

log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setFormatter(log_formatter)
if hasattr(console_handler.stream, "reconfigure"):
    console_handler.stream.reconfigure(encoding="utf-8")

handlers: list[logging.Handler] = [console_handler]

log_file_path = Path(Config.LOGS_DIR) / "marketplace.log"
try:
    log_file_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        str(log_file_path),
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(log_formatter)
    handlers.insert(0, file_handler)
except (PermissionError, OSError) as e:
    sys.stderr.write(f"[logging] WARNING: cannot use file logging at {log_file_path}: {e}\n")

log_level = getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO)
logging.basicConfig(level=log_level, handlers=handlers)

# Шумные библиотеки
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("aiosqlite").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    """SIGINT/SIGTERM останавливают основной цикл"""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: остаётся KeyboardInterrupt
            pass


async def main():
    """Основная функция запуска воркера"""

    db = None
    services = None
    scheduler = None

    try:
        init_sentry(Config.SENTRY_DSN, Config.ENVIRONMENT)

        try:
            Config.validate()
        except ValueError as e:
            logger.error("Ошибка конфигурации: %s", e)
            sys.exit(1)

        db = ORMDatabase()
        await db.connect()

        services = ServiceFactory(db)
        scheduler = TaskScheduler(services)
        await scheduler.start()

        logger.info(
            "Воркер запущен (environment=%s, payout_trigger=%s)",
            Config.ENVIRONMENT,
            Config.PAYOUT_TRIGGER,
        )

        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)
        await stop_event.wait()
        logger.info("Получен сигнал остановки")

    except KeyboardInterrupt:
        logger.info("Получен сигнал остановки (Ctrl+C)")
    except Exception as e:
        logger.exception("Критическая ошибка: %s", e)
    finally:
        logger.info("Начало процедуры остановки...")

        if scheduler:
            try:
                await scheduler.stop()
            except Exception as e:
                logger.error("Ошибка при остановке scheduler: %s", e)

        # Дожидаемся отправки уведомлений до закрытия HTTP клиентов
        if services:
            try:
                await services.close()
            except Exception as e:
                logger.error("Ошибка при закрытии клиентов: %s", e)

        if db:
            try:
                await db.disconnect()
            except Exception as e:
                logger.error("Ошибка при отключении БД: %s", e)

        logger.info("Воркер полностью остановлен")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Воркер остановлен пользователем")
    except Exception as e:
        logger.critical("Неожиданная ошибка: %s", e)
        sys.exit(1)
