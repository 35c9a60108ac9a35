"""
Планировщик фоновых задач
"""

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from marketplace.core.config import Config


if TYPE_CHECKING:
    from marketplace.services.service_factory import ServiceFactory


logger = logging.getLogger(__name__)


class TaskScheduler:
    """
    Планировщик фоновых проходов по заказам и выплатам

    max_instances=1 и coalesce=True исключают наложение задачи на себя в
    одном процессе; между процессами наложение безопасно за счёт условных
    обновлений в хранилище.
    """

    def __init__(self, services: "ServiceFactory"):
        """
        Инициализация планировщика

        Args:
            services: Фабрика сервисов (общие движки и репозитории)
        """
        self.services = services
        self.scheduler = AsyncIOScheduler()

    def _add_interval_job(self, func, minutes: int, job_id: str, name: str) -> None:
        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=minutes),
            id=job_id,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def register_jobs(self) -> None:
        """Регистрация всех задач"""
        # Истечение окна подтверждения продавцом
        self._add_interval_job(
            self.run_expiry_sweep,
            Config.EXPIRY_SWEEP_INTERVAL_MINUTES,
            "expiry_sweep",
            "Истечение окна подтверждения",
        )

        # Очередь выплат
        self._add_interval_job(
            self.run_payout_queue,
            Config.PAYOUT_SWEEP_INTERVAL_MINUTES,
            "payout_queue",
            "Обработка очереди выплат",
        )

        # Сверка зависших выплат со шлюзом
        self._add_interval_job(
            self.run_payout_reconciliation,
            Config.RECONCILE_INTERVAL_MINUTES,
            "payout_reconciliation",
            "Сверка зависших выплат",
        )

        # Напоминания продавцам
        self._add_interval_job(
            self.send_commit_reminders,
            Config.REMINDER_INTERVAL_MINUTES,
            "commit_reminders",
            "Напоминания о подтверждении заказа",
        )

        # Автозавершение доставленных заказов
        self._add_interval_job(
            self.complete_unconfirmed_deliveries,
            Config.REMINDER_INTERVAL_MINUTES,
            "delivery_auto_complete",
            "Автозавершение доставленных заказов",
        )

        # Повтор неудачных возвратов
        self._add_interval_job(
            self.retry_refunds,
            Config.REFUND_RETRY_INTERVAL_MINUTES,
            "refund_retry",
            "Повтор неудачных возвратов",
        )

    async def start(self):
        """Запуск планировщика"""
        self.register_jobs()
        self.scheduler.start()
        logger.info("Планировщик задач запущен")

    async def stop(self):
        """Остановка планировщика"""
        self.scheduler.shutdown(wait=True)  # Ждем завершения всех джоб
        logger.info("Планировщик задач остановлен")

    async def run_expiry_sweep(self):
        """Проход истечения окна подтверждения"""
        try:
            result = await self.services.expiry_sweeper.sweep()
            if result.errors:
                logger.warning(f"Проход истечения завершён с ошибками: {len(result.errors)}")
        except Exception as e:
            logger.error(f"Ошибка прохода истечения: {e}", exc_info=True)

    async def run_payout_queue(self):
        """Постановка допущенных заказов в очередь и обработка пачки выплат"""
        try:
            await self.services.payout_engine.enqueue_eligible_orders()
            await self.services.payout_engine.process_queue()
        except Exception as e:
            logger.error(f"Ошибка обработки очереди выплат: {e}", exc_info=True)

    async def run_payout_reconciliation(self):
        """Сверка выплат, зависших в processing"""
        try:
            await self.services.payout_engine.reconcile_stale()
        except Exception as e:
            logger.error(f"Ошибка сверки выплат: {e}", exc_info=True)

    async def send_commit_reminders(self):
        """Напоминания продавцам о подтверждении"""
        try:
            await self.services.expiry_sweeper.send_commit_reminders()
        except Exception as e:
            logger.error(f"Ошибка отправки напоминаний: {e}", exc_info=True)

    async def complete_unconfirmed_deliveries(self):
        """Автозавершение доставок без подтверждения"""
        try:
            await self.services.expiry_sweeper.complete_unconfirmed_deliveries()
        except Exception as e:
            logger.error(f"Ошибка автозавершения доставок: {e}", exc_info=True)

    async def retry_refunds(self):
        """Повтор неудачных возвратов"""
        try:
            await self.services.expiry_sweeper.retry_refunds()
        except Exception as e:
            logger.error(f"Ошибка повтора возвратов: {e}", exc_info=True)
