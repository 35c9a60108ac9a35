"""
Периодические проходы по заказам с истекающими сроками

- истечение окна подтверждения продавцом (paid -> expired + возврат)
- напоминание продавцу за COMMIT_REMINDER_HOURS до окончания окна
- автозавершение доставленных заказов без подтверждения покупателя
- повтор неудачных возвратов

Безопасно при параллельном запуске: каждый переход - условная запись,
проигравший гонку заказ считается пропущенным.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from marketplace.core.config import Settings
from marketplace.domain.errors import (
    DeadlinePassedError,
    InvalidTransitionError,
    UpstreamUnavailableError,
)
from marketplace.repositories.order_repository import OrderRepository
from marketplace.services.notifications import NotificationDispatcher
from marketplace.services.order_lifecycle import OrderLifecycleEngine
from marketplace.utils.helpers import format_datetime, get_now, to_naive_utc


logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Итог прохода"""

    expired: int = 0  # Заказов переведено (expired, completed, напомнено, возвращено)
    skipped: int = 0  # Проиграли гонку или уже обработаны
    errors: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.expired


class ExpirySweeper:
    """Фоновые проходы по срокам заказов"""

    def __init__(
        self,
        orders: OrderRepository,
        lifecycle: OrderLifecycleEngine,
        notifier: NotificationDispatcher,
        settings: Settings | None = None,
    ):
        self.orders = orders
        self.lifecycle = lifecycle
        self.notifier = notifier
        self.settings = settings or Settings()

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        """
        Истечение окна подтверждения: paid и commit_deadline < now

        Args:
            now: Время прохода

        Returns:
            SweepResult
        """
        now = self._now(now)
        result = SweepResult()
        candidates = await self.orders.find_expired_commits(now, self.settings.sweep_limit)

        for order in candidates:
            try:
                outcome = await self.lifecycle.expire(order.id, now)
            except InvalidTransitionError as e:
                logger.info(f"Заказ {order.id} не истёк: {e}")
                result.skipped += 1
                continue
            except Exception as e:
                logger.error(f"Ошибка истечения заказа {order.id}: {e}", exc_info=True)
                result.errors.append(f"{order.id}: {e}")
                continue

            if outcome.changed:
                result.expired += 1
                result.errors.extend(f"{order.id}: {error}" for error in outcome.side_effect_errors)
            else:
                result.skipped += 1

        if candidates:
            logger.info(
                f"Проход истечения: истекло {result.expired}, пропущено {result.skipped}, "
                f"ошибок {len(result.errors)}"
            )
        return result

    async def send_commit_reminders(self, now: datetime | None = None) -> SweepResult:
        """Напоминание продавцам, у которых осталось меньше COMMIT_REMINDER_HOURS"""
        now = self._now(now)
        window_end = now + timedelta(hours=self.settings.commit_reminder_hours)
        result = SweepResult()
        candidates = await self.orders.find_commit_reminders_due(
            now, window_end, self.settings.sweep_limit
        )

        for order in candidates:
            if not await self.orders.mark_reminder_sent(order.id, now):
                result.skipped += 1
                continue
            hours_left = max(1, int((order.commit_deadline - now).total_seconds() // 3600))
            self.notifier.dispatch(
                "commit_reminder",
                order.seller_id,
                {
                    "order_short": order.short_id,
                    "hours_left": hours_left,
                    "commit_deadline": format_datetime(order.commit_deadline),
                },
            )
            result.expired += 1

        if result.expired:
            logger.info(f"Отправлено напоминаний о подтверждении: {result.expired}")
        return result

    async def complete_unconfirmed_deliveries(self, now: datetime | None = None) -> SweepResult:
        """Доставленные заказы без подтверждения дольше таймаута -> completed"""
        now = self._now(now)
        cutoff = now - timedelta(hours=self.settings.delivery_confirmation_timeout_hours)
        result = SweepResult()
        candidates = await self.orders.find_unconfirmed_deliveries(cutoff, self.settings.sweep_limit)

        for order in candidates:
            try:
                outcome = await self.lifecycle.auto_complete(order.id, now)
            except (InvalidTransitionError, DeadlinePassedError) as e:
                logger.info(f"Заказ {order.id} не завершён автоматически: {e}")
                result.skipped += 1
                continue
            except Exception as e:
                logger.error(f"Ошибка автозавершения заказа {order.id}: {e}", exc_info=True)
                result.errors.append(f"{order.id}: {e}")
                continue

            if outcome.changed:
                result.expired += 1
                result.errors.extend(f"{order.id}: {error}" for error in outcome.side_effect_errors)
            else:
                result.skipped += 1

        if candidates:
            logger.info(f"Автозавершение доставок: завершено {result.expired}, пропущено {result.skipped}")
        return result

    async def retry_refunds(self) -> SweepResult:
        """Повтор неудачных возвратов (не более MAX_REFUND_ATTEMPTS попыток)"""
        result = SweepResult()
        candidates = await self.orders.find_refunds_due(
            self.settings.max_refund_attempts, self.settings.sweep_limit
        )

        for order in candidates:
            try:
                refunded = await self.lifecycle.initiate_refund(order, "refund retry")
            except UpstreamUnavailableError as e:
                result.errors.append(f"{order.id}: {e}")
                continue

            if refunded:
                result.expired += 1
            else:
                result.skipped += 1

        if candidates:
            logger.info(f"Повтор возвратов: выполнено {result.expired}, не выполнено {result.skipped}")
        return result

    @staticmethod
    def _now(now: datetime | None) -> datetime:
        return to_naive_utc(now) if now is not None else get_now()
