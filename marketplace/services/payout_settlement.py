"""
Движок выплат продавцам

Очередь - строки payout_transactions со статусом pending. Каждая выплата
захватывается условным UPDATE (pending -> processing), поэтому два воркера
никогда не обрабатывают одну выплату. Повтор перевода допускается только
если инициация точно не состоялась; неоднозначный исход (таймаут, 5xx)
оставляет выплату в processing до сверки со шлюзом.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from marketplace.core.config import Settings
from marketplace.core.constants import OrderStatus, PayoutStatus, TransferState
from marketplace.database.orm_models import Order, PayoutTransaction
from marketplace.domain.commission import calculate_payout_amount
from marketplace.domain.errors import GatewayRequestNotSentError, UpstreamUnavailableError
from marketplace.domain.payout_policy import PayoutEligibility
from marketplace.repositories.exceptions import EntityNotFoundError
from marketplace.repositories.order_repository import OrderRepository
from marketplace.repositories.payout_repository import PayoutRepository
from marketplace.services.notifications import NotificationDispatcher
from marketplace.services.payment_gateway import TransferResult
from marketplace.utils.helpers import (
    format_amount,
    generate_transfer_reference,
    get_now,
    to_naive_utc,
    truncate_text,
)
from marketplace.utils.pii_masking import mask_code


logger = logging.getLogger(__name__)

TRANSFER_SUCCESS_EVENT = "transfer.success"
TRANSFER_FAILED_EVENTS = frozenset({"transfer.failed", "transfer.reversed"})


@dataclass
class PayoutBatchResult:
    """Итог обработки пачки выплат"""

    processed: int = 0  # Переводы завершены успешно
    accepted: int = 0  # Шлюз принял перевод, итог позже
    failed: int = 0  # Неудачные попытки инициации
    ambiguous: int = 0  # Исход неизвестен, ждём сверки
    skipped: int = 0  # Захвачены другим воркером или отложены
    errors: list[str] = field(default_factory=list)


@dataclass
class ReconcileResult:
    """Итог сверки зависших выплат"""

    checked: int = 0
    completed: int = 0
    failed: int = 0
    unresolved: int = 0


class PayoutSettlementEngine:
    """Движок выплат"""

    def __init__(
        self,
        payouts: PayoutRepository,
        orders: OrderRepository,
        gateway: Any,
        notifier: NotificationDispatcher,
        settings: Settings | None = None,
    ):
        """
        Args:
            payouts: Репозиторий выплат
            orders: Репозиторий заказов
            gateway: Клиент платёжного шлюза
            notifier: Диспетчер уведомлений
            settings: Настройки (триггер выплаты, лимит попыток)
        """
        self.payouts = payouts
        self.orders = orders
        self.gateway = gateway
        self.notifier = notifier
        self.settings = settings or Settings()
        self.eligibility = PayoutEligibility(self.settings.payout_trigger)

    # ===== ДОПУСК И ПОСТАНОВКА В ОЧЕРЕДЬ =====

    def is_payout_eligible(self, order: Order) -> bool:
        """Допускается ли заказ к выплате"""
        return order.payout_completed_at is None and self.eligibility(order)

    def payout_amount(self, order: Order) -> int:
        """Сумма выплаты продавцу"""
        return calculate_payout_amount(
            order.seller_amount, order.delivery_fee, self.settings.delivery_fee_to_seller
        )

    async def enqueue_for_order(self, order: Order) -> PayoutTransaction | None:
        """
        Постановка выплаты в очередь (идемпотентно)

        Статус заказа перечитывается: переданный объект мог устареть.

        Returns:
            Выплата или None, если заказ не допускается к выплате
        """
        current = await self.orders.get_by_id(order.id)
        if current is None or not self.is_payout_eligible(current):
            logger.debug(f"Заказ {order.id} не допускается к выплате")
            return None
        return await self.payouts.create_for_order(current, self.payout_amount(current))

    async def enqueue_eligible_orders(self, limit: int | None = None) -> int:
        """
        Создание выплат для всех допущенных заказов без выплаты

        Returns:
            Количество поставленных в очередь
        """
        candidates = await self.orders.find_payout_eligible_without_payout(
            self.eligibility.statuses, limit or self.settings.sweep_limit
        )
        enqueued = 0
        for order in candidates:
            if not self.is_payout_eligible(order):
                continue
            await self.payouts.create_for_order(order, self.payout_amount(order))
            enqueued += 1
        if enqueued:
            logger.info(f"Поставлено в очередь выплат: {enqueued}")
        return enqueued

    # ===== ОБРАБОТКА ОЧЕРЕДИ =====

    async def process_queue(
        self, batch_size: int | None = None, now: datetime | None = None
    ) -> PayoutBatchResult:
        """
        Обработка пачки pending выплат

        Args:
            batch_size: Размер пачки (по умолчанию из настроек)
            now: Время захвата

        Returns:
            PayoutBatchResult
        """
        result = PayoutBatchResult()
        payout_ids = await self.payouts.list_ids_by_status(
            PayoutStatus.PENDING, batch_size or self.settings.payout_batch_size
        )
        for payout_id in payout_ids:
            try:
                await self._process_one(payout_id, result, self._now(now))
            except Exception as e:
                logger.error(f"Ошибка обработки выплаты {payout_id}: {e}", exc_info=True)
                result.errors.append(f"{payout_id}: {e}")

        if payout_ids:
            logger.info(
                f"Пачка выплат: выполнено {result.processed}, принято {result.accepted}, "
                f"неудачно {result.failed}, неоднозначно {result.ambiguous}, пропущено {result.skipped}"
            )
        return result

    async def _process_one(self, payout_id: str, result: PayoutBatchResult, now: datetime) -> None:
        payout = await self.payouts.get_by_id(payout_id)
        if payout is None or payout.status != PayoutStatus.PENDING:
            result.skipped += 1
            return

        reference = generate_transfer_reference(payout.order_id, payout.retry_count + 1)
        if not await self.payouts.claim(payout_id, reference, now):
            logger.debug(f"Выплата {payout_id} захвачена другим воркером")
            result.skipped += 1
            return

        order = await self.orders.get_by_id(payout.order_id)
        if order is None:
            await self._record_failed_attempt(payout, None, "заказ не найден", result)
            return

        if order.status == OrderStatus.DISPUTED:
            await self.payouts.release(payout_id, "заказ в споре, выплата отложена")
            logger.info(f"Выплата {payout_id}: заказ {order.id} в споре, захват снят")
            result.skipped += 1
            return

        if not self.eligibility(order):
            if OrderStatus.is_terminal(order.status):
                await self._retire(payout, order, PayoutStatus.PROCESSING, now)
                result.skipped += 1
                return
            await self.payouts.release(payout_id, f"заказ в статусе {order.status}")
            logger.warning(f"Выплата {payout_id}: заказ {order.id} больше не допускается к выплате")
            result.skipped += 1
            return

        if order.payout_completed_at is not None:
            logger.warning(f"Выплата по заказу {order.id} уже отмечена выполненной")
            await self.payouts.complete(payout_id, now=now)
            result.skipped += 1
            return

        if not order.seller_recipient_code:
            await self._record_failed_attempt(payout, order, "у продавца нет получателя выплат", result)
            return

        try:
            transfer = await self.gateway.initiate_transfer(
                order.seller_recipient_code,
                payout.amount,
                reference,
                reason=f"Payout for order {order.short_id}",
            )
        except GatewayRequestNotSentError as e:
            await self._record_failed_attempt(payout, order, str(e), result)
            return
        except UpstreamUnavailableError as e:
            await self.payouts.record_ambiguous(payout_id, f"Исход перевода неизвестен: {e}")
            logger.warning(f"Выплата {payout_id}: исход перевода {reference} неизвестен, ждём сверки")
            result.ambiguous += 1
            return

        await self._apply_transfer_result(payout, order, transfer, result)

    async def cancel_for_order(self, order: Order, now: datetime | None = None) -> bool:
        """
        Снятие ожидающей выплаты, когда заказ завершился без права на выплату

        Выплата в processing не трогается: её исход решает обработка или сверка.

        Returns:
            True если выплата снята этим вызовом
        """
        payout = await self.payouts.get_by_order_id(order.id)
        if payout is None or payout.status != PayoutStatus.PENDING:
            return False
        return await self._retire(payout, order, PayoutStatus.PENDING, self._now(now))

    async def _retire(
        self, payout: PayoutTransaction, order: Order, expected_status: str, now: datetime
    ) -> bool:
        retired = await self.payouts.retire(
            payout.id, expected_status, f"заказ в статусе {order.status}, выплата не положена", now
        )
        if retired:
            self.notifier.notify_admin(
                "payout_cancelled", {"order_short": order.short_id, "status": order.status}
            )
        return retired

    async def _apply_transfer_result(
        self,
        payout: PayoutTransaction,
        order: Order,
        transfer: TransferResult,
        result: PayoutBatchResult,
    ) -> None:
        if transfer.status == TransferState.SUCCESS:
            if await self._finalize_success(payout, transfer.transfer_code):
                result.processed += 1
            return

        if transfer.status == TransferState.PENDING:
            await self.payouts.mark_accepted(payout.id, transfer.transfer_code)
            logger.info(
                f"Выплата {payout.id}: перевод принят шлюзом ({transfer.transfer_code}), "
                "ожидаем подтверждения"
            )
            result.accepted += 1
            return

        await self._record_failed_attempt(
            payout, order, transfer.message or f"перевод отклонён: {transfer.status}", result
        )

    async def _finalize_success(self, payout: PayoutTransaction, transfer_code: str | None) -> bool:
        """
        Завершение выплаты после подтверждения шлюзом

        Если заказ попал в спор уже после захвата, выплата всё равно
        фиксируется (деньги ушли), но помечается для проверки.
        """
        order = await self.orders.get_by_id(payout.order_id)
        requires_review = order is not None and order.status == OrderStatus.DISPUTED

        completed = await self.payouts.complete(
            payout.id, transfer_code=transfer_code, requires_review=requires_review
        )
        if not completed:
            logger.info(f"Выплата {payout.id} уже завершена другим процессом")
            return False

        await self.orders.mark_payout_completed(payout.order_id)
        logger.info(
            f"Выплата {payout.id} по заказу {payout.order_id} выполнена "
            f"({mask_code(transfer_code)}), сумма {payout.amount}"
        )

        if order is not None:
            variables = {
                "order_short": order.short_id,
                "amount": format_amount(payout.amount, order.currency),
                "transfer_code": transfer_code or "-",
            }
            self.notifier.dispatch("payout_completed", payout.seller_id, variables)
            if requires_review:
                logger.warning(f"Выплата {payout.id} выполнена во время спора по заказу {order.id}")
                self.notifier.notify_admin("payout_review_required", variables)
        return True

    async def _record_failed_attempt(
        self,
        payout: PayoutTransaction,
        order: Order | None,
        error: str,
        result: PayoutBatchResult | None = None,
    ) -> str | None:
        """Неудачная инициация перевода: списание попытки"""
        new_status = await self.payouts.record_failure(
            payout.id, error, self.settings.max_payout_retries
        )
        if result is not None:
            result.failed += 1
            result.errors.append(f"{payout.id}: {truncate_text(error, 100)}")

        if new_status == PayoutStatus.FAILED:
            logger.error(
                f"Выплата {payout.id} по заказу {payout.order_id} переведена в failed "
                f"после {self.settings.max_payout_retries} попыток: {error}"
            )
            self.notifier.notify_admin(
                "payout_failed",
                {
                    "order_short": order.short_id if order else payout.order_id[:8],
                    "attempts": self.settings.max_payout_retries,
                    "error": truncate_text(error, 200),
                },
            )
        return new_status

    # ===== СВЕРКА И WEBHOOK =====

    async def reconcile_stale(
        self, stale_after: timedelta | None = None, now: datetime | None = None
    ) -> ReconcileResult:
        """
        Сверка выплат, зависших в processing

        Перед любым повтором статус перевода запрашивается у шлюза по коду
        или по нашей ссылке, чтобы не перевести деньги дважды.
        """
        now = self._now(now)
        stale_after = stale_after or timedelta(minutes=self.settings.payout_stale_minutes)
        stale = await self.payouts.find_stale_processing(now - stale_after, self.settings.sweep_limit)
        result = ReconcileResult()

        for payout in stale:
            result.checked += 1
            try:
                if payout.transfer_code:
                    transfer = await self.gateway.get_transfer_status(payout.transfer_code)
                elif payout.transfer_reference:
                    transfer = await self.gateway.verify_transfer(payout.transfer_reference)
                else:
                    transfer = TransferResult(TransferState.NOT_FOUND)
            except UpstreamUnavailableError as e:
                logger.warning(f"Сверка выплаты {payout.id} отложена: {e}")
                result.unresolved += 1
                continue

            if transfer.status == TransferState.SUCCESS:
                if await self._finalize_success(payout, transfer.transfer_code or payout.transfer_code):
                    result.completed += 1
            elif transfer.status in (TransferState.FAILED, TransferState.NOT_FOUND):
                order = await self.orders.get_by_id(payout.order_id)
                await self._record_failed_attempt(
                    payout, order, transfer.message or f"сверка: перевод {transfer.status}"
                )
                result.failed += 1
            else:
                result.unresolved += 1

        if stale:
            logger.info(
                f"Сверка выплат: проверено {result.checked}, завершено {result.completed}, "
                f"неудачно {result.failed}, без изменений {result.unresolved}"
            )
        return result

    async def handle_transfer_event(self, event: str, data: dict[str, Any]) -> bool:
        """
        Обработка webhook шлюза о переводе

        Args:
            event: transfer.success | transfer.failed | transfer.reversed
            data: Данные события (reference, transfer_code, reason)

        Returns:
            True если событие изменило выплату
        """
        reference = data.get("reference")
        if not reference:
            logger.warning(f"Webhook {event} без reference")
            return False

        payout = await self.payouts.get_by_transfer_reference(str(reference))
        if payout is None:
            logger.warning(f"Webhook {event}: выплата с ссылкой {reference} не найдена")
            return False

        if payout.status != PayoutStatus.PROCESSING:
            if payout.status == PayoutStatus.COMPLETED and event == "transfer.reversed":
                logger.error(f"Перевод по выплате {payout.id} отозван после завершения")
                self.notifier.notify_admin(
                    "payout_review_required", {"order_short": payout.order_id[:8]}
                )
            else:
                logger.debug(f"Webhook {event} для выплаты {payout.id} в статусе {payout.status} пропущен")
            return False

        if event == TRANSFER_SUCCESS_EVENT:
            return await self._finalize_success(payout, data.get("transfer_code") or payout.transfer_code)

        if event in TRANSFER_FAILED_EVENTS:
            order = await self.orders.get_by_id(payout.order_id)
            reason = data.get("reason") or event
            return await self._record_failed_attempt(payout, order, str(reason)) is not None

        logger.debug(f"Webhook {event} не обрабатывается")
        return False

    # ===== АДМИНИСТРИРОВАНИЕ =====

    async def requeue_failed(self, payout_id: str) -> bool:
        """
        Ручной перезапуск выплаты из failed

        Raises:
            EntityNotFoundError: Выплата не найдена
        """
        payout = await self.payouts.get_by_id(payout_id)
        if payout is None:
            raise EntityNotFoundError("PayoutTransaction", payout_id)
        return await self.payouts.requeue_failed(payout_id)

    async def get_queue_stats(self) -> dict[str, dict[str, int]]:
        """Статистика очереди выплат по статусам"""
        return await self.payouts.stats()

    async def get_failed_payouts(self, limit: int = 100) -> list[PayoutTransaction]:
        """Выплаты, требующие ручного вмешательства"""
        return await self.payouts.list_by_status(PayoutStatus.FAILED, limit)

    async def get_seller_payout_history(self, seller_id: str, limit: int = 50) -> list[PayoutTransaction]:
        """История выплат продавца"""
        return await self.payouts.list_for_seller(seller_id, limit)

    @staticmethod
    def _now(now: datetime | None) -> datetime:
        return to_naive_utc(now) if now is not None else get_now()
