"""
Репозиторий для работы с выплатами продавцам
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from marketplace.core.constants import OrderStatus, PayoutStatus
from marketplace.database.orm_models import Order, PayoutTransaction
from marketplace.repositories.base import BaseRepository
from marketplace.utils.helpers import get_now, new_id, truncate_text


logger = logging.getLogger(__name__)


class PayoutRepository(BaseRepository[PayoutTransaction]):
    """
    Репозиторий выплат

    Единственный писатель таблицы payout_transactions - движок выплат.
    Захват выплаты (pending -> processing) условный: из двух конкурентных
    воркеров запись получает ровно один.
    """

    # ===== СОЗДАНИЕ И ЧТЕНИЕ =====

    async def create_for_order(self, order: Order, amount: int) -> PayoutTransaction:
        """
        Создание выплаты для заказа (идемпотентно)

        Args:
            order: Заказ, ставший доступным для выплаты
            amount: Сумма выплаты в минимальных единицах

        Returns:
            Новая или уже существующая выплата
        """
        payout = PayoutTransaction(
            id=new_id(),
            order_id=order.id,
            seller_id=order.seller_id,
            amount=amount,
            status=PayoutStatus.PENDING,
            retry_count=0,
        )
        try:
            async with self.session() as session:
                session.add(payout)
        except IntegrityError:
            existing = await self.get_by_order_id(order.id)
            if existing is None:
                raise
            logger.debug(f"Выплата для заказа {order.id} уже существует: {existing.id}")
            return existing

        logger.info(f"Выплата {payout.id} поставлена в очередь для заказа {order.id}")
        return payout

    async def get_by_id(self, payout_id: str) -> PayoutTransaction | None:
        """Получение выплаты по ID"""
        async with self.session() as session:
            return await session.get(PayoutTransaction, payout_id)

    async def get_by_order_id(self, order_id: str) -> PayoutTransaction | None:
        """Получение выплаты по ID заказа"""
        async with self.session() as session:
            result = await session.execute(
                select(PayoutTransaction).where(PayoutTransaction.order_id == order_id)
            )
            return result.scalar_one_or_none()

    async def get_by_transfer_reference(self, reference: str) -> PayoutTransaction | None:
        """Поиск выплаты по ссылке перевода (для webhook)"""
        async with self.session() as session:
            result = await session.execute(
                select(PayoutTransaction).where(PayoutTransaction.transfer_reference == reference)
            )
            return result.scalar_one_or_none()

    async def list_ids_by_status(
        self, status: str, limit: int = 10, exclude_disputed: bool = True
    ) -> list[str]:
        """
        ID выплат в статусе, давно не изменявшиеся первыми

        Args:
            status: PayoutStatus
            limit: Размер пачки
            exclude_disputed: Пропускать выплаты по заказам в споре
        """
        stmt = select(PayoutTransaction.id).where(PayoutTransaction.status == status)
        if exclude_disputed:
            stmt = stmt.join(Order, Order.id == PayoutTransaction.order_id).where(
                Order.status != OrderStatus.DISPUTED
            )
        # Отложенные выплаты (release) уходят в конец очереди
        stmt = stmt.order_by(PayoutTransaction.updated_at, PayoutTransaction.created_at).limit(limit)

        async with self.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_by_status(self, status: str, limit: int = 100) -> list[PayoutTransaction]:
        """Выплаты в указанном статусе"""
        async with self.session() as session:
            result = await session.execute(
                select(PayoutTransaction)
                .where(PayoutTransaction.status == status)
                .order_by(PayoutTransaction.updated_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_for_seller(self, seller_id: str, limit: int = 50) -> list[PayoutTransaction]:
        """История выплат продавца, новые первыми"""
        async with self.session() as session:
            result = await session.execute(
                select(PayoutTransaction)
                .where(PayoutTransaction.seller_id == seller_id)
                .order_by(PayoutTransaction.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_stale_processing(
        self, cutoff: datetime, limit: int = 100
    ) -> list[PayoutTransaction]:
        """Выплаты, зависшие в processing дольше cutoff"""
        async with self.session() as session:
            result = await session.execute(
                select(PayoutTransaction)
                .where(
                    PayoutTransaction.status == PayoutStatus.PROCESSING,
                    PayoutTransaction.claimed_at < cutoff,
                )
                .order_by(PayoutTransaction.claimed_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def stats(self) -> dict[str, dict[str, int]]:
        """
        Статистика очереди выплат

        Returns:
            {status: {"count": N, "amount": сумма}} для всех статусов
        """
        async with self.session() as session:
            result = await session.execute(
                select(
                    PayoutTransaction.status,
                    func.count(PayoutTransaction.id),
                    func.coalesce(func.sum(PayoutTransaction.amount), 0),
                ).group_by(PayoutTransaction.status)
            )
            rows = result.all()

        stats = {status: {"count": 0, "amount": 0} for status in PayoutStatus.all_statuses()}
        for status, count, amount in rows:
            stats[status] = {"count": int(count), "amount": int(amount)}
        return stats

    # ===== УСЛОВНЫЕ ПЕРЕХОДЫ =====

    async def _conditional_update(
        self, payout_id: str, expected_status: str, values: dict[str, Any], *conditions
    ) -> bool:
        """UPDATE ... WHERE id = ? AND status = ? с проверкой rowcount"""
        stmt = (
            update(PayoutTransaction)
            .where(
                PayoutTransaction.id == payout_id,
                PayoutTransaction.status == expected_status,
                *conditions,
            )
            .values(updated_at=get_now(), **values)
            .execution_options(synchronize_session=False)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
            return self._affected(result) == 1

    async def claim(self, payout_id: str, transfer_reference: str, now: datetime | None = None) -> bool:
        """
        Захват выплаты воркером (pending -> processing)

        Args:
            payout_id: ID выплаты
            transfer_reference: Ссылка перевода для этой попытки
            now: Время захвата

        Returns:
            True если выплату захватил этот вызов
        """
        claimed = await self._conditional_update(
            payout_id,
            PayoutStatus.PENDING,
            {
                "status": PayoutStatus.PROCESSING,
                "transfer_reference": transfer_reference,
                "transfer_code": None,
                "claimed_at": now or get_now(),
            },
        )
        if claimed:
            logger.debug(f"Выплата {payout_id} захвачена ({transfer_reference})")
        return claimed

    async def release(self, payout_id: str, note: str | None = None) -> bool:
        """Возврат захваченной выплаты в очередь без списания попытки"""
        return await self._conditional_update(
            payout_id,
            PayoutStatus.PROCESSING,
            {"status": PayoutStatus.PENDING, "claimed_at": None, "error_message": note},
        )

    async def mark_accepted(self, payout_id: str, transfer_code: str | None) -> bool:
        """Шлюз принял перевод, итог ещё не известен: остаёмся в processing"""
        return await self._conditional_update(
            payout_id,
            PayoutStatus.PROCESSING,
            {"transfer_code": transfer_code, "error_message": None},
        )

    async def record_ambiguous(self, payout_id: str, error: str) -> bool:
        """Исход перевода неизвестен: остаёмся в processing до сверки"""
        return await self._conditional_update(
            payout_id,
            PayoutStatus.PROCESSING,
            {"error_message": truncate_text(error, 500)},
        )

    async def complete(
        self,
        payout_id: str,
        transfer_code: str | None = None,
        requires_review: bool = False,
        now: datetime | None = None,
    ) -> bool:
        """
        Успешное завершение выплаты (processing -> completed)

        Returns:
            True если статус изменён этим вызовом
        """
        values: dict[str, Any] = {
            "status": PayoutStatus.COMPLETED,
            "processed_at": now or get_now(),
            "error_message": None,
        }
        if transfer_code:
            values["transfer_code"] = transfer_code
        if requires_review:
            values["requires_review"] = True
        return await self._conditional_update(payout_id, PayoutStatus.PROCESSING, values)

    async def record_failure(self, payout_id: str, error: str, max_retries: int) -> str | None:
        """
        Неудачная попытка перевода: retry_count += 1, failed при исчерпании попыток

        Args:
            payout_id: ID выплаты
            error: Текст ошибки
            max_retries: Максимум попыток

        Returns:
            Новый статус выплаты или None, если выплату уже изменил другой процесс
        """
        payout = await self.get_by_id(payout_id)
        if payout is None or payout.status != PayoutStatus.PROCESSING:
            return None

        retry_count = payout.retry_count + 1
        new_status = PayoutStatus.FAILED if retry_count >= max_retries else PayoutStatus.PENDING
        values: dict[str, Any] = {
            "status": new_status,
            "retry_count": retry_count,
            "error_message": truncate_text(error, 500),
            "claimed_at": None,
        }
        if new_status == PayoutStatus.FAILED:
            values["processed_at"] = get_now()

        updated = await self._conditional_update(
            payout_id,
            PayoutStatus.PROCESSING,
            values,
            PayoutTransaction.retry_count == payout.retry_count,
        )
        if not updated:
            return None

        logger.warning(
            f"Выплата {payout_id}: попытка {retry_count}/{max_retries} неудачна, "
            f"статус {new_status}: {truncate_text(error, 100)}"
        )
        return new_status

    async def retire(
        self, payout_id: str, expected_status: str, reason: str, now: datetime | None = None
    ) -> bool:
        """
        Снятие выплаты с очереди без перевода (-> failed, requires_review)

        Попытка не списывается: перевод не инициировался.

        Returns:
            True если статус изменён этим вызовом
        """
        retired = await self._conditional_update(
            payout_id,
            expected_status,
            {
                "status": PayoutStatus.FAILED,
                "requires_review": True,
                "error_message": truncate_text(reason, 500),
                "processed_at": now or get_now(),
                "claimed_at": None,
            },
        )
        if retired:
            logger.warning(f"Выплата {payout_id} снята с очереди: {reason}")
        return retired

    async def requeue_failed(self, payout_id: str) -> bool:
        """
        Ручной перезапуск выплаты из failed

        Счётчик попыток не сбрасывается: ссылка перевода строится из него и
        должна оставаться уникальной. Перезапуск даёт ровно одну попытку.
        """
        requeued = await self._conditional_update(
            payout_id,
            PayoutStatus.FAILED,
            {
                "status": PayoutStatus.PENDING,
                "error_message": None,
                "processed_at": None,
                "claimed_at": None,
            },
        )
        if requeued:
            logger.info(f"Выплата {payout_id} возвращена в очередь вручную")
        return requeued
