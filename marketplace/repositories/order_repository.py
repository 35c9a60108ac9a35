"""
Репозиторий для работы с заказами

Все смены статуса идут через условное обновление
UPDATE ... WHERE id = ? AND status = ?, поэтому конкурирующие переходы
одного заказа линеаризуются на уровне хранилища.
"""

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import and_, select, update
from sqlalchemy.sql.elements import ColumnElement

from marketplace.core.constants import OrderStatus, RefundStatus
from marketplace.database.orm_models import (
    Order,
    OrderItem,
    OrderStatusHistory,
    PayoutTransaction,
)
from marketplace.repositories.base import BaseRepository
from marketplace.utils.helpers import get_now


logger = logging.getLogger(__name__)

# Статусы, в которых заказу может потребоваться возврат денег покупателю
REFUNDABLE_STATUSES = (OrderStatus.CANCELLED, OrderStatus.EXPIRED, OrderStatus.REFUNDED)


class OrderRepository(BaseRepository[Order]):
    """Репозиторий для работы с заказами"""

    # ===== СОЗДАНИЕ И ЧТЕНИЕ =====

    async def create_many(self, orders: list[Order]) -> list[Order]:
        """
        Создание заказов одного оформления в одной транзакции

        Args:
            orders: Заказы со статусом pending и позициями

        Returns:
            Сохранённые заказы
        """
        now = get_now()
        async with self.session() as session:
            for order in orders:
                session.add(order)
                session.add(
                    OrderStatusHistory(
                        order_id=order.id,
                        old_status=None,
                        new_status=order.status,
                        event="order_created",
                        actor_id=order.buyer_id,
                        changed_at=now,
                    )
                )
            await session.flush()

        logger.info(f"Создано заказов: {len(orders)}")
        return orders

    async def get_by_id(self, order_id: str) -> Order | None:
        """
        Получение заказа по ID (с позициями)

        Args:
            order_id: ID заказа

        Returns:
            Order или None
        """
        async with self.session() as session:
            result = await session.execute(select(Order).where(Order.id == order_id))
            return result.scalar_one_or_none()

    async def get_by_payment_reference(self, reference: str) -> Order | None:
        """Получение заказа по ключу идемпотентности платежа"""
        async with self.session() as session:
            result = await session.execute(
                select(Order).where(Order.payment_reference == reference)
            )
            return result.scalar_one_or_none()

    async def get_status_history(self, order_id: str) -> list[OrderStatusHistory]:
        """История переходов заказа в хронологическом порядке"""
        async with self.session() as session:
            result = await session.execute(
                select(OrderStatusHistory)
                .where(OrderStatusHistory.order_id == order_id)
                .order_by(OrderStatusHistory.changed_at, OrderStatusHistory.id)
            )
            return list(result.scalars().all())

    # ===== ВЫБОРКИ ДЛЯ ПРОДАВЦА И ФОНОВЫХ ЗАДАЧ =====

    async def get_pending_commits(self, seller_id: str) -> list[Order]:
        """
        Оплаченные заказы продавца, ожидающие подтверждения

        Args:
            seller_id: ID продавца

        Returns:
            Заказы, отсортированные по сроку подтверждения
        """
        async with self.session() as session:
            result = await session.execute(
                select(Order)
                .where(Order.seller_id == seller_id, Order.status == OrderStatus.PAID)
                .order_by(Order.commit_deadline)
            )
            return list(result.scalars().all())

    async def find_expired_commits(self, now: datetime, limit: int = 100) -> list[Order]:
        """Оплаченные заказы с истёкшим окном подтверждения"""
        async with self.session() as session:
            result = await session.execute(
                select(Order)
                .where(
                    Order.status == OrderStatus.PAID,
                    Order.commit_deadline.is_not(None),
                    Order.commit_deadline < now,
                )
                .order_by(Order.commit_deadline)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_commit_reminders_due(
        self, now: datetime, window_end: datetime, limit: int = 100
    ) -> list[Order]:
        """
        Заказы, по которым пора напомнить продавцу о подтверждении

        Args:
            now: Текущее время
            window_end: Граница окна (now + COMMIT_REMINDER_HOURS)
            limit: Максимум записей
        """
        async with self.session() as session:
            result = await session.execute(
                select(Order)
                .where(
                    Order.status == OrderStatus.PAID,
                    Order.commit_reminder_sent_at.is_(None),
                    Order.commit_deadline > now,
                    Order.commit_deadline <= window_end,
                )
                .order_by(Order.commit_deadline)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_unconfirmed_deliveries(self, cutoff: datetime, limit: int = 100) -> list[Order]:
        """Доставленные заказы, которые покупатель не подтвердил до cutoff"""
        async with self.session() as session:
            result = await session.execute(
                select(Order)
                .where(
                    Order.status == OrderStatus.DELIVERED,
                    Order.delivered_at.is_not(None),
                    Order.delivered_at < cutoff,
                )
                .order_by(Order.delivered_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_refunds_due(self, max_attempts: int, limit: int = 100) -> list[Order]:
        """Отменённые/истёкшие заказы с незавершённым возвратом"""
        async with self.session() as session:
            result = await session.execute(
                select(Order)
                .where(
                    Order.status.in_(REFUNDABLE_STATUSES),
                    Order.refund_status.in_((RefundStatus.PENDING, RefundStatus.FAILED)),
                    Order.refund_attempts < max_attempts,
                )
                .order_by(Order.updated_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_payout_eligible_without_payout(
        self, statuses: Iterable[str], limit: int = 100
    ) -> list[Order]:
        """
        Заказы в статусах, допускающих выплату, у которых ещё нет записи выплаты

        Args:
            statuses: Статусы-кандидаты (окончательная проверка - в PayoutEligibility)
            limit: Максимум записей
        """
        async with self.session() as session:
            result = await session.execute(
                select(Order)
                .outerjoin(PayoutTransaction, PayoutTransaction.order_id == Order.id)
                .where(
                    PayoutTransaction.id.is_(None),
                    Order.status.in_(list(statuses)),
                    Order.payout_completed_at.is_(None),
                )
                .order_by(Order.updated_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    # ===== УСЛОВНЫЕ ОБНОВЛЕНИЯ =====

    async def transition(
        self,
        order_id: str,
        expected_status: str,
        new_status: str,
        values: dict[str, Any] | None = None,
        event: str = "",
        actor_id: str | None = None,
        notes: str | None = None,
        conditions: list[ColumnElement[bool]] | None = None,
    ) -> bool:
        """
        Переход статуса с проверкой текущего статуса (compare-and-swap)

        Args:
            order_id: ID заказа
            expected_status: Статус, в котором заказ должен находиться
            new_status: Новый статус
            values: Дополнительные поля для записи вместе со статусом
            event: Событие для истории
            actor_id: Кто инициировал переход
            notes: Комментарий для истории
            conditions: Дополнительные условия WHERE (например, срок подтверждения)

        Returns:
            True если строка обновлена, False если заказ уже в другом состоянии
        """
        now = get_now()
        where_clause = and_(
            Order.id == order_id, Order.status == expected_status, *(conditions or [])
        )
        stmt = (
            update(Order)
            .where(where_clause)
            .values(status=new_status, version=Order.version + 1, updated_at=now, **(values or {}))
            .execution_options(synchronize_session=False)
        )

        async with self.session() as session:
            result = await session.execute(stmt)
            if self._affected(result) != 1:
                logger.debug(
                    f"Условное обновление не применено: заказ {order_id} "
                    f"не в статусе {expected_status}"
                )
                return False

            session.add(
                OrderStatusHistory(
                    order_id=order_id,
                    old_status=expected_status,
                    new_status=new_status,
                    event=event,
                    actor_id=actor_id,
                    changed_at=now,
                    notes=notes,
                )
            )

        logger.info(f"Заказ {order_id}: {expected_status} -> {new_status} ({event})")
        return True

    async def begin_refund(self, order_id: str, expected_attempts: int) -> bool:
        """
        Захват попытки возврата: увеличивает счётчик, только если его никто не изменил

        Returns:
            True если попытка захвачена этим вызовом
        """
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.refund_attempts == expected_attempts,
                Order.refund_status != RefundStatus.COMPLETED,
            )
            .values(
                refund_status=RefundStatus.PENDING,
                refund_attempts=expected_attempts + 1,
                updated_at=get_now(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
            return self._affected(result) == 1

    async def record_refund(
        self,
        order_id: str,
        status: str,
        reference: str | None = None,
        error: str | None = None,
    ) -> None:
        """
        Запись результата возврата

        Args:
            order_id: ID заказа
            status: RefundStatus
            reference: Ссылка возврата в шлюзе
            error: Текст ошибки при неудаче
        """
        now = get_now()
        values: dict[str, Any] = {"refund_status": status, "refund_error": error, "updated_at": now}
        if reference:
            values["refund_reference"] = reference
        if status == RefundStatus.COMPLETED:
            values["refunded_at"] = now

        async with self.session() as session:
            await session.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        logger.info(f"Возврат по заказу {order_id}: {status}")

    async def mark_reminder_sent(self, order_id: str, now: datetime | None = None) -> bool:
        """
        Отметка об отправленном напоминании (ровно один раз на заказ)

        Returns:
            True если отметка поставлена этим вызовом
        """
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == OrderStatus.PAID,
                Order.commit_reminder_sent_at.is_(None),
            )
            .values(commit_reminder_sent_at=now or get_now())
            .execution_options(synchronize_session=False)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
            return self._affected(result) == 1

    async def mark_payout_completed(self, order_id: str, now: datetime | None = None) -> bool:
        """
        Отметка о завершённой выплате (вызывается только движком выплат)

        Returns:
            True если отметка поставлена этим вызовом
        """
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.payout_completed_at.is_(None))
            .values(payout_completed_at=now or get_now(), payout_held=False)
            .execution_options(synchronize_session=False)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
            return self._affected(result) == 1


def build_order_items(order_id: str, items: list[Any]) -> list[OrderItem]:
    """
    Снимок позиций корзины для заказа

    Args:
        order_id: ID заказа
        items: CartItem из корзины продавца

    Returns:
        Позиции в порядке покупки
    """
    return [
        OrderItem(
            order_id=order_id,
            position=position,
            item_id=item.item_id,
            title=item.title,
            unit_price=item.unit_price,
            quantity=item.quantity,
        )
        for position, item in enumerate(items)
    ]
