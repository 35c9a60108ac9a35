"""
Движок жизненного цикла заказа

Каждый переход: чтение заказа -> валидация через OrderStateMachine ->
условная запись (status == ожидаемый) -> побочные эффекты.
Побочные эффекты (доступность товаров, уведомления, возврат, постановка
выплаты в очередь) выполняются после фиксации статуса и не откатывают его.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from marketplace.core.config import Settings
from marketplace.core.constants import OrderEvent, OrderStatus, RefundStatus, TransferState
from marketplace.database.orm_models import Order
from marketplace.domain.errors import (
    DeadlinePassedError,
    InvalidTransitionError,
    OrderNotFoundError,
    PaymentMismatchError,
    UnauthorizedError,
    UpstreamUnavailableError,
    ValidationError,
)
from marketplace.domain.commission import CommissionSplit, split_subtotal
from marketplace.domain.order_state_machine import OrderStateMachine
from marketplace.repositories.listing_repository import ListingRepository
from marketplace.repositories.order_repository import OrderRepository, build_order_items
from marketplace.schemas.cart import SellerCart
from marketplace.services.notifications import NotificationDispatcher
from marketplace.services.payment_gateway import PaymentVerification
from marketplace.utils.helpers import (
    format_amount,
    format_datetime,
    generate_payment_reference,
    generate_refund_reference,
    get_now,
    new_id,
    to_naive_utc,
)
from marketplace.utils.pii_masking import mask_reference


if TYPE_CHECKING:
    from marketplace.services.payout_settlement import PayoutSettlementEngine


logger = logging.getLogger(__name__)

DISPUTE_PAY_SELLER = "pay_seller"
DISPUTE_REFUND_BUYER = "refund_buyer"


@dataclass
class TransitionOutcome:
    """Результат применения события к заказу"""

    order: Order
    event: str
    changed: bool = True
    # Условная запись дважды проиграла гонку; order - фактическое состояние
    conflict: bool = False
    side_effect_errors: list[str] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        """Событие уже было применено ранее"""
        return not self.changed


ValuesFn = Callable[[Order], dict[str, Any]]
GuardFn = Callable[[Order], None]


class OrderLifecycleEngine:
    """Движок жизненного цикла заказа"""

    def __init__(
        self,
        orders: OrderRepository,
        listings: ListingRepository,
        gateway: Any,
        notifier: NotificationDispatcher,
        settings: Settings | None = None,
        payouts: "PayoutSettlementEngine | None" = None,
    ):
        """
        Args:
            orders: Репозиторий заказов
            listings: Репозиторий объявлений
            gateway: Клиент платёжного шлюза (PaystackGateway или совместимый)
            notifier: Диспетчер уведомлений
            settings: Настройки
            payouts: Движок выплат (для постановки выплаты в очередь)
        """
        self.orders = orders
        self.listings = listings
        self.gateway = gateway
        self.notifier = notifier
        self.settings = settings or Settings()
        self.payouts = payouts

    # ===== СОЗДАНИЕ ЗАКАЗОВ =====

    async def create_orders(self, buyer_id: str, seller_carts: list[SellerCart], delivery_address: Any) -> list[Order]:
        """
        Создание заказов (по одному на продавца) со статусом pending

        Args:
            buyer_id: ID покупателя
            seller_carts: Корзины продавцов после CartSplitter
            delivery_address: Адрес доставки покупателя (Address)

        Returns:
            Созданные заказы с уникальными payment_reference

        Raises:
            ValidationError: Суммы корзины не сходятся с ценами позиций
        """
        if not seller_carts:
            raise ValidationError("Нет корзин продавцов для оформления")

        address = delivery_address.model_dump() if hasattr(delivery_address, "model_dump") else dict(delivery_address)
        orders = []
        for cart in seller_carts:
            split = self._checked_split(cart)
            order_id = new_id()
            orders.append(
                Order(
                    id=order_id,
                    buyer_id=buyer_id,
                    seller_id=cart.seller_id,
                    status=OrderStatus.PENDING,
                    amount=split.subtotal + cart.delivery_fee,
                    book_price_subtotal=split.subtotal,
                    delivery_fee=cart.delivery_fee,
                    platform_commission=split.platform_commission,
                    seller_amount=split.seller_receives,
                    currency=self.settings.currency,
                    payment_reference=generate_payment_reference(order_id),
                    delivery_address=address,
                    pickup_address=cart.pickup_address.model_dump(),
                    courier_name=cart.courier_quote.courier,
                    courier_service=cart.courier_quote.service_name,
                    seller_recipient_code=cart.recipient_code,
                    items=build_order_items(order_id, cart.items),
                )
            )

        await self.orders.create_many(orders)
        logger.info(f"Покупатель {buyer_id}: создано заказов {len(orders)}")
        return orders

    def _checked_split(self, cart: SellerCart) -> CommissionSplit:
        """
        Пересчёт сумм корзины по ценам позиций

        Цены и комиссия берутся только из позиций и настроек; расхождение
        с присланными цифрами означает подделанную или устаревшую корзину.
        """
        if not cart.items:
            raise ValidationError(f"Корзина продавца {cart.seller_id} пуста")
        foreign = [item.item_id for item in cart.items if item.seller_id != cart.seller_id]
        if foreign:
            raise ValidationError(f"Товары {foreign} не принадлежат продавцу {cart.seller_id}")

        split = split_subtotal(sum(item.line_total for item in cart.items), self.settings.commission_bps)
        if (cart.subtotal, cart.platform_commission, cart.seller_receives) != (
            split.subtotal,
            split.platform_commission,
            split.seller_receives,
        ):
            raise ValidationError(
                f"Суммы корзины продавца {cart.seller_id} не сходятся с ценами позиций: "
                f"subtotal={cart.subtotal}, ожидалось {split.subtotal}, "
                f"комиссия={cart.platform_commission}, ожидалось {split.platform_commission}"
            )
        if cart.delivery_fee != cart.courier_quote.price:
            raise ValidationError(
                f"Стоимость доставки {cart.delivery_fee} не совпадает с тарифом {cart.courier_quote.price}"
            )
        return split

    # ===== ОПЛАТА И ПОДТВЕРЖДЕНИЕ ПРОДАВЦОМ =====

    async def confirm_payment(
        self,
        reference: str,
        verification: PaymentVerification | None = None,
        now: datetime | None = None,
    ) -> TransitionOutcome:
        """
        Подтверждение оплаты (идемпотентно по payment_reference)

        Args:
            reference: payment_reference заказа
            verification: Уже проверенные данные платежа (webhook); иначе запрос в шлюз
            now: Время подтверждения

        Raises:
            OrderNotFoundError: Нет заказа с такой ссылкой
            PaymentMismatchError: Сумма платежа не совпадает
            ValidationError: Шлюз не подтвердил платёж
            UpstreamUnavailableError: Шлюз недоступен
        """
        order = await self.orders.get_by_payment_reference(reference)
        if order is None:
            raise OrderNotFoundError(f"payment_reference={mask_reference(reference)}")

        if order.paid_at is not None:
            logger.info(f"Платёж {mask_reference(reference)} уже применён к заказу {order.id}")
            return TransitionOutcome(order, OrderEvent.PAYMENT_CONFIRMED, changed=False)

        OrderStateMachine.validate_transition(order.status, OrderEvent.PAYMENT_CONFIRMED)

        if verification is None:
            verification = await self.gateway.verify_payment(reference)
        if verification.status != TransferState.SUCCESS:
            raise ValidationError(
                f"Платёж {mask_reference(reference)} не подтверждён шлюзом: {verification.status}"
            )
        if verification.amount != order.amount:
            raise PaymentMismatchError(reference, order.amount, verification.amount)

        paid_at = self._now(now)
        deadline = paid_at + timedelta(hours=self.settings.commit_window_hours)
        order, changed, conflict = await self._apply(
            order.id,
            OrderEvent.PAYMENT_CONFIRMED,
            values=lambda _: {"paid_at": paid_at, "commit_deadline": deadline, "payout_held": True},
            conditions=[Order.commit_deadline.is_(None)],
            notes=f"payment {mask_reference(reference)}",
        )
        outcome = TransitionOutcome(order, OrderEvent.PAYMENT_CONFIRMED, changed=changed, conflict=conflict)
        if changed:
            await self._run_side_effects(
                outcome,
                ("listing_reserve", lambda: self.listings.set_availability(order.item_ids, available=False, sold=False)),
            )
            self._notify(outcome, "new_order_commit_required", order.seller_id)
            self._notify(outcome, "payment_received", order.buyer_id)
        return outcome

    async def commit(self, order_id: str, seller_id: str, now: datetime | None = None) -> TransitionOutcome:
        """
        Подтверждение продажи продавцом (paid -> committed)

        Гонка с автоистечением решается условной записью: статус paid и
        commit_deadline > now проверяются в одном UPDATE.

        Raises:
            UnauthorizedError: Заказ другого продавца
            DeadlinePassedError: Окно подтверждения истекло
            InvalidTransitionError: Заказ не в статусе paid
        """
        now = self._now(now)

        def guard(order: Order) -> None:
            self._require_seller(order, seller_id)
            self._require_before_deadline(order, now)

        order, changed, conflict = await self._apply(
            order_id,
            OrderEvent.SELLER_COMMITTED,
            values=lambda _: {"seller_committed": True, "committed_at": now},
            guard=guard,
            conditions=[Order.commit_deadline > now],
            actor_id=seller_id,
        )
        outcome = TransitionOutcome(order, OrderEvent.SELLER_COMMITTED, changed=changed, conflict=conflict)
        if changed:
            await self._run_side_effects(
                outcome,
                ("listing_sold", lambda: self.listings.set_availability(order.item_ids, available=False, sold=True)),
            )
            self._notify(outcome, "sale_committed", order.buyer_id)
            self._notify(outcome, "commitment_confirmed", order.seller_id)
        return outcome

    async def decline(
        self, order_id: str, seller_id: str, reason: str | None = None, now: datetime | None = None
    ) -> TransitionOutcome:
        """
        Отказ продавца (paid -> cancelled) с возвратом покупателю

        Raises:
            UnauthorizedError: Заказ другого продавца
            DeadlinePassedError: Окно подтверждения истекло
            InvalidTransitionError: Заказ не в статусе paid
        """
        now = self._now(now)

        def guard(order: Order) -> None:
            self._require_seller(order, seller_id)
            self._require_before_deadline(order, now)

        order, changed, conflict = await self._apply(
            order_id,
            OrderEvent.SELLER_DECLINED,
            values=lambda _: {
                "cancelled_at": now,
                "decline_reason": reason,
                "payout_held": False,
                "refund_status": RefundStatus.PENDING,
            },
            guard=guard,
            conditions=[Order.commit_deadline > now],
            actor_id=seller_id,
            notes=reason,
        )
        outcome = TransitionOutcome(order, OrderEvent.SELLER_DECLINED, changed=changed, conflict=conflict)
        if changed:
            await self._run_side_effects(
                outcome,
                ("listing_release", lambda: self.listings.set_availability(order.item_ids, available=True, sold=False)),
                ("refund", lambda: self._refund_side_effect(order, "seller declined")),
            )
            self._notify(outcome, "order_declined", order.buyer_id, reason=reason or "-")
        return outcome

    async def expire(self, order_id: str, now: datetime | None = None) -> TransitionOutcome:
        """
        Автоистечение окна подтверждения (paid -> expired), только для sweeper

        Raises:
            InvalidTransitionError: Заказ уже не в paid или срок ещё не истёк
        """
        now = self._now(now)

        def guard(order: Order) -> None:
            if order.status == OrderStatus.PAID and (
                order.commit_deadline is None or order.commit_deadline >= now
            ):
                raise InvalidTransitionError(
                    order.status, OrderEvent.COMMIT_EXPIRED, "срок подтверждения ещё не истёк"
                )

        order, changed, conflict = await self._apply(
            order_id,
            OrderEvent.COMMIT_EXPIRED,
            values=lambda _: {
                "expired_at": now,
                "payout_held": False,
                "refund_status": RefundStatus.PENDING,
            },
            guard=guard,
            conditions=[Order.commit_deadline < now],
            actor_id="system",
        )
        outcome = TransitionOutcome(order, OrderEvent.COMMIT_EXPIRED, changed=changed, conflict=conflict)
        if changed:
            await self._run_side_effects(
                outcome,
                ("listing_release", lambda: self.listings.set_availability(order.item_ids, available=True, sold=False)),
                ("refund", lambda: self._refund_side_effect(order, "commit window expired")),
            )
            self._notify(outcome, "order_expired_buyer", order.buyer_id)
            self._notify(outcome, "order_expired_seller", order.seller_id)
        return outcome

    # ===== ДОСТАВКА =====

    async def mark_collected(
        self,
        order_id: str,
        tracking_number: str | None = None,
        courier_name: str | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> TransitionOutcome:
        """Курьер забрал посылку (committed -> collected)"""
        now = self._now(now)

        def values(order: Order) -> dict[str, Any]:
            data: dict[str, Any] = {"collected_at": now}
            if tracking_number:
                data["tracking_number"] = tracking_number
            if courier_name:
                data["courier_name"] = courier_name
            return data

        order, changed, conflict = await self._apply(
            order_id, OrderEvent.COURIER_COLLECTED, values=values, actor_id=actor_id
        )
        outcome = TransitionOutcome(order, OrderEvent.COURIER_COLLECTED, changed=changed, conflict=conflict)
        if changed:
            self._notify(outcome, "order_collected", order.buyer_id)
            await self._run_side_effects(outcome, ("payout_enqueue", lambda: self._enqueue_payout(order)))
        return outcome

    async def mark_in_transit(self, order_id: str, actor_id: str | None = None) -> TransitionOutcome:
        """Посылка в пути (collected -> in_transit)"""
        order, changed, conflict = await self._apply(
            order_id, OrderEvent.COURIER_IN_TRANSIT, actor_id=actor_id
        )
        return TransitionOutcome(order, OrderEvent.COURIER_IN_TRANSIT, changed=changed, conflict=conflict)

    async def mark_delivered(
        self, order_id: str, actor_id: str | None = None, now: datetime | None = None
    ) -> TransitionOutcome:
        """Посылка доставлена (collected | in_transit -> delivered)"""
        now = self._now(now)
        order, changed, conflict = await self._apply(
            order_id,
            OrderEvent.DELIVERED,
            values=lambda _: {"delivered_at": now},
            actor_id=actor_id,
        )
        outcome = TransitionOutcome(order, OrderEvent.DELIVERED, changed=changed, conflict=conflict)
        if changed:
            self._notify(outcome, "order_delivered", order.buyer_id)
            await self._run_side_effects(outcome, ("payout_enqueue", lambda: self._enqueue_payout(order)))
        return outcome

    async def confirm_receipt(
        self, order_id: str, buyer_id: str, now: datetime | None = None
    ) -> TransitionOutcome:
        """
        Покупатель подтвердил получение (delivered -> completed)

        Raises:
            UnauthorizedError: Заказ другого покупателя
        """
        now = self._now(now)
        return await self._complete(
            order_id,
            OrderEvent.RECEIPT_CONFIRMED,
            now,
            actor_id=buyer_id,
            guard=lambda order: self._require_buyer(order, buyer_id),
        )

    async def auto_complete(self, order_id: str, now: datetime | None = None) -> TransitionOutcome:
        """Истёк срок подтверждения получения (delivered -> completed)"""
        now = self._now(now)
        cutoff = now - timedelta(hours=self.settings.delivery_confirmation_timeout_hours)

        def guard(order: Order) -> None:
            if order.status == OrderStatus.DELIVERED and (
                order.delivered_at is None or order.delivered_at >= cutoff
            ):
                raise InvalidTransitionError(
                    order.status,
                    OrderEvent.DELIVERY_CONFIRMATION_TIMEOUT,
                    "срок подтверждения получения ещё не истёк",
                )

        return await self._complete(
            order_id,
            OrderEvent.DELIVERY_CONFIRMATION_TIMEOUT,
            now,
            actor_id="system",
            guard=guard,
            conditions=[Order.delivered_at < cutoff],
        )

    async def _complete(
        self,
        order_id: str,
        event: str,
        now: datetime,
        actor_id: str | None,
        guard: GuardFn | None = None,
        conditions: list | None = None,
    ) -> TransitionOutcome:
        order, changed, conflict = await self._apply(
            order_id,
            event,
            values=lambda _: {"completed_at": now},
            guard=guard,
            conditions=conditions,
            actor_id=actor_id,
        )
        outcome = TransitionOutcome(order, event, changed=changed, conflict=conflict)
        if changed:
            self._notify(outcome, "order_completed", order.buyer_id)
            self._notify(outcome, "order_completed", order.seller_id)
            await self._run_side_effects(outcome, ("payout_enqueue", lambda: self._enqueue_payout(order)))
        return outcome

    # ===== СПОРЫ =====

    async def raise_dispute(
        self, order_id: str, actor_id: str | None, reason: str
    ) -> TransitionOutcome:
        """
        Открытие спора из любого нетерминального статуса

        Args:
            order_id: ID заказа
            actor_id: Покупатель или продавец заказа (None - администратор)
            reason: Причина спора

        Raises:
            UnauthorizedError: Инициатор не участник заказа
        """
        if not reason or not reason.strip():
            raise ValidationError("Не указана причина спора")

        def guard(order: Order) -> None:
            if actor_id is not None and actor_id not in (order.buyer_id, order.seller_id):
                raise UnauthorizedError(order.id, actor_id)

        order, changed, conflict = await self._apply(
            order_id,
            OrderEvent.DISPUTE_RAISED,
            values=lambda order: {"dispute_reason": reason, "status_before_dispute": order.status},
            guard=guard,
            actor_id=actor_id,
            notes=reason,
        )
        outcome = TransitionOutcome(order, OrderEvent.DISPUTE_RAISED, changed=changed, conflict=conflict)
        if changed:
            for recipient in (order.buyer_id, order.seller_id):
                self._notify(outcome, "dispute_opened", recipient, reason=reason)
            self.notifier.notify_admin("dispute_opened", self._variables(order, reason=reason))
        return outcome

    async def resolve_dispute(
        self, order_id: str, resolution: str, actor_id: str | None = None, now: datetime | None = None
    ) -> TransitionOutcome:
        """
        Ручное решение спора

        Args:
            order_id: ID заказа
            resolution: pay_seller (-> completed) или refund_buyer (-> refunded)
            actor_id: Администратор
        """
        now = self._now(now)
        if resolution == DISPUTE_PAY_SELLER:
            event = OrderEvent.DISPUTE_RESOLVED_PAY_SELLER
            values: ValuesFn = lambda _: {"completed_at": now}
        elif resolution == DISPUTE_REFUND_BUYER:
            event = OrderEvent.DISPUTE_RESOLVED_REFUND
            values = lambda _: {
                "seller_committed": False,
                "payout_held": False,
                "refund_status": RefundStatus.PENDING,
            }
        else:
            raise ValidationError(f"Неизвестное решение спора: {resolution}")

        order, changed, conflict = await self._apply(
            order_id, event, values=values, actor_id=actor_id, notes=resolution
        )
        outcome = TransitionOutcome(order, event, changed=changed, conflict=conflict)
        if changed:
            for recipient in (order.buyer_id, order.seller_id):
                self._notify(outcome, "dispute_resolved", recipient, resolution=resolution)
            if resolution == DISPUTE_PAY_SELLER:
                await self._run_side_effects(outcome, ("payout_enqueue", lambda: self._enqueue_payout(order)))
            else:
                await self._run_side_effects(
                    outcome,
                    ("refund", lambda: self._refund_side_effect(order, "dispute resolved")),
                    ("payout_cancel", lambda: self._cancel_payout(order)),
                )
        return outcome

    # ===== ВОЗВРАТЫ =====

    async def initiate_refund(self, order: Order, reason: str = "") -> bool:
        """
        Возврат оплаты покупателю

        Попытка захватывается условной записью (refund_attempts), поэтому
        параллельные вызовы не создают двух запросов на одну попытку.

        Returns:
            True если возврат выполнен (или был выполнен ранее)

        Raises:
            UpstreamUnavailableError: Шлюз недоступен (попытка записана как failed)
        """
        if order.refund_status == RefundStatus.COMPLETED:
            return True
        if order.refund_attempts >= self.settings.max_refund_attempts:
            logger.error(f"Возврат по заказу {order.id}: исчерпаны попытки ({order.refund_attempts})")
            return False

        attempt = order.refund_attempts + 1
        if not await self.orders.begin_refund(order.id, order.refund_attempts):
            logger.info(f"Возврат по заказу {order.id} уже выполняется другим процессом")
            return False

        refund_reference = generate_refund_reference(order.id, attempt)
        try:
            result = await self.gateway.refund(
                order.payment_reference, order.amount, reason, reference=refund_reference
            )
        except UpstreamUnavailableError as e:
            await self.orders.record_refund(order.id, RefundStatus.FAILED, refund_reference, str(e))
            raise

        if result.status in (TransferState.SUCCESS, TransferState.PENDING):
            await self.orders.record_refund(order.id, RefundStatus.COMPLETED, refund_reference)
            self.notifier.dispatch("refund_processed", order.buyer_id, self._variables(order))
            logger.info(f"Возврат по заказу {order.id} выполнен (попытка {attempt})")
            return True

        await self.orders.record_refund(
            order.id, RefundStatus.FAILED, refund_reference, result.message or result.status
        )
        logger.warning(f"Возврат по заказу {order.id} отклонён шлюзом: {result.message}")
        return False

    async def _refund_side_effect(self, order: Order, reason: str) -> None:
        if not await self.initiate_refund(order, reason):
            raise RuntimeError(f"возврат по заказу {order.id} не выполнен")

    # ===== ЧТЕНИЕ =====

    async def get_order(self, order_id: str) -> Order:
        """
        Raises:
            OrderNotFoundError: Заказ не найден
        """
        return await self._load(order_id)

    async def get_pending_commits(self, seller_id: str) -> list[Order]:
        """Заказы продавца, ожидающие подтверждения"""
        return await self.orders.get_pending_commits(seller_id)

    # ===== ВНУТРЕННЕЕ =====

    async def _apply(
        self,
        order_id: str,
        event: str,
        values: ValuesFn | None = None,
        guard: GuardFn | None = None,
        conditions: list | None = None,
        actor_id: str | None = None,
        notes: str | None = None,
    ) -> tuple[Order, bool, bool]:
        """
        Цикл чтение -> валидация -> условная запись

        При проигранной гонке заказ перечитывается и попытка повторяется один
        раз; затем сообщается фактическое состояние без исключения.

        Returns:
            (заказ, был ли переход применён этим вызовом, проиграна ли гонка)

        Raises:
            InvalidTransitionError: Фактический статус не допускает событие
        """
        target = OrderStateMachine.target_state(event)

        for attempt in range(2):
            order = await self._load(order_id)
            if guard:
                guard(order)
            result = OrderStateMachine.validate_transition(order.status, event)
            if result.is_noop:
                logger.debug(f"Заказ {order_id} уже в статусе {target}, событие {event} пропущено")
                return order, False, False

            written = await self.orders.transition(
                order_id,
                expected_status=order.status,
                new_status=target,
                values=values(order) if values else None,
                event=event,
                actor_id=actor_id,
                notes=notes or OrderStateMachine.get_transition_description(event),
                conditions=conditions,
            )
            if written:
                return await self._load(order_id), True, False

            logger.info(
                f"Заказ {order_id}: условная запись {order.status} -> {target} проиграла гонку "
                f"(попытка {attempt + 1})"
            )

        order = await self._load(order_id)
        if order.status == target:
            return order, False, False
        if guard:
            guard(order)
        OrderStateMachine.validate_transition(order.status, event)
        logger.warning(
            f"Заказ {order_id}: событие {event} не применено после повтора, фактический статус {order.status}"
        )
        return order, False, True

    async def _load(self, order_id: str) -> Order:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def _enqueue_payout(self, order: Order) -> None:
        if self.payouts is not None:
            await self.payouts.enqueue_for_order(order)

    async def _cancel_payout(self, order: Order) -> None:
        if self.payouts is not None:
            await self.payouts.cancel_for_order(order)

    async def _run_side_effects(
        self, outcome: TransitionOutcome, *effects: tuple[str, Callable[[], Awaitable[Any]]]
    ) -> None:
        """Побочные эффекты: ошибки логируются и сохраняются в outcome"""
        for name, effect in effects:
            try:
                await effect()
            except Exception as e:
                logger.error(
                    f"Побочный эффект {name} для заказа {outcome.order.id} не выполнен: {e}",
                    exc_info=True,
                )
                outcome.side_effect_errors.append(f"{name}: {e}")

    def _notify(self, outcome: TransitionOutcome, template: str, recipient: str, **extra: Any) -> None:
        try:
            self.notifier.dispatch(template, recipient, self._variables(outcome.order, **extra))
        except Exception as e:
            logger.error(f"Уведомление {template} для заказа {outcome.order.id} не отправлено: {e}")
            outcome.side_effect_errors.append(f"notify:{template}: {e}")

    def _variables(self, order: Order, **extra: Any) -> dict[str, Any]:
        variables: dict[str, Any] = {
            "order_short": order.short_id,
            "amount": format_amount(order.amount, order.currency),
            "commit_deadline": format_datetime(order.commit_deadline),
            "courier_name": order.courier_name or "-",
            "tracking_number": order.tracking_number or "-",
            "hours_left": self.settings.commit_reminder_hours,
        }
        variables.update(extra)
        return variables

    @staticmethod
    def _now(now: datetime | None) -> datetime:
        return to_naive_utc(now) if now is not None else get_now()

    @staticmethod
    def _require_seller(order: Order, seller_id: str) -> None:
        if order.seller_id != seller_id:
            raise UnauthorizedError(order.id, seller_id)

    @staticmethod
    def _require_buyer(order: Order, buyer_id: str) -> None:
        if order.buyer_id != buyer_id:
            raise UnauthorizedError(order.id, buyer_id)

    @staticmethod
    def _require_before_deadline(order: Order, now: datetime) -> None:
        """Срок проверяется для paid и expired; остальные статусы решает state machine"""
        if order.status not in (OrderStatus.PAID, OrderStatus.EXPIRED):
            return
        if order.commit_deadline is not None and now >= order.commit_deadline:
            raise DeadlinePassedError(order.id, format_datetime(order.commit_deadline))
