"""
Сервис маркетплейса: граница для UI/API

Каждая операция возвращает OperationResult и не пробрасывает исключения
наружу: доменные ошибки превращаются в коды ошибок, непредвиденные -
в INTERNAL_ERROR с записью в лог.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Mapping, TypeVar

from pydantic import ValidationError as PydanticValidationError

from marketplace.core.constants import ErrorCode
from marketplace.database.orm_models import Order
from marketplace.domain.errors import (
    IncompleteAddressError,
    MarketplaceError,
    UnauthorizedError,
    ValidationError,
)
from marketplace.repositories.exceptions import EntityNotFoundError
from marketplace.schemas.cart import (
    Address,
    CartItem,
    CartSplitResult,
    CourierQuote,
    SellerCart,
    SellerProfile,
)
from marketplace.schemas.webhook import GatewayEvent
from marketplace.services.cart_splitter import CartSplitter, group_by_seller
from marketplace.services.courier_quotes import CourierQuoteClient
from marketplace.services.expiry_sweeper import ExpirySweeper, SweepResult
from marketplace.services.order_lifecycle import OrderLifecycleEngine, TransitionOutcome
from marketplace.services.payment_gateway import PaymentVerification, normalize_status
from marketplace.services.payout_settlement import PayoutBatchResult, PayoutSettlementEngine


logger = logging.getLogger(__name__)

T = TypeVar("T")

CHARGE_SUCCESS_EVENT = "charge.success"


@dataclass
class OperationResult(Generic[T]):
    """Результат операции: либо данные, либо код и текст ошибки"""

    success: bool
    data: T | None = None
    error_code: str | None = None
    error_message: str | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, data: T | None = None, warnings: list[str] | None = None) -> "OperationResult[T]":
        return cls(success=True, data=data, warnings=list(warnings or []))

    @classmethod
    def fail(cls, error_code: str, error_message: str) -> "OperationResult[T]":
        return cls(success=False, error_code=error_code, error_message=error_message)


class MarketplaceService:
    """Фасад ядра для вызывающего слоя"""

    def __init__(
        self,
        lifecycle: OrderLifecycleEngine,
        payouts: PayoutSettlementEngine,
        sweeper: ExpirySweeper,
        splitter: CartSplitter,
        courier: CourierQuoteClient,
        gateway: Any,
    ):
        self.lifecycle = lifecycle
        self.payouts = payouts
        self.sweeper = sweeper
        self.splitter = splitter
        self.courier = courier
        self.gateway = gateway

    async def _run(self, operation: str, call: Callable[[], Awaitable[Any]]) -> OperationResult:
        """Выполнение операции с преобразованием ошибок в OperationResult"""
        try:
            data = await call()
        except MarketplaceError as e:
            logger.info(f"{operation}: {e.code}: {e}")
            return OperationResult.fail(e.code, str(e))
        except EntityNotFoundError as e:
            logger.info(f"{operation}: {e}")
            return OperationResult.fail(ErrorCode.NOT_FOUND, str(e))
        except PydanticValidationError as e:
            logger.info(f"{operation}: некорректные данные: {e.error_count()} ошибок")
            return OperationResult.fail(ErrorCode.VALIDATION_ERROR, str(e))
        except Exception as e:
            logger.error(f"{operation}: непредвиденная ошибка: {e}", exc_info=True)
            return OperationResult.fail(ErrorCode.INTERNAL_ERROR, "Внутренняя ошибка сервиса")

        if isinstance(data, TransitionOutcome):
            warnings = list(data.side_effect_errors)
            if data.conflict:
                warnings.insert(
                    0, f"{ErrorCode.CONFLICT_RETRY}: заказ изменён параллельно, статус {data.order.status}"
                )
            return OperationResult.ok(data.order, warnings=warnings)
        return OperationResult.ok(data)

    # ===== ОФОРМЛЕНИЕ =====

    async def prepare_checkout(
        self,
        buyer_address: Address | Mapping[str, Any],
        items: list[CartItem],
        sellers: Mapping[str, SellerProfile],
        preferred_couriers: Mapping[str, str] | None = None,
        weight: float = 1.0,
    ) -> OperationResult[CartSplitResult]:
        """
        Запрос тарифов для каждого продавца и разделение корзины

        Недоступность курьерских API не блокирует оформление: используются
        резервные тарифы.
        """

        async def call() -> CartSplitResult:
            destination = (
                buyer_address
                if isinstance(buyer_address, Address)
                else Address.model_validate(dict(buyer_address))
            )
            if not destination.is_complete():
                raise IncompleteAddressError("buyer", destination.missing_fields())

            quotes: dict[str, list[CourierQuote]] = {}
            for seller_id in group_by_seller(items):
                profile = sellers.get(seller_id)
                if profile is None or not profile.recipient_code:
                    continue
                quotes[seller_id] = await self.courier.get_quotes(
                    profile.pickup_address, destination, weight
                )

            return self.splitter.split(destination, items, sellers, quotes, preferred_couriers)

        return await self._run("prepare_checkout", call)

    async def create_seller_orders(
        self,
        buyer_id: str,
        seller_carts: list[SellerCart],
        delivery_address: Address | Mapping[str, Any],
    ) -> OperationResult[list[Order]]:
        """Создание заказов по корзинам продавцов"""

        async def call() -> list[Order]:
            address = (
                delivery_address
                if isinstance(delivery_address, Address)
                else Address.model_validate(dict(delivery_address))
            )
            if not address.is_complete():
                raise IncompleteAddressError("buyer", address.missing_fields())
            return await self.lifecycle.create_orders(buyer_id, seller_carts, address)

        return await self._run("create_seller_orders", call)

    async def confirm_payment(self, reference: str) -> OperationResult[Order]:
        """Подтверждение оплаты с проверкой в шлюзе"""
        return await self._run("confirm_payment", lambda: self.lifecycle.confirm_payment(reference))

    async def handle_gateway_webhook(self, body: bytes, signature: str | None) -> OperationResult:
        """
        Обработка webhook шлюза (charge.success, transfer.*)

        Args:
            body: Сырые байты тела запроса
            signature: Заголовок подписи
        """
        if not self.gateway.verify_webhook_signature(body, signature):
            logger.warning("Webhook с неверной подписью отклонён")
            return OperationResult.fail(ErrorCode.UNAUTHORIZED, "Неверная подпись webhook")

        async def call() -> Any:
            event = GatewayEvent.model_validate_json(body)
            data = event.data

            if event.event == CHARGE_SUCCESS_EVENT:
                if not data.reference:
                    raise ValidationError("Событие charge.success без reference")
                verification = PaymentVerification(
                    status=normalize_status(data.status),
                    amount=data.amount or 0,
                    reference=data.reference,
                    metadata=data.metadata if isinstance(data.metadata, dict) else {},
                )
                return await self.lifecycle.confirm_payment(data.reference, verification)

            if event.event.startswith("transfer."):
                return await self.payouts.handle_transfer_event(event.event, data.model_dump())

            logger.debug(f"Webhook {event.event} не обрабатывается")
            return None

        return await self._run("handle_gateway_webhook", call)

    # ===== ДЕЙСТВИЯ ПРОДАВЦА И ПОКУПАТЕЛЯ =====

    async def commit(self, order_id: str, seller_id: str) -> OperationResult[Order]:
        """Продавец подтверждает продажу"""
        return await self._run("commit", lambda: self.lifecycle.commit(order_id, seller_id))

    async def decline(
        self, order_id: str, seller_id: str, reason: str | None = None
    ) -> OperationResult[Order]:
        """Продавец отказывается от продажи"""
        return await self._run("decline", lambda: self.lifecycle.decline(order_id, seller_id, reason))

    async def mark_collected(
        self,
        order_id: str,
        tracking_number: str | None = None,
        courier_name: str | None = None,
    ) -> OperationResult[Order]:
        """Курьер забрал посылку"""
        return await self._run(
            "mark_collected",
            lambda: self.lifecycle.mark_collected(order_id, tracking_number, courier_name),
        )

    async def mark_in_transit(self, order_id: str) -> OperationResult[Order]:
        """Посылка в пути"""
        return await self._run("mark_in_transit", lambda: self.lifecycle.mark_in_transit(order_id))

    async def mark_delivered(self, order_id: str, actor_id: str | None = None) -> OperationResult[Order]:
        """Посылка доставлена"""
        return await self._run(
            "mark_delivered", lambda: self.lifecycle.mark_delivered(order_id, actor_id)
        )

    async def confirm_receipt(self, order_id: str, buyer_id: str) -> OperationResult[Order]:
        """Покупатель подтверждает получение"""
        return await self._run(
            "confirm_receipt", lambda: self.lifecycle.confirm_receipt(order_id, buyer_id)
        )

    async def raise_dispute(
        self, order_id: str, actor_id: str | None, reason: str
    ) -> OperationResult[Order]:
        """Открытие спора"""
        return await self._run(
            "raise_dispute", lambda: self.lifecycle.raise_dispute(order_id, actor_id, reason)
        )

    async def resolve_dispute(
        self, order_id: str, resolution: str, actor_id: str | None = None
    ) -> OperationResult[Order]:
        """Ручное решение спора (pay_seller | refund_buyer)"""
        return await self._run(
            "resolve_dispute",
            lambda: self.lifecycle.resolve_dispute(order_id, resolution, actor_id),
        )

    # ===== ЧТЕНИЕ =====

    async def get_pending_commits(self, seller_id: str) -> OperationResult[list[Order]]:
        """Заказы продавца, ожидающие подтверждения"""
        return await self._run(
            "get_pending_commits", lambda: self.lifecycle.get_pending_commits(seller_id)
        )

    async def get_order(self, order_id: str, actor_id: str | None = None) -> OperationResult[Order]:
        """
        Заказ по ID

        Args:
            order_id: ID заказа
            actor_id: Если указан, должен быть покупателем или продавцом заказа
        """

        async def call() -> Order:
            order = await self.lifecycle.get_order(order_id)
            if actor_id is not None and actor_id not in (order.buyer_id, order.seller_id):
                raise UnauthorizedError(order_id, actor_id)
            return order

        return await self._run("get_order", call)

    # ===== ФОНОВЫЕ ПРОХОДЫ (РУЧНОЙ ЗАПУСК) =====

    async def trigger_payout_sweep(self) -> OperationResult[PayoutBatchResult]:
        """Постановка допущенных заказов в очередь и обработка пачки выплат"""

        async def call() -> PayoutBatchResult:
            await self.payouts.enqueue_eligible_orders()
            return await self.payouts.process_queue()

        return await self._run("trigger_payout_sweep", call)

    async def trigger_expiry_sweep(self) -> OperationResult[SweepResult]:
        """Проход истечения окна подтверждения"""
        return await self._run("trigger_expiry_sweep", lambda: self.sweeper.sweep())

    async def get_payout_stats(self) -> OperationResult[dict[str, dict[str, int]]]:
        """Статистика очереди выплат"""
        return await self._run("get_payout_stats", self.payouts.get_queue_stats)
