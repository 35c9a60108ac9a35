"""
State Machine для валидации переходов статусов заказов
"""

from dataclasses import dataclass

from marketplace.core.constants import OrderEvent, OrderStatus
from marketplace.domain.errors import InvalidTransitionError


@dataclass(frozen=True)
class Transition:
    """Описание перехода: из каких статусов событие допустимо и куда ведёт"""

    event: str
    from_states: frozenset[str]
    to_state: str
    description: str


@dataclass
class OrderStateTransitionResult:
    """Результат валидации перехода статуса"""

    is_valid: bool
    to_state: str | None = None
    is_noop: bool = False
    error_message: str | None = None


_NON_TERMINAL = frozenset(
    {
        OrderStatus.PENDING,
        OrderStatus.PAID,
        OrderStatus.COMMITTED,
        OrderStatus.COLLECTED,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
    }
)


class OrderStateMachine:
    """
    State Machine для управления жизненным циклом заказа

    Граф переходов:

    PENDING → PAID → COMMITTED → COLLECTED → IN_TRANSIT → DELIVERED → COMPLETED
                ↓                     └────────────────────↗
        CANCELLED / EXPIRED

    Любой нетерминальный статус → DISPUTED → COMPLETED | REFUNDED (вручную)
    """

    TRANSITIONS: dict[str, Transition] = {
        OrderEvent.PAYMENT_CONFIRMED: Transition(
            OrderEvent.PAYMENT_CONFIRMED,
            frozenset({OrderStatus.PENDING}),
            OrderStatus.PAID,
            "Платёж подтверждён шлюзом",
        ),
        OrderEvent.SELLER_COMMITTED: Transition(
            OrderEvent.SELLER_COMMITTED,
            frozenset({OrderStatus.PAID}),
            OrderStatus.COMMITTED,
            "Продавец подтвердил продажу",
        ),
        OrderEvent.SELLER_DECLINED: Transition(
            OrderEvent.SELLER_DECLINED,
            frozenset({OrderStatus.PAID}),
            OrderStatus.CANCELLED,
            "Продавец отказался от продажи",
        ),
        OrderEvent.COMMIT_EXPIRED: Transition(
            OrderEvent.COMMIT_EXPIRED,
            frozenset({OrderStatus.PAID}),
            OrderStatus.EXPIRED,
            "Истекло окно подтверждения",
        ),
        OrderEvent.COURIER_COLLECTED: Transition(
            OrderEvent.COURIER_COLLECTED,
            frozenset({OrderStatus.COMMITTED}),
            OrderStatus.COLLECTED,
            "Курьер забрал посылку",
        ),
        OrderEvent.COURIER_IN_TRANSIT: Transition(
            OrderEvent.COURIER_IN_TRANSIT,
            frozenset({OrderStatus.COLLECTED}),
            OrderStatus.IN_TRANSIT,
            "Посылка в пути",
        ),
        OrderEvent.DELIVERED: Transition(
            OrderEvent.DELIVERED,
            frozenset({OrderStatus.COLLECTED, OrderStatus.IN_TRANSIT}),
            OrderStatus.DELIVERED,
            "Посылка доставлена",
        ),
        OrderEvent.RECEIPT_CONFIRMED: Transition(
            OrderEvent.RECEIPT_CONFIRMED,
            frozenset({OrderStatus.DELIVERED}),
            OrderStatus.COMPLETED,
            "Покупатель подтвердил получение",
        ),
        OrderEvent.DELIVERY_CONFIRMATION_TIMEOUT: Transition(
            OrderEvent.DELIVERY_CONFIRMATION_TIMEOUT,
            frozenset({OrderStatus.DELIVERED}),
            OrderStatus.COMPLETED,
            "Истёк срок подтверждения получения",
        ),
        OrderEvent.DISPUTE_RAISED: Transition(
            OrderEvent.DISPUTE_RAISED,
            _NON_TERMINAL,
            OrderStatus.DISPUTED,
            "Открыт спор",
        ),
        OrderEvent.DISPUTE_RESOLVED_PAY_SELLER: Transition(
            OrderEvent.DISPUTE_RESOLVED_PAY_SELLER,
            frozenset({OrderStatus.DISPUTED}),
            OrderStatus.COMPLETED,
            "Спор решён в пользу продавца",
        ),
        OrderEvent.DISPUTE_RESOLVED_REFUND: Transition(
            OrderEvent.DISPUTE_RESOLVED_REFUND,
            frozenset({OrderStatus.DISPUTED}),
            OrderStatus.REFUNDED,
            "Спор решён возвратом покупателю",
        ),
    }

    @classmethod
    def get_transition(cls, event: str) -> Transition:
        """
        Получение описания перехода по событию

        Raises:
            KeyError: Неизвестное событие
        """
        return cls.TRANSITIONS[event]

    @classmethod
    def target_state(cls, event: str) -> str:
        """Статус, в который ведёт событие"""
        return cls.get_transition(event).to_state

    @classmethod
    def validate_transition(
        cls, from_state: str, event: str, raise_exception: bool = True
    ) -> OrderStateTransitionResult:
        """
        Валидация события относительно текущего статуса

        Повторное применение события к заказу, уже находящемуся в целевом
        статусе, считается успешным no-op (дубли вебхуков и опросов).

        Args:
            from_state: Текущий статус заказа
            event: Событие жизненного цикла
            raise_exception: Выбрасывать ли исключение при ошибке

        Returns:
            OrderStateTransitionResult с результатом валидации

        Raises:
            InvalidTransitionError: Если событие недопустимо и raise_exception=True
        """
        transition = cls.get_transition(event)

        if from_state == transition.to_state:
            return OrderStateTransitionResult(
                is_valid=True, to_state=transition.to_state, is_noop=True
            )

        if from_state in transition.from_states:
            return OrderStateTransitionResult(is_valid=True, to_state=transition.to_state)

        if OrderStatus.is_terminal(from_state):
            reason = "статус терминальный"
        elif from_state == OrderStatus.DISPUTED:
            reason = "заказ заморожен спором, требуется ручное решение"
        else:
            allowed = ", ".join(sorted(transition.from_states))
            reason = f"допустимо только из: {allowed}"

        if raise_exception:
            raise InvalidTransitionError(from_state, event, reason)

        return OrderStateTransitionResult(
            is_valid=False,
            error_message=str(InvalidTransitionError(from_state, event, reason)),
        )

    @classmethod
    def can_apply(cls, from_state: str, event: str) -> bool:
        """Проверка без исключения"""
        return cls.validate_transition(from_state, event, raise_exception=False).is_valid

    @classmethod
    def get_available_events(cls, from_state: str) -> list[str]:
        """Список событий, допустимых из текущего статуса"""
        return [
            event
            for event, transition in cls.TRANSITIONS.items()
            if from_state in transition.from_states
        ]

    @classmethod
    def is_terminal_state(cls, state: str) -> bool:
        """
        Проверка, является ли статус терминальным

        Args:
            state: Статус для проверки

        Returns:
            True если из этого статуса нельзя никуда перейти
        """
        return not cls.get_available_events(state)

    @classmethod
    def get_transition_description(cls, event: str) -> str:
        """Описание перехода для истории статусов"""
        transition = cls.TRANSITIONS.get(event)
        return transition.description if transition else event
