"""
Условие допуска заказа к выплате продавцу
"""

from typing import Protocol

from marketplace.core.constants import OrderStatus, PayoutTrigger


class _OrderLike(Protocol):
    status: str
    payout_held: bool


class PayoutEligibility:
    """
    Единый настраиваемый предикат допуска к выплате

    - completed: только после завершения заказа (по умолчанию)
    - delivered: после доставки или завершения
    - collected_held: явное исключение - после передачи курьеру при удержании средств
    """

    _STATUSES: dict[str, frozenset[str]] = {
        PayoutTrigger.COMPLETED: frozenset({OrderStatus.COMPLETED}),
        PayoutTrigger.DELIVERED: frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED}),
        PayoutTrigger.COLLECTED_HELD: frozenset(
            {
                OrderStatus.COLLECTED,
                OrderStatus.IN_TRANSIT,
                OrderStatus.DELIVERED,
                OrderStatus.COMPLETED,
            }
        ),
    }

    def __init__(self, trigger: str = PayoutTrigger.COMPLETED):
        if trigger not in self._STATUSES:
            raise ValueError(f"Неизвестный триггер выплаты: {trigger}")
        self.trigger = trigger

    @property
    def statuses(self) -> frozenset[str]:
        """Статусы заказа, из которых разрешена выплата"""
        return self._STATUSES[self.trigger]

    def __call__(self, order: _OrderLike) -> bool:
        if order.status not in self.statuses:
            return False
        if self.trigger == PayoutTrigger.COLLECTED_HELD:
            return bool(order.payout_held) or order.status in (
                OrderStatus.DELIVERED,
                OrderStatus.COMPLETED,
            )
        return True
