"""
Тесты для OrderStateMachine
"""

import pytest

from marketplace.core.constants import OrderEvent, OrderStatus
from marketplace.domain.errors import InvalidTransitionError
from marketplace.domain.order_state_machine import OrderStateMachine


class TestOrderStateMachine:
    """Тесты графа переходов заказа"""

    @pytest.mark.parametrize(
        ("from_state", "event", "to_state"),
        [
            (OrderStatus.PENDING, OrderEvent.PAYMENT_CONFIRMED, OrderStatus.PAID),
            (OrderStatus.PAID, OrderEvent.SELLER_COMMITTED, OrderStatus.COMMITTED),
            (OrderStatus.PAID, OrderEvent.SELLER_DECLINED, OrderStatus.CANCELLED),
            (OrderStatus.PAID, OrderEvent.COMMIT_EXPIRED, OrderStatus.EXPIRED),
            (OrderStatus.COMMITTED, OrderEvent.COURIER_COLLECTED, OrderStatus.COLLECTED),
            (OrderStatus.COLLECTED, OrderEvent.COURIER_IN_TRANSIT, OrderStatus.IN_TRANSIT),
            (OrderStatus.COLLECTED, OrderEvent.DELIVERED, OrderStatus.DELIVERED),
            (OrderStatus.IN_TRANSIT, OrderEvent.DELIVERED, OrderStatus.DELIVERED),
            (OrderStatus.DELIVERED, OrderEvent.RECEIPT_CONFIRMED, OrderStatus.COMPLETED),
            (OrderStatus.DELIVERED, OrderEvent.DELIVERY_CONFIRMATION_TIMEOUT, OrderStatus.COMPLETED),
            (OrderStatus.DISPUTED, OrderEvent.DISPUTE_RESOLVED_PAY_SELLER, OrderStatus.COMPLETED),
            (OrderStatus.DISPUTED, OrderEvent.DISPUTE_RESOLVED_REFUND, OrderStatus.REFUNDED),
        ],
    )
    def test_valid_transitions(self, from_state, event, to_state):
        """Допустимые переходы"""
        result = OrderStateMachine.validate_transition(from_state, event)

        assert result.is_valid
        assert result.to_state == to_state
        assert not result.is_noop

    def test_repeated_event_is_noop(self):
        """Повтор события для заказа в целевом статусе - успешный no-op"""
        result = OrderStateMachine.validate_transition(OrderStatus.PAID, OrderEvent.PAYMENT_CONFIRMED)

        assert result.is_valid
        assert result.is_noop

    @pytest.mark.parametrize("terminal", sorted(OrderStatus.TERMINAL))
    def test_terminal_states_reject_every_event(self, terminal):
        """Терминальные статусы не принимают ни одного события кроме no-op"""
        for event, transition in OrderStateMachine.TRANSITIONS.items():
            if transition.to_state == terminal:
                continue
            with pytest.raises(InvalidTransitionError) as exc_info:
                OrderStateMachine.validate_transition(terminal, event)
            assert exc_info.value.from_state == terminal
            assert exc_info.value.event == event

    @pytest.mark.parametrize(
        "state",
        [
            OrderStatus.PENDING,
            OrderStatus.PAID,
            OrderStatus.COMMITTED,
            OrderStatus.COLLECTED,
            OrderStatus.IN_TRANSIT,
            OrderStatus.DELIVERED,
        ],
    )
    def test_dispute_from_any_non_terminal_state(self, state):
        """Спор открывается из любого нетерминального статуса"""
        assert OrderStateMachine.can_apply(state, OrderEvent.DISPUTE_RAISED)

    def test_disputed_order_is_frozen(self):
        """Автоматические события не применяются к заказу в споре"""
        for event in (
            OrderEvent.COMMIT_EXPIRED,
            OrderEvent.SELLER_COMMITTED,
            OrderEvent.DELIVERY_CONFIRMATION_TIMEOUT,
        ):
            with pytest.raises(InvalidTransitionError, match="спором"):
                OrderStateMachine.validate_transition(OrderStatus.DISPUTED, event)

    def test_wrong_source_state_without_exception(self):
        """raise_exception=False возвращает результат с текстом ошибки"""
        result = OrderStateMachine.validate_transition(
            OrderStatus.PENDING, OrderEvent.SELLER_COMMITTED, raise_exception=False
        )

        assert not result.is_valid
        assert result.error_message
        assert "paid" in result.error_message

    def test_available_events_from_paid(self):
        """События, доступные из статуса paid"""
        events = OrderStateMachine.get_available_events(OrderStatus.PAID)

        assert set(events) == {
            OrderEvent.SELLER_COMMITTED,
            OrderEvent.SELLER_DECLINED,
            OrderEvent.COMMIT_EXPIRED,
            OrderEvent.DISPUTE_RAISED,
        }

    def test_is_terminal_state(self):
        """Терминальность выводится из графа"""
        for status in OrderStatus.TERMINAL:
            assert OrderStateMachine.is_terminal_state(status)
        assert not OrderStateMachine.is_terminal_state(OrderStatus.DISPUTED)
        assert not OrderStateMachine.is_terminal_state(OrderStatus.PENDING)

    def test_unknown_event(self):
        """Неизвестное событие - KeyError"""
        with pytest.raises(KeyError):
            OrderStateMachine.validate_transition(OrderStatus.PAID, "teleported")
