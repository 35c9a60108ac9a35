"""
Доменные исключения
"""

from marketplace.core.constants import ErrorCode, OrderStatus


class MarketplaceError(Exception):
    """Базовое доменное исключение"""

    code: str = ErrorCode.INTERNAL_ERROR


class ValidationError(MarketplaceError):
    """Некорректные входные данные, отклоняются до изменения состояния"""

    code = ErrorCode.VALIDATION_ERROR


class IncompleteAddressError(ValidationError):
    """Адрес без улицы, города, провинции или почтового индекса"""

    code = ErrorCode.INCOMPLETE_ADDRESS

    def __init__(self, party: str, missing_fields: list[str]):
        self.party = party
        self.missing_fields = missing_fields
        super().__init__(
            f"Неполный адрес ({party}): отсутствуют поля {', '.join(missing_fields)}"
        )


class PaymentMismatchError(ValidationError):
    """Сумма подтверждённого платежа не совпадает с суммой заказа"""

    code = ErrorCode.PAYMENT_MISMATCH

    def __init__(self, reference: str, expected: int, actual: int):
        self.reference = reference
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Платёж {reference}: ожидалось {expected}, получено {actual}"
        )


class OrderNotFoundError(MarketplaceError):
    """Заказ не найден"""

    code = ErrorCode.NOT_FOUND

    def __init__(self, lookup: str):
        self.lookup = lookup
        super().__init__(f"Заказ не найден: {lookup}")


class InvalidTransitionError(MarketplaceError):
    """Событие недопустимо из текущего статуса заказа"""

    code = ErrorCode.INVALID_TRANSITION

    def __init__(self, from_state: str, event: str, reason: str = ""):
        self.from_state = from_state
        self.event = event
        self.reason = reason
        message = (
            f"Событие '{event}' недопустимо из статуса "
            f"'{OrderStatus.get_status_name(from_state)}'"
        )
        if reason:
            message += f": {reason}"
        super().__init__(message)


class DeadlinePassedError(MarketplaceError):
    """Окно подтверждения продажи истекло"""

    code = ErrorCode.DEADLINE_PASSED

    def __init__(self, order_id: str, deadline):
        self.order_id = order_id
        self.deadline = deadline
        super().__init__(f"Срок подтверждения заказа {order_id} истёк ({deadline})")


class UnauthorizedError(MarketplaceError):
    """Действие выполняет не продавец/покупатель заказа"""

    code = ErrorCode.UNAUTHORIZED

    def __init__(self, order_id: str, actor_id: str):
        self.order_id = order_id
        self.actor_id = actor_id
        super().__init__(f"Пользователь {actor_id} не может изменять заказ {order_id}")


class UpstreamUnavailableError(MarketplaceError):
    """Внешний сервис (шлюз, курьер) недоступен или ответ неоднозначен"""

    code = ErrorCode.UPSTREAM_UNAVAILABLE

    def __init__(self, service: str, detail: str = ""):
        self.service = service
        self.detail = detail
        message = f"Сервис {service} недоступен"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class GatewayRequestNotSentError(UpstreamUnavailableError):
    """
    Запрос к шлюзу не был отправлен (ошибка соединения)

    В отличие от таймаута, исход однозначен: деньги не двигались.
    """
