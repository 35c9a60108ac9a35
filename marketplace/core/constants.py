"""
Константы приложения - статусы заказов, выплат, события
"""


class OrderStatus:
    """Статусы заказов"""

    PENDING = "pending"  # Ожидает оплаты
    PAID = "paid"  # Оплачен, ждём подтверждения продавца
    COMMITTED = "committed"  # Продавец подтвердил продажу
    COLLECTED = "collected"  # Курьер забрал посылку
    IN_TRANSIT = "in_transit"  # В пути
    DELIVERED = "delivered"  # Доставлен
    COMPLETED = "completed"  # Завершён, можно выплачивать
    CANCELLED = "cancelled"  # Продавец отказался
    EXPIRED = "expired"  # Истекло окно подтверждения
    REFUNDED = "refunded"  # Возврат покупателю после спора
    DISPUTED = "disputed"  # Открыт спор

    TERMINAL = frozenset({COMPLETED, CANCELLED, EXPIRED, REFUNDED})

    # Статусы, в которых продавец уже принял обязательство
    COMMITTED_STATES = frozenset({COMMITTED, COLLECTED, IN_TRANSIT, DELIVERED, COMPLETED})

    @classmethod
    def all_statuses(cls) -> list[str]:
        """Список всех статусов"""
        return [
            cls.PENDING,
            cls.PAID,
            cls.COMMITTED,
            cls.COLLECTED,
            cls.IN_TRANSIT,
            cls.DELIVERED,
            cls.COMPLETED,
            cls.CANCELLED,
            cls.EXPIRED,
            cls.REFUNDED,
            cls.DISPUTED,
        ]

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        """Является ли статус терминальным"""
        return status in cls.TERMINAL

    @classmethod
    def get_status_name(cls, status: str) -> str:
        """Человекочитаемое название статуса"""
        names = {
            cls.PENDING: "Ожидает оплаты",
            cls.PAID: "Оплачен",
            cls.COMMITTED: "Подтверждён продавцом",
            cls.COLLECTED: "Передан курьеру",
            cls.IN_TRANSIT: "В пути",
            cls.DELIVERED: "Доставлен",
            cls.COMPLETED: "Завершён",
            cls.CANCELLED: "Отменён",
            cls.EXPIRED: "Истёк",
            cls.REFUNDED: "Возвращён",
            cls.DISPUTED: "Спор",
        }
        return names.get(status, status)


class OrderEvent:
    """События жизненного цикла заказа"""

    PAYMENT_CONFIRMED = "payment_confirmed"
    SELLER_COMMITTED = "seller_committed"
    SELLER_DECLINED = "seller_declined"
    COMMIT_EXPIRED = "commit_expired"
    COURIER_COLLECTED = "courier_collected"
    COURIER_IN_TRANSIT = "courier_in_transit"
    DELIVERED = "delivered"
    RECEIPT_CONFIRMED = "receipt_confirmed"
    DELIVERY_CONFIRMATION_TIMEOUT = "delivery_confirmation_timeout"
    DISPUTE_RAISED = "dispute_raised"
    DISPUTE_RESOLVED_PAY_SELLER = "dispute_resolved_pay_seller"
    DISPUTE_RESOLVED_REFUND = "dispute_resolved_refund"


class PayoutStatus:
    """Статусы выплат продавцам"""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def all_statuses(cls) -> list[str]:
        """Список всех статусов выплат"""
        return [cls.PENDING, cls.PROCESSING, cls.COMPLETED, cls.FAILED]


class RefundStatus:
    """Статусы возврата средств покупателю"""

    NONE = "none"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PayoutTrigger:
    """Условие, при котором заказ становится доступным для выплаты"""

    COMPLETED = "completed"
    DELIVERED = "delivered"
    COLLECTED_HELD = "collected_held"

    @classmethod
    def all_triggers(cls) -> list[str]:
        """Список допустимых триггеров"""
        return [cls.COMPLETED, cls.DELIVERED, cls.COLLECTED_HELD]


class TransferState:
    """Нормализованный результат операций шлюза"""

    SUCCESS = "success"
    PENDING = "pending"  # Шлюз принял перевод, результат ещё не окончательный
    FAILED = "failed"
    NOT_FOUND = "not_found"


class NotificationChannel:
    """Каналы доставки уведомлений"""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"

    @classmethod
    def all_channels(cls) -> list[str]:
        """Список каналов"""
        return [cls.EMAIL, cls.SMS, cls.PUSH, cls.IN_APP]


class ErrorCode:
    """Коды ошибок на границе с UI/API"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INCOMPLETE_ADDRESS = "INCOMPLETE_ADDRESS"
    PAYMENT_MISMATCH = "PAYMENT_MISMATCH"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    DEADLINE_PASSED = "DEADLINE_PASSED"
    UNAUTHORIZED = "UNAUTHORIZED"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    CONFLICT_RETRY = "CONFLICT_RETRY"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class BlockReason:
    """Причины исключения продавца из оформления заказа"""

    NO_PAYABLE_RECIPIENT = "NoPayableRecipient"
    UNKNOWN_SELLER = "UnknownSeller"


# Крупные провинции для расчёта резервных тарифов доставки
MAJOR_PROVINCES = frozenset({"Gauteng", "Western Cape", "KwaZulu-Natal"})
