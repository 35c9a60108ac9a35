"""
Шаблоны уведомлений

Ключ - имя шаблона, значение - (тема, текст). Подстановка через str.format_map.
"""

NOTIFICATION_TEMPLATES: dict[str, tuple[str, str]] = {
    "payment_received": (
        "Оплата получена",
        "Оплата заказа #{order_short} на сумму {amount} получена. "
        "Продавец должен подтвердить продажу до {commit_deadline}.",
    ),
    "new_order_commit_required": (
        "Новый заказ ожидает подтверждения",
        "У вас новый заказ #{order_short}. Подтвердите продажу до {commit_deadline}, "
        "иначе заказ будет автоматически отменён.",
    ),
    "commit_reminder": (
        "Напоминание: подтвердите заказ",
        "До окончания срока подтверждения заказа #{order_short} осталось меньше {hours_left} ч.",
    ),
    "sale_committed": (
        "Продавец подтвердил заказ",
        "Продавец подтвердил заказ #{order_short}. Посылка готовится к отправке.",
    ),
    "commitment_confirmed": (
        "Подтверждение продажи принято",
        "Вы подтвердили заказ #{order_short}. Подготовьте посылку для курьера.",
    ),
    "order_declined": (
        "Продавец отказался от заказа",
        "Продавец отказался от заказа #{order_short}. Возврат {amount} инициирован.",
    ),
    "order_expired_buyer": (
        "Заказ отменён",
        "Продавец не подтвердил заказ #{order_short} вовремя. Возврат {amount} инициирован.",
    ),
    "order_expired_seller": (
        "Заказ истёк",
        "Срок подтверждения заказа #{order_short} истёк, заказ отменён.",
    ),
    "order_collected": (
        "Посылка передана курьеру",
        "Заказ #{order_short} передан курьеру {courier_name}. Трек-номер: {tracking_number}.",
    ),
    "order_delivered": (
        "Заказ доставлен",
        "Заказ #{order_short} доставлен. Пожалуйста, подтвердите получение.",
    ),
    "order_completed": (
        "Заказ завершён",
        "Заказ #{order_short} завершён. Спасибо за покупку!",
    ),
    "dispute_opened": (
        "Открыт спор по заказу",
        "По заказу #{order_short} открыт спор: {reason}. Автоматические действия приостановлены.",
    ),
    "dispute_resolved": (
        "Спор закрыт",
        "Спор по заказу #{order_short} закрыт: {resolution}.",
    ),
    "payout_completed": (
        "Выплата отправлена",
        "Выплата {amount} по заказу #{order_short} отправлена. Код перевода: {transfer_code}.",
    ),
    "payout_failed": (
        "Выплата не выполнена",
        "Выплата по заказу #{order_short} не выполнена после {attempts} попыток: {error}.",
    ),
    "payout_review_required": (
        "Выплата требует проверки",
        "Выплата по заказу #{order_short} выполнена во время открытого спора. Требуется проверка.",
    ),
    "payout_cancelled": (
        "Выплата снята с очереди",
        "Выплата по заказу #{order_short} снята с очереди: заказ в статусе {status}. Требуется проверка.",
    ),
    "refund_processed": (
        "Возврат выполнен",
        "Возврат {amount} по заказу #{order_short} выполнен.",
    ),
}
