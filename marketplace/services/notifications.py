"""
Диспетчер уведомлений

Уведомления отправляются в фоне (fire-and-forget): ошибка доставки
логируется и никогда не откатывает и не блокирует переход заказа.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from marketplace.core.constants import NotificationChannel
from marketplace.core.templates import NOTIFICATION_TEMPLATES
from marketplace.utils.retry import retry_on_http_error


logger = logging.getLogger(__name__)


class _TemplateVars(dict):
    """Переменные шаблона: отсутствующие подставляются как '-'"""

    def __missing__(self, key: str) -> str:
        return "-"


@dataclass
class Notification:
    """Отрисованное уведомление"""

    template: str
    recipient: str
    channel: str
    subject: str
    body: str
    variables: dict[str, Any] = field(default_factory=dict)


def render_template(template_name: str, variables: dict[str, Any]) -> tuple[str, str]:
    """
    Отрисовка шаблона уведомления

    Raises:
        KeyError: Неизвестный шаблон
    """
    subject, body = NOTIFICATION_TEMPLATES[template_name]
    values = _TemplateVars(variables)
    return subject.format_map(values), body.format_map(values)


class LoggingNotificationTransport:
    """Транспорт для разработки: уведомления пишутся в лог"""

    async def send(self, notification: Notification) -> bool:
        logger.info(
            f"[{notification.channel}] -> {notification.recipient}: "
            f"{notification.subject} | {notification.body}"
        )
        return True


class HttpNotificationTransport:
    """Отправка уведомлений во внешний сервис рассылок"""

    def __init__(
        self,
        service_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            service_url: URL сервиса уведомлений
            api_key: Ключ API
            timeout: Таймаут запроса (секунды)
            client: Готовый httpx клиент
        """
        self.service_url = service_url.rstrip("/")
        self._owns_client = client is None
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout), headers=headers)

    async def close(self) -> None:
        """Закрытие HTTP клиента"""
        if self._owns_client:
            await self._client.aclose()

    @retry_on_http_error(max_attempts=3, base_delay=1.0)
    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        return await self._client.post(f"{self.service_url}/notifications", json=payload)

    async def send(self, notification: Notification) -> bool:
        payload = {
            "template": notification.template,
            "recipient": notification.recipient,
            "channel": notification.channel,
            "subject": notification.subject,
            "body": notification.body,
        }
        response = await self._post(payload)
        if response is None:
            return False
        if response.status_code >= 400:
            logger.warning(
                f"Сервис уведомлений ответил HTTP {response.status_code} "
                f"для шаблона {notification.template}"
            )
            return False
        return True


class NotificationDispatcher:
    """
    Диспетчер уведомлений

    dispatch() не ждёт отправки: задача запускается в фоне и
    отслеживается, drain() дожидается всех отправок (тесты, остановка).
    """

    def __init__(self, transport: Any | None = None, admin_recipient: str = "admin"):
        """
        Args:
            transport: Объект с async send(Notification) -> bool
            admin_recipient: Получатель служебных уведомлений
        """
        self.transport = transport or LoggingNotificationTransport()
        self.admin_recipient = admin_recipient
        self._tasks: set[asyncio.Task] = set()

    def dispatch(
        self,
        template_name: str,
        recipient: str,
        variables: dict[str, Any] | None = None,
        channel: str = NotificationChannel.EMAIL,
    ) -> asyncio.Task | None:
        """
        Отправка уведомления в фоне

        Args:
            template_name: Имя шаблона из NOTIFICATION_TEMPLATES
            recipient: ID пользователя (адрес определяет сервис рассылок)
            variables: Переменные шаблона
            channel: Канал доставки

        Returns:
            Фоновая задача или None, если уведомление отброшено
        """
        variables = variables or {}
        if channel not in NotificationChannel.all_channels():
            logger.error(f"Неизвестный канал уведомлений: {channel}")
            return None
        try:
            subject, body = render_template(template_name, variables)
        except KeyError:
            logger.error(f"Неизвестный шаблон уведомления: {template_name}")
            return None

        notification = Notification(
            template=template_name,
            recipient=recipient,
            channel=channel,
            subject=subject,
            body=body,
            variables=variables,
        )
        task = asyncio.get_running_loop().create_task(self._send(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def notify_admin(self, template_name: str, variables: dict[str, Any] | None = None) -> asyncio.Task | None:
        """Служебное уведомление администратору"""
        return self.dispatch(template_name, self.admin_recipient, variables)

    async def _send(self, notification: Notification) -> None:
        try:
            delivered = await self.transport.send(notification)
        except Exception as e:
            logger.error(
                f"Ошибка отправки уведомления {notification.template} "
                f"для {notification.recipient}: {e}",
                exc_info=True,
            )
            return

        if delivered:
            logger.debug(f"Уведомление {notification.template} отправлено {notification.recipient}")
        else:
            logger.warning(
                f"Уведомление {notification.template} для {notification.recipient} не доставлено"
            )

    @property
    def pending(self) -> int:
        """Количество незавершённых отправок"""
        return len(self._tasks)

    async def drain(self) -> None:
        """Ожидание всех фоновых отправок"""
        while self._tasks:
            tasks = list(self._tasks)
            await asyncio.gather(*tasks, return_exceptions=True)
            self._tasks.difference_update(tasks)
