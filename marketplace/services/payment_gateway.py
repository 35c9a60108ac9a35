"""
Клиент платёжного шлюза (Paystack-совместимый API)

Операции: проверка платежа, перевод продавцу, статус перевода, возврат.
Ответы шлюза нормализуются в TransferState. Таймауты, 5xx и нечитаемые
ответы - UpstreamUnavailableError (исход неизвестен). Ошибка соединения до
отправки запроса - GatewayRequestNotSentError (деньги точно не двигались).
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from marketplace.core.constants import TransferState
from marketplace.domain.errors import GatewayRequestNotSentError, UpstreamUnavailableError
from marketplace.utils.pii_masking import mask_code, mask_reference


logger = logging.getLogger(__name__)

SERVICE_NAME = "payment_gateway"

_SUCCESS_STATUSES = frozenset({"success", "processed"})
_PENDING_STATUSES = frozenset({"pending", "otp", "received", "processing", "queued", "ongoing"})
_FAILED_STATUSES = frozenset({"failed", "reversed", "abandoned", "rejected", "blocked"})

# Сообщения шлюза о том, что возврат по транзакции уже сделан
_ALREADY_REFUNDED_MARKERS = ("fully reversed", "already been refunded", "already refunded")


def normalize_status(raw_status: str | None) -> str:
    """
    Нормализация статуса шлюза

    Успехом считается только success. Неизвестные статусы считаются
    неокончательными (pending), чтобы не потерять деньги на повторе.
    """
    status = (raw_status or "").strip().lower()
    if status in _SUCCESS_STATUSES:
        return TransferState.SUCCESS
    if status in _FAILED_STATUSES:
        return TransferState.FAILED
    if status in _PENDING_STATUSES:
        return TransferState.PENDING
    logger.warning(f"Неизвестный статус шлюза '{raw_status}', считаем неокончательным")
    return TransferState.PENDING


@dataclass
class PaymentVerification:
    """Результат проверки платежа"""

    status: str
    amount: int = 0
    reference: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    message: str = ""

    @property
    def is_successful(self) -> bool:
        return self.status == TransferState.SUCCESS


@dataclass
class TransferResult:
    """Результат инициации перевода или запроса его статуса"""

    status: str
    transfer_code: str | None = None
    reference: str | None = None
    message: str = ""


@dataclass
class RefundResult:
    """Результат запроса возврата"""

    status: str
    reference: str | None = None
    message: str = ""


class PaystackGateway:
    """
    HTTP клиент платёжного шлюза

    Клиент создаётся явно и передаётся в сервисы; httpx.AsyncClient
    можно подменить (например, httpx.MockTransport в тестах).
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Инициализация клиента

        Args:
            secret_key: Секретный ключ шлюза
            base_url: Базовый URL API
            timeout: Таймаут запроса (секунды)
            client: Готовый httpx клиент (по умолчанию создаётся свой)
        """
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
            },
        )

    async def close(self) -> None:
        """Закрытие HTTP клиента"""
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> tuple[int, dict[str, Any]]:
        """
        HTTP запрос к шлюзу

        Returns:
            (status_code, тело ответа) для 2xx и 4xx

        Raises:
            GatewayRequestNotSentError: Соединение не установлено
            UpstreamUnavailableError: Таймаут, 5xx или нечитаемый ответ
        """
        try:
            response = await self._client.request(method, path, json=payload)
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise GatewayRequestNotSentError(SERVICE_NAME, f"{method} {path}: {e}") from e
        except httpx.TimeoutException as e:
            raise UpstreamUnavailableError(SERVICE_NAME, f"{method} {path}: таймаут") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(SERVICE_NAME, f"{method} {path}: {e}") from e

        if response.status_code >= 500:
            raise UpstreamUnavailableError(SERVICE_NAME, f"{method} {path}: HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(SERVICE_NAME, f"{method} {path}: некорректный JSON") from e

        if not isinstance(body, dict):
            raise UpstreamUnavailableError(SERVICE_NAME, f"{method} {path}: неожиданный формат ответа")

        return response.status_code, body

    # ===== ПЛАТЕЖИ =====

    async def verify_payment(self, reference: str) -> PaymentVerification:
        """
        Проверка платежа покупателя

        Args:
            reference: Ссылка платежа (payment_reference заказа)

        Returns:
            PaymentVerification с нормализованным статусом
        """
        status_code, body = await self._request("GET", f"/transaction/verify/{reference}")
        message = str(body.get("message", ""))

        if status_code == 404:
            return PaymentVerification(TransferState.NOT_FOUND, reference=reference, message=message)
        if status_code >= 400 or not body.get("status"):
            return PaymentVerification(TransferState.FAILED, reference=reference, message=message)

        data = body.get("data") or {}
        verification = PaymentVerification(
            status=normalize_status(data.get("status")),
            amount=int(data.get("amount") or 0),
            reference=str(data.get("reference") or reference),
            metadata=data.get("metadata") or {},
            message=message,
        )
        logger.info(
            f"Проверка платежа {mask_reference(reference)}: {verification.status}, "
            f"сумма {verification.amount}"
        )
        return verification

    # ===== ПЕРЕВОДЫ =====

    async def initiate_transfer(
        self, recipient: str, amount: int, reference: str, reason: str = ""
    ) -> TransferResult:
        """
        Перевод продавцу с баланса платформы

        Args:
            recipient: Код получателя в шлюзе
            amount: Сумма в минимальных единицах
            reference: Уникальная ссылка перевода (ключ идемпотентности шлюза)
            reason: Назначение перевода

        Returns:
            TransferResult: success, pending (принят, итог позже) или failed
        """
        payload = {
            "source": "balance",
            "amount": amount,
            "recipient": recipient,
            "reference": reference,
            "reason": reason,
        }
        logger.info(
            f"Инициация перевода {reference} на {mask_code(recipient)}, сумма {amount}"
        )
        status_code, body = await self._request("POST", "/transfer", payload)
        message = str(body.get("message", ""))

        if status_code >= 400 or not body.get("status"):
            logger.warning(f"Перевод {reference} отклонён шлюзом: {message}")
            return TransferResult(TransferState.FAILED, reference=reference, message=message)

        data = body.get("data") or {}
        return TransferResult(
            status=normalize_status(data.get("status")),
            transfer_code=data.get("transfer_code"),
            reference=data.get("reference") or reference,
            message=message,
        )

    async def get_transfer_status(self, transfer_code: str) -> TransferResult:
        """Статус перевода по коду шлюза"""
        status_code, body = await self._request("GET", f"/transfer/{transfer_code}")
        return self._transfer_lookup_result(status_code, body, transfer_code=transfer_code)

    async def verify_transfer(self, reference: str) -> TransferResult:
        """Статус перевода по нашей ссылке (когда код перевода не сохранён)"""
        status_code, body = await self._request("GET", f"/transfer/verify/{reference}")
        return self._transfer_lookup_result(status_code, body, reference=reference)

    @staticmethod
    def _transfer_lookup_result(
        status_code: int,
        body: dict[str, Any],
        transfer_code: str | None = None,
        reference: str | None = None,
    ) -> TransferResult:
        message = str(body.get("message", ""))
        if status_code == 404 or (status_code >= 400 and not body.get("status")):
            return TransferResult(
                TransferState.NOT_FOUND,
                transfer_code=transfer_code,
                reference=reference,
                message=message,
            )
        data = body.get("data") or {}
        return TransferResult(
            status=normalize_status(data.get("status")),
            transfer_code=data.get("transfer_code") or transfer_code,
            reference=data.get("reference") or reference,
            message=message,
        )

    # ===== ВОЗВРАТЫ =====

    async def refund(
        self, payment_reference: str, amount: int, reason: str = "", reference: str | None = None
    ) -> RefundResult:
        """
        Возврат платежа покупателю

        Args:
            payment_reference: Ссылка исходного платежа
            amount: Сумма возврата
            reason: Комментарий для шлюза
            reference: Наша ссылка попытки возврата (передаётся в merchant_note)

        Returns:
            RefundResult (повторный возврат уже возвращённой транзакции - success)
        """
        note = f"{reason} [{reference}]".strip() if reference else reason
        payload = {"transaction": payment_reference, "amount": amount, "merchant_note": note}
        status_code, body = await self._request("POST", "/refund", payload)
        message = str(body.get("message", ""))

        if status_code >= 400 or not body.get("status"):
            if any(marker in message.lower() for marker in _ALREADY_REFUNDED_MARKERS):
                logger.info(f"Возврат {mask_reference(payment_reference)} уже выполнен ранее")
                return RefundResult(TransferState.SUCCESS, reference=payment_reference, message=message)
            return RefundResult(TransferState.FAILED, reference=payment_reference, message=message)

        data = body.get("data") or {}
        transaction = data.get("transaction") or {}
        return RefundResult(
            status=normalize_status(data.get("status")),
            reference=str(transaction.get("reference") or payment_reference),
            message=message,
        )

    # ===== WEBHOOK =====

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        """
        Проверка подписи webhook (HMAC-SHA512 тела запроса секретным ключом)

        Args:
            body: Сырые байты тела запроса
            signature: Значение заголовка x-paystack-signature
        """
        if not signature:
            return False
        expected = hmac.new(self.secret_key.encode(), body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)
