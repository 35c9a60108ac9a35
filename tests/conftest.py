"""
Pytest fixtures и конфигурация для тестов
"""
import hashlib
import hmac
import sys
from collections.abc import AsyncGenerator
from datetime import datetime
from pathlib import Path

import pytest
import pytest_asyncio


# Добавляем корневую директорию в PYTHONPATH
ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR))

from marketplace.core.config import Settings
from marketplace.core.constants import TransferState
from marketplace.database import Listing, ORMDatabase
from marketplace.schemas.cart import Address, CartItem, SellerProfile
from marketplace.services.cart_splitter import CartSplitter
from marketplace.services.courier_quotes import CourierQuoteClient
from marketplace.services.notifications import NotificationDispatcher
from marketplace.services.payment_gateway import (
    PaymentVerification,
    RefundResult,
    TransferResult,
)
from marketplace.services.service_factory import ServiceFactory


# Фиксированный момент оплаты для сценариев со сроками
T0 = datetime(2026, 3, 2, 9, 0, 0)

WEBHOOK_SECRET = "sk_test_webhook"

BUYER_ADDRESS = Address(
    street="12 Long Street", city="Cape Town", province="Western Cape", postal_code="8001"
)
SELLER_ADDRESS = Address(
    street="5 Main Road", city="Johannesburg", province="Gauteng", postal_code="2001"
)


def seller_profile(seller_id: str, recipient_code: str | None = "RCP_test_seller") -> SellerProfile:
    """Профиль продавца с полным адресом"""
    return SellerProfile(
        seller_id=seller_id, pickup_address=SELLER_ADDRESS, recipient_code=recipient_code
    )


class FakeGateway:
    """
    Платёжный шлюз в памяти

    Результаты настраиваются атрибутами, все вызовы записываются.
    """

    def __init__(self):
        self.payments: dict[str, PaymentVerification] = {}
        self.verify_error: Exception | None = None

        # Очередь результатов initiate_transfer (TransferResult или исключение)
        self.transfer_results: list = []
        self.transfer_default = TransferResult(TransferState.SUCCESS, transfer_code="TRF_default")
        # Ответы сверки по transfer_code или reference
        self.transfer_lookups: dict[str, TransferResult] = {}

        self.refund_result = RefundResult(TransferState.SUCCESS)
        self.refund_error: Exception | None = None

        self.verify_calls: list[str] = []
        self.transfer_calls: list[dict] = []
        self.refund_calls: list[dict] = []

    def accept_payment(self, order, amount: int | None = None) -> None:
        """Шлюз подтвердит оплату заказа"""
        self.payments[order.payment_reference] = PaymentVerification(
            status=TransferState.SUCCESS,
            amount=order.amount if amount is None else amount,
            reference=order.payment_reference,
        )

    async def verify_payment(self, reference: str) -> PaymentVerification:
        self.verify_calls.append(reference)
        if self.verify_error is not None:
            raise self.verify_error
        return self.payments.get(
            reference, PaymentVerification(TransferState.NOT_FOUND, reference=reference)
        )

    async def initiate_transfer(
        self, recipient: str, amount: int, reference: str, reason: str = ""
    ) -> TransferResult:
        self.transfer_calls.append(
            {"recipient": recipient, "amount": amount, "reference": reference, "reason": reason}
        )
        outcome = self.transfer_results.pop(0) if self.transfer_results else self.transfer_default
        if isinstance(outcome, Exception):
            raise outcome
        return TransferResult(
            status=outcome.status,
            transfer_code=outcome.transfer_code,
            reference=reference,
            message=outcome.message,
        )

    async def get_transfer_status(self, transfer_code: str) -> TransferResult:
        return self.transfer_lookups.get(
            transfer_code, TransferResult(TransferState.PENDING, transfer_code=transfer_code)
        )

    async def verify_transfer(self, reference: str) -> TransferResult:
        return self.transfer_lookups.get(
            reference, TransferResult(TransferState.NOT_FOUND, reference=reference)
        )

    async def refund(
        self, payment_reference: str, amount: int, reason: str = "", reference: str | None = None
    ) -> RefundResult:
        self.refund_calls.append(
            {"payment_reference": payment_reference, "amount": amount, "reason": reason, "reference": reference}
        )
        if self.refund_error is not None:
            raise self.refund_error
        return self.refund_result

    @staticmethod
    def sign(body: bytes) -> str:
        return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha512).hexdigest()

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        return bool(signature) and hmac.compare_digest(self.sign(body), signature)


class RecordingTransport:
    """Транспорт уведомлений, запоминающий отправленное"""

    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, notification) -> bool:
        if self.fail:
            raise RuntimeError("notification service down")
        self.sent.append(notification)
        return True

    def templates(self, recipient: str | None = None) -> list[str]:
        return [n.template for n in self.sent if recipient is None or n.recipient == recipient]


@pytest.fixture
def settings() -> Settings:
    """
    Фикстура для настроек движков (значения по умолчанию)
    """
    return Settings()


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncGenerator[ORMDatabase, None]:
    """
    Фикстура для тестовой базы данных (файл SQLite на тест)
    """
    database = ORMDatabase(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await database.connect()
    await database.create_all()
    yield database
    await database.disconnect()


@pytest.fixture
def gateway() -> FakeGateway:
    """
    Фикстура для платёжного шлюза
    """
    return FakeGateway()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def notifier(transport: RecordingTransport) -> NotificationDispatcher:
    """
    Фикстура для диспетчера уведомлений с записывающим транспортом
    """
    return NotificationDispatcher(transport, admin_recipient="admin")


@pytest_asyncio.fixture
async def make_services(db, gateway, notifier):
    """
    Фабрика ServiceFactory с произвольными настройками
    """
    created: list[ServiceFactory] = []

    def _make(settings: Settings | None = None) -> ServiceFactory:
        services = ServiceFactory(
            db,
            settings or Settings(),
            gateway=gateway,
            courier_client=CourierQuoteClient([]),
            notifier=notifier,
        )
        created.append(services)
        return services

    yield _make

    for services in created:
        await services.close()


@pytest.fixture
def services(make_services, settings) -> ServiceFactory:
    """
    Фикстура для фабрики сервисов с настройками по умолчанию
    """
    return make_services(settings)


@pytest.fixture
def place_order(gateway):
    """
    Оформление заказа одного продавца и (по умолчанию) его оплата в момент T0
    """

    async def _place(
        services: ServiceFactory,
        seller_id: str = "seller-1",
        buyer_id: str = "buyer-1",
        items: list[CartItem] | None = None,
        paid_at: datetime | None = T0,
    ):
        items = items or [
            CartItem(item_id=f"{seller_id}-book-1", seller_id=seller_id, title="Calculus", unit_price=25000)
        ]
        for item in items:
            await services.listing_repository.add(
                Listing(id=item.item_id, seller_id=item.seller_id, title=item.title, price=item.unit_price)
            )

        split = CartSplitter(services.settings).split(
            BUYER_ADDRESS, items, {seller_id: seller_profile(seller_id)}
        )
        orders = await services.lifecycle.create_orders(buyer_id, split.seller_carts, BUYER_ADDRESS)
        order = orders[0]
        if paid_at is None:
            return order

        gateway.accept_payment(order)
        outcome = await services.lifecycle.confirm_payment(order.payment_reference, now=paid_at)
        return outcome.order

    return _place
