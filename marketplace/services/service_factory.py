"""
Factory для создания сервисов и репозиториев
"""

import logging
from typing import Any

from marketplace.core.config import Config, Settings
from marketplace.database.orm_database import ORMDatabase
from marketplace.repositories import ListingRepository, OrderRepository, PayoutRepository
from marketplace.services.cart_splitter import CartSplitter
from marketplace.services.courier_quotes import CourierQuoteClient
from marketplace.services.expiry_sweeper import ExpirySweeper
from marketplace.services.marketplace_service import MarketplaceService
from marketplace.services.notifications import (
    HttpNotificationTransport,
    LoggingNotificationTransport,
    NotificationDispatcher,
)
from marketplace.services.order_lifecycle import OrderLifecycleEngine
from marketplace.services.payment_gateway import PaystackGateway
from marketplace.services.payout_settlement import PayoutSettlementEngine


logger = logging.getLogger(__name__)


class ServiceFactory:
    """
    Factory для создания сервисов с инжекцией зависимостей

    Внешние клиенты (шлюз, курьеры, уведомления) можно передать явно,
    иначе они создаются из Config при первом обращении.
    """

    def __init__(
        self,
        db: ORMDatabase,
        settings: Settings | None = None,
        gateway: Any | None = None,
        courier_client: CourierQuoteClient | None = None,
        notifier: NotificationDispatcher | None = None,
    ):
        """
        Инициализация фабрики

        Args:
            db: Подключение к базе данных
            settings: Настройки движков (по умолчанию из Config)
            gateway: Клиент платёжного шлюза
            courier_client: Клиент курьерских тарифов
            notifier: Диспетчер уведомлений
        """
        self.db = db
        self.settings = settings or Settings.from_config()
        self._gateway = gateway
        self._courier_client = courier_client
        self._notifier = notifier
        self._order_repo = None
        self._payout_repo = None
        self._listing_repo = None
        self._lifecycle = None
        self._payout_engine = None
        self._expiry_sweeper = None
        self._marketplace_service = None

    # ===== РЕПОЗИТОРИИ =====

    @property
    def order_repository(self) -> OrderRepository:
        """Ленивая инициализация OrderRepository"""
        if self._order_repo is None:
            self._order_repo = OrderRepository(self.db)
        return self._order_repo

    @property
    def payout_repository(self) -> PayoutRepository:
        """Ленивая инициализация PayoutRepository"""
        if self._payout_repo is None:
            self._payout_repo = PayoutRepository(self.db)
        return self._payout_repo

    @property
    def listing_repository(self) -> ListingRepository:
        """Ленивая инициализация ListingRepository"""
        if self._listing_repo is None:
            self._listing_repo = ListingRepository(self.db)
        return self._listing_repo

    # ===== ВНЕШНИЕ КЛИЕНТЫ =====

    @property
    def gateway(self) -> Any:
        """Клиент платёжного шлюза"""
        if self._gateway is None:
            self._gateway = PaystackGateway(
                secret_key=Config.PAYSTACK_SECRET_KEY,
                base_url=Config.PAYSTACK_BASE_URL,
                timeout=Config.GATEWAY_TIMEOUT_SECONDS,
            )
        return self._gateway

    @property
    def courier_client(self) -> CourierQuoteClient:
        """Клиент курьерских тарифов"""
        if self._courier_client is None:
            self._courier_client = CourierQuoteClient(
                provider_urls=Config.COURIER_API_URLS,
                api_key=Config.COURIER_API_KEY,
                timeout=Config.COURIER_TIMEOUT_SECONDS,
            )
        return self._courier_client

    @property
    def notifier(self) -> NotificationDispatcher:
        """Диспетчер уведомлений"""
        if self._notifier is None:
            if Config.NOTIFICATION_SERVICE_URL:
                transport = HttpNotificationTransport(
                    Config.NOTIFICATION_SERVICE_URL,
                    api_key=Config.NOTIFICATION_API_KEY,
                    timeout=Config.NOTIFICATION_TIMEOUT_SECONDS,
                )
            else:
                logger.info("NOTIFICATION_SERVICE_URL не задан, уведомления пишутся в лог")
                transport = LoggingNotificationTransport()
            self._notifier = NotificationDispatcher(transport, admin_recipient=Config.ADMIN_RECIPIENT)
        return self._notifier

    # ===== ДВИЖКИ =====

    @property
    def payout_engine(self) -> PayoutSettlementEngine:
        """Движок выплат"""
        if self._payout_engine is None:
            self._payout_engine = PayoutSettlementEngine(
                payouts=self.payout_repository,
                orders=self.order_repository,
                gateway=self.gateway,
                notifier=self.notifier,
                settings=self.settings,
            )
        return self._payout_engine

    @property
    def lifecycle(self) -> OrderLifecycleEngine:
        """Движок жизненного цикла заказа"""
        if self._lifecycle is None:
            self._lifecycle = OrderLifecycleEngine(
                orders=self.order_repository,
                listings=self.listing_repository,
                gateway=self.gateway,
                notifier=self.notifier,
                settings=self.settings,
                payouts=self.payout_engine,
            )
        return self._lifecycle

    @property
    def expiry_sweeper(self) -> ExpirySweeper:
        """Проходы по срокам заказов"""
        if self._expiry_sweeper is None:
            self._expiry_sweeper = ExpirySweeper(
                orders=self.order_repository,
                lifecycle=self.lifecycle,
                notifier=self.notifier,
                settings=self.settings,
            )
        return self._expiry_sweeper

    @property
    def marketplace_service(self) -> MarketplaceService:
        """Получение MarketplaceService"""
        if self._marketplace_service is None:
            self._marketplace_service = MarketplaceService(
                lifecycle=self.lifecycle,
                payouts=self.payout_engine,
                sweeper=self.expiry_sweeper,
                splitter=CartSplitter(self.settings),
                courier=self.courier_client,
                gateway=self.gateway,
            )
        return self._marketplace_service

    async def close(self):
        """Завершение фоновых уведомлений и закрытие HTTP клиентов"""
        if self._notifier is not None:
            await self._notifier.drain()
            transport_close = getattr(self._notifier.transport, "close", None)
            if transport_close is not None:
                await transport_close()
        for client in (self._gateway, self._courier_client):
            close = getattr(client, "close", None)
            if close is not None:
                await close()
        logger.debug("ServiceFactory: клиенты закрыты")
