"""
SQLAlchemy ORM модели для базы данных
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

from marketplace.utils.helpers import get_now


# Базовый класс для всех моделей
Base = declarative_base()

_ORDER_STATUSES = (
    "'pending', 'paid', 'committed', 'collected', 'in_transit', 'delivered', "
    "'completed', 'cancelled', 'expired', 'refunded', 'disputed'"
)


class Order(Base):
    """Заказ: одна запись на продавца в рамках оформления"""

    __tablename__ = "orders"

    # Основные поля
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # Финансовые поля (минимальные единицы валюты)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    book_price_subtotal: Mapped[int] = mapped_column(Integer, nullable=False)
    delivery_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    platform_commission: Mapped[int] = mapped_column(Integer, nullable=False)
    seller_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ZAR")

    # Оплата и окно подтверждения
    payment_reference: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    commit_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    seller_committed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    committed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    commit_reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Доставка
    delivery_address: Mapped[dict] = mapped_column(JSON, nullable=False)
    pickup_address: Mapped[dict] = mapped_column(JSON, nullable=False)
    courier_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    courier_service: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    collected_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Выплата продавцу
    seller_recipient_code: Mapped[str] = mapped_column(String(100), nullable=False)
    payout_held: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Возврат покупателю
    refund_status: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    refund_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    refund_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refund_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Споры и отказы
    decline_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dispute_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status_before_dispute: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=get_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=get_now, onupdate=get_now
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    # Связи
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.position",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory", back_populates="order", cascade="all, delete-orphan"
    )
    payout: Mapped[Optional["PayoutTransaction"]] = relationship(
        "PayoutTransaction", back_populates="order", uselist=False
    )

    __table_args__ = (
        Index("idx_orders_status", "status"),
        Index("idx_orders_seller_status", "seller_id", "status"),
        Index("idx_orders_buyer", "buyer_id"),
        Index("idx_orders_commit_deadline", "status", "commit_deadline"),
        CheckConstraint(f"status IN ({_ORDER_STATUSES})", name="chk_orders_status"),
        CheckConstraint(
            "seller_amount + platform_commission = book_price_subtotal",
            name="chk_orders_commission_split",
        ),
        CheckConstraint("amount = book_price_subtotal + delivery_fee", name="chk_orders_amount"),
        CheckConstraint("book_price_subtotal >= 0", name="chk_orders_subtotal"),
        CheckConstraint("delivery_fee >= 0", name="chk_orders_delivery_fee"),
    )

    @property
    def short_id(self) -> str:
        """Короткий номер заказа для уведомлений"""
        return self.id[:8]

    @property
    def item_ids(self) -> list[str]:
        """ID купленных товаров в порядке покупки"""
        return [item.item_id for item in self.items]


class OrderItem(Base):
    """Позиция заказа с ценой, зафиксированной при оформлении"""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        Index("idx_order_items_order", "order_id"),
        CheckConstraint("unit_price >= 0", name="chk_order_items_price"),
        CheckConstraint("quantity > 0", name="chk_order_items_quantity"),
    )


class OrderStatusHistory(Base):
    """История переходов статусов заказа"""

    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False)
    old_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    event: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=get_now)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    __table_args__ = (
        Index("idx_status_history_order", "order_id"),
        Index("idx_status_history_changed_at", "changed_at"),
    )


class PayoutTransaction(Base):
    """Выплата продавцу (не более одной на заказ)"""

    __tablename__ = "payout_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id"), unique=True, nullable=False
    )
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transfer_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    transfer_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    requires_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=get_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=get_now, onupdate=get_now
    )

    order: Mapped["Order"] = relationship("Order", back_populates="payout")

    __table_args__ = (
        Index("idx_payouts_status", "status"),
        Index("idx_payouts_seller", "seller_id"),
        Index("idx_payouts_status_claimed", "status", "claimed_at"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="chk_payouts_status",
        ),
        CheckConstraint("amount >= 0", name="chk_payouts_amount"),
        CheckConstraint("retry_count >= 0", name="chk_payouts_retry_count"),
    )


class Listing(Base):
    """Объявление о продаже товара (минимум, нужный ядру)"""

    __tablename__ = "listings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=get_now, onupdate=get_now
    )

    __table_args__ = (Index("idx_listings_seller", "seller_id"),)
