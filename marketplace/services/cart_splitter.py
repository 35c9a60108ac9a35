"""
Разделение корзины покупателя на заказы по продавцам

Чистое вычисление: тарифы доставки запрашивает вызывающий код,
здесь нет сетевых вызовов и записи в хранилище.
"""

import logging
from typing import Any, Iterable, Mapping

from marketplace.core.config import Settings
from marketplace.core.constants import BlockReason
from marketplace.domain.commission import split_subtotal
from marketplace.domain.errors import IncompleteAddressError, ValidationError
from marketplace.schemas.cart import (
    Address,
    BlockedSeller,
    CartItem,
    CartSplitResult,
    CourierQuote,
    SellerCart,
    SellerProfile,
)
from marketplace.services.courier_quotes import fallback_quotes, select_quote


logger = logging.getLogger(__name__)

QuoteInput = CourierQuote | list[CourierQuote]


def _as_address(address: Address | Mapping[str, Any]) -> Address:
    if isinstance(address, Address):
        return address
    return Address.model_validate(dict(address))


def group_by_seller(items: Iterable[CartItem]) -> dict[str, list[CartItem]]:
    """Группировка позиций по продавцу с сохранением порядка первого появления"""
    groups: dict[str, list[CartItem]] = {}
    for item in items:
        groups.setdefault(item.seller_id, []).append(item)
    return groups


class CartSplitter:
    """Разделение корзины на SellerCart с расчётом комиссии"""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or Settings()

    def split(
        self,
        buyer_address: Address | Mapping[str, Any],
        items: list[CartItem],
        sellers: Mapping[str, SellerProfile],
        quotes: Mapping[str, QuoteInput] | None = None,
        preferred_couriers: Mapping[str, str] | None = None,
    ) -> CartSplitResult:
        """
        Разделение корзины

        Args:
            buyer_address: Адрес доставки покупателя
            items: Позиции корзины
            sellers: Профили продавцов по seller_id
            quotes: Выбранный тариф или список тарифов для каждого продавца
            preferred_couriers: Курьер, выбранный покупателем, по seller_id

        Returns:
            CartSplitResult: корзины продавцов и заблокированные продавцы

        Raises:
            ValidationError: Пустая корзина
            IncompleteAddressError: Неполный адрес покупателя или продавца
        """
        if not items:
            raise ValidationError("Корзина пуста")

        destination = _as_address(buyer_address)
        if not destination.is_complete():
            raise IncompleteAddressError("buyer", destination.missing_fields())

        quotes = quotes or {}
        preferred_couriers = preferred_couriers or {}
        result = CartSplitResult()

        for seller_id, seller_items in group_by_seller(items).items():
            item_ids = [item.item_id for item in seller_items]
            profile = sellers.get(seller_id)

            if profile is None:
                logger.warning(f"Продавец {seller_id} не найден, позиции исключены")
                result.blocked.append(
                    BlockedSeller(seller_id=seller_id, reason=BlockReason.UNKNOWN_SELLER, item_ids=item_ids)
                )
                continue

            if not profile.recipient_code:
                logger.info(f"У продавца {seller_id} не настроен получатель выплат")
                result.blocked.append(
                    BlockedSeller(
                        seller_id=seller_id,
                        reason=BlockReason.NO_PAYABLE_RECIPIENT,
                        item_ids=item_ids,
                    )
                )
                continue

            if not profile.pickup_address.is_complete():
                raise IncompleteAddressError(
                    f"seller {seller_id}", profile.pickup_address.missing_fields()
                )

            quote = self._resolve_quote(
                quotes.get(seller_id),
                profile.pickup_address,
                destination,
                preferred_couriers.get(seller_id),
            )
            result.seller_carts.append(self._build_cart(profile, seller_items, quote))

        logger.debug(
            f"Корзина разделена: {len(result.seller_carts)} продавцов, "
            f"заблокировано {len(result.blocked)}"
        )
        return result

    @staticmethod
    def _resolve_quote(
        quote_input: QuoteInput | None,
        origin: Address,
        destination: Address,
        preferred: str | None,
    ) -> CourierQuote:
        """Тариф продавца: выбранный вызывающим, из списка или резервный"""
        if isinstance(quote_input, CourierQuote):
            return quote_input
        candidates = list(quote_input or [])
        if not candidates:
            candidates = fallback_quotes(origin.province, destination.province)
        return select_quote(candidates, preferred)

    def _build_cart(
        self, profile: SellerProfile, items: list[CartItem], quote: CourierQuote
    ) -> SellerCart:
        subtotal = sum(item.line_total for item in items)
        split = split_subtotal(subtotal, self.settings.commission_bps)
        return SellerCart(
            seller_id=profile.seller_id,
            items=items,
            subtotal=split.subtotal,
            platform_commission=split.platform_commission,
            seller_receives=split.seller_receives,
            delivery_fee=quote.price,
            courier_quote=quote,
            pickup_address=profile.pickup_address,
            recipient_code=profile.recipient_code,
        )
