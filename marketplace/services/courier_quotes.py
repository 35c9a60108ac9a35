"""
Клиент курьерских тарифов

Запрашивает тарифы у курьерских API. Если ни один провайдер не ответил,
возвращает детерминированные резервные тарифы, чтобы оформление заказа
не блокировалось.
"""

import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from marketplace.core.constants import MAJOR_PROVINCES
from marketplace.domain.errors import IncompleteAddressError
from marketplace.schemas.cart import Address, CourierQuote


logger = logging.getLogger(__name__)

# Резервные тарифы в рандах: (same province, major↔major, major↔minor, minor↔minor)
_STANDARD_BASE_RATES = (60, 85, 95, 110)
_EXPRESS_BASE_RATES = (75, 99, 115, 135)

_LOCAL_MIN_RANDS = 50
_LOCAL_MAX_RANDS = 75
_LOCAL_RANDS_PER_KG = 20


def _to_cents(rands: Decimal) -> int:
    """Рэнды → центы с округлением половины вверх"""
    return int((rands * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _round_rands(rands: Decimal) -> Decimal:
    """Округление до целых рэндов"""
    return rands.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def _route_rate(rates: tuple[int, int, int, int], from_province: str, to_province: str) -> int:
    """Базовый тариф по маршруту между провинциями"""
    if from_province == to_province:
        return rates[0]
    from_major = from_province in MAJOR_PROVINCES
    to_major = to_province in MAJOR_PROVINCES
    if from_major and to_major:
        return rates[1]
    if from_major or to_major:
        return rates[2]
    return rates[3]


def fallback_quotes(from_province: str, to_province: str, weight: float = 1.0) -> list[CourierQuote]:
    """
    Резервные тарифы доставки

    Args:
        from_province: Провинция отправителя
        to_province: Провинция получателя
        weight: Вес посылки (кг)

    Returns:
        Тарифы, отсортированные по цене (дешёвые первыми)
    """
    kg = Decimal(str(weight))
    multiplier = max(Decimal(1), kg / 2)
    quotes: list[CourierQuote] = []

    if from_province == to_province:
        local_price = min(max(Decimal(_LOCAL_MIN_RANDS), kg * _LOCAL_RANDS_PER_KG), Decimal(_LOCAL_MAX_RANDS))
        quotes.append(
            CourierQuote(
                courier="courier-guy",
                service_name="Local Delivery",
                price=_to_cents(local_price),
                estimated_days="1-2 days",
                description="Fast local delivery within the same area",
                is_fallback=True,
            )
        )

    standard_base = _route_rate(_STANDARD_BASE_RATES, from_province, to_province)
    quotes.append(
        CourierQuote(
            courier="courier-guy",
            service_name="Standard",
            price=_to_cents(_round_rands(standard_base * multiplier)),
            estimated_days="3-5 days",
            description="Reliable nationwide delivery with tracking",
            is_fallback=True,
        )
    )

    express_base = _route_rate(_EXPRESS_BASE_RATES, from_province, to_province)
    quotes.append(
        CourierQuote(
            courier="fastway",
            service_name="Express",
            price=_to_cents(_round_rands(express_base * multiplier)),
            estimated_days="2-4 days",
            description="Fast express delivery with priority handling",
            is_fallback=True,
        )
    )

    return sorted(quotes, key=lambda quote: quote.price)


def select_quote(quotes: list[CourierQuote], preferred: str | None = None) -> CourierQuote:
    """
    Выбор тарифа: предпочтительный, если предложен, иначе самый дешёвый

    Args:
        quotes: Доступные тарифы
        preferred: Имя курьера или "курьер:услуга"

    Raises:
        ValueError: Список тарифов пуст
    """
    if not quotes:
        raise ValueError("Нет доступных тарифов доставки")

    if preferred:
        for quote in quotes:
            if preferred in (quote.courier, f"{quote.courier}:{quote.service_name}"):
                return quote

    return min(quotes, key=lambda quote: quote.price)


class CourierQuoteClient:
    """
    Клиент курьерских API

    Каждый провайдер - URL, принимающий POST {base}/quotes и возвращающий
    {"quotes": [{"provider", "service", "price" (рэнды), "estimated_days"}]}.
    """

    def __init__(
        self,
        provider_urls: list[str] | None = None,
        api_key: str = "",
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Инициализация клиента

        Args:
            provider_urls: Базовые URL курьерских API
            api_key: Ключ API
            timeout: Таймаут запроса (секунды)
            client: Готовый httpx клиент
        """
        self.provider_urls = provider_urls or []
        self._owns_client = client is None
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout), headers=headers)

    async def close(self) -> None:
        """Закрытие HTTP клиента"""
        if self._owns_client:
            await self._client.aclose()

    async def get_quotes(
        self, origin: Address, destination: Address, weight: float = 1.0
    ) -> list[CourierQuote]:
        """
        Тарифы доставки между адресами

        Args:
            origin: Адрес продавца
            destination: Адрес покупателя
            weight: Вес посылки (кг)

        Returns:
            Тарифы по возрастанию цены (резервные при недоступности провайдеров)

        Raises:
            IncompleteAddressError: Адрес неполный, запрос не отправляется
        """
        if not origin.is_complete():
            raise IncompleteAddressError("seller", origin.missing_fields())
        if not destination.is_complete():
            raise IncompleteAddressError("buyer", destination.missing_fields())

        # Провайдеры опрашиваются параллельно: общее ожидание ограничено одним таймаутом
        responses = await asyncio.gather(
            *(self._fetch_provider(url, origin, destination, weight) for url in self.provider_urls)
        )
        quotes = [quote for provider_quotes in responses for quote in provider_quotes]

        if not quotes:
            logger.info(
                f"Курьерские API недоступны, резервные тарифы: "
                f"{origin.province} -> {destination.province}"
            )
            return fallback_quotes(origin.province, destination.province, weight)

        return sorted(quotes, key=lambda quote: quote.price)

    async def _fetch_provider(
        self, url: str, origin: Address, destination: Address, weight: float
    ) -> list[CourierQuote]:
        """Запрос тарифов у одного провайдера; ошибки провайдера не пробрасываются"""
        payload = {
            "pickup_address": origin.model_dump(),
            "delivery_address": destination.model_dump(),
            "weight": weight,
        }
        try:
            response = await self._client.post(f"{url.rstrip('/')}/quotes", json=payload)
            response.raise_for_status()
            return _parse_quotes(response.json())
        except httpx.HTTPError as e:
            logger.warning(f"Курьерский API {url} недоступен: {type(e).__name__}: {e}")
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Курьерский API {url} вернул некорректный ответ: {e}")
        return []


def _parse_quotes(body: Any) -> list[CourierQuote]:
    """Разбор ответа провайдера"""
    raw_quotes = body["quotes"] if isinstance(body, dict) else body
    quotes = []
    for raw in raw_quotes:
        quotes.append(
            CourierQuote(
                courier=str(raw["provider"]),
                service_name=str(raw.get("service") or raw.get("service_name") or ""),
                price=_to_cents(Decimal(str(raw["price"]))),
                estimated_days=str(raw.get("estimated_days", "")),
                description=str(raw.get("description", "")),
            )
        )
    return quotes
