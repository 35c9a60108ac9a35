"""Pydantic схемы корзины, адресов и курьерских тарифов"""

from pydantic import BaseModel, ConfigDict, Field, field_validator


REQUIRED_ADDRESS_FIELDS = ("street", "city", "province", "postal_code")


class Address(BaseModel):
    """Адрес покупателя или продавца"""

    model_config = ConfigDict(frozen=True)

    street: str = Field("", max_length=300, description="Улица и дом")
    city: str = Field("", max_length=100, description="Город")
    province: str = Field("", max_length=100, description="Провинция")
    postal_code: str = Field("", max_length=20, description="Почтовый индекс")
    country: str = Field("ZA", max_length=2, description="Код страны")

    @field_validator("street", "city", "province", "postal_code", mode="before")
    @classmethod
    def strip_value(cls, v: str | None) -> str:
        """Обрезка пробелов, None → пустая строка"""
        if v is None:
            return ""
        return str(v).strip()

    def missing_fields(self) -> list[str]:
        """Список незаполненных обязательных полей"""
        return [name for name in REQUIRED_ADDRESS_FIELDS if not getattr(self, name)]

    def is_complete(self) -> bool:
        """Заполнены ли улица, город, провинция и индекс"""
        return not self.missing_fields()


class CartItem(BaseModel):
    """Позиция корзины с ценой на момент покупки"""

    model_config = ConfigDict(frozen=True)

    item_id: str = Field(..., min_length=1, description="ID товара")
    seller_id: str = Field(..., min_length=1, description="ID продавца")
    title: str = Field("", max_length=300, description="Название")
    unit_price: int = Field(..., ge=0, description="Цена в минимальных единицах")
    quantity: int = Field(1, ge=1, description="Количество")

    @property
    def line_total(self) -> int:
        """Сумма по позиции"""
        return self.unit_price * self.quantity


class SellerProfile(BaseModel):
    """Данные продавца, необходимые для оформления"""

    model_config = ConfigDict(frozen=True)

    seller_id: str = Field(..., min_length=1)
    pickup_address: Address
    recipient_code: str | None = Field(None, description="Получатель выплат в шлюзе")

    @field_validator("recipient_code")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        """Пустая строка считается отсутствием получателя"""
        if v is None or not v.strip():
            return None
        return v.strip()


class CourierQuote(BaseModel):
    """Тариф доставки от курьерской службы"""

    model_config = ConfigDict(frozen=True)

    courier: str
    service_name: str
    price: int = Field(..., ge=0, description="Цена в минимальных единицах")
    estimated_days: str = ""
    description: str = ""
    is_fallback: bool = False


class SellerCart(BaseModel):
    """Часть корзины, относящаяся к одному продавцу"""

    seller_id: str
    items: list[CartItem]
    subtotal: int
    platform_commission: int
    seller_receives: int
    delivery_fee: int
    courier_quote: CourierQuote
    pickup_address: Address
    recipient_code: str

    @property
    def total(self) -> int:
        """Сумма к оплате покупателем"""
        return self.subtotal + self.delivery_fee


class BlockedSeller(BaseModel):
    """Продавец, исключённый из оформления"""

    seller_id: str
    reason: str
    item_ids: list[str] = Field(default_factory=list)


class CartSplitResult(BaseModel):
    """Результат разделения корзины"""

    seller_carts: list[SellerCart] = Field(default_factory=list)
    blocked: list[BlockedSeller] = Field(default_factory=list)

    @property
    def has_blocking_conditions(self) -> bool:
        """Есть ли продавцы, которых нельзя оплатить"""
        return bool(self.blocked)
