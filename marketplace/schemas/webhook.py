"""Pydantic схемы событий платёжного шлюза"""

from typing import Any

from pydantic import BaseModel, Field


class GatewayEventData(BaseModel):
    """Полезная нагрузка события"""

    reference: str | None = None
    amount: int | None = Field(None, ge=0)
    status: str | None = None
    transfer_code: str | None = None
    metadata: dict[str, Any] | str | None = None  # Шлюз может прислать пустую строку

    model_config = {"extra": "allow"}


class GatewayEvent(BaseModel):
    """Вебхук платёжного шлюза (charge.success, transfer.success, ...)"""

    event: str = Field(..., min_length=1)
    data: GatewayEventData
