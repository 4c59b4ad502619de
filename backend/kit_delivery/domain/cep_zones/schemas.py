from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kit_delivery.domain.cep_zones.models import PriceSource, ZoneKind, ZoneStatus

PRICE_PATTERN = r"^[0-9]+(\.[0-9]{1,2})?$"
MAX_PRICE = Decimal("99999999.99")

PriceText = Annotated[str, Field(pattern=PRICE_PATTERN, max_length=12)]


def to_price(value: str) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"))


def _check_price_bounds(value: str | None) -> str | None:
    if value is None:
        return value
    if to_price(value) > MAX_PRICE:
        raise ValueError(f"price must not exceed {MAX_PRICE}")
    return value


class CepRange(BaseModel):
    start: str
    end: str


class CepZoneWrite(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    kind: ZoneKind = ZoneKind.SPECIFIC
    ranges_text: str = Field(default="", max_length=20_000)
    price: PriceText
    priority: int = Field(ge=1)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be blank")
        return stripped

    @field_validator("price")
    @classmethod
    def validate_price(cls, value: str) -> str:
        return _check_price_bounds(value)


class CepZoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    zone_id: int
    name: str
    description: str | None = None
    kind: ZoneKind
    ranges: list[CepRange] = Field(default_factory=list)
    ranges_text: str = ""
    price: Decimal
    priority: int
    status: ZoneStatus
    active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CepZoneListResponse(BaseModel):
    zones: list[CepZoneResponse]


class ReorderItem(BaseModel):
    zone_id: int
    priority: int = Field(ge=1)


class ReorderRequest(BaseModel):
    items: list[ReorderItem] = Field(min_length=1)


class ZoneResolutionResponse(BaseModel):
    found: bool
    postal_code: str
    zone_id: int | None = None
    zone_name: str | None = None
    price: Decimal | None = None
    priority: int | None = None
    description: str | None = None
    price_source: PriceSource | None = None
    contact_url: str | None = None


class EventZonePriceUpdate(BaseModel):
    zone_id: int
    price: PriceText | None = None

    @field_validator("price")
    @classmethod
    def validate_price(cls, value: str | None) -> str | None:
        return _check_price_bounds(value)


class EventZonePricesUpdateRequest(BaseModel):
    zone_prices: list[EventZonePriceUpdate] = Field(default_factory=list)


class EventZonePriceItem(BaseModel):
    zone_id: int
    zone_name: str
    priority: int
    base_price: Decimal
    current_price: Decimal
    has_custom_price: bool


class EventZonePricesResponse(BaseModel):
    event_id: int
    zones: list[EventZonePriceItem]
