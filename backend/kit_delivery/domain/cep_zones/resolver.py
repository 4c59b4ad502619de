"""Deterministic CEP -> zone resolution over a point-in-time snapshot.

Nothing here touches the database; ``service.resolve_zone_for_postal_code`` loads the
snapshot and hands it over. Resolution order:

1. active specific zones by ``(priority, zone_id)``, first containing range wins;
2. otherwise the first active catch-all zone, if one exists;
3. an active event override for the matched zone replaces the base price.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping
from urllib.parse import quote

from kit_delivery.domain.cep_zones.models import PriceSource, ZoneKind, ZoneSnapshot
from kit_delivery.domain.cep_zones.postal_codes import format_postal_code, normalize_postal_code
from kit_delivery.domain.cep_zones.ranges import zone_contains

OverrideKey = tuple[int, int]


@dataclass(frozen=True)
class SupportContact:
    number: str
    base_url: str = "https://wa.me"

    def url_for(self, postal_code: str, event_name: str | None = None) -> str:
        message = f"Olá! Meu CEP {format_postal_code(postal_code)} não foi reconhecido no sistema"
        if event_name:
            message += f' para o evento "{event_name}"'
        message += ". Vocês atendem essa região?"
        return f"{self.base_url.rstrip('/')}/{self.number}?text={quote(message, safe='')}"


@dataclass(frozen=True)
class ZoneResolution:
    found: bool
    postal_code: str
    zone_id: int | None = None
    zone_name: str | None = None
    price: Decimal | None = None
    priority: int | None = None
    description: str | None = None
    price_source: PriceSource | None = None
    contact_url: str | None = None


def order_zones(zones: Iterable[ZoneSnapshot]) -> list[ZoneSnapshot]:
    return sorted((zone for zone in zones if zone.is_active), key=lambda zone: zone.sort_key)


def match_zone(postal_code: str, zones: Iterable[ZoneSnapshot]) -> ZoneSnapshot | None:
    """Return the zone that owns an already-normalized CEP, or ``None``."""
    ordered = order_zones(zones)
    for zone in ordered:
        if zone.kind == ZoneKind.SPECIFIC and zone_contains(zone, postal_code):
            return zone
    for zone in ordered:
        if zone.kind == ZoneKind.CATCH_ALL:
            return zone
    return None


def resolve(
    postal_code: str,
    zones: Iterable[ZoneSnapshot],
    *,
    event_id: int | None = None,
    overrides: Mapping[OverrideKey, Decimal] | None = None,
    support: SupportContact | None = None,
    event_name: str | None = None,
) -> ZoneResolution:
    code = normalize_postal_code(postal_code)
    zone = match_zone(code, zones)
    if zone is None:
        return ZoneResolution(
            found=False,
            postal_code=code,
            contact_url=support.url_for(code, event_name) if support else None,
        )

    price = zone.price
    source = PriceSource.ZONE
    if event_id is not None and overrides:
        override = overrides.get((event_id, zone.zone_id))
        if override is not None:
            price = override
            source = PriceSource.EVENT_OVERRIDE

    return ZoneResolution(
        found=True,
        postal_code=code,
        zone_id=zone.zone_id,
        zone_name=zone.name,
        price=price,
        priority=zone.priority,
        description=zone.description,
        price_source=source,
    )
