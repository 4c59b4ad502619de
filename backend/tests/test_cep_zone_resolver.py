from decimal import Decimal
from urllib.parse import unquote

import pytest

from kit_delivery.domain.cep_zones.errors import InvalidPostalCode
from kit_delivery.domain.cep_zones.models import (
    PostalCodeRange,
    PriceSource,
    ZoneKind,
    ZoneSnapshot,
    ZoneStatus,
)
from kit_delivery.domain.cep_zones.resolver import SupportContact, match_zone, resolve


def _zone(
    zone_id: int,
    priority: int,
    price: str,
    *ranges: tuple[str, str],
    kind: ZoneKind = ZoneKind.SPECIFIC,
    status: ZoneStatus = ZoneStatus.ACTIVE,
) -> ZoneSnapshot:
    return ZoneSnapshot(
        zone_id=zone_id,
        name=f"Zone {zone_id}",
        kind=kind,
        status=status,
        priority=priority,
        price=Decimal(price),
        ranges=tuple(PostalCodeRange(start, end) for start, end in ranges),
    )


def test_lowest_priority_value_wins():
    # Overlapping snapshots can still exist in legacy data; precedence decides.
    zones = [
        _zone(1, 5, "15.00", ("58000000", "58099999")),
        _zone(2, 1, "20.00", ("58083000", "58083999")),
    ]
    result = resolve("58083-100", zones)
    assert result.found
    assert result.zone_id == 2
    assert result.price == Decimal("20.00")
    assert result.price_source == PriceSource.ZONE


def test_priority_tie_breaks_on_lowest_zone_id():
    zones = [
        _zone(7, 1, "30.00", ("58000000", "58099999")),
        _zone(3, 1, "10.00", ("58000000", "58099999")),
    ]
    assert resolve("58050000", zones).zone_id == 3


def test_inactive_zones_are_ignored():
    zones = [
        _zone(1, 1, "15.00", ("58000000", "58099999"), status=ZoneStatus.INACTIVE),
        _zone(2, 2, "20.00", ("58000000", "58099999")),
    ]
    assert resolve("58050000", zones).zone_id == 2


def test_unknown_postal_code_returns_not_found_with_contact_url():
    zones = [_zone(1, 1, "15.00", ("58000000", "58099999"))]
    support = SupportContact(number="5583981302961")
    result = resolve("01001-000", zones, support=support, event_name="Corrida 10K")
    assert not result.found
    assert result.zone_id is None
    assert result.price is None
    assert result.contact_url.startswith("https://wa.me/5583981302961?text=")
    message = unquote(result.contact_url.split("text=", 1)[1])
    assert "01001-000" in message
    assert 'para o evento "Corrida 10K"' in message


def test_catch_all_only_matches_after_specific_scan():
    zones = [
        _zone(9, 1, "50.00", kind=ZoneKind.CATCH_ALL),
        _zone(1, 5, "15.00", ("58000000", "58099999")),
    ]
    assert resolve("58050000", zones).zone_id == 1
    fallback = resolve("01001000", zones)
    assert fallback.found
    assert fallback.zone_id == 9
    assert fallback.price == Decimal("50.00")


def test_override_applies_only_to_its_event_and_matched_zone():
    zones = [
        _zone(1, 1, "15.00", ("58000000", "58099999")),
        _zone(2, 2, "25.00", ("58300000", "58399999")),
    ]
    overrides = {(10, 1): Decimal("5.00"), (10, 2): Decimal("7.00")}

    event_result = resolve("58050000", zones, event_id=10, overrides=overrides)
    assert event_result.price == Decimal("5.00")
    assert event_result.price_source == PriceSource.EVENT_OVERRIDE

    other_event = resolve("58050000", zones, event_id=11, overrides=overrides)
    assert other_event.price == Decimal("15.00")
    assert other_event.price_source == PriceSource.ZONE

    no_event = resolve("58050000", zones, overrides=overrides)
    assert no_event.price == Decimal("15.00")


def test_invalid_postal_code_raises():
    with pytest.raises(InvalidPostalCode):
        resolve("123456", [])


def test_resolution_is_idempotent_for_unchanged_snapshot():
    zones = [
        _zone(1, 2, "15.00", ("58000000", "58099999")),
        _zone(2, 1, "20.00", ("58050000", "58050999")),
    ]
    assert resolve("58050500", zones) == resolve("58050500", zones)


def test_match_zone_returns_none_without_catch_all():
    assert match_zone("01001000", [_zone(1, 1, "15.00", ("58000000", "58099999"))]) is None
