from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from kit_delivery.domain.cep_zones import schemas, service
from kit_delivery.domain.cep_zones.errors import (
    InvalidPostalCode,
    RangeFormatError,
    ZoneConflictError,
    ZoneNotFoundError,
)
from kit_delivery.domain.cep_zones.models import PriceSource
from kit_delivery.domain.cep_zones.seed import seed_sample_zones
from kit_delivery.domain.errors import DomainError
from kit_delivery.settings import settings


def _payload(name: str, ranges_text: str, price: str = "15.00", priority: int = 1, **extra) -> schemas.CepZoneWrite:
    return schemas.CepZoneWrite(name=name, ranges_text=ranges_text, price=price, priority=priority, **extra)


@pytest.mark.anyio
async def test_create_zone_persists_ranges_and_price(async_session_maker):
    async with async_session_maker() as session:
        zone = await service.create_zone(
            session, _payload("Centro", "58010000...58059999\n58200000...58200999", price="15.5")
        )
        await session.commit()

    async with async_session_maker() as session:
        stored = await service.get_zone(session, zone.id)
        response = service.zone_to_response(stored)
    assert response.active is True
    assert response.price == Decimal("15.50")
    assert response.ranges_text == "58010000...58059999\n58200000...58200999"
    assert [item.start for item in response.ranges] == ["58010000", "58200000"]


@pytest.mark.anyio
async def test_create_zone_rejects_overlap_with_existing_zone(async_session_maker):
    async with async_session_maker() as session:
        existing = await service.create_zone(session, _payload("Centro", "58010000...58059999", priority=1))
        await session.commit()
        existing_id = existing.id

        with pytest.raises(ZoneConflictError) as exc_info:
            await service.create_zone(session, _payload("Zona Sul", "58059999...58099999", priority=2))
        await session.rollback()

    error = exc_info.value
    assert error.status == 409
    assert error.zone_id == existing_id
    assert error.errors[0]["zone_name"] == "Centro"


@pytest.mark.anyio
async def test_create_zone_accepts_adjacent_ranges(async_session_maker):
    async with async_session_maker() as session:
        await service.create_zone(session, _payload("Centro", "58010000...58059999", priority=1))
        await service.create_zone(session, _payload("Zona Sul", "58060000...58099999", priority=2))
        await session.commit()
        zones = await service.list_zones(session)
    assert [zone.name for zone in zones] == ["Centro", "Zona Sul"]


@pytest.mark.anyio
async def test_create_zone_rejects_duplicate_priority(async_session_maker):
    async with async_session_maker() as session:
        await service.create_zone(session, _payload("Centro", "58010000...58059999", priority=1))
        await session.commit()
        with pytest.raises(ZoneConflictError) as exc_info:
            await service.create_zone(session, _payload("Bayeux", "58300000...58399999", priority=1))
        await session.rollback()
    assert exc_info.value.errors[0]["field"] == "priority"


@pytest.mark.anyio
async def test_update_zone_may_keep_its_own_ranges_and_priority(async_session_maker):
    async with async_session_maker() as session:
        zone = await service.create_zone(session, _payload("Centro", "58010000...58059999", priority=1))
        await session.commit()
        updated = await service.update_zone(
            session, zone.id, _payload("Centro Expandido", "58010000...58069999", price="18.00", priority=1)
        )
        await session.commit()
    assert updated.name == "Centro Expandido"
    assert updated.price == Decimal("18.00")
    assert updated.ranges == [{"start": "58010000", "end": "58069999"}]


@pytest.mark.anyio
async def test_update_unknown_zone_raises_not_found(async_session_maker):
    async with async_session_maker() as session:
        with pytest.raises(ZoneNotFoundError):
            await service.update_zone(session, 999, _payload("Ghost", "58010000...58059999"))


@pytest.mark.anyio
async def test_catch_all_rules(async_session_maker):
    async with async_session_maker() as session:
        with pytest.raises(RangeFormatError):
            await service.create_zone(
                session, _payload("Resto", "58010000...58059999", priority=99, kind="catch_all")
            )
        await service.create_zone(session, _payload("Resto", "", priority=99, kind="catch_all"))
        await session.commit()
        with pytest.raises(ZoneConflictError):
            await service.create_zone(session, _payload("Outro resto", "", priority=98, kind="catch_all"))
        await session.rollback()


@pytest.mark.anyio
async def test_deactivated_zone_frees_its_ranges_and_overrides(async_session_maker):
    async with async_session_maker() as session:
        zone = await service.create_zone(session, _payload("Centro", "58010000...58059999", priority=1))
        await session.commit()
        await service.set_event_zone_prices(
            session, 10, [schemas.EventZonePriceUpdate(zone_id=zone.id, price="5.00")]
        )
        await session.commit()

        deactivated = await service.deactivate_zone(session, zone.id)
        await session.commit()
        assert deactivated.active is False

        replacement = await service.create_zone(session, _payload("Centro novo", "58010000...58059999", priority=1))
        await session.commit()

        listing = await service.list_event_zone_prices(session, 10)
        active_only = await service.list_zones(session, include_inactive=False)
        everything = await service.list_zones(session, include_inactive=True)
        overrides = await service._event_overrides(session, 10, include_inactive=True)

    assert [override.status for override in overrides.values()] == ["inactive"]
    assert [item.zone_id for item in listing.zones] == [replacement.id]
    assert listing.zones[0].has_custom_price is False
    assert [zone.id for zone in active_only] == [replacement.id]
    assert len(everything) == 2


@pytest.mark.anyio
async def test_reorder_swaps_priorities_in_one_batch(async_session_maker):
    async with async_session_maker() as session:
        first = await service.create_zone(session, _payload("A", "58010000...58059999", priority=1))
        second = await service.create_zone(session, _payload("B", "58060000...58099999", priority=2))
        await session.commit()

        zones = await service.reorder(
            session,
            [
                schemas.ReorderItem(zone_id=first.id, priority=2),
                schemas.ReorderItem(zone_id=second.id, priority=1),
            ],
        )
        await session.commit()
    assert [(zone.id, zone.priority) for zone in zones] == [(second.id, 1), (first.id, 2)]


@pytest.mark.anyio
async def test_reorder_rejects_final_duplicates_and_unknown_zones(async_session_maker):
    async with async_session_maker() as session:
        first = await service.create_zone(session, _payload("A", "58010000...58059999", priority=1))
        await service.create_zone(session, _payload("B", "58060000...58099999", priority=2))
        await session.commit()
        first_id = first.id

        with pytest.raises(ZoneConflictError):
            await service.reorder(session, [schemas.ReorderItem(zone_id=first.id, priority=2)])
        await session.rollback()

        with pytest.raises(ZoneNotFoundError):
            await service.reorder(session, [schemas.ReorderItem(zone_id=12345, priority=3)])
        await session.rollback()

        with pytest.raises(DomainError) as exc_info:
            await service.reorder(
                session,
                [
                    schemas.ReorderItem(zone_id=first_id, priority=3),
                    schemas.ReorderItem(zone_id=first_id, priority=4),
                ],
            )
    assert exc_info.value.status == 422


@pytest.mark.anyio
async def test_event_overrides_upsert_and_clear(async_session_maker):
    async with async_session_maker() as session:
        zone = await service.create_zone(session, _payload("Centro", "58010000...58059999", priority=1))
        await session.commit()

        result = await service.set_event_zone_prices(
            session, 10, [schemas.EventZonePriceUpdate(zone_id=zone.id, price="9.90")]
        )
        await session.commit()
        assert result.zones[0].current_price == Decimal("9.90")
        assert result.zones[0].has_custom_price is True

        result = await service.set_event_zone_prices(
            session, 10, [schemas.EventZonePriceUpdate(zone_id=zone.id, price="8.00")]
        )
        await session.commit()
        assert result.zones[0].current_price == Decimal("8.00")

        result = await service.set_event_zone_prices(
            session, 10, [schemas.EventZonePriceUpdate(zone_id=zone.id, price=None)]
        )
        await session.commit()
        assert result.zones[0].current_price == Decimal("15.00")
        assert result.zones[0].has_custom_price is False

        with pytest.raises(ZoneNotFoundError):
            await service.set_event_zone_prices(
                session, 10, [schemas.EventZonePriceUpdate(zone_id=999, price="1.00")]
            )


@pytest.mark.anyio
async def test_delete_event_zone_price(async_session_maker):
    async with async_session_maker() as session:
        zone = await service.create_zone(session, _payload("Centro", "58010000...58059999", priority=1))
        await service.set_event_zone_prices(
            session, 10, [schemas.EventZonePriceUpdate(zone_id=zone.id, price="9.90")]
        )
        await session.commit()

        await service.delete_event_zone_price(session, 10, zone.id)
        await session.commit()
        resolution = await service.resolve_zone_for_postal_code(session, "58020-000", 10)

        with pytest.raises(ZoneNotFoundError):
            await service.delete_event_zone_price(session, 10, zone.id)

    assert resolution.price == Decimal("15.00")
    assert resolution.price_source == PriceSource.ZONE


@pytest.mark.anyio
async def test_resolve_zone_for_postal_code_uses_event_override(async_session_maker):
    async with async_session_maker() as session:
        await seed_sample_zones(session)
        await session.commit()
        zones = {zone.name: zone for zone in await service.list_zones(session)}
        bayeux = zones["Bayeux"]
        await service.set_event_zone_prices(
            session, 42, [schemas.EventZonePriceUpdate(zone_id=bayeux.id, price="12.00")]
        )
        await session.commit()

        with_event = await service.resolve_zone_for_postal_code(session, "58305-000", 42)
        without_event = await service.resolve_zone_for_postal_code(session, "58305-000")
        not_found = await service.resolve_zone_for_postal_code(session, "01001-000", 42, event_name="Maratona")

        with pytest.raises(InvalidPostalCode):
            await service.resolve_zone_for_postal_code(session, "583050")

    assert with_event.zone_id == bayeux.id
    assert with_event.price == Decimal("12.00")
    assert with_event.price_source == PriceSource.EVENT_OVERRIDE
    assert without_event.price == Decimal("25.00")
    assert not not_found.found
    assert not_found.contact_url.startswith(f"https://wa.me/{settings.support_whatsapp_number}?text=")


@pytest.mark.anyio
async def test_seed_sample_zones_is_idempotent(async_session_maker):
    async with async_session_maker() as session:
        first = await seed_sample_zones(session)
        await session.commit()
        second = await seed_sample_zones(session)
        await session.commit()
        zones = await service.list_zones(session)
    assert len(first) == 3
    assert second == []
    assert [zone.priority for zone in zones] == [1, 2, 3]


@pytest.mark.anyio
async def test_zone_write_lock_taken_on_postgres():
    session = AsyncMock(spec=AsyncSession)
    session.bind = MagicMock()
    session.bind.dialect.name = "postgresql"
    session.execute = AsyncMock()

    await service._acquire_zone_write_lock(session)

    session.execute.assert_awaited_once()
    statement, params = session.execute.await_args.args
    assert "pg_advisory_xact_lock" in str(statement)
    assert params == {"lock_key": settings.cep_zone_write_lock_key}


@pytest.mark.anyio
async def test_zone_write_lock_skipped_on_sqlite():
    session = AsyncMock(spec=AsyncSession)
    session.bind = MagicMock()
    session.bind.dialect.name = "sqlite"
    session.execute = AsyncMock()

    await service._acquire_zone_write_lock(session)

    session.execute.assert_not_awaited()


@pytest.mark.anyio
async def test_non_ascii_range_cannot_shadow_existing_zone(async_session_maker):
    async with async_session_maker() as session:
        await service.create_zone(session, _payload("Centro", "58083000...58083500", priority=1))
        await session.commit()

        with pytest.raises(RangeFormatError):
            await service.create_zone(session, _payload("Sombra", "٥٨٠٨٣٠٠٠...٥٨٠٨٣٥٠٠", priority=2))
        await session.rollback()

        zones = await service.list_zones(session)
    assert [zone.name for zone in zones] == ["Centro"]


@pytest.mark.anyio
async def test_event_price_writes_take_zone_write_lock(async_session_maker, monkeypatch):
    calls = []

    async def _record_lock(session):
        calls.append(session)

    async with async_session_maker() as session:
        zone = await service.create_zone(session, _payload("Centro", "58010000...58059999", priority=1))
        await session.commit()

        monkeypatch.setattr(service, "_acquire_zone_write_lock", _record_lock)
        await service.set_event_zone_prices(
            session, 10, [schemas.EventZonePriceUpdate(zone_id=zone.id, price="9.90")]
        )
        await session.commit()

    assert calls == [session]
