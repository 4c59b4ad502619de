from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from kit_delivery.domain.cep_zones import db_models, schemas
from kit_delivery.domain.cep_zones.errors import (
    InvalidPostalCode,
    RangeFormatError,
    ReorderRequestError,
    ZoneConflictError,
    ZoneNotFoundError,
)
from kit_delivery.domain.cep_zones.models import (
    PostalCodeRange,
    ZoneKind,
    ZoneSnapshot,
    ZoneStatus,
)
from kit_delivery.domain.cep_zones.postal_codes import normalize_postal_code
from kit_delivery.domain.cep_zones.ranges import (
    find_duplicate_priorities,
    find_overlap,
    find_priority_collision,
    format_ranges_text,
    parse_ranges_text,
    ranges_from_json,
    ranges_to_json,
)
from kit_delivery.domain.cep_zones.resolver import SupportContact, ZoneResolution, resolve
from kit_delivery.domain.errors import DomainError
from kit_delivery.infra.metrics import metrics
from kit_delivery.settings import settings

logger = logging.getLogger(__name__)


def zone_snapshot(zone: db_models.CepZone) -> ZoneSnapshot:
    return ZoneSnapshot(
        zone_id=zone.id,
        name=zone.name,
        kind=ZoneKind(zone.kind),
        status=ZoneStatus(zone.status),
        priority=zone.priority,
        price=Decimal(zone.price),
        ranges=ranges_from_json(zone.ranges, zone_id=zone.id),
        description=zone.description,
    )


def zone_to_response(zone: db_models.CepZone) -> schemas.CepZoneResponse:
    ranges = ranges_from_json(zone.ranges, zone_id=zone.id)
    return schemas.CepZoneResponse(
        zone_id=zone.id,
        name=zone.name,
        description=zone.description,
        kind=ZoneKind(zone.kind),
        ranges=[schemas.CepRange(start=item.start, end=item.end) for item in ranges],
        ranges_text=format_ranges_text(ranges),
        price=Decimal(zone.price),
        priority=zone.priority,
        status=ZoneStatus(zone.status),
        active=zone.active,
        created_at=zone.created_at,
        updated_at=zone.updated_at,
    )


async def _acquire_zone_write_lock(session: AsyncSession) -> None:
    """Serialize zone writers for the rest of the transaction.

    SQLite has a single writer lock already, so only PostgreSQL needs the advisory lock.
    """
    bind = session.bind
    if bind is None or bind.dialect.name != "postgresql":
        return
    await session.execute(
        sa.text("SELECT pg_advisory_xact_lock(:lock_key)"),
        {"lock_key": settings.cep_zone_write_lock_key},
    )


async def list_zones(
    session: AsyncSession, include_inactive: bool = True
) -> list[db_models.CepZone]:
    stmt = sa.select(db_models.CepZone).order_by(
        db_models.CepZone.priority, db_models.CepZone.id
    )
    if not include_inactive:
        stmt = stmt.where(db_models.CepZone.status == ZoneStatus.ACTIVE.value)
    result = await session.scalars(stmt)
    return list(result)


async def get_zone(session: AsyncSession, zone_id: int) -> db_models.CepZone:
    zone = await session.get(db_models.CepZone, zone_id)
    if zone is None:
        raise ZoneNotFoundError(detail=f"CEP zone {zone_id} not found")
    return zone


async def _active_snapshots(session: AsyncSession) -> list[ZoneSnapshot]:
    zones = await list_zones(session, include_inactive=False)
    return [zone_snapshot(zone) for zone in zones]


def _validate_zone_write(
    payload: schemas.CepZoneWrite,
    active_zones: Sequence[ZoneSnapshot],
    exclude_zone_id: int | None = None,
) -> list[PostalCodeRange]:
    if payload.kind == ZoneKind.CATCH_ALL:
        if payload.ranges_text.strip():
            raise RangeFormatError(
                detail="A catch-all zone matches every CEP and must not define ranges",
                errors=[{"field": "ranges_text", "message": "Leave ranges empty for catch_all zones"}],
            )
        ranges: list[PostalCodeRange] = []
        for zone in active_zones:
            if zone.kind != ZoneKind.CATCH_ALL or zone.zone_id == exclude_zone_id:
                continue
            raise ZoneConflictError(
                detail=f"Zone '{zone.name}' is already the active catch-all zone",
                errors=[{"field": "kind", "zone_id": zone.zone_id, "zone_name": zone.name}],
                zone_id=zone.zone_id,
            )
    else:
        ranges = parse_ranges_text(payload.ranges_text)
        conflict = find_overlap(ranges, active_zones, exclude_zone_id=exclude_zone_id)
        if conflict is not None:
            raise ZoneConflictError(
                detail=(
                    f"Range {conflict.candidate} overlaps zone '{conflict.zone_name}' "
                    f"({conflict.existing})"
                ),
                errors=[conflict.as_error()],
                zone_id=conflict.zone_id,
            )

    collision = find_priority_collision(payload.priority, active_zones, exclude_zone_id=exclude_zone_id)
    if collision is not None:
        raise ZoneConflictError(
            detail=f"Priority {payload.priority} is already used by zone '{collision.name}'",
            errors=[
                {
                    "field": "priority",
                    "zone_id": collision.zone_id,
                    "zone_name": collision.name,
                }
            ],
            zone_id=collision.zone_id,
        )
    return ranges


async def create_zone(
    session: AsyncSession, payload: schemas.CepZoneWrite
) -> db_models.CepZone:
    await _acquire_zone_write_lock(session)
    active_zones = await _active_snapshots(session)
    try:
        ranges = _validate_zone_write(payload, active_zones)
    except DomainError as exc:
        metrics.record_cep_zone_write("create", "rejected")
        logger.info(
            "cep_zone_create_rejected",
            extra={"extra": {"reason": exc.title, "priority": payload.priority}},
        )
        raise

    zone = db_models.CepZone(
        name=payload.name,
        description=payload.description,
        kind=payload.kind.value,
        ranges=ranges_to_json(ranges),
        price=schemas.to_price(payload.price),
        priority=payload.priority,
        status=ZoneStatus.ACTIVE.value,
    )
    session.add(zone)
    await session.flush()
    await session.refresh(zone)
    metrics.record_cep_zone_write("create", "ok")
    logger.info(
        "cep_zone_created",
        extra={"extra": {"zone_id": zone.id, "priority": zone.priority, "ranges": len(ranges)}},
    )
    return zone


async def update_zone(
    session: AsyncSession, zone_id: int, payload: schemas.CepZoneWrite
) -> db_models.CepZone:
    await _acquire_zone_write_lock(session)
    zone = await get_zone(session, zone_id)
    if not zone.active:
        metrics.record_cep_zone_write("update", "rejected")
        raise ZoneNotFoundError(detail=f"CEP zone {zone_id} is inactive")
    active_zones = await _active_snapshots(session)
    try:
        ranges = _validate_zone_write(payload, active_zones, exclude_zone_id=zone.id)
    except DomainError as exc:
        metrics.record_cep_zone_write("update", "rejected")
        logger.info(
            "cep_zone_update_rejected",
            extra={"extra": {"zone_id": zone.id, "reason": exc.title}},
        )
        raise

    zone.name = payload.name
    zone.description = payload.description
    zone.kind = payload.kind.value
    zone.ranges = ranges_to_json(ranges)
    zone.price = schemas.to_price(payload.price)
    zone.priority = payload.priority
    await session.flush()
    await session.refresh(zone)
    metrics.record_cep_zone_write("update", "ok")
    logger.info(
        "cep_zone_updated",
        extra={"extra": {"zone_id": zone.id, "priority": zone.priority, "ranges": len(ranges)}},
    )
    return zone


async def deactivate_zone(session: AsyncSession, zone_id: int) -> db_models.CepZone:
    """Soft delete a zone together with every event override that points at it."""
    await _acquire_zone_write_lock(session)
    zone = await get_zone(session, zone_id)
    if not zone.active:
        return zone
    zone.status = ZoneStatus.INACTIVE.value
    result = await session.execute(
        sa.update(db_models.EventCepZonePrice)
        .where(
            db_models.EventCepZonePrice.zone_id == zone.id,
            db_models.EventCepZonePrice.status == ZoneStatus.ACTIVE.value,
        )
        .values(status=ZoneStatus.INACTIVE.value)
        .execution_options(synchronize_session="fetch")
    )
    await session.flush()
    await session.refresh(zone)
    metrics.record_cep_zone_write("deactivate", "ok")
    logger.info(
        "cep_zone_deactivated",
        extra={"extra": {"zone_id": zone.id, "overrides_deactivated": result.rowcount or 0}},
    )
    return zone


async def reorder(
    session: AsyncSession, items: Iterable[schemas.ReorderItem]
) -> list[db_models.CepZone]:
    """Apply a batch of priority changes as one set.

    Uniqueness is only checked on the final state, so swapping two zones' priorities
    in a single request is allowed.
    """
    requested = list(items)
    seen: set[int] = set()
    for item in requested:
        if item.zone_id in seen:
            metrics.record_cep_zone_write("reorder", "rejected")
            raise ReorderRequestError(
                detail=f"Zone {item.zone_id} appears more than once in the reorder request",
                errors=[{"field": "items", "zone_id": item.zone_id}],
            )
        seen.add(item.zone_id)

    await _acquire_zone_write_lock(session)
    zones = {zone.id: zone for zone in await list_zones(session, include_inactive=False)}
    missing = [item.zone_id for item in requested if item.zone_id not in zones]
    if missing:
        metrics.record_cep_zone_write("reorder", "rejected")
        raise ZoneNotFoundError(
            detail="Unknown or inactive CEP zones in reorder request",
            errors=[{"field": "items", "zone_id": zone_id} for zone_id in missing],
        )

    new_priorities = {item.zone_id: item.priority for item in requested}
    final_state = [
        ZoneSnapshot(
            zone_id=zone.id,
            name=zone.name,
            kind=ZoneKind(zone.kind),
            status=ZoneStatus(zone.status),
            priority=new_priorities.get(zone.id, zone.priority),
            price=Decimal(zone.price),
        )
        for zone in zones.values()
    ]
    duplicates = find_duplicate_priorities(final_state)
    if duplicates:
        metrics.record_cep_zone_write("reorder", "rejected")
        raise ZoneConflictError(
            detail="Reorder would leave several active zones with the same priority",
            errors=[
                {"field": "priority", "priority": priority, "zone_ids": zone_ids}
                for priority, zone_ids in sorted(duplicates.items())
            ],
        )

    for zone_id, priority in new_priorities.items():
        zones[zone_id].priority = priority
    await session.flush()
    metrics.record_cep_zone_write("reorder", "ok")
    logger.info("cep_zones_reordered", extra={"extra": {"zones": len(new_priorities)}})
    return await list_zones(session, include_inactive=False)


async def _event_overrides(
    session: AsyncSession, event_id: int, *, include_inactive: bool = False
) -> dict[int, db_models.EventCepZonePrice]:
    stmt = sa.select(db_models.EventCepZonePrice).where(
        db_models.EventCepZonePrice.event_id == event_id
    )
    if not include_inactive:
        stmt = stmt.where(db_models.EventCepZonePrice.status == ZoneStatus.ACTIVE.value)
    result = await session.scalars(stmt)
    return {override.zone_id: override for override in result}


async def list_event_zone_prices(
    session: AsyncSession, event_id: int
) -> schemas.EventZonePricesResponse:
    zones = await list_zones(session, include_inactive=False)
    overrides = await _event_overrides(session, event_id)
    items = []
    for zone in zones:
        override = overrides.get(zone.id)
        items.append(
            schemas.EventZonePriceItem(
                zone_id=zone.id,
                zone_name=zone.name,
                priority=zone.priority,
                base_price=Decimal(zone.price),
                current_price=Decimal(override.price if override else zone.price),
                has_custom_price=override is not None,
            )
        )
    return schemas.EventZonePricesResponse(event_id=event_id, zones=items)


async def set_event_zone_prices(
    session: AsyncSession,
    event_id: int,
    items: Iterable[schemas.EventZonePriceUpdate],
) -> schemas.EventZonePricesResponse:
    """Upsert per-event overrides; a ``None`` price switches the override off."""
    requested = list(items)
    await _acquire_zone_write_lock(session)
    active_ids = {zone.id for zone in await list_zones(session, include_inactive=False)}
    missing = sorted({item.zone_id for item in requested if item.zone_id not in active_ids})
    if missing:
        raise ZoneNotFoundError(
            detail="Unknown or inactive CEP zones in price override request",
            errors=[{"field": "zone_prices", "zone_id": zone_id} for zone_id in missing],
        )

    existing = await _event_overrides(session, event_id, include_inactive=True)
    created = updated = cleared = 0
    for item in requested:
        override = existing.get(item.zone_id)
        if item.price is None:
            if override is not None and override.active:
                override.status = ZoneStatus.INACTIVE.value
                cleared += 1
            continue
        price = schemas.to_price(item.price)
        if override is None:
            override = db_models.EventCepZonePrice(
                event_id=event_id,
                zone_id=item.zone_id,
                price=price,
                status=ZoneStatus.ACTIVE.value,
            )
            session.add(override)
            existing[item.zone_id] = override
            created += 1
        else:
            override.price = price
            override.status = ZoneStatus.ACTIVE.value
            updated += 1
    await session.flush()
    logger.info(
        "cep_zone_event_prices_saved",
        extra={
            "extra": {
                "event_id": event_id,
                "created": created,
                "updated": updated,
                "cleared": cleared,
            }
        },
    )
    return await list_event_zone_prices(session, event_id)


async def delete_event_zone_price(session: AsyncSession, event_id: int, zone_id: int) -> None:
    override = await session.scalar(
        sa.select(db_models.EventCepZonePrice).where(
            db_models.EventCepZonePrice.event_id == event_id,
            db_models.EventCepZonePrice.zone_id == zone_id,
            db_models.EventCepZonePrice.status == ZoneStatus.ACTIVE.value,
        )
    )
    if override is None:
        raise ZoneNotFoundError(
            detail=f"No price override for zone {zone_id} on event {event_id}"
        )
    override.status = ZoneStatus.INACTIVE.value
    await session.flush()
    logger.info(
        "cep_zone_event_price_deleted",
        extra={"extra": {"event_id": event_id, "zone_id": zone_id}},
    )


async def resolve_zone_for_postal_code(
    session: AsyncSession,
    postal_code: str,
    event_id: int | None = None,
    *,
    event_name: str | None = None,
) -> ZoneResolution:
    try:
        code = normalize_postal_code(postal_code)
    except InvalidPostalCode:
        metrics.record_cep_zone_resolution("invalid")
        raise

    zones = await _active_snapshots(session)
    overrides: dict[tuple[int, int], Decimal] = {}
    if event_id is not None:
        for zone_id, override in (await _event_overrides(session, event_id)).items():
            overrides[(event_id, zone_id)] = Decimal(override.price)

    resolution = resolve(
        code,
        zones,
        event_id=event_id,
        overrides=overrides,
        support=SupportContact(
            number=settings.support_whatsapp_number,
            base_url=settings.support_whatsapp_base_url,
        ),
        event_name=event_name,
    )
    outcome = "found" if resolution.found else "not_found"
    metrics.record_cep_zone_resolution(outcome)
    logger.info(
        "cep_zone_resolved",
        extra={
            "extra": {
                "outcome": outcome,
                "zone_id": resolution.zone_id,
                "event_id": event_id,
                "price_source": resolution.price_source.value if resolution.price_source else None,
            }
        },
    )
    return resolution
