from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from kit_delivery.api.admin_auth import AdminIdentity, require_viewer, require_zone_manager
from kit_delivery.domain.cep_zones import schemas, service
from kit_delivery.domain.cep_zones.errors import ZoneConflictError
from kit_delivery.infra.db import get_db_session

router = APIRouter(tags=["admin-cep-zones"])


@router.get(
    "/v1/admin/cep-zones",
    response_model=schemas.CepZoneListResponse,
)
async def list_cep_zones(
    include_inactive: bool = Query(default=True),
    _identity: AdminIdentity = Depends(require_viewer),
    session: AsyncSession = Depends(get_db_session),
) -> schemas.CepZoneListResponse:
    zones = await service.list_zones(session, include_inactive=include_inactive)
    return schemas.CepZoneListResponse(zones=[service.zone_to_response(zone) for zone in zones])


@router.post(
    "/v1/admin/cep-zones/reorder",
    response_model=schemas.CepZoneListResponse,
)
async def reorder_cep_zones(
    payload: schemas.ReorderRequest,
    _identity: AdminIdentity = Depends(require_zone_manager),
    session: AsyncSession = Depends(get_db_session),
) -> schemas.CepZoneListResponse:
    zones = await service.reorder(session, payload.items)
    await session.commit()
    return schemas.CepZoneListResponse(zones=[service.zone_to_response(zone) for zone in zones])


@router.get(
    "/v1/admin/cep-zones/{zone_id}",
    response_model=schemas.CepZoneResponse,
)
async def get_cep_zone(
    zone_id: int,
    _identity: AdminIdentity = Depends(require_viewer),
    session: AsyncSession = Depends(get_db_session),
) -> schemas.CepZoneResponse:
    zone = await service.get_zone(session, zone_id)
    return service.zone_to_response(zone)


@router.post(
    "/v1/admin/cep-zones",
    response_model=schemas.CepZoneResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_cep_zone(
    payload: schemas.CepZoneWrite,
    _identity: AdminIdentity = Depends(require_zone_manager),
    session: AsyncSession = Depends(get_db_session),
) -> schemas.CepZoneResponse:
    zone = await service.create_zone(session, payload)
    await session.commit()
    return service.zone_to_response(zone)


@router.put(
    "/v1/admin/cep-zones/{zone_id}",
    response_model=schemas.CepZoneResponse,
)
async def update_cep_zone(
    zone_id: int,
    payload: schemas.CepZoneWrite,
    _identity: AdminIdentity = Depends(require_zone_manager),
    session: AsyncSession = Depends(get_db_session),
) -> schemas.CepZoneResponse:
    zone = await service.update_zone(session, zone_id, payload)
    await session.commit()
    return service.zone_to_response(zone)


@router.delete(
    "/v1/admin/cep-zones/{zone_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_cep_zone(
    zone_id: int,
    _identity: AdminIdentity = Depends(require_zone_manager),
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    await service.deactivate_zone(session, zone_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/v1/admin/events/{event_id}/cep-zone-prices",
    response_model=schemas.EventZonePricesResponse,
)
async def list_event_cep_zone_prices(
    event_id: int,
    _identity: AdminIdentity = Depends(require_viewer),
    session: AsyncSession = Depends(get_db_session),
) -> schemas.EventZonePricesResponse:
    return await service.list_event_zone_prices(session, event_id)


@router.put(
    "/v1/admin/events/{event_id}/cep-zone-prices",
    response_model=schemas.EventZonePricesResponse,
)
async def set_event_cep_zone_prices(
    event_id: int,
    payload: schemas.EventZonePricesUpdateRequest,
    _identity: AdminIdentity = Depends(require_zone_manager),
    session: AsyncSession = Depends(get_db_session),
) -> schemas.EventZonePricesResponse:
    try:
        result = await service.set_event_zone_prices(session, event_id, payload.zone_prices)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ZoneConflictError(
            detail="Price override changed concurrently, retry the request",
            errors=[
                {"field": "zone_prices", "zone_id": item.zone_id}
                for item in payload.zone_prices
            ],
        ) from exc
    return result


@router.delete(
    "/v1/admin/events/{event_id}/cep-zone-prices/{zone_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_event_cep_zone_price(
    event_id: int,
    zone_id: int,
    _identity: AdminIdentity = Depends(require_zone_manager),
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    await service.delete_event_zone_price(session, event_id, zone_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
