from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from kit_delivery.domain.cep_zones import schemas, service
from kit_delivery.infra.db import get_db_session

router = APIRouter(tags=["cep-zones"])


@router.get(
    "/v1/cep-zones/resolve/{postal_code}",
    response_model=schemas.ZoneResolutionResponse,
)
async def resolve_postal_code(
    postal_code: str = Path(max_length=32),
    event_id: int | None = Query(default=None, ge=1),
    event_name: str | None = Query(default=None, max_length=200),
    session: AsyncSession = Depends(get_db_session),
) -> schemas.ZoneResolutionResponse:
    resolution = await service.resolve_zone_for_postal_code(
        session, postal_code, event_id, event_name=event_name
    )
    return schemas.ZoneResolutionResponse(
        found=resolution.found,
        postal_code=resolution.postal_code,
        zone_id=resolution.zone_id,
        zone_name=resolution.zone_name,
        price=resolution.price,
        priority=resolution.priority,
        description=resolution.description,
        price_source=resolution.price_source,
        contact_url=resolution.contact_url,
    )
