from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from kit_delivery.domain.cep_zones import db_models, schemas, service

logger = logging.getLogger(__name__)

SAMPLE_ZONES: tuple[schemas.CepZoneWrite, ...] = (
    schemas.CepZoneWrite(
        name="João Pessoa - Centro",
        description="Entrega na região central de João Pessoa",
        ranges_text="58010000...58059999",
        price="15.00",
        priority=1,
    ),
    schemas.CepZoneWrite(
        name="João Pessoa - Zona Sul",
        description="Entrega na zona sul de João Pessoa",
        ranges_text="58060000...58099999",
        price="20.00",
        priority=2,
    ),
    schemas.CepZoneWrite(
        name="Bayeux",
        description="Entrega em Bayeux",
        ranges_text="58300000...58399999",
        price="25.00",
        priority=3,
    ),
)


async def seed_sample_zones(session: AsyncSession) -> list[db_models.CepZone]:
    """Create the sample zones that are missing, matching by name."""
    existing = set(await session.scalars(sa.select(db_models.CepZone.name)))
    created: list[db_models.CepZone] = []
    for payload in SAMPLE_ZONES:
        if payload.name in existing:
            logger.info("cep_zone_seed_skipped", extra={"extra": {"zone_name": payload.name}})
            continue
        created.append(await service.create_zone(session, payload))
    logger.info("cep_zone_seed_complete", extra={"extra": {"created": len(created)}})
    return created
