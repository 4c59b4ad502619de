#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from kit_delivery.domain.cep_zones import service  # noqa: E402
from kit_delivery.domain.cep_zones.seed import seed_sample_zones  # noqa: E402
from kit_delivery.infra.logging import configure_logging  # noqa: E402
from kit_delivery.settings import settings  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed the sample CEP delivery zones.")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL to connect to. Defaults to DATABASE_URL or kit_delivery.settings.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Roll back instead of committing; prints what would be created.",
    )
    return parser.parse_args()


def _resolve_database_url(cli_value: str | None) -> str:
    if cli_value:
        return cli_value
    env_value = os.getenv("DATABASE_URL")
    if env_value:
        return env_value
    return settings.database_url


async def _run() -> int:
    args = _parse_args()
    configure_logging(settings.log_level)
    engine = create_async_engine(_resolve_database_url(args.database_url), pool_pre_ping=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    async with session_factory() as session:
        created = await seed_sample_zones(session)
        for zone in created:
            response = service.zone_to_response(zone)
            print(f"{response.zone_id}\t{response.priority}\t{response.price}\t{response.name}")
        if args.dry_run:
            await session.rollback()
        else:
            await session.commit()

    await engine.dispose()
    print(f"Created {len(created)} zone(s){' (dry run)' if args.dry_run else ''}")
    return 0


def main() -> int:
    try:
        return asyncio.run(_run())
    except KeyboardInterrupt:
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
