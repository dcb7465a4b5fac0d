#!/usr/bin/env python3
"""Cache purge: delete expired catalog_cache rows.

SqlCache already hides expired rows on read; this reclaims the space.
Schedule hourly, e.g. `python -m cron.purge_cache`.
"""

import asyncio
import sys

from sqlalchemy.exc import SQLAlchemyError

from apps.catalog.config import config
from apps.catalog.db import create_engine_for, make_sessionmaker
from apps.catalog.errors import CacheUnavailableError
from apps.catalog.services.cache_backends import SqlCache
from cron.logging import get_logger

logger = get_logger("purge_cache")


async def purge_expired_entries(database_url: str) -> int:
    engine = create_engine_for(database_url)
    try:
        return await SqlCache(make_sessionmaker(engine)).purge_expired()
    finally:
        await engine.dispose()


def main(database_url: str | None = None) -> int:
    url = database_url or config.database_url
    try:
        removed = asyncio.run(purge_expired_entries(url))
    except (CacheUnavailableError, SQLAlchemyError) as exc:
        logger.error("cache purge failed: %s", exc)
        return 1
    logger.info("purged %d expired cache entries", removed)
    return 0


if __name__ == "__main__":
    sys.exit(main())
