#!/usr/bin/env python3
"""
Run one full catalog sync from the command line.

Usage:
    python scripts/run_catalog_sync.py                    # sync into DATABASE_URL
    python scripts/run_catalog_sync.py --create-tables    # create tables first (SQLite local dev)
    python scripts/run_catalog_sync.py --no-lock          # skip the Redis single-flight lock

Requires: CATALOG_API_KEY + CATALOG_BASE_ID set; Redis running unless --no-lock.
"""
import sys
import os
import json
import argparse
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sitecatalog.database import Base, create_session_factory
from sitecatalog.extensions import create_redis_client
from sitecatalog.logging_config import configure_logging
from sitecatalog.services.catalog_source import CatalogSourceClient
from sitecatalog.services.circuit_breaker import init_breakers
from sitecatalog.services.sync import CatalogSync, SyncInProgressError
import sitecatalog.models  # noqa: F401

logger = logging.getLogger('scripts.run_catalog_sync')


def main():
    parser = argparse.ArgumentParser(description='Run a full catalog sync')
    parser.add_argument('--database-url', help='Override DATABASE_URL')
    parser.add_argument('--create-tables', action='store_true', help='Create missing tables before syncing')
    parser.add_argument('--no-lock', action='store_true', help='Run without the Redis lock and breaker')
    parser.add_argument('--max-pages', type=int, help='Override SYNC_MAX_PAGES')
    args = parser.parse_args()

    configure_logging()

    session_factory = create_session_factory(args.database_url)
    if args.create_tables:
        Base.metadata.create_all(session_factory.kw['bind'])

    redis_client = None
    breaker = None
    if not args.no_lock:
        redis_client = create_redis_client()
        breaker = init_breakers(redis_client)['catalog_source']

    kwargs = {}
    if args.max_pages:
        kwargs['max_pages'] = args.max_pages

    sync = CatalogSync(CatalogSourceClient(breaker=breaker), session_factory,
                       redis_client=redis_client, **kwargs)
    try:
        result = sync.run_full_sync()
    except SyncInProgressError as e:
        logger.warning("%s", e)
        sys.exit(2)
    except Exception as e:
        logger.error("Sync failed: %s", e)
        sys.exit(1)

    print(json.dumps(result.to_dict(), indent=2))
    if result.errors:
        for message in result.error_messages[:20]:
            print(f'  ! {message}')


if __name__ == '__main__':
    main()
