"""
Full catalog sync — source → reconcile → store, with a SyncRun audit row.

    idle → running → success | failed

Pages are fetched strictly one after another with SYNC_PAGE_DELAY_SECONDS
between them; the source bans integrations that burst past its
requests-per-second budget. A bad record is counted and skipped, never fatal.
Only a failure outside the per-record loop (source down, misconfigured, store
unreachable) fails the run, which is then sealed `failed` and re-raised.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from redis.exceptions import LockError

from sitecatalog.config import (
    SYNC_PAGE_DELAY_SECONDS, SYNC_MAX_PAGES, SYNC_LOCK_TIMEOUT, CATALOG_PAGE_SIZE,
)
from sitecatalog.models.sync_run import SyncRun
from sitecatalog.services.reconcile import reconcile_entry, website_exists

logger = logging.getLogger('services.sync')

IDLE = 'idle'
RUNNING = 'running'
SUCCESS = 'success'
FAILED = 'failed'

LOCK_KEY = 'catalog:sync:lock'


class SyncInProgressError(Exception):
    """Another full sync holds the single-flight lock."""


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    errors: int = 0
    total: int = 0
    pages: int = 0
    truncated: bool = False
    status: str = RUNNING
    sync_run_id: Optional[int] = None
    error_messages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'created': self.created,
            'updated': self.updated,
            'errors': self.errors,
            'total': self.total,
            'pages': self.pages,
            'truncated': self.truncated,
            'status': self.status,
            'sync_run_id': self.sync_run_id,
        }


class CatalogSync:
    """
    Drives one full sync of the catalog source into the local store.

    Args:
        source:          object with fetch_page(filters, page_size, cursor) → CatalogPage
        session_factory: sessionmaker for the local store
        redis_client:    optional; enables the single-flight lock
        page_delay:      seconds slept between page fetches
        max_pages:       hard ceiling on pages fetched per run
        sleep:           injectable for tests
    """

    def __init__(self, source, session_factory, redis_client=None,
                 page_delay=SYNC_PAGE_DELAY_SECONDS, max_pages=SYNC_MAX_PAGES,
                 page_size=CATALOG_PAGE_SIZE, lock_timeout=SYNC_LOCK_TIMEOUT, sleep=time.sleep):
        self.source = source
        self.session_factory = session_factory
        self.redis = redis_client
        self.page_delay = page_delay
        self.max_pages = max_pages
        self.page_size = page_size
        self.lock_timeout = lock_timeout
        self._sleep = sleep
        self.state = IDLE

    # ── Public ───────────────────────────────────────────────────────────

    def run_full_sync(self) -> SyncResult:
        lock = self._acquire_lock()
        try:
            return self._run()
        finally:
            self._release_lock(lock)

    # ── SyncRun bookkeeping ──────────────────────────────────────────────

    def _open_run(self) -> int:
        session = self.session_factory()
        try:
            run = SyncRun(
                sync_type='catalog',
                action='full_sync',
                status='in_progress',
                started_at=datetime.now(timezone.utc),
            )
            session.add(run)
            session.commit()
            return run.id
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _seal_run(self, run_id: int, result: SyncResult, error: Optional[str] = None):
        """Write the final counters. A failed write re-raises unless the run is already failing."""
        session = self.session_factory()
        try:
            run = session.get(SyncRun, run_id)
            if run is None or run.status != 'in_progress':
                logger.warning("SyncRun %s already sealed or missing, not resealing", run_id)
                return
            run.status = result.status
            run.completed_at = datetime.now(timezone.utc)
            run.records_processed = result.total
            run.records_created = result.created
            run.records_updated = result.updated
            run.records_failed = result.errors
            run.pages_fetched = result.pages
            run.truncated = result.truncated
            run.error = error
            session.commit()
        except Exception:
            session.rollback()
            logger.error("Failed to seal SyncRun %s as %s", run_id, result.status, exc_info=True)
            if result.status != FAILED:
                raise
        finally:
            session.close()

    # ── Main loop ────────────────────────────────────────────────────────

    def _run(self) -> SyncResult:
        self.state = RUNNING
        result = SyncResult()
        try:
            result.sync_run_id = self._open_run()
        except Exception:
            self.state = FAILED
            raise
        started = time.monotonic()
        logger.info("Full catalog sync started (run %s)", result.sync_run_id,
                    extra={'sync_run_id': result.sync_run_id})

        try:
            cursor = None
            while True:
                if result.pages > 0:
                    self._sleep(self.page_delay)

                page = self.source.fetch_page(filters=None, page_size=self.page_size, cursor=cursor)
                result.pages += 1

                for failure in page.failures:
                    self._count_failure(failure.external_id, failure.message, result)
                for record in page.records:
                    self._process_record(record, result)

                logger.info("Page %d: %d records (running totals: created=%d updated=%d errors=%d)",
                            result.pages, len(page.records), result.created, result.updated, result.errors,
                            extra={'sync_run_id': result.sync_run_id, 'page': result.pages})

                if not page.has_more:
                    break
                if result.pages >= self.max_pages:
                    result.truncated = True
                    logger.warning("Stopping sync at page ceiling (%d pages); source still reports more records",
                                   self.max_pages)
                    break
                cursor = page.next_cursor

        except Exception as e:
            self.state = FAILED
            result.status = FAILED
            logger.error("Full catalog sync failed after %d records: %s", result.total, e, exc_info=True,
                         extra={'sync_run_id': result.sync_run_id, 'page': result.pages})
            self._seal_run(result.sync_run_id, result, error=str(e))
            raise

        result.status = SUCCESS
        try:
            self._seal_run(result.sync_run_id, result)
        except Exception:
            self.state = FAILED
            result.status = FAILED
            raise
        self.state = SUCCESS
        logger.info("Full catalog sync complete in %.1fs: %d created, %d updated, %d errors, %d total",
                    time.monotonic() - started, result.created, result.updated, result.errors, result.total,
                    extra={'sync_run_id': result.sync_run_id})
        return result

    def _process_record(self, record, result: SyncResult):
        result.total += 1
        external_id = getattr(record, 'external_id', None)
        try:
            existed = website_exists(self.session_factory, external_id)
            reconcile_entry(self.session_factory, record)
        except Exception as e:
            result.errors += 1
            result.error_messages.append(f"{external_id}: {e}")
            logger.error("Failed to reconcile record %s", external_id, exc_info=True,
                         extra={'sync_run_id': result.sync_run_id, 'external_id': external_id})
            return
        if existed:
            result.updated += 1
        else:
            result.created += 1

    def _count_failure(self, external_id, message, result: SyncResult):
        result.total += 1
        result.errors += 1
        result.error_messages.append(f"{external_id}: {message}")
        logger.error("Malformed source record %s: %s", external_id, message,
                     extra={'sync_run_id': result.sync_run_id, 'external_id': external_id})

    # ── Single-flight lock ───────────────────────────────────────────────

    def _acquire_lock(self):
        if self.redis is None:
            return None
        lock = self.redis.lock(LOCK_KEY, timeout=self.lock_timeout)
        if not lock.acquire(blocking=False):
            raise SyncInProgressError('A catalog sync is already running')
        return lock

    def _release_lock(self, lock):
        if lock is None:
            return
        try:
            lock.release()
        except LockError:
            logger.warning("Sync lock expired before release; a concurrent sync may have started")


# ── Read helpers for the status endpoints ────────────────────────────────────

def recent_sync_runs(session_factory, limit=20) -> List[Dict[str, Any]]:
    session = session_factory()
    try:
        runs = (
            session.query(SyncRun)
            .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
            .limit(limit)
            .all()
        )
        return [run.to_dict() for run in runs]
    finally:
        session.close()


def latest_sync_run(session_factory) -> Optional[Dict[str, Any]]:
    runs = recent_sync_runs(session_factory, limit=1)
    return runs[0] if runs else None
