"""Tests for sitecatalog.services.sync — full sync orchestration."""
import pytest
from unittest.mock import MagicMock, patch

from redis.exceptions import LockError
from sqlalchemy.exc import OperationalError

from sitecatalog.models.contact import WebsiteContact
from sitecatalog.models.sync_run import SyncRun
from sitecatalog.models.website import Website
from sitecatalog.services.catalog_source import (
    CatalogPage, CatalogSourceClient, CatalogSourceError, ContactInfo, RecordFailure,
)
from sitecatalog.services.reconcile import reconcile_entry as real_reconcile
from sitecatalog.services.sync import (
    CatalogSync, SyncInProgressError, FAILED, IDLE, SUCCESS,
    latest_sync_run, recent_sync_runs,
)


class FakeSource:
    """Serves a fixed list of pages; records every fetch_page call."""

    def __init__(self, pages, fail_on_call=None):
        self.pages = pages
        self.fail_on_call = fail_on_call
        self.calls = []

    def fetch_page(self, filters=None, page_size=100, cursor=None):
        self.calls.append({'filters': filters, 'page_size': page_size, 'cursor': cursor})
        index = len(self.calls) - 1
        if self.fail_on_call is not None and index == self.fail_on_call:
            raise CatalogSourceError('Catalog source error: upstream exploded', status_code=500)
        records = self.pages[index]
        has_more = index < len(self.pages) - 1
        return CatalogPage(records=records, has_more=has_more,
                           next_cursor=f'cursor-{index + 1}' if has_more else None)


@pytest.fixture
def sleep():
    return MagicMock()


def _sync(source, session_factory, sleep, **kwargs):
    return CatalogSync(source, session_factory, page_delay=0.2, sleep=sleep, **kwargs)


def _runs(db_session):
    db_session.expire_all()
    return db_session.query(SyncRun).order_by(SyncRun.id).all()


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

class TestFullSync:
    """Pages → reconcile → SyncRun sealed success."""

    def test_end_to_end_two_pages(self, session_factory, db_session, make_record, sleep):
        source = FakeSource([
            [
                make_record('recA', 'a.com', contacts=[
                    ContactInfo(email='a@x.com', guest_post_cost=500),
                    ContactInfo(email='a@x.com', guest_post_cost=300),
                ]),
                make_record('recB', 'b.com'),
            ],
            [make_record('recC', 'c.com', contacts=[])],
        ])
        sync = _sync(source, session_factory, sleep)

        result = sync.run_full_sync()

        assert result.to_dict()['created'] == 3
        assert result.updated == 0
        assert result.errors == 0
        assert result.total == 3
        assert result.pages == 2
        assert result.status == SUCCESS
        assert sync.state == SUCCESS
        assert db_session.query(Website).count() == 3

        site_a = db_session.query(Website).filter_by(external_id='recA').one()
        contacts = db_session.query(WebsiteContact).filter_by(website_id=site_a.id).all()
        assert [(c.email, c.guest_post_cost, c.is_primary) for c in contacts] == [('a@x.com', 300, True)]

        run = _runs(db_session)[-1]
        assert run.id == result.sync_run_id
        assert run.status == 'success'
        assert run.records_created == 3
        assert run.records_processed == 3
        assert run.pages_fetched == 2
        assert run.completed_at is not None

    def test_second_run_counts_updates(self, session_factory, make_record, sleep):
        pages = [[make_record('recA'), make_record('recB')]]
        _sync(FakeSource(pages), session_factory, sleep).run_full_sync()
        result = _sync(FakeSource(pages), session_factory, sleep).run_full_sync()
        assert (result.created, result.updated, result.total) == (0, 2, 2)

    def test_pages_are_sequential_and_unfiltered(self, session_factory, make_record, sleep):
        source = FakeSource([[make_record('r1')], [make_record('r2')], [make_record('r3')]])
        _sync(source, session_factory, sleep).run_full_sync()
        assert [c['cursor'] for c in source.calls] == [None, 'cursor-1', 'cursor-2']
        assert all(c['filters'] is None for c in source.calls)

    def test_sleeps_between_pages_only(self, session_factory, make_record, sleep):
        source = FakeSource([[make_record('r1')], [make_record('r2')], [make_record('r3')]])
        _sync(source, session_factory, sleep).run_full_sync()
        assert sleep.call_count == 2
        sleep.assert_called_with(0.2)

    def test_single_page_never_sleeps(self, session_factory, make_record, sleep):
        _sync(FakeSource([[make_record('r1')]]), session_factory, sleep).run_full_sync()
        sleep.assert_not_called()

    def test_empty_source(self, session_factory, db_session, sleep):
        result = _sync(FakeSource([[]]), session_factory, sleep).run_full_sync()
        assert result.total == 0
        assert result.status == SUCCESS
        assert _runs(db_session)[-1].status == 'success'

    def test_state_starts_idle(self, session_factory, sleep):
        assert _sync(FakeSource([[]]), session_factory, sleep).state == IDLE


# ---------------------------------------------------------------------------
# Partial failure
# ---------------------------------------------------------------------------

class TestRecordFailures:
    """A bad record is counted and skipped."""

    def test_one_bad_record_of_five(self, session_factory, db_session, make_record, sleep):
        records = [make_record(f'rec{i}', f'site{i}.com') for i in range(5)]

        def flaky(factory, record, now=None):
            if record.external_id == 'rec2':
                raise RuntimeError('constraint violated')
            return real_reconcile(factory, record, now)

        with patch('sitecatalog.services.sync.reconcile_entry', side_effect=flaky):
            result = _sync(FakeSource([records]), session_factory, sleep).run_full_sync()

        assert result.created == 4
        assert result.errors == 1
        assert result.total == 5
        assert result.status == SUCCESS
        assert 'rec2' in result.error_messages[0]
        assert db_session.query(Website).count() == 4
        assert _runs(db_session)[-1].records_failed == 1

    def test_record_without_external_id_is_an_error(self, session_factory, make_record, sleep):
        source = FakeSource([[make_record('recA'), make_record('')]])
        result = _sync(source, session_factory, sleep).run_full_sync()
        assert (result.created, result.errors, result.total) == (1, 1, 2)

    def test_malformed_source_record_mid_page(self, session_factory, db_session, sleep):
        response = MagicMock(ok=True, status_code=200)
        response.json.return_value = {'records': [
            {'id': 'rec1', 'fields': {'Website': 'https://one.com'}},
            {'id': 'rec2', 'fields': {'Website': ['https://two.com']}},
            {'id': 'rec3', 'fields': {'Website': 'https://three.com', 'Domain Rating': 40}},
        ]}
        http = MagicMock()
        http.get.return_value = response
        source = CatalogSourceClient(api_key='key', base_id='app1', http=http)

        result = _sync(source, session_factory, sleep).run_full_sync()

        assert (result.created, result.errors, result.total) == (2, 1, 3)
        assert result.status == SUCCESS
        assert 'rec2' in result.error_messages[0]
        assert sorted(w.domain for w in db_session.query(Website)) == ['one.com', 'three.com']
        run = _runs(db_session)[-1]
        assert run.status == 'success'
        assert run.records_failed == 1
        assert run.records_processed == 3

    def test_page_failures_count_before_records(self, session_factory, make_record, sleep):
        class FailingPageSource(FakeSource):
            def fetch_page(self, filters=None, page_size=100, cursor=None):
                page = super().fetch_page(filters, page_size, cursor)
                page.failures.append(RecordFailure(external_id='recBad', message='Status is not text'))
                return page

        result = _sync(FailingPageSource([[make_record('r1')]]), session_factory, sleep).run_full_sync()
        assert (result.created, result.errors, result.total) == (1, 1, 2)
        assert result.error_messages == ['recBad: Status is not text']

    def test_record_errors_are_logged_with_traceback(self, session_factory, make_record, sleep, caplog):
        with patch('sitecatalog.services.sync.reconcile_entry', side_effect=RuntimeError('boom')):
            with caplog.at_level('ERROR', logger='services.sync'):
                _sync(FakeSource([[make_record('recX')]]), session_factory, sleep).run_full_sync()
        failures = [r for r in caplog.records if 'recX' in r.getMessage()]
        assert failures and failures[0].exc_info is not None
        assert failures[0].external_id == 'recX'
        assert failures[0].sync_run_id is not None


# ---------------------------------------------------------------------------
# Fatal failure
# ---------------------------------------------------------------------------

class TestFatalFailure:
    """Source failure seals the run failed and re-raises."""

    def test_source_error_seals_failed(self, session_factory, db_session, make_record, sleep):
        source = FakeSource([[make_record('r1')], [make_record('r2')]], fail_on_call=1)
        sync = _sync(source, session_factory, sleep)

        with pytest.raises(CatalogSourceError):
            sync.run_full_sync()

        assert sync.state == FAILED
        run = _runs(db_session)[-1]
        assert run.status == 'failed'
        assert 'upstream exploded' in run.error
        assert run.records_created == 1
        assert run.completed_at is not None

    def test_first_page_failure(self, session_factory, db_session, sleep):
        sync = _sync(FakeSource([[]], fail_on_call=0), session_factory, sleep)
        with pytest.raises(CatalogSourceError):
            sync.run_full_sync()
        assert _runs(db_session)[-1].status == 'failed'

    def test_seal_write_failure_is_raised(self, session_factory, db_session, make_record, sleep):
        def factory():
            session = session_factory()
            commit = session.commit

            def guarded_commit():
                if any(isinstance(obj, SyncRun) for obj in session.dirty):
                    raise OperationalError('UPDATE sync_runs', {}, Exception('disk I/O error'))
                commit()

            session.commit = guarded_commit
            return session

        sync = _sync(FakeSource([[make_record('r1')]]), factory, sleep)
        with pytest.raises(OperationalError):
            sync.run_full_sync()

        assert sync.state == FAILED
        assert db_session.query(Website).count() == 1
        assert _runs(db_session)[-1].status == 'in_progress'

    def test_store_unreachable_before_run_opens(self, sleep):
        def broken_factory():
            raise RuntimeError('connection refused')
        sync = _sync(FakeSource([[]]), broken_factory, sleep)
        with pytest.raises(RuntimeError):
            sync.run_full_sync()
        assert sync.state == FAILED


# ---------------------------------------------------------------------------
# Page ceiling
# ---------------------------------------------------------------------------

class TestPageCeiling:
    """max_pages stops an unbounded source."""

    def test_truncates_at_ceiling(self, session_factory, db_session, make_record, sleep, caplog):
        pages = [[make_record(f'r{i}')] for i in range(5)]
        source = FakeSource(pages)
        with caplog.at_level('WARNING', logger='services.sync'):
            result = _sync(source, session_factory, sleep, max_pages=3).run_full_sync()

        assert len(source.calls) == 3
        assert result.pages == 3
        assert result.truncated is True
        assert result.status == SUCCESS
        assert any('ceiling' in r.getMessage() for r in caplog.records)
        run = _runs(db_session)[-1]
        assert run.truncated is True
        assert run.status == 'success'

    def test_exact_fit_is_not_truncated(self, session_factory, make_record, sleep):
        pages = [[make_record(f'r{i}')] for i in range(3)]
        result = _sync(FakeSource(pages), session_factory, sleep, max_pages=3).run_full_sync()
        assert result.truncated is False


# ---------------------------------------------------------------------------
# Single flight
# ---------------------------------------------------------------------------

class TestSingleFlight:
    """Redis lock keeps one sync at a time."""

    def test_lock_held_raises_before_run(self, session_factory, db_session, mock_redis, sleep):
        mock_redis.lock.return_value.acquire.return_value = False
        sync = _sync(FakeSource([[]]), session_factory, sleep, redis_client=mock_redis)
        with pytest.raises(SyncInProgressError):
            sync.run_full_sync()
        assert _runs(db_session) == []
        assert sync.state == IDLE

    def test_lock_acquired_and_released(self, session_factory, mock_redis, sleep):
        lock = mock_redis.lock.return_value
        _sync(FakeSource([[]]), session_factory, sleep, redis_client=mock_redis, lock_timeout=60).run_full_sync()
        mock_redis.lock.assert_called_once_with('catalog:sync:lock', timeout=60)
        lock.acquire.assert_called_once_with(blocking=False)
        lock.release.assert_called_once()

    def test_lock_released_after_failure(self, session_factory, mock_redis, sleep):
        lock = mock_redis.lock.return_value
        sync = _sync(FakeSource([[]], fail_on_call=0), session_factory, sleep, redis_client=mock_redis)
        with pytest.raises(CatalogSourceError):
            sync.run_full_sync()
        lock.release.assert_called_once()

    def test_expired_lock_on_release_is_tolerated(self, session_factory, mock_redis, sleep):
        mock_redis.lock.return_value.release.side_effect = LockError('expired')
        result = _sync(FakeSource([[]]), session_factory, sleep, redis_client=mock_redis).run_full_sync()
        assert result.status == SUCCESS


# ---------------------------------------------------------------------------
# Run history
# ---------------------------------------------------------------------------

class TestSyncRunHistory:

    def test_recent_runs_newest_first(self, session_factory, make_record, sleep):
        first = _sync(FakeSource([[make_record('r1')]]), session_factory, sleep).run_full_sync()
        second = _sync(FakeSource([[make_record('r1')]]), session_factory, sleep).run_full_sync()
        runs = recent_sync_runs(session_factory, limit=10)
        assert [r['id'] for r in runs] == [second.sync_run_id, first.sync_run_id]
        assert latest_sync_run(session_factory)['id'] == second.sync_run_id

    def test_latest_when_empty(self, session_factory):
        assert latest_sync_run(session_factory) is None
