"""Tests for sitecatalog.services.qualification — batch qualify + listing."""
import pytest
from unittest.mock import patch

from sitecatalog.models.qualification import QualificationMark
from sitecatalog.services.qualification import QualificationError, list_qualifications, qualify
from sitecatalog.services.reconcile import reconcile_entry


@pytest.fixture
def website_ids(session_factory, make_record):
    return [
        reconcile_entry(session_factory, make_record(f'rec{i}', f'site{i}.com'))
        for i in range(3)
    ]


def _marks(db_session):
    db_session.expire_all()
    return db_session.query(QualificationMark).order_by(QualificationMark.id).all()


class TestQualify:
    """qualify() writes one mark per website, all or nothing."""

    def test_writes_marks(self, session_factory, db_session, website_ids):
        count = qualify(session_factory, website_ids[:2], client_id='client-1', actor_id='user-9')
        assert count == 2
        marks = _marks(db_session)
        assert [m.website_id for m in marks] == website_ids[:2]
        assert all(m.client_id == 'client-1' for m in marks)
        assert all(m.project_id is None for m in marks)
        assert all(m.status == 'qualified' for m in marks)
        assert all(m.qualified_by == 'user-9' for m in marks)

    def test_requalify_overwrites(self, session_factory, db_session, website_ids):
        qualify(session_factory, [website_ids[0]], client_id='c', actor_id='u1', notes='first')
        qualify(session_factory, [website_ids[0]], client_id='c', actor_id='u2', notes='second',
                status='rejected')
        marks = _marks(db_session)
        assert len(marks) == 1
        assert marks[0].notes == 'second'
        assert marks[0].qualified_by == 'u2'
        assert marks[0].status == 'rejected'

    def test_project_marks_are_separate(self, session_factory, db_session, website_ids):
        site = website_ids[0]
        qualify(session_factory, [site], client_id='c', actor_id='u')
        qualify(session_factory, [site], client_id='c', project_id='p1', actor_id='u')
        qualify(session_factory, [site], client_id='c', project_id='p2', actor_id='u')
        qualify(session_factory, [site], client_id='c', project_id='p1', actor_id='u', notes='again')
        marks = _marks(db_session)
        assert sorted((m.project_id or '') for m in marks) == ['', 'p1', 'p2']
        assert [m.notes for m in marks if m.project_id == 'p1'] == ['again']

    def test_client_wide_mark_upserts_despite_null_project(self, session_factory, db_session, website_ids):
        qualify(session_factory, [website_ids[0]], client_id='c', actor_id='u')
        qualify(session_factory, [website_ids[0]], client_id='c', actor_id='u')
        assert len(_marks(db_session)) == 1

    def test_duplicate_ids_collapse(self, session_factory, website_ids):
        assert qualify(session_factory, [website_ids[0], website_ids[0]], client_id='c', actor_id='u') == 1

    def test_unknown_website_writes_nothing(self, session_factory, db_session, website_ids):
        with pytest.raises(QualificationError, match='999'):
            qualify(session_factory, [website_ids[0], 999], client_id='c', actor_id='u')
        assert _marks(db_session) == []

    def test_store_failure_writes_nothing(self, session_factory, db_session, website_ids):
        from sitecatalog.services import qualification as module
        real_upsert = module._upsert_mark
        calls = []

        def fail_second(*args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise RuntimeError('deadlock')
            return real_upsert(*args, **kwargs)

        with patch.object(module, '_upsert_mark', side_effect=fail_second):
            with pytest.raises(RuntimeError):
                qualify(session_factory, website_ids, client_id='c', actor_id='u')
        assert _marks(db_session) == []

    @pytest.mark.parametrize('kwargs', [
        {'website_ids': [], 'client_id': 'c', 'actor_id': 'u'},
        {'website_ids': [1], 'client_id': '', 'actor_id': 'u'},
        {'website_ids': [1], 'client_id': 'c', 'actor_id': None},
        {'website_ids': ['abc'], 'client_id': 'c', 'actor_id': 'u'},
    ])
    def test_invalid_input(self, session_factory, kwargs):
        with pytest.raises(QualificationError):
            qualify(session_factory, **kwargs)


class TestListQualifications:

    def test_newest_first_and_client_filter(self, session_factory, website_ids):
        site = website_ids[0]
        qualify(session_factory, [site], client_id='a', actor_id='u')
        qualify(session_factory, [site], client_id='b', actor_id='u')
        marks = list_qualifications(session_factory, site)
        assert [m['client_id'] for m in marks] == ['b', 'a']
        only_a = list_qualifications(session_factory, site, client_id='a')
        assert [m['client_id'] for m in only_a] == ['a']

    def test_empty(self, session_factory, website_ids):
        assert list_qualifications(session_factory, website_ids[1]) == []
