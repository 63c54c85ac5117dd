"""Shared test fixtures."""
import pytest
from unittest.mock import MagicMock
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from sitecatalog.database import Base, create_session_factory
from sitecatalog.services.catalog_source import CatalogRecord, ContactInfo


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created.

    StaticPool keeps one connection so every session sees the same database.
    """
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    import sitecatalog.models  # noqa: F401
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """sessionmaker bound to the in-memory engine, as the services expect."""
    return create_session_factory(engine=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Session for seeding and asserting. Rolls back after each test."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def mock_redis():
    """Mock Redis client. Returns a MagicMock with common Redis methods."""
    mock = MagicMock()
    mock.get.return_value = None
    mock.hgetall.return_value = {}
    mock.incr.return_value = 1
    mock.lock.return_value.acquire.return_value = True
    return mock


@pytest.fixture
def app(session_factory, mock_redis):
    """Flask test app wired to the in-memory store and mock Redis."""
    from sitecatalog import create_app
    app = create_app(session_factory=session_factory, redis_client=mock_redis, config={'TESTING': True})
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def make_record():
    """Factory fixture — builds a normalized CatalogRecord."""
    def _make(external_id='recA', domain='example.com', contacts=None, **overrides):
        defaults = dict(
            external_id=external_id,
            domain=domain,
            domain_rating=40,
            total_traffic=12000,
            guest_post_cost=150.0,
            categories=['Tech'],
            website_type=['Blog'],
            niche=['SaaS'],
            has_guest_post=True,
            has_link_insert=False,
            status='Active',
            contacts=contacts if contacts is not None else [ContactInfo(email='owner@example.com', is_primary=True)],
        )
        defaults.update(overrides)
        return CatalogRecord(**defaults)
    return _make
