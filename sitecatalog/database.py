"""
Database engine + session factory construction.

Nothing here is created at import time: the host builds one session factory
(engine + connection pool) and hands it to each service. Defaults to SQLite for
local dev, Postgres in production.
"""
from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from sitecatalog.config import DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW


class Base(DeclarativeBase):
    pass


def normalize_url(url):
    """Railway injects postgres:// but SQLAlchemy 2.x requires postgresql://"""
    return url.replace('postgres://', 'postgresql://', 1)


def create_db_engine(url=None, pool_size=None, max_overflow=None, **kwargs):
    """Build an engine with pool settings appropriate for the backend."""
    url = normalize_url(url or DATABASE_URL)

    # SQLite needs different engine kwargs than Postgres
    if url.startswith('sqlite'):
        connect_args = kwargs.pop('connect_args', {})
        connect_args.setdefault('check_same_thread', False)
        return create_engine(url, connect_args=connect_args, **kwargs)

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=pool_size if pool_size is not None else DB_POOL_SIZE,
        max_overflow=max_overflow if max_overflow is not None else DB_MAX_OVERFLOW,
        **kwargs,
    )


def create_session_factory(url=None, engine=None, **engine_kwargs):
    """Return a sessionmaker bound to a new (or the given) engine."""
    if engine is None:
        engine = create_db_engine(url, **engine_kwargs)
    return sessionmaker(bind=engine, expire_on_commit=False)


def dialect_name(session):
    return session.get_bind().dialect.name


def upsert_insert(session, model):
    """Dialect-specific INSERT construct that supports ON CONFLICT clauses."""
    name = dialect_name(session)
    if name == 'postgresql':
        return postgresql.insert(model)
    if name == 'sqlite':
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert not supported for dialect '{name}'")
