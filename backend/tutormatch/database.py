"""Database engine and helpers.

This module builds the SQLModel/SQLAlchemy engine from the configured
`DATABASE_URL` (a local SQLite file by default) and provides the small
helpers used by the application factory and tests.
"""

from sqlmodel import SQLModel, create_engine


def make_engine(db_url: str):
    """Create an engine for `db_url`.

    SQLite connections are shared across the threadpool FastAPI uses, so
    the same-thread check is turned off for them.
    """
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    return create_engine(db_url, echo=False, connect_args=connect_args)


def create_db_and_tables(engine):
    """Create database tables using SQLModel metadata.

    Intended for local development and tests; production deployments
    should manage the schema with a migration tool (alembic) instead.
    """
    # models must be imported so their tables are registered on the metadata
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(engine)
