"""
Postgres connection pool.

The engine is built from DATABASE_URL *after* the startup resolver has
rewritten its hostname to an IPv4 literal, so it must only be created
from the application lifespan, never at import time.

Every pooled connection has its search_path pinned, because the hosted
database ships with extra schemas that shadow our tables otherwise.
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional
from urllib.parse import urlsplit

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ...config.settings import Settings

logger = logging.getLogger(__name__)


class DatabaseConfigurationError(Exception):
    """Raised when the database is needed but not configured."""
    pass


class DatabaseConnectionError(Exception):
    """Raised when the database can't be reached."""
    pass


def _sqlalchemy_url(database_url: str) -> str:
    # Hosted providers hand out postgres:// URLs, which SQLAlchemy doesn't accept
    if database_url.startswith("postgres://"):
        return "postgresql+psycopg2://" + database_url[len("postgres://"):]
    if database_url.startswith("postgresql://"):
        return "postgresql+psycopg2://" + database_url[len("postgresql://"):]
    return database_url


def describe_target(database_url: str) -> str:
    """host:port for logging. Credentials never leave this function."""
    try:
        parts = urlsplit(database_url)
        return f"{parts.hostname}:{parts.port or 5432}"
    except ValueError:
        return "<unparseable DATABASE_URL>"


def create_database_engine(settings: Settings) -> Engine:
    """
    Create the SQLAlchemy engine and connection pool.

    TLS is required but the server certificate isn't verified; the
    managed database presents a certificate chain we don't ship.
    """
    if not settings.database_url:
        raise DatabaseConfigurationError(
            "DATABASE_URL must be set. Did you forget to provision a database?"
        )

    schema = settings.database_schema
    logger.info(
        "Connecting to database",
        extra={"target": describe_target(settings.database_url), "schema": schema}
    )

    engine = create_engine(
        _sqlalchemy_url(settings.database_url),
        pool_size=settings.database_pool_size,
        pool_pre_ping=True,
        connect_args={
            "sslmode": "require",
            "options": f"-c search_path={schema}",
        },
    )

    @event.listens_for(engine, "connect")
    def _pin_search_path(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f'SET search_path TO "{schema}"')
            cursor.execute("SHOW search_path")
            row = cursor.fetchone()
            logger.debug(
                "New database connection",
                extra={"search_path": row[0] if row else None}
            )
        finally:
            cursor.close()

    return engine


def check_database(engine: Engine) -> None:
    """Run SELECT 1. Raises DatabaseConnectionError on failure."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database check failed", extra={"error": str(e)})
        raise DatabaseConnectionError(f"Database unreachable: {e}")


@contextmanager
def session_scope(
    engine: Engine,
    session_factory: Optional[sessionmaker] = None,
) -> Generator[Session, None, None]:
    """
    Provide a transactional ORM session.

    Commits on success, rolls back on any exception, always closes.
    """
    factory = session_factory or sessionmaker(bind=engine, autoflush=False)
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
