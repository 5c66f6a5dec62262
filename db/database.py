"""
Database connection and session management for the image pipeline.

Provides:
- DATABASE_URL or DB_* configuration, loaded from .env
- Pooled engines (SQLite gets cross-thread access for the worker pool)
- session_scope() over the global or an injected session factory
- Schema checks and creation of the missing pipeline tables
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator

from dotenv import load_dotenv
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from db.models import Base
from pipeline.errors import ConfigurationError

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# ────────────────────────────────────────────────────────────────────────────────
# Configuration
# ────────────────────────────────────────────────────────────────────────────────

def get_database_url() -> str:
    """
    Build the database connection URL from environment variables.

    DATABASE_URL wins when set; otherwise a PostgreSQL URL is assembled
    from the DB_* variables.

    Returns:
        Connection string in SQLAlchemy format.

    Raises:
        ConfigurationError: If required environment variables are missing.
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "storefront")
    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD")

    if not password:
        raise ConfigurationError(
            "DB_PASSWORD (or DATABASE_URL) environment variable is required. "
            "Please set it in your .env file."
        )

    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


def get_pool_settings(database_url: str) -> dict:
    """
    Get connection pool settings from environment variables.

    SQLite engines get no pool sizing, only cross-thread access.
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"connect_args": {"check_same_thread": False}}

    return {
        "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
        "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "10")),
        "pool_pre_ping": True,  # Verify connections before use
        "pool_recycle": 3600,   # Recycle connections after 1 hour
    }


# ────────────────────────────────────────────────────────────────────────────────
# Engine and Session Management
# ────────────────────────────────────────────────────────────────────────────────

# Global engine instance (lazy initialization)
_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def create_engine_from_url(database_url: str) -> Engine:
    """Create an engine with the pool settings appropriate for the URL."""
    return create_engine(database_url, echo=False, **get_pool_settings(database_url))


def get_engine() -> Engine:
    """
    Get or create the SQLAlchemy engine with connection pooling.

    Returns:
        Configured SQLAlchemy Engine instance.
    """
    global _engine

    if _engine is None:
        database_url = get_database_url()
        logger.info("Creating database engine...")
        _engine = create_engine_from_url(database_url)
        logger.info(f"Engine created ({_engine.dialect.name})")

    return _engine


def make_session_factory(engine: Engine) -> sessionmaker:
    """Build a session factory bound to an engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def get_session_factory() -> sessionmaker:
    """
    Get or create the global session factory.

    Returns:
        Configured sessionmaker instance.
    """
    global _session_factory

    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())

    return _session_factory


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic commit/rollback.

    Args:
        factory: Session factory to use. Defaults to the global one.

    Yields:
        SQLAlchemy Session instance.

    Example:
        with session_scope() as session:
            product = session.get(Product, 12)
        # Automatically commits on success, rolls back on exception
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Session rollback due to: {e}")
        raise
    finally:
        session.close()


# ────────────────────────────────────────────────────────────────────────────────
# Schema
# ────────────────────────────────────────────────────────────────────────────────

def missing_tables(engine: Engine | None = None) -> list[str]:
    """
    Names of the pipeline tables that do not exist yet.

    Returns:
        Table names in dependency order; empty when the schema is complete.
    """
    existing = set(inspect(engine or get_engine()).get_table_names())
    return [t.name for t in Base.metadata.sorted_tables if t.name not in existing]


def init_db(engine: Engine | None = None) -> list[str] | None:
    """
    Create the pipeline tables that are missing.

    Tables that already exist, such as a storefront's products table, are
    left as they are.

    Returns:
        Names of the tables created (empty if none were missing), or None
        if creation failed.
    """
    try:
        engine = engine or get_engine()
        missing = missing_tables(engine)
        if not missing:
            logger.info("All pipeline tables already exist")
            return []
        logger.info(f"Creating tables: {', '.join(missing)}")
        Base.metadata.create_all(engine, checkfirst=True)
        return missing
    except ConfigurationError:
        raise
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}")
        return None


def verify_connection() -> bool:
    """
    Run a trivial query against the configured database.

    Raises:
        ConfigurationError: If credentials are not configured at all.
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        logger.info(f"Database connection verified ({engine.dialect.name})")
        return True
    except ConfigurationError:
        raise
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {e}")
        return False


def get_db_info() -> dict:
    """Resolved connection URL (password masked) and pool settings."""
    database_url = get_database_url()
    url = make_url(database_url)
    info = {
        "url": url.render_as_string(hide_password=True),
        "backend": url.get_backend_name(),
    }
    info.update(
        (key, value) for key, value in get_pool_settings(database_url).items()
        if key != "connect_args"
    )
    return info


def dispose_engine() -> None:
    """Dispose of the global engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
        logger.debug("Database engine disposed")
    _engine = None
    _session_factory = None
