"""
Database connection management for Cadence CLI.

Provides an explicitly constructed ``Database`` handle that owns the
SQLAlchemy engine and session factory. Components receive the handle
instead of reaching for module-level state; ``get_database`` is kept as a
convenience for the CLI.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from cadence_cli.config import get_config, CadenceConfig

logger = logging.getLogger(__name__)


def get_db_path(config: Optional[CadenceConfig] = None) -> Optional[Path]:
    """
    Get the database file path.

    Args:
        config: Cadence configuration (uses global if not provided)

    Returns:
        Path to the SQLite database file, or None for non-file databases
    """
    if config is None:
        config = get_config()

    # Extract path from database_url (sqlite:///path)
    db_url = config.database_url
    if db_url.startswith("sqlite:///"):
        path = db_url[10:]
        if path and path != ":memory:":
            return Path(path)
        return None
    if db_url.startswith("sqlite://"):
        return None

    # Default fallback
    return config.data_dir / "cadence.db"


class Database:
    """
    Handle over one SQLAlchemy engine and its session factory.

    Usage:
        db = Database("sqlite:///jobs.db")
        db.create_tables()
        with db.session() as session:
            job = session.query(ScheduledJob).first()
    """

    def __init__(self, url: str, echo: bool = False):
        """
        Initialize the engine.

        Args:
            url: SQLAlchemy database URL
            echo: Log every SQL statement (debugging)
        """
        self.url = url
        self.engine = self._create_engine(url, echo)
        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.debug(f"Database engine initialized: {url}")

    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        if not url.startswith("sqlite"):
            return create_engine(url, pool_pre_ping=True, pool_recycle=3600, echo=echo)

        in_memory = url in ("sqlite://", "sqlite:///:memory:")
        if in_memory:
            # One shared connection so every session sees the same database
            engine = create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=echo,
            )
        else:
            engine = create_engine(
                url,
                connect_args={
                    "check_same_thread": False,  # Allow cross-thread access
                    "timeout": 30,  # Connection timeout in seconds
                },
                pool_pre_ping=True,
                echo=echo,
            )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable SQLite foreign key support."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    @classmethod
    def from_config(cls, config: Optional[CadenceConfig] = None) -> "Database":
        """
        Build a handle from configuration, creating the SQLite directory.

        Args:
            config: Cadence configuration (uses global if not provided)
        """
        if config is None:
            config = get_config()

        db_path = get_db_path(config)
        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)

        return cls(config.database_url)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Get a database session context manager.

        The session commits on clean exit and rolls back on error.

        Yields:
            SQLAlchemy Session
        """
        session = self._session_factory()

        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create all database tables."""
        from cadence_cli.database.models import Base

        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created")

    def drop_tables(self) -> None:
        """
        Drop all database tables.

        WARNING: This will delete all data!
        """
        from cadence_cli.database.models import Base

        Base.metadata.drop_all(bind=self.engine)
        logger.warning("Database tables dropped")

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()


# Global handle for CLI commands (lazy-loaded)
_database: Optional[Database] = None


def get_database(config: Optional[CadenceConfig] = None) -> Database:
    """
    Get or create the shared CLI database handle with tables created.

    Args:
        config: Cadence configuration (uses global if not provided)
    """
    global _database

    if _database is None:
        _database = Database.from_config(config)
        _database.create_tables()

    return _database


def reset_database_handle() -> None:
    """Dispose of the shared handle so the next call rebuilds it."""
    global _database

    if _database is not None:
        _database.dispose()
        _database = None
