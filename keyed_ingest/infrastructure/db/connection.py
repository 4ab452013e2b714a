import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from ...core.config import DatabaseSettings
from ...core.exceptions import DatabaseError

# Import models so they are registered with SQLModel.metadata
from . import models  # noqa: F401

logger = logging.getLogger(__name__)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


class DatabaseManager:
    """
    Owns the engine and hands out sessions.

    Constructed by the process entry point and passed to the store, registry,
    coordinator and exporter; nothing in the package keeps a module-level
    handle.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: Optional[Engine] = None
        self._is_connected = False

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> "DatabaseManager":
        return cls(settings.url, echo=settings.echo)

    @property
    def is_sqlite(self) -> bool:
        return make_url(self.url).get_backend_name() == "sqlite"

    def _get_database_config(self) -> dict:
        """Get engine configuration based on URL."""
        config = {"echo": self.echo}

        if self.is_sqlite:
            config["connect_args"] = {"check_same_thread": False}
            database = make_url(self.url).database
            if not database or database == ":memory:":
                config["poolclass"] = StaticPool
        else:
            config["pool_pre_ping"] = True

        return config

    def _create_engine(self) -> Engine:
        try:
            if self.is_sqlite:
                database = make_url(self.url).database
                if database and database != ":memory:":
                    Path(database).parent.mkdir(parents=True, exist_ok=True)

            engine = create_engine(self.url, **self._get_database_config())

            if self.is_sqlite:
                event.listen(engine, "connect", _set_sqlite_pragma)

            logger.info(f"Database engine created: {engine.url.render_as_string(hide_password=True)}")
            return engine

        except SQLAlchemyError as e:
            logger.error(f"Failed to create database engine: {e}")
            raise DatabaseError(f"Database engine creation failed: {e}", operation="create_engine")

    def get_engine(self) -> Engine:
        """Get or create database engine."""
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Session that commits on exit and rolls back on error."""
        session = Session(self.get_engine(), expire_on_commit=False)

        try:
            yield session
            session.commit()

        except SQLAlchemyError as e:
            logger.error(f"Database session error: {e}")
            session.rollback()
            raise DatabaseError(f"Database operation failed: {e}") from e

        except Exception:
            session.rollback()
            raise

        finally:
            session.close()

    def create_tables(self) -> None:
        try:
            SQLModel.metadata.create_all(self.get_engine())
            logger.info("Database tables ensured")
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to create tables: {e}", operation="create_tables") from e

    def connect(self) -> None:
        """Initialize engine and schema."""
        logger.info("Connecting to database...")
        self.get_engine()
        self.create_tables()

        if not self.health_check():
            raise DatabaseError("Database health check failed after connection", operation="connect")

        self._is_connected = True
        logger.info("Database connected successfully")

    def disconnect(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._is_connected = False

    def health_check(self) -> bool:
        try:
            with self.get_engine().connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    @property
    def is_connected(self) -> bool:
        return self._is_connected
