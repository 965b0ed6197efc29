# astrocat/database.py
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, List

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import DbOpenFailed, DbSchemaFailed
from .models import Base

logger = logging.getLogger(__name__)

DB_SCHEMA_VERSION = 1


def _migrate_v1(connection: Connection) -> None:
    """Schema version 1: fits, tags and thumbnails tables with their indexes."""
    Base.metadata.create_all(bind=connection)


_MIGRATIONS: Dict[int, Callable[[Connection], None]] = {
    1: _migrate_v1,
}


def get_schema_version(connection: Connection) -> int:
    return connection.exec_driver_sql("PRAGMA user_version").scalar() or 0


def _install_sqlite_hooks(engine: Engine) -> None:
    """
    Enforces foreign keys on every connection and lets SQLAlchemy own
    transaction boundaries, so schema migrations (DDL) are transactional too.
    """
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # Autocommit at the driver level; BEGIN is emitted by the hook below.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA cache_size=-100000")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(database_path: str) -> Engine:
    """Creates the SQLAlchemy engine, creating the parent directory first."""
    if database_path == ":memory:":
        engine = create_engine(
            "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    else:
        try:
            Path(database_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DbOpenFailed(f"Cannot create database folder for {database_path}: {e}") from e
        engine = create_engine(f"sqlite:///{database_path}", connect_args={"check_same_thread": False})
    _install_sqlite_hooks(engine)
    return engine


def migrate(engine: Engine) -> List[int]:
    """
    Brings the schema up to DB_SCHEMA_VERSION. All pending migrations run
    inside a single transaction. Returns the versions applied (empty when
    the schema was already current).
    """
    applied: List[int] = []
    try:
        with engine.begin() as connection:
            current_version = get_schema_version(connection)
            if current_version >= DB_SCHEMA_VERSION:
                return applied

            logger.info("Migrating catalog database from v%d to v%d", current_version, DB_SCHEMA_VERSION)
            for version in range(current_version + 1, DB_SCHEMA_VERSION + 1):
                _MIGRATIONS[version](connection)
                applied.append(version)
            connection.exec_driver_sql(f"PRAGMA user_version = {DB_SCHEMA_VERSION}")
    except SQLAlchemyError as e:
        raise DbSchemaFailed(f"Schema migration failed: {e}") from e
    return applied


class CatalogDatabase:
    """Owns the engine and session factory for one catalog file."""

    def __init__(self, database_path: str):
        self.database_path = database_path
        self.engine: Engine = create_db_engine(database_path)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine)
        self.applied_migrations: List[int] = []

    def initialize(self) -> None:
        """Opens the database and runs any pending migrations."""
        try:
            with self.engine.connect() as connection:
                connection.exec_driver_sql("SELECT 1")
        except SQLAlchemyError as e:
            raise DbOpenFailed(f"Cannot open database {self.database_path}: {e}") from e
        self.applied_migrations = migrate(self.engine)

    def schema_version(self) -> int:
        with self.engine.connect() as connection:
            return get_schema_version(connection)

    @contextmanager
    def get_session(self):
        """Provide a transactional scope around a series of operations."""
        db_session: Session = self.SessionLocal()
        try:
            yield db_session
        finally:
            db_session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def init_db(database_path: str) -> CatalogDatabase:
    """Creates (if needed), opens and migrates the catalog database."""
    database = CatalogDatabase(database_path)
    database.initialize()
    return database
