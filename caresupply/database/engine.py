import logging
import sqlite3

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

from caresupply.config import Settings, get_settings


app_settings: Settings = get_settings()
logger = logging.getLogger(__name__)

_SQLITE_BUSY_TIMEOUT_SECONDS = 30
_SQLITE_BUSY_TIMEOUT_MS = _SQLITE_BUSY_TIMEOUT_SECONDS * 1000


def _is_sqlite_memory(url) -> bool:
    if url.database in (None, "", ":memory:"):
        return True
    return url.query.get("mode") == "memory"


def _install_sqlite_hooks(bind: Engine, *, memory: bool, database: str | None) -> None:
    @event.listens_for(bind, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _connection_record):
        # Cascades on order_items and executions depend on foreign_keys=ON.
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"PRAGMA busy_timeout={_SQLITE_BUSY_TIMEOUT_MS}")
            if not memory:
                try:
                    cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.execute("PRAGMA synchronous=NORMAL")
                except sqlite3.DatabaseError:
                    logger.warning("Unable to enable WAL journal mode for %s", database)
        finally:
            cursor.close()
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly under pysqlite.
        dbapi_connection.isolation_level = None

    @event.listens_for(bind, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    memory = _is_sqlite_memory(url)
    engine_kwargs: dict[str, object] = dict(pool_pre_ping=True)
    if memory:
        engine_kwargs.update(poolclass=StaticPool)
    bind = create_engine(
        database_url,
        connect_args={"check_same_thread": False, "timeout": _SQLITE_BUSY_TIMEOUT_SECONDS},
        **engine_kwargs,
    )
    _install_sqlite_hooks(bind, memory=memory, database=url.database)
    return bind


is_sqlite = make_url(app_settings.DATABASE_URL).get_backend_name() == "sqlite"
engine = build_engine(app_settings.DATABASE_URL)


def init_db(bind=None) -> None:
    from caresupply.database.base import Base
    from caresupply.models import import_all_models

    import_all_models()
    Base.metadata.create_all(bind=bind or engine)


__all__ = ["build_engine", "engine", "init_db", "is_sqlite"]
