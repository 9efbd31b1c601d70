import logging
import os
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from budgetvote.config.loader import _coerce_positive_int, load_config

_DEFAULT_DATABASE_URL = "sqlite:///./budgetvote.db"

logger = logging.getLogger("database")


@dataclass(frozen=True)
class SqliteSettings:
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"
    busy_timeout_ms: int = 30000
    write_retries: int = 5
    retry_backoff_ms: int = 200

    @classmethod
    def from_config(cls, section: Dict[str, Any]) -> "SqliteSettings":
        defaults = cls()
        return cls(
            journal_mode=str(section.get("journal_mode") or defaults.journal_mode),
            synchronous=str(section.get("synchronous") or defaults.synchronous),
            busy_timeout_ms=_coerce_positive_int(
                section.get("busy_timeout_ms"), defaults.busy_timeout_ms
            ),
            write_retries=_coerce_positive_int(
                section.get("write_retries"), defaults.write_retries
            ),
            retry_backoff_ms=_coerce_positive_int(
                section.get("retry_backoff_ms"), defaults.retry_backoff_ms
            ),
        )


def _pool_options(section: Dict[str, Any]) -> Dict[str, int]:
    return {
        "pool_size": _coerce_positive_int(section.get("pool_size"), 20),
        "max_overflow": _coerce_positive_int(section.get("max_overflow"), 40),
        "pool_timeout": _coerce_positive_int(section.get("pool_timeout_seconds"), 15),
        "pool_recycle": _coerce_positive_int(
            section.get("pool_recycle_seconds"), 1800
        ),
    }


def _database_url(config: Dict[str, Any]) -> str:
    """BUDGETVOTE_DATABASE_URL, then config.yaml, then a local SQLite file."""
    url = os.getenv("BUDGETVOTE_DATABASE_URL") or config.get("database_url")
    return str(url) if url else _DEFAULT_DATABASE_URL


def _ensure_sqlite_directory(database_url: str) -> None:
    db_url = make_url(database_url)
    if not db_url.database or db_url.database == ":memory:":
        return
    db_path = Path(db_url.database)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)


_config = load_config()
DATABASE_URL = _database_url(_config)
IS_SQLITE = DATABASE_URL.startswith("sqlite")
_sqlite = SqliteSettings.from_config(_config.get("sqlite") or {})

connect_args: Dict[str, Any] = {}
if IS_SQLITE:
    _ensure_sqlite_directory(DATABASE_URL)
    connect_args["check_same_thread"] = False
    connect_args["timeout"] = max(1, _sqlite.busy_timeout_ms / 1000)

engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
    pool_pre_ping=True,
    pool_use_lifo=True,
    **_pool_options(_config.get("database_pool") or {}),
)

# Serializes SQLite writers inside one process; other processes wait on busy_timeout.
_SQLITE_WRITE_LOCK = threading.RLock()


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, _connection_record) -> None:
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute(f"PRAGMA journal_mode={_sqlite.journal_mode}")
    cursor.execute(f"PRAGMA synchronous={_sqlite.synchronous}")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute(f"PRAGMA busy_timeout={_sqlite.busy_timeout_ms}")
    cursor.close()


def _is_locked(exc: OperationalError) -> bool:
    message = str(exc).lower()
    return "database is locked" in message or "database table is locked" in message


class QueuedSession(Session):
    """Session that queues SQLite writes and retries commits hitting a lock."""

    def commit(self) -> None:
        retries = max(1, _sqlite.write_retries)
        backoff = max(1, _sqlite.retry_backoff_ms) / 1000
        with _SQLITE_WRITE_LOCK:
            for attempt in range(1, retries + 1):
                try:
                    return super().commit()
                except OperationalError as exc:
                    if not _is_locked(exc) or attempt >= retries:
                        raise
                    super().rollback()
                    logger.warning(
                        "SQLite locked on commit (attempt %d/%d); retrying",
                        attempt,
                        retries,
                    )
                    time.sleep(backoff * attempt)

    def flush(self, objects=None) -> None:
        with _SQLITE_WRITE_LOCK:
            return super().flush(objects)


SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    class_=QueuedSession if IS_SQLITE else Session,
)

Base = declarative_base()


def ping_database(db: Session) -> None:
    db.execute(text("SELECT 1"))


def get_db():
    db = SessionLocal()
    logger.debug("Opened database session %s", id(db))
    try:
        yield db
    finally:
        db.close()
        logger.debug("Closed database session %s", id(db))
