from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from types import TracebackType
from typing import Optional, Type, Union

from models.records import SCALAR_FIELDS, SensorRecord

logger = logging.getLogger(__name__)

TABLE_NAME = "sensor_data"
DEFAULT_BUSY_TIMEOUT = 5.0

_COLUMNS = ("sessionID", "timestamp", *SCALAR_FIELDS)

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sessionID INTEGER,
    timestamp TEXT,
    {", ".join(f"{name} REAL" for name in SCALAR_FIELDS)}
)
"""

INSERT_SQL = (
    f"INSERT INTO {TABLE_NAME} ({', '.join(_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _COLUMNS)})"
)

PathLike = Union[str, Path]


class StoreError(Exception):
    """Raised when the SQLite store rejects an operation."""


class SQLiteSink:
    """Owns one SQLite connection and appends records to ``sensor_data``.

    A sink is opened for a single client connection and used only by the
    thread that services it. Each append commits on its own; a failed append
    rolls back and raises :class:`StoreError` without retrying.
    """

    def __init__(self, path: PathLike, timeout: float = DEFAULT_BUSY_TIMEOUT) -> None:
        self.path = Path(path)
        try:
            # Opened on the acceptor thread, then handed to one handler thread.
            self._connection: Optional[sqlite3.Connection] = sqlite3.connect(
                str(self.path), timeout=timeout, check_same_thread=False
            )
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open store at {self.path}: {exc}") from exc

    def append(self, record: SensorRecord) -> None:
        if self._connection is None:
            raise StoreError("Sink is closed.")
        try:
            with self._connection:
                self._connection.execute(INSERT_SQL, record.as_row())
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to append record: {exc}") from exc

    def close(self) -> None:
        if self._connection is None:
            return
        connection, self._connection = self._connection, None
        try:
            connection.close()
        except sqlite3.Error as exc:
            logger.warning("Error closing store connection: %s", exc, extra={"db_path": self.path})

    @property
    def closed(self) -> bool:
        return self._connection is None

    def __enter__(self) -> "SQLiteSink":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()


def initialize_store(path: PathLike) -> Path:
    """Create the store file and the ``sensor_data`` table if missing."""
    db_path = Path(path)
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StoreError(f"Unable to create directory for {db_path}: {exc}") from exc

    try:
        connection = sqlite3.connect(str(db_path), timeout=DEFAULT_BUSY_TIMEOUT)
    except sqlite3.Error as exc:
        raise StoreError(f"Unable to open store at {db_path}: {exc}") from exc

    try:
        # WAL lets concurrent connection handlers write without blocking readers.
        connection.execute("PRAGMA journal_mode=WAL")
        with connection:
            connection.execute(SCHEMA)
    except sqlite3.Error as exc:
        raise StoreError(f"Unable to initialize store at {db_path}: {exc}") from exc
    finally:
        connection.close()

    logger.info("Store ready", extra={"db_path": db_path})
    return db_path


def open_sink(path: PathLike, timeout: float = DEFAULT_BUSY_TIMEOUT) -> SQLiteSink:
    """Open a dedicated sink for one client connection."""
    return SQLiteSink(path, timeout=timeout)
