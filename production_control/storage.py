"""SQLite-backed persistence for the production control core."""

from __future__ import annotations

import logging
import pickle
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Callable, Generic, Iterator, List, Optional, Sequence, TypeVar

from .domain import Alert, HistoryEntry, ProcessStep, ProductionLine, WorkOrder
from .errors import PersistenceError
from .repository import EXPECTED_ERRORS, DuplicateRecordError, RecordNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SQLiteRepository(Generic[T]):
    """Repository implementation that persists records inside SQLite."""

    def __init__(
        self, connection: sqlite3.Connection, table: str, lock: threading.RLock
    ) -> None:
        self._connection = connection
        self._table = table
        self._lock = lock
        self._execute(
            f"CREATE TABLE IF NOT EXISTS {table} ("  # nosec - static table names
            "id TEXT PRIMARY KEY, payload BLOB NOT NULL)"
        )

    def _execute(self, sql: str, parameters: Sequence[Any] = ()) -> List[tuple]:
        # Rows are fetched under the lock; the connection is shared by threads.
        with self._lock:
            try:
                return self._connection.execute(sql, parameters).fetchall()
            except sqlite3.Error as exc:
                raise PersistenceError(
                    f"SQLite error on table {self._table!r}: {exc}"
                ) from exc

    def __contains__(self, item_id: object) -> bool:
        if not isinstance(item_id, str):
            return False
        rows = self._execute(
            f"SELECT 1 FROM {self._table} WHERE id = ? LIMIT 1", (item_id,)
        )
        return bool(rows)

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    def __len__(self) -> int:
        rows = self._execute(f"SELECT COUNT(1) FROM {self._table}")
        return int(rows[0][0]) if rows else 0

    # ------------------------------------------------------------------
    # CRUD operations
    # ------------------------------------------------------------------
    def add(self, item_id: str, item: T) -> None:
        with self._lock:
            if item_id in self:
                raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
            self._execute(
                f"INSERT INTO {self._table} (id, payload) VALUES (?, ?)",
                (item_id, pickle.dumps(item)),
            )

    def upsert(self, item_id: str, item: T) -> None:
        self._execute(
            f"INSERT INTO {self._table} (id, payload) VALUES (?, ?) "
            "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload",
            (item_id, pickle.dumps(item)),
        )

    def get(self, item_id: str) -> T:
        rows = self._execute(
            f"SELECT payload FROM {self._table} WHERE id = ?", (item_id,)
        )
        if not rows:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        return pickle.loads(rows[0][0])

    def list(self) -> List[T]:
        rows = self._execute(f"SELECT payload FROM {self._table} ORDER BY id")
        return [pickle.loads(row[0]) for row in rows]

    def filter(self, predicate: Callable[[T], bool]) -> List[T]:
        return [item for item in self.list() if predicate(item)]


class ProductionDatabase:
    """SQLite store bundling the repositories for all aggregates.

    The connection runs in autocommit mode; ``transaction()`` opens an
    explicit ``BEGIN IMMEDIATE`` so the write lock is taken before the first
    read of the body. Together with the process-local lock this serializes
    every read-compute-write sequence, including across processes sharing
    the database file.
    """

    def __init__(self, path: str, *, timeout: float = 5.0) -> None:
        try:
            connection = sqlite3.connect(
                path, check_same_thread=False, isolation_level=None, timeout=timeout
            )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open database {path!r}: {exc}") from exc
        self._connection = connection
        self._lock = threading.RLock()
        self._depth = 0
        self.lines = SQLiteRepository[ProductionLine](connection, "production_lines", self._lock)
        self.orders = SQLiteRepository[WorkOrder](connection, "work_orders", self._lock)
        self.steps = SQLiteRepository[ProcessStep](connection, "process_steps", self._lock)
        self.alerts = SQLiteRepository[Alert](connection, "alerts", self._lock)
        self.history = SQLiteRepository[HistoryEntry](connection, "history", self._lock)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    @contextmanager
    def transaction(self) -> Iterator["ProductionDatabase"]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return
            self._depth = 1
            try:
                self._run("BEGIN IMMEDIATE")
                yield self
            except BaseException as exc:
                self._rollback()
                level = logging.DEBUG if isinstance(exc, EXPECTED_ERRORS) else logging.ERROR
                logger.log(level, "Transaction rolled back: %s", exc)
                raise
            else:
                try:
                    self._run("COMMIT")
                except PersistenceError:
                    self._rollback()
                    raise
            finally:
                self._depth = 0

    def _rollback(self) -> None:
        try:
            if self._connection.in_transaction:
                self._connection.execute("ROLLBACK")
        except sqlite3.Error as exc:
            logger.error("ROLLBACK failed: %s", exc)

    def _run(self, statement: str) -> None:
        try:
            self._connection.execute(statement)
        except sqlite3.Error as exc:
            raise PersistenceError(f"{statement} failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._connection.close()

    def __enter__(self) -> "ProductionDatabase":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[BaseException],
    ) -> None:
        self.close()


__all__ = ["SQLiteRepository", "ProductionDatabase"]
