"""In-memory repositories and the transactional store built on them."""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from typing import (
    Callable,
    Generic,
    Iterator,
    List,
    MutableMapping,
    Optional,
    Tuple,
    TypeVar,
)

from .domain import Alert, HistoryEntry, ProcessStep, ProductionLine, WorkOrder
from .errors import (
    CapacityExhausted,
    NotFoundError,
    PersistenceError,
    PreconditionError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()

# Rejections the caller is expected to handle; not worth an error log line.
EXPECTED_ERRORS = (ValidationError, PreconditionError, CapacityExhausted, NotFoundError)


class RepositoryError(PersistenceError):
    """Base exception for repository errors."""


class DuplicateRecordError(RepositoryError):
    """Raised when attempting to insert a record that already exists."""


class RecordNotFoundError(NotFoundError):
    """Raised when a requested record is missing."""


class InMemoryRepository(Generic[T]):
    """Generic repository backed by a simple dictionary.

    Records are copied on the way in and out so callers mutate detached
    instances and only ``add``/``upsert`` change stored state. While a
    journal is open every write remembers the previous value so the
    enclosing transaction can be undone.
    """

    def __init__(self, lock: Optional[threading.RLock] = None) -> None:
        self._items: MutableMapping[str, T] = {}
        self._lock = lock or threading.RLock()
        self._journal: Optional[List[Tuple[str, object]]] = None

    def __contains__(self, item_id: object) -> bool:
        with self._lock:
            return item_id in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def add(self, item_id: str, item: T) -> None:
        with self._lock:
            if item_id in self._items:
                raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
            self._remember(item_id)
            self._items[item_id] = copy.deepcopy(item)

    def upsert(self, item_id: str, item: T) -> None:
        with self._lock:
            self._remember(item_id)
            self._items[item_id] = copy.deepcopy(item)

    def get(self, item_id: str) -> T:
        with self._lock:
            try:
                return copy.deepcopy(self._items[item_id])
            except KeyError as exc:
                raise RecordNotFoundError(f"Record with id {item_id!r} not found") from exc

    def list(self) -> List[T]:
        with self._lock:
            return [copy.deepcopy(item) for item in self._items.values()]

    def filter(self, predicate: Callable[[T], bool]) -> List[T]:
        with self._lock:
            return [copy.deepcopy(item) for item in self._items.values() if predicate(item)]

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    # ------------------------------------------------------------------
    # Undo journal
    # ------------------------------------------------------------------
    def begin(self) -> None:
        self._journal = []

    def commit(self) -> None:
        self._journal = None

    def rollback(self) -> None:
        if self._journal is None:
            return
        for item_id, previous in reversed(self._journal):
            if previous is _MISSING:
                self._items.pop(item_id, None)
            else:
                self._items[item_id] = previous  # type: ignore[assignment]
        self._journal = None

    def _remember(self, item_id: str) -> None:
        if self._journal is not None:
            self._journal.append((item_id, self._items.get(item_id, _MISSING)))


class InMemoryStore:
    """Bundle of in-memory repositories sharing one writer lock.

    ``transaction()`` holds the lock for its whole body, so every
    read-compute-write sequence run inside it is serialized against all
    others. Nested calls join the outer transaction.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self.lines: InMemoryRepository[ProductionLine] = InMemoryRepository(self._lock)
        self.orders: InMemoryRepository[WorkOrder] = InMemoryRepository(self._lock)
        self.steps: InMemoryRepository[ProcessStep] = InMemoryRepository(self._lock)
        self.alerts: InMemoryRepository[Alert] = InMemoryRepository(self._lock)
        self.history: InMemoryRepository[HistoryEntry] = InMemoryRepository(self._lock)

    @property
    def repositories(self) -> Tuple[InMemoryRepository, ...]:
        return (self.lines, self.orders, self.steps, self.alerts, self.history)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStore"]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return
            self._depth = 1
            for repository in self.repositories:
                repository.begin()
            try:
                yield self
            except BaseException as exc:
                for repository in self.repositories:
                    repository.rollback()
                level = logging.DEBUG if isinstance(exc, EXPECTED_ERRORS) else logging.ERROR
                logger.log(level, "Transaction rolled back: %s", exc)
                raise
            else:
                for repository in self.repositories:
                    repository.commit()
            finally:
                self._depth = 0

    def close(self) -> None:
        """Nothing to release for the in-memory store."""


__all__ = [
    "InMemoryRepository",
    "InMemoryStore",
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
]
