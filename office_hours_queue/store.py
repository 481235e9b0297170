"""Durable store port and the in-memory adapter.

The coordinator only needs two things from persistence:

- an atomic read-modify-write transaction scoped to one professor's queue
  (`transact`), and
- a change notification fired once per committed mutation (`add_listener`).

A transaction function receives a `QueueTxn` holding the professor record and
the waiting entries ordered by position. It may replace the entries through
`QueueTxn.replace`; if it raises, nothing is written. Committed queue state
carries a per-professor `version` that grows by one per mutation, which is
what lets observers in other processes drop stale snapshots.
"""

from __future__ import annotations

import abc
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, TypeVar

from .models import Professor, QueueEntry, QueueSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")

CommitListener = Callable[[QueueSnapshot], None]


@dataclass
class QueueTxn:
    professor_id: str
    professor: Professor | None
    entries: list[QueueEntry]
    version: int
    changed: bool = field(default=False, init=False)

    def replace(self, entries: list[QueueEntry]) -> None:
        self.entries = list(entries)
        self.changed = True


class KeyedLocks:
    """One re-entrant lock per key, created lazily."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
        with lock:
            yield


class DurableStore(abc.ABC):
    def __init__(self) -> None:
        self._listeners: list[CommitListener] = []

    # -------------------- queue collection --------------------

    @abc.abstractmethod
    def transact(self, professor_id: str, fn: Callable[[QueueTxn], T]) -> T:
        """Run `fn` as one atomic transaction on the professor's queue."""

    @abc.abstractmethod
    def read_queue(self, professor_id: str) -> tuple[int, list[QueueEntry]]:
        """Return `(version, waiting entries ordered by position)`."""

    @abc.abstractmethod
    def find_entry(self, entry_id: str) -> QueueEntry | None:
        ...

    # -------------------- professors --------------------

    @abc.abstractmethod
    def update_professor(
        self, professor_id: str, fn: Callable[[Professor | None], Professor]
    ) -> Professor:
        """Atomically replace the professor record with `fn(current)`."""

    @abc.abstractmethod
    def get_professor(self, professor_id: str) -> Professor | None:
        ...

    @abc.abstractmethod
    def list_professors(self) -> list[Professor]:
        ...

    # -------------------- change notification --------------------

    def poll_changes(self, professor_ids: Iterable[str]) -> int:
        """Surface commits made outside this process. Nothing to do by default."""
        return 0

    def add_listener(self, listener: CommitListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: CommitListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _notify(self, snapshot: QueueSnapshot) -> None:
        # Called with the professor's lock held, so listeners see commit order.
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("commit listener failed for professor %s", snapshot.professor_id)


class MemoryStore(DurableStore):
    """Process-local store. Serializes each professor's transactions with a lock."""

    def __init__(self) -> None:
        super().__init__()
        self._locks = KeyedLocks()
        self._queues: dict[str, tuple[int, list[QueueEntry]]] = {}
        self._professors: dict[str, Professor] = {}

        # entry_id -> professor_id for entries currently waiting
        self._entry_index: dict[str, str] = {}
        self._index_lock = threading.Lock()

    def transact(self, professor_id: str, fn: Callable[[QueueTxn], T]) -> T:
        with self._locks.hold(professor_id):
            version, entries = self._queues.get(professor_id, (0, []))
            txn = QueueTxn(
                professor_id=professor_id,
                professor=self._professors.get(professor_id),
                entries=list(entries),
                version=version,
            )
            result = fn(txn)
            if not txn.changed:
                return result

            new_version = version + 1
            self._queues[professor_id] = (new_version, list(txn.entries))
            with self._index_lock:
                for e in entries:
                    self._entry_index.pop(e.entry_id, None)
                for e in txn.entries:
                    self._entry_index[e.entry_id] = professor_id

            self._notify(QueueSnapshot.from_entries(professor_id, new_version, txn.entries))
            return result

    def read_queue(self, professor_id: str) -> tuple[int, list[QueueEntry]]:
        with self._locks.hold(professor_id):
            version, entries = self._queues.get(professor_id, (0, []))
            return version, list(entries)

    def find_entry(self, entry_id: str) -> QueueEntry | None:
        with self._index_lock:
            professor_id = self._entry_index.get(entry_id)
        if professor_id is None:
            return None
        _version, entries = self.read_queue(professor_id)
        for e in entries:
            if e.entry_id == entry_id:
                return e
        return None

    def update_professor(
        self, professor_id: str, fn: Callable[[Professor | None], Professor]
    ) -> Professor:
        with self._locks.hold(professor_id):
            updated = fn(self._professors.get(professor_id))
            with self._index_lock:
                self._professors[professor_id] = updated
            return updated

    def get_professor(self, professor_id: str) -> Professor | None:
        with self._locks.hold(professor_id):
            return self._professors.get(professor_id)

    def list_professors(self) -> list[Professor]:
        with self._index_lock:
            professors = list(self._professors.values())
        return sorted(professors, key=lambda p: p.professor_id)
