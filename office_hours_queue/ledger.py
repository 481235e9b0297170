"""Position ledger: the only code that assigns or rewrites `position`.

Each public mutator is one store transaction. Positions are never taken from
the caller: they are derived from the sequence inside the transaction, and a
removal renumbers every later entry in the same commit, so no reader can see
a duplicate or a gap.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable

from .errors import InvariantViolation, NotFound
from .models import EntryStatus, QueueEntry, QueueSnapshot
from .store import DurableStore, QueueTxn

logger = logging.getLogger(__name__)

Precondition = Callable[[QueueTxn], None]


def check_invariants(professor_id: str, entries: list[QueueEntry]) -> None:
    """Raise `InvariantViolation` unless `entries` is a valid waiting set.

    Valid means: positions are exactly 1..N in list order, every entry is
    waiting and belongs to `professor_id`, ids are unique and arrival times
    never decrease along the queue.
    """
    seen: set[str] = set()
    last_joined = float("-inf")
    for expected, e in enumerate(entries, start=1):
        if e.position != expected:
            raise InvariantViolation(
                f"{professor_id}: entry {e.entry_id} at position {e.position}, expected {expected}"
            )
        if e.professor_id != professor_id:
            raise InvariantViolation(f"{professor_id}: foreign entry {e.entry_id} ({e.professor_id})")
        if e.status is not EntryStatus.WAITING:
            raise InvariantViolation(f"{professor_id}: entry {e.entry_id} is {e.status.value}")
        if e.entry_id in seen:
            raise InvariantViolation(f"{professor_id}: duplicate entry {e.entry_id}")
        if e.joined_at < last_joined:
            raise InvariantViolation(f"{professor_id}: entry {e.entry_id} out of arrival order")
        seen.add(e.entry_id)
        last_joined = e.joined_at


def _renumbered(entries: list[QueueEntry]) -> list[QueueEntry]:
    return [e if e.position == i else replace(e, position=i) for i, e in enumerate(entries, start=1)]


class PositionLedger:
    def __init__(self, store: DurableStore, *, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self._clock = clock

    def _run(self, professor_id: str, mutate: Callable[[QueueTxn], QueueEntry | list[QueueEntry]]):
        def body(txn: QueueTxn):
            check_invariants(professor_id, txn.entries)
            result = mutate(txn)
            if txn.changed:
                check_invariants(professor_id, txn.entries)
            return result

        return self.store.transact(professor_id, body)

    # -------------------- mutators --------------------

    def append(
        self,
        professor_id: str,
        entry: QueueEntry,
        *,
        precondition: Precondition | None = None,
    ) -> QueueEntry:
        """Add `entry` to the tail. Returns the stored entry with its position."""
        if entry.professor_id != professor_id:
            raise ValueError("entry belongs to another professor")

        def mutate(txn: QueueTxn) -> QueueEntry:
            if precondition is not None:
                precondition(txn)
            joined_at = self._clock()
            if txn.entries and txn.entries[-1].joined_at > joined_at:
                # Clock stepped back; keep arrival order monotonic.
                joined_at = txn.entries[-1].joined_at
            stored = replace(
                entry,
                position=len(txn.entries) + 1,
                status=EntryStatus.WAITING,
                joined_at=joined_at,
            )
            txn.replace([*txn.entries, stored])
            return stored

        stored = self._run(professor_id, mutate)
        logger.debug("append %s -> %s#%d", stored.entry_id, professor_id, stored.position)
        return stored

    def remove_at(self, professor_id: str, position: int) -> QueueEntry:
        """Remove the entry at `position` and close the gap. Raises `NotFound`."""

        def mutate(txn: QueueTxn) -> QueueEntry:
            if position < 1 or position > len(txn.entries):
                raise NotFound(f"no entry at position {position} for {professor_id}")
            removed = txn.entries[position - 1]
            txn.replace(_renumbered(txn.entries[: position - 1] + txn.entries[position:]))
            return removed

        removed = self._run(professor_id, mutate)
        logger.debug("remove %s from %s#%d", removed.entry_id, professor_id, position)
        return removed

    def remove_by_id(self, professor_id: str, entry_id: str) -> QueueEntry:
        """Remove by stable id; the position is resolved inside the transaction."""

        def mutate(txn: QueueTxn) -> QueueEntry:
            for idx, e in enumerate(txn.entries):
                if e.entry_id == entry_id:
                    txn.replace(_renumbered(txn.entries[:idx] + txn.entries[idx + 1 :]))
                    return e
            raise NotFound(f"entry {entry_id} is not waiting for {professor_id}")

        removed = self._run(professor_id, mutate)
        logger.debug("remove %s from %s#%d", entry_id, professor_id, removed.position)
        return removed

    def remove_all(self, professor_id: str) -> list[QueueEntry]:
        def mutate(txn: QueueTxn) -> list[QueueEntry]:
            removed = list(txn.entries)
            if removed:
                txn.replace([])
            return removed

        return self._run(professor_id, mutate)

    # -------------------- reads --------------------

    def snapshot(self, professor_id: str) -> QueueSnapshot:
        version, entries = self.store.read_queue(professor_id)
        check_invariants(professor_id, entries)
        return QueueSnapshot.from_entries(professor_id, version, entries)
