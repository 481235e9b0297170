from __future__ import annotations

# SQLite-backed durable store.
#
# Every queue transaction runs under `BEGIN IMMEDIATE`, which takes SQLite's
# database-wide write lock up front. That makes the whole read-renumber-write
# cycle one serializable unit even when several processes share the file.
# Inside one process we additionally hold the professor's lock across commit +
# notify so local listeners receive snapshots in commit order. Commits made
# by other processes reach local listeners through `poll_changes`.
#
# The waiting set is rewritten wholesale on every change (delete + insert in
# the same transaction). The UNIQUE(professor_id, position) constraint is the
# last line of defence for the one-entry-per-position invariant.

import logging
import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Callable, Iterable, Iterator, TypeVar

from .errors import InvariantViolation, TransientStoreFailure
from .models import Availability, EntryStatus, Professor, QueueEntry, QueueSnapshot
from .store import DurableStore, KeyedLocks, QueueTxn

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS professors (
        professor_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        office TEXT NOT NULL DEFAULT '',
        availability TEXT NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS queue_entries (
        entry_id TEXT PRIMARY KEY,
        professor_id TEXT NOT NULL,
        student_name TEXT NOT NULL,
        student_contact TEXT NOT NULL DEFAULT '',
        position INTEGER NOT NULL,
        status TEXT NOT NULL,
        joined_at REAL NOT NULL,
        UNIQUE (professor_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS queue_versions (
        professor_id TEXT PRIMARY KEY,
        version INTEGER NOT NULL
    )
    """,
)


class SqliteStore(DurableStore):
    def __init__(self, db_path: Path | str, *, busy_timeout: float = 5.0) -> None:
        super().__init__()
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout = busy_timeout
        self._locks = KeyedLocks()
        # professor_id -> last version handed to listeners from this instance
        self._notified: dict[str, int] = {}
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below.
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self, mode: str = "IMMEDIATE") -> Iterator[sqlite3.Connection]:
        try:
            with closing(self._connect()) as conn:
                conn.execute(f"BEGIN {mode}")
                try:
                    yield conn
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
        except sqlite3.IntegrityError as e:
            raise InvariantViolation(f"store rejected queue state: {e}") from e
        except sqlite3.Error as e:
            logger.warning("sqlite transaction failed: %s", e)
            raise TransientStoreFailure(str(e)) from e

    def _init_db(self) -> None:
        with self._transaction() as conn:
            for stmt in SCHEMA:
                conn.execute(stmt)

    # -------------------- row mapping --------------------

    @staticmethod
    def _entry(row: sqlite3.Row) -> QueueEntry:
        return QueueEntry(
            entry_id=row["entry_id"],
            professor_id=row["professor_id"],
            student_name=row["student_name"],
            student_contact=row["student_contact"],
            position=int(row["position"]),
            status=EntryStatus(row["status"]),
            joined_at=float(row["joined_at"]),
        )

    @staticmethod
    def _professor(row: sqlite3.Row) -> Professor:
        return Professor(
            professor_id=row["professor_id"],
            name=row["name"],
            office=row["office"],
            availability=Availability(row["availability"]),
            updated_at=float(row["updated_at"]),
        )

    def _load_queue(self, conn: sqlite3.Connection, professor_id: str) -> tuple[int, list[QueueEntry]]:
        row = conn.execute(
            "SELECT version FROM queue_versions WHERE professor_id = ?", (professor_id,)
        ).fetchone()
        version = int(row["version"]) if row else 0
        rows = conn.execute(
            "SELECT * FROM queue_entries WHERE professor_id = ? AND status = ? ORDER BY position ASC",
            (professor_id, EntryStatus.WAITING.value),
        ).fetchall()
        return version, [self._entry(r) for r in rows]

    def _load_professor(self, conn: sqlite3.Connection, professor_id: str) -> Professor | None:
        row = conn.execute(
            "SELECT * FROM professors WHERE professor_id = ?", (professor_id,)
        ).fetchone()
        return self._professor(row) if row else None

    # -------------------- queue collection --------------------

    def transact(self, professor_id: str, fn: Callable[[QueueTxn], T]) -> T:
        with self._locks.hold(professor_id):
            snapshot: QueueSnapshot | None = None
            with self._transaction() as conn:
                version, entries = self._load_queue(conn, professor_id)
                txn = QueueTxn(
                    professor_id=professor_id,
                    professor=self._load_professor(conn, professor_id),
                    entries=entries,
                    version=version,
                )
                result = fn(txn)
                if txn.changed:
                    new_version = version + 1
                    conn.execute("DELETE FROM queue_entries WHERE professor_id = ?", (professor_id,))
                    conn.executemany(
                        """
                        INSERT INTO queue_entries(
                            entry_id, professor_id, student_name, student_contact,
                            position, status, joined_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        [
                            (
                                e.entry_id,
                                e.professor_id,
                                e.student_name,
                                e.student_contact,
                                e.position,
                                e.status.value,
                                e.joined_at,
                            )
                            for e in txn.entries
                        ],
                    )
                    conn.execute(
                        """
                        INSERT INTO queue_versions(professor_id, version) VALUES (?, ?)
                        ON CONFLICT(professor_id) DO UPDATE SET version = excluded.version
                        """,
                        (professor_id, new_version),
                    )
                    snapshot = QueueSnapshot.from_entries(professor_id, new_version, txn.entries)

            # Only after COMMIT succeeded.
            if snapshot is not None:
                self._notify_once(snapshot)
            return result

    def _notify_once(self, snapshot: QueueSnapshot) -> None:
        # Caller holds the professor's lock.
        if snapshot.version <= self._notified.get(snapshot.professor_id, 0):
            return
        self._notified[snapshot.professor_id] = snapshot.version
        self._notify(snapshot)

    def poll_changes(self, professor_ids: Iterable[str]) -> int:
        """Notify listeners of commits made by other processes.

        Compares each professor's stored version with the last one notified
        here. Several foreign commits between two polls surface as one
        snapshot of the latest state. Returns the number of snapshots emitted.
        """
        emitted = 0
        for professor_id in professor_ids:
            with self._locks.hold(professor_id):
                version, entries = self.read_queue(professor_id)
                if version > self._notified.get(professor_id, 0):
                    self._notify_once(QueueSnapshot.from_entries(professor_id, version, entries))
                    emitted += 1
        return emitted

    def read_queue(self, professor_id: str) -> tuple[int, list[QueueEntry]]:
        with self._transaction("DEFERRED") as conn:
            return self._load_queue(conn, professor_id)

    def find_entry(self, entry_id: str) -> QueueEntry | None:
        with self._transaction("DEFERRED") as conn:
            row = conn.execute(
                "SELECT * FROM queue_entries WHERE entry_id = ? AND status = ?",
                (entry_id, EntryStatus.WAITING.value),
            ).fetchone()
        return self._entry(row) if row else None

    # -------------------- professors --------------------

    def update_professor(
        self, professor_id: str, fn: Callable[[Professor | None], Professor]
    ) -> Professor:
        with self._locks.hold(professor_id):
            with self._transaction() as conn:
                updated = fn(self._load_professor(conn, professor_id))
                conn.execute(
                    """
                    INSERT INTO professors(professor_id, name, office, availability, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(professor_id) DO UPDATE SET
                        name = excluded.name,
                        office = excluded.office,
                        availability = excluded.availability,
                        updated_at = excluded.updated_at
                    """,
                    (
                        updated.professor_id,
                        updated.name,
                        updated.office,
                        updated.availability.value,
                        updated.updated_at,
                    ),
                )
            return updated

    def get_professor(self, professor_id: str) -> Professor | None:
        with self._transaction("DEFERRED") as conn:
            return self._load_professor(conn, professor_id)

    def list_professors(self) -> list[Professor]:
        with self._transaction("DEFERRED") as conn:
            rows = conn.execute("SELECT * FROM professors ORDER BY professor_id ASC").fetchall()
        return [self._professor(r) for r in rows]
