from __future__ import annotations

# Change feed: per-professor streams of full queue snapshots.
#
# The store calls `ChangeFeed._on_commit` once per committed mutation while the
# professor's lock is held, so snapshots arrive here in commit order. Each
# `Subscription` still filters by version: a snapshot that is not newer than
# the last one delivered is dropped. The same filter makes a bare
# `Subscription` usable for remote consumers fed from MQTT, where retained
# messages and redelivery can reorder things.
#
# Consumers pull from the subscription's inbox; the producer side never blocks
# on a slow reader. Stores shared between processes only report their own
# commits, so `ChangeFeed.poll` asks the store for anything committed elsewhere.

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, cast

from .errors import QueueError
from .models import QueueSnapshot
from .store import DurableStore

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[QueueSnapshot], None]

_CLOSED = object()


class Subscription:
    """Lazy, unbounded, cancellable stream of snapshots for one professor."""

    def __init__(
        self,
        professor_id: str,
        *,
        on_cancel: Callable[[Subscription], None] | None = None,
    ) -> None:
        self.professor_id = professor_id
        self._inbox: "queue.Queue[object]" = queue.Queue()
        self._lock = threading.Lock()
        self._last_version = -1
        self._cancelled = False
        self._on_cancel = on_cancel

    def offer(self, snapshot: QueueSnapshot) -> bool:
        """Queue `snapshot` for delivery unless it is stale. Returns True if queued."""
        if snapshot.professor_id != self.professor_id:
            return False
        with self._lock:
            if self._cancelled or snapshot.version <= self._last_version:
                return False
            self._last_version = snapshot.version
            self._inbox.put(snapshot)
            return True

    def get(self, timeout: float | None = None) -> QueueSnapshot | None:
        """Block for the next snapshot. Returns None once cancelled.

        Raises TimeoutError if nothing arrives within `timeout` seconds.
        """
        if self._cancelled:
            return None
        try:
            item = self._inbox.get(timeout=timeout)
        except queue.Empty as e:
            raise TimeoutError(f"no snapshot for {self.professor_id} within {timeout}s") from e
        if item is _CLOSED or self._cancelled:
            return None
        return cast(QueueSnapshot, item)

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self._inbox.put(_CLOSED)
        if self._on_cancel is not None:
            self._on_cancel(self)

    def __iter__(self) -> Iterator[QueueSnapshot]:
        while True:
            snapshot = self.get()
            if snapshot is None:
                return
            yield snapshot

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()


class ChangeFeed:
    def __init__(self, store: DurableStore, *, poll_interval: float | None = None) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._listeners: list[SnapshotListener] = []
        store.add_listener(self._on_commit)

        # Background polling for commits made by other processes sharing the store.
        self._stop_event = threading.Event()
        self._poll_thread: threading.Thread | None = None
        if poll_interval is not None and poll_interval > 0:
            self._poll_thread = threading.Thread(
                target=self._poll_loop,
                args=(poll_interval,),
                daemon=True,
            )
            self._poll_thread.start()

    def subscribe(self, professor_id: str) -> Subscription:
        """Start observing a professor's queue, starting from its current state."""
        sub = Subscription(professor_id, on_cancel=self._detach)
        with self._lock:
            self._subscriptions.setdefault(professor_id, []).append(sub)

        # Registered before reading, so a commit racing with this read is either
        # in the primed snapshot or delivered afterwards with a higher version.
        version, entries = self.store.read_queue(professor_id)
        sub.offer(QueueSnapshot.from_entries(professor_id, version, entries))
        return sub

    def add_listener(self, listener: SnapshotListener) -> None:
        """Receive every committed snapshot synchronously, for any professor."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: SnapshotListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def subscriber_count(self, professor_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(professor_id, []))

    def poll(self) -> int:
        """Pick up foreign commits for every professor someone is observing.

        Listeners observe all professors, so with any listener attached every
        known professor is polled. Returns the number of snapshots emitted.
        """
        with self._lock:
            professor_ids = set(self._subscriptions)
            has_listeners = bool(self._listeners)
        if has_listeners:
            professor_ids.update(p.professor_id for p in self.store.list_professors())
        if not professor_ids:
            return 0
        return self.store.poll_changes(sorted(professor_ids))

    def close(self) -> None:
        """Stop polling, detach from the store and end every subscription."""
        self._stop_event.set()
        t = self._poll_thread
        if t and t.is_alive() and t is not threading.current_thread():
            t.join(timeout=1.0)
        self.store.remove_listener(self._on_commit)
        with self._lock:
            subs = [s for group in self._subscriptions.values() for s in group]
            self._listeners.clear()
        for s in subs:
            s.cancel()

    def _poll_loop(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                self.poll()
            except QueueError as e:
                logger.warning("change poll failed: %s", e)

    def _detach(self, sub: Subscription) -> None:
        with self._lock:
            group = self._subscriptions.get(sub.professor_id)
            if group and sub in group:
                group.remove(sub)
                if not group:
                    del self._subscriptions[sub.professor_id]

    def _on_commit(self, snapshot: QueueSnapshot) -> None:
        with self._lock:
            subs = list(self._subscriptions.get(snapshot.professor_id, []))
            listeners = list(self._listeners)
        for s in subs:
            s.offer(snapshot)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("snapshot listener failed for professor %s", snapshot.professor_id)


# -------------------- student side --------------------


@dataclass(frozen=True)
class EntryProgress:
    entry_id: str
    position: int | None
    queue_length: int
    estimated_wait_minutes: int
    served: bool = False


def watch_entry(
    snapshots: Iterable[QueueSnapshot],
    entry_id: str,
    *,
    minutes_per_student: int = 5,
) -> Iterator[EntryProgress]:
    """Follow one entry through a snapshot stream.

    Yields the entry's position after every snapshot. Once a snapshot no longer
    contains the entry it has been called or removed: a final `served=True`
    update is yielded and the generator ends.
    """
    for snapshot in snapshots:
        position = snapshot.position_of(entry_id)
        if position is None:
            yield EntryProgress(entry_id, None, len(snapshot), 0, served=True)
            return
        yield EntryProgress(entry_id, position, len(snapshot), position * minutes_per_student)
