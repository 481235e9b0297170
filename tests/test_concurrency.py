import random
import threading

import pytest

from office_hours_queue.coordinator import QueueCoordinator
from office_hours_queue.sqlite_store import SqliteStore


def _run_together(targets):
    barrier = threading.Barrier(len(targets))
    errors = []

    def wrap(fn):
        def run():
            barrier.wait()
            try:
                fn()
            except Exception as e:  # surfaced through `errors`
                errors.append(e)

        return run

    threads = [threading.Thread(target=wrap(fn)) for fn in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert errors == []


def _assert_dense(coordinator, professor_id="smith"):
    positions = [e.position for e in coordinator.snapshot(professor_id).entries]
    assert positions == list(range(1, len(positions) + 1))
    return positions


def test_simultaneous_joins_get_distinct_positions(coordinator):
    results = []
    _run_together([lambda n=n: results.append(coordinator.join("smith", n)) for n in ("A", "B")])

    assert sorted(e.position for e in results) == [1, 2]
    _assert_dense(coordinator)


def test_interleaved_joins_leaves_and_calls_keep_positions_dense(coordinator):
    c = coordinator
    initial = [c.join("smith", f"seed{i}") for i in range(10)]
    rng = random.Random(7)
    to_leave = rng.sample(initial, 5)

    joined = []
    removed = []

    def joiner(i):
        return lambda: joined.append(c.join("smith", f"new{i}"))

    def leaver(entry):
        def run():
            if c.leave(entry.entry_id):
                removed.append(entry.entry_id)

        return run

    def caller():
        entry = c.call_next("smith")
        if entry is not None:
            removed.append(entry.entry_id)

    targets = [joiner(i) for i in range(12)]
    targets += [leaver(e) for e in to_leave]
    targets += [leaver(e) for e in to_leave]  # double leave races with itself
    targets += [caller for _ in range(4)]
    rng.shuffle(targets)

    _run_together(targets)

    positions = _assert_dense(c)
    assert len(removed) == len(set(removed))
    assert len(positions) == len(initial) + len(joined) - len(removed)

    waiting = {e.entry_id for e in c.snapshot("smith").entries}
    assert waiting.isdisjoint(removed)


def test_arrival_order_survives_concurrent_removals(coordinator):
    c = coordinator
    entries = [c.join("smith", f"s{i}") for i in range(8)]

    _run_together([lambda e=e: c.leave(e.entry_id) for e in entries[::2]])

    names = [e.student_name for e in c.snapshot("smith").entries]
    assert names == ["s1", "s3", "s5", "s7"]


def test_professors_proceed_independently(store):
    c = QueueCoordinator(store)
    for pid in ("p1", "p2", "p3"):
        c.register_professor(pid, pid.upper())

    targets = [lambda pid=pid: c.join(pid, "student") for pid in ("p1", "p2", "p3") for _ in range(5)]
    _run_together(targets)

    for pid in ("p1", "p2", "p3"):
        assert _assert_dense(c, pid) == [1, 2, 3, 4, 5]


def test_separate_processes_sharing_a_database(tmp_path):
    # Two store instances share nothing in memory, like two service processes.
    path = tmp_path / "shared.sqlite3"
    first = QueueCoordinator(SqliteStore(path, busy_timeout=30.0))
    second = QueueCoordinator(SqliteStore(path, busy_timeout=30.0))
    first.register_professor("smith", "Dr. Smith")

    results = []
    targets = []
    for i in range(10):
        c = first if i % 2 else second
        targets.append(lambda c=c, i=i: results.append(c.join("smith", f"s{i}")))
    _run_together(targets)

    assert sorted(e.position for e in results) == list(range(1, 11))
    assert _assert_dense(second) == list(range(1, 11))


def test_commits_from_another_process_reach_local_subscribers(tmp_path):
    path = tmp_path / "shared.sqlite3"
    first = QueueCoordinator(SqliteStore(path, busy_timeout=30.0))
    second = QueueCoordinator(SqliteStore(path, busy_timeout=30.0))
    first.register_professor("smith", "Dr. Smith")

    sub = first.subscribe("smith")
    assert len(sub.get(timeout=1)) == 0

    second.join("smith", "Alice")
    assert first.feed.poll() == 1
    snap = sub.get(timeout=1)
    assert snap.version == 1
    assert [e.student_name for e in snap.entries] == ["Alice"]

    # A local commit is delivered once, not again by the next poll.
    first.join("smith", "Bob")
    assert sub.get(timeout=1).version == 2
    assert first.feed.poll() == 0
    with pytest.raises(TimeoutError):
        sub.get(timeout=0.1)
    first.close()


def test_foreign_commits_between_polls_arrive_as_latest_state(tmp_path):
    path = tmp_path / "shared.sqlite3"
    first = QueueCoordinator(SqliteStore(path, busy_timeout=30.0))
    second = QueueCoordinator(SqliteStore(path, busy_timeout=30.0))
    first.register_professor("smith", "Dr. Smith")
    sub = first.subscribe("smith")
    sub.get(timeout=1)

    second.join("smith", "Alice")
    second.join("smith", "Bob")

    assert first.feed.poll() == 1
    snap = sub.get(timeout=1)
    assert snap.version == 2
    assert [(e.student_name, e.position) for e in snap.entries] == [("Alice", 1), ("Bob", 2)]
    first.close()


def test_background_polling_delivers_foreign_commits(tmp_path):
    path = tmp_path / "shared.sqlite3"
    first = QueueCoordinator(SqliteStore(path, busy_timeout=30.0), poll_interval=0.05)
    second = QueueCoordinator(SqliteStore(path, busy_timeout=30.0))
    second.register_professor("smith", "Dr. Smith")

    sub = first.subscribe("smith")
    sub.get(timeout=1)
    second.join("smith", "Alice")

    snap = sub.get(timeout=5)
    assert [e.student_name for e in snap.entries] == ["Alice"]

    first.close()
    assert sub.get(timeout=1) is None
