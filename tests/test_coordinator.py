import pytest

from office_hours_queue.coordinator import QueueCoordinator
from office_hours_queue.errors import ProfessorUnavailable, TransientStoreFailure
from office_hours_queue.models import EntryStatus
from office_hours_queue.store import MemoryStore


def _queue(c, professor_id="smith"):
    return [(e.student_name, e.position) for e in c.snapshot(professor_id).entries]


def test_end_to_end_scenario(coordinator):
    c = coordinator
    alice = c.join("smith", "Alice", "alice@uni.edu")
    bob = c.join("smith", "Bob")
    assert alice.position == 1
    assert bob.position == 2

    called = c.call_next("smith")
    assert called.entry_id == alice.entry_id
    assert called.status is EntryStatus.CALLED
    assert _queue(c) == [("Bob", 1)]

    assert c.leave(bob.entry_id) is True
    assert _queue(c) == []
    assert c.call_next("smith") is None


def test_call_next_is_fifo(coordinator):
    c = coordinator
    for name in ("A", "B", "C"):
        c.join("smith", name)

    assert [c.call_next("smith").student_name for _ in range(3)] == ["A", "B", "C"]


def test_mid_queue_leave_renumbers(coordinator):
    c = coordinator
    c.join("smith", "A")
    b = c.join("smith", "B")
    c.join("smith", "C")

    c.leave(b.entry_id)

    assert _queue(c) == [("A", 1), ("C", 2)]


def test_leave_twice_is_a_noop(coordinator):
    c = coordinator
    a = c.join("smith", "A")
    c.join("smith", "B")

    assert c.leave(a.entry_id) is True
    assert c.leave(a.entry_id) is False
    assert _queue(c) == [("B", 1)]


def test_leave_after_being_called_is_a_noop(coordinator):
    c = coordinator
    a = c.join("smith", "A")
    c.call_next("smith")
    assert c.leave(a.entry_id) is False


def test_call_next_on_empty_queue_mutates_nothing(coordinator):
    c = coordinator
    before = c.snapshot("smith")
    assert c.call_next("smith") is None
    assert c.snapshot("smith") == before


def test_join_requires_known_professor(coordinator):
    with pytest.raises(ProfessorUnavailable):
        coordinator.join("nobody", "Alice")


def test_join_requires_name(coordinator):
    with pytest.raises(ValueError):
        coordinator.join("smith", "   ")


def test_join_rejected_after_office_hours_end(coordinator):
    coordinator.end_office_hours("smith")
    with pytest.raises(ProfessorUnavailable):
        coordinator.join("smith", "Alice")


def test_busy_professor_still_accepts_joins(coordinator):
    coordinator.toggle_availability("smith")
    assert coordinator.join("smith", "Alice").position == 1


def test_same_student_may_hold_several_entries(coordinator):
    a1 = coordinator.join("smith", "Alice")
    a2 = coordinator.join("smith", "Alice")
    assert a1.entry_id != a2.entry_id
    assert _queue(coordinator) == [("Alice", 1), ("Alice", 2)]


def test_end_office_hours_keeps_entries(coordinator):
    c = coordinator
    c.join("smith", "A")
    c.join("smith", "B")

    c.end_office_hours("smith")

    assert _queue(c) == [("A", 1), ("B", 2)]
    assert c.call_next("smith").student_name == "A"


def test_clear_queue_removes_everyone(coordinator):
    c = coordinator
    a = c.join("smith", "A")
    c.join("smith", "B")

    removed = c.clear_queue("smith")

    assert [e.student_name for e in removed] == ["A", "B"]
    assert _queue(c) == []
    assert c.leave(a.entry_id) is False


def test_called_notifier_runs_after_commit(coordinator):
    c = coordinator
    seen = []

    def notify(entry):
        # The removal must already be visible.
        seen.append((entry.student_name, c.store.find_entry(entry.entry_id)))

    c.on_called(notify)
    c.join("smith", "A")
    c.call_next("smith")

    assert seen == [("A", None)]


def test_failing_notifier_does_not_undo_call(coordinator):
    c = coordinator

    def boom(entry):
        raise RuntimeError("mail server down")

    c.on_called(boom)
    c.join("smith", "A")
    assert c.call_next("smith").student_name == "A"
    assert _queue(c) == []


class FlakyStore(MemoryStore):
    def __init__(self):
        super().__init__()
        self.down = False

    def transact(self, professor_id, fn):
        if self.down:
            raise TransientStoreFailure("store unavailable")
        return super().transact(professor_id, fn)


def test_store_failure_is_surfaced_without_retry():
    store = FlakyStore()
    c = QueueCoordinator(store)
    c.register_professor("smith", "Dr. Smith")
    c.join("smith", "A")

    store.down = True
    with pytest.raises(TransientStoreFailure):
        c.join("smith", "B")
    with pytest.raises(TransientStoreFailure):
        c.call_next("smith")

    store.down = False
    assert _queue(c) == [("A", 1)]
