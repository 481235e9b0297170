import sys

from office_hours_queue import professor, student
from office_hours_queue.models import QueueSnapshot, SnapshotEntry
from office_hours_queue.mqtt_topics import queue_snapshots
from office_hours_queue.professor import format_snapshot
from office_hours_queue.student import StudentSession, format_listing

NS = "test/v0"


class FakeMqtt:
    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.requests = []
        self.topics = set()
        self.handlers = []

    def subscribe(self, topic):
        self.topics.add(topic)

    def unsubscribe(self, topic):
        self.topics.discard(topic)

    def add_handler(self, handler):
        self.handlers.append(handler)

    def remove_handler(self, handler):
        self.handlers.remove(handler)

    def request(self, *, request_topic, response_topic, message, timeout):
        self.requests.append(message)
        return self.replies.pop(0)

    def deliver(self, topic, message):
        for h in list(self.handlers):
            h(topic, message)


def _session(mqtt):
    return StudentSession(mqtt=mqtt, namespace=NS, reply_topic=f"{NS}/coordinator/responses/s1")


def _snapshot_message(version, *names):
    entries = tuple(SnapshotEntry(f"e{i}", n, i, 0.0) for i, n in enumerate(names, start=1))
    return QueueSnapshot("smith", version, entries).to_message()


def test_follow_drops_stale_snapshots():
    mqtt = FakeMqtt()
    sub = _session(mqtt).follow("smith")
    topic = queue_snapshots("smith", NS)

    mqtt.deliver(topic, _snapshot_message(2, "Alice", "Bob"))
    mqtt.deliver(topic, _snapshot_message(1, "Alice"))
    mqtt.deliver(topic, _snapshot_message(3, "Bob"))

    assert [s.version for s in (sub.get(timeout=1), sub.get(timeout=1))] == [2, 3]


def test_cancelled_follow_unsubscribes():
    mqtt = FakeMqtt()
    sub = _session(mqtt).follow("smith")
    topic = queue_snapshots("smith", NS)
    assert topic in mqtt.topics

    sub.cancel()

    assert topic not in mqtt.topics
    assert mqtt.handlers == []


def test_list_professors_request():
    listing = [{"professor_id": "smith", "name": "Dr. Smith", "office": "B-204", "availability": "busy"}]
    mqtt = FakeMqtt(replies=[{"type": "professor_listing", "professors": listing}])

    assert _session(mqtt).list_professors() == listing
    assert mqtt.requests == [{"type": "list_professors"}]


def test_format_listing():
    assert format_listing([]) == "No professors holding office hours"
    out = format_listing(
        [
            {"professor_id": "smith", "name": "Dr. Smith", "office": "B-204", "availability": "available"},
            {"professor_id": "jones", "name": "Dr. Jones", "office": "", "availability": "busy"},
        ]
    )
    assert out.splitlines() == ["  smith: Dr. Smith, B-204 [available]", "  jones: Dr. Jones [busy]"]


def test_format_snapshot():
    snap = QueueSnapshot.from_message(_snapshot_message(4, "Alice", "Bob"))
    assert format_snapshot(snap) == "Queue: 2 students\n  #1 Alice\n  #2 Bob"


def test_student_reports_unanswered_request(monkeypatch, capsys):
    def no_answer(**kwargs):
        raise TimeoutError("coordinator did not answer join_queue within 5.0s")

    monkeypatch.setattr(student, "run_student", no_answer)
    monkeypatch.setattr(sys, "argv", ["student", "--professor-id", "smith", "--name", "Alice"])

    student.main()

    assert "[student Alice] error: coordinator did not answer" in capsys.readouterr().out


def test_professor_reports_unanswered_request(monkeypatch, capsys):
    def no_answer(**kwargs):
        raise TimeoutError("coordinator did not answer register_professor within 5.0s")

    monkeypatch.setattr(professor, "run_professor", no_answer)
    monkeypatch.setattr(sys, "argv", ["professor", "--professor-id", "smith", "--name", "Dr. Smith"])

    professor.main()

    assert "[professor smith] error: coordinator did not answer" in capsys.readouterr().out
