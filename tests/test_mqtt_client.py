import json
from types import SimpleNamespace

import pytest

from office_hours_queue.mqtt_client import MqttClient


@pytest.fixture
def client():
    # Never connected; paho only builds its state here.
    return MqttClient(client_id="tester", host="127.0.0.1", port=1883)


def _incoming(client, topic, payload):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    client._on_message(None, None, SimpleNamespace(topic=topic, payload=body))


def test_handlers_receive_decoded_messages(client):
    got = []
    client.add_handler(lambda topic, msg: got.append((topic, msg)))

    _incoming(client, "a/b", {"type": "queue_snapshot", "version": 3})
    _incoming(client, "a/b", b"not json")
    _incoming(client, "a/b", [1, 2])

    assert got == [("a/b", {"type": "queue_snapshot", "version": 3})]


def test_failing_handler_does_not_stop_the_others(client):
    got = []

    def broken(topic, msg):
        raise RuntimeError("boom")

    client.add_handler(broken)
    client.add_handler(lambda topic, msg: got.append(msg["n"]))
    _incoming(client, "t", {"n": 1})

    client.remove_handler(broken)
    _incoming(client, "t", {"n": 2})
    assert got == [1, 2]


def test_request_returns_the_correlated_reply(client, monkeypatch):
    sent = []
    handled = []
    client.add_handler(lambda topic, msg: handled.append(msg))

    def answer(topic, message, *, retain=False):
        sent.append((topic, message))
        _incoming(client, message["reply_to"], {"type": "other", "corr_id": "someone-else"})
        _incoming(client, message["reply_to"], {"type": "joined", "corr_id": message["corr_id"]})

    monkeypatch.setattr(client, "publish", answer)
    reply = client.request(request_topic="req", response_topic="resp/tester", message={"type": "join_queue"})

    assert reply["type"] == "joined"
    [(topic, message)] = sent
    assert topic == "req"
    assert message["type"] == "join_queue"
    assert message["reply_to"] == "resp/tester"
    # Replies for other requests fall through to the handlers.
    assert handled == [{"type": "other", "corr_id": "someone-else"}]


def test_request_times_out_without_reply(client, monkeypatch):
    monkeypatch.setattr(client, "publish", lambda topic, message, *, retain=False: None)
    with pytest.raises(TimeoutError):
        client.request(request_topic="req", response_topic="resp", message={"type": "call_next"}, timeout=0.05)
