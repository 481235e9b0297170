from __future__ import annotations

# Student client.
#
# - connect to broker
# - send a join_queue request, get back the entry id and position
# - follow the professor's retained snapshot topic until the entry disappears
#   (called by the professor) or the student presses Ctrl+C (leave_queue)
# - `--list` only asks which professors are holding office hours

import argparse
import time
from typing import Any

from .config import MINUTES_PER_STUDENT, add_mqtt_args
from .feed import Subscription, watch_entry
from .models import QueueSnapshot
from .mqtt_client import MqttClient
from .mqtt_topics import coordinator_requests, coordinator_responses, queue_snapshots


class StudentSession:
    """One student's wait, over MQTT."""

    def __init__(self, *, mqtt: MqttClient, namespace: str, reply_topic: str) -> None:
        self.mqtt = mqtt
        self.namespace = namespace
        self.reply_topic = reply_topic

    def _request(self, message: dict[str, Any]) -> dict[str, Any]:
        resp = self.mqtt.request(
            request_topic=coordinator_requests(self.namespace),
            response_topic=self.reply_topic,
            message=message,
            timeout=5.0,
        )
        if resp.get("type") == "error":
            raise RuntimeError(f"{resp.get('code')}: {resp.get('message')}")
        return resp

    def join(self, professor_id: str, name: str, contact: str = "") -> dict[str, Any]:
        resp = self._request(
            {
                "type": "join_queue",
                "professor_id": professor_id,
                "student_name": name,
                "student_contact": contact,
            }
        )
        return resp["entry"]

    def leave(self, entry_id: str) -> bool:
        resp = self._request({"type": "leave_queue", "entry_id": entry_id})
        return bool(resp.get("removed"))

    def list_professors(self) -> list[dict[str, Any]]:
        return list(self._request({"type": "list_professors"}).get("professors") or [])

    def follow(self, professor_id: str) -> Subscription:
        """Subscribe to the professor's snapshots; stale versions are dropped.

        Cancelling the returned subscription also drops the MQTT subscription.
        """
        topic = queue_snapshots(professor_id, self.namespace)

        def on_message(msg_topic: str, msg: dict[str, Any]) -> None:
            if msg_topic == topic and msg.get("type") == "queue_snapshot":
                sub.offer(QueueSnapshot.from_message(msg))

        def on_cancel(_sub: Subscription) -> None:
            self.mqtt.unsubscribe(topic)
            self.mqtt.remove_handler(on_message)

        sub = Subscription(professor_id, on_cancel=on_cancel)
        self.mqtt.add_handler(on_message)
        self.mqtt.subscribe(topic)
        return sub


def format_listing(professors: list[dict[str, Any]]) -> str:
    if not professors:
        return "No professors holding office hours"
    lines = []
    for p in professors:
        office = f", {p['office']}" if p.get("office") else ""
        lines.append(f"  {p['professor_id']}: {p['name']}{office} [{p['availability']}]")
    return "\n".join(lines)


def _open_session(mqtt_host: str, mqtt_port: int, namespace: str) -> StudentSession:
    # Unique client id so several students can run concurrently.
    client_id = f"student-{int(time.time() * 1000)}"
    mqtt = MqttClient(client_id=client_id, host=mqtt_host, port=mqtt_port)
    mqtt.start()

    reply_topic = coordinator_responses(client_id, namespace)
    mqtt.subscribe(reply_topic)
    return StudentSession(mqtt=mqtt, namespace=namespace, reply_topic=reply_topic)


def list_office_hours(*, mqtt_host: str, mqtt_port: int, namespace: str) -> None:
    session = _open_session(mqtt_host, mqtt_port, namespace)
    try:
        print(format_listing(session.list_professors()))
    finally:
        session.mqtt.stop()


def run_student(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    professor_id: str,
    name: str,
    contact: str = "",
) -> None:
    session = _open_session(mqtt_host, mqtt_port, namespace)

    try:
        entry = session.join(professor_id, name, contact)
        print(f"[student {name}] joined {professor_id} at position {entry['position']}")

        sub = session.follow(professor_id)
        try:
            for progress in watch_entry(sub, entry["entry_id"], minutes_per_student=MINUTES_PER_STUDENT):
                if progress.served:
                    print(f"[student {name}] your turn has arrived, please head to the office")
                    break
                note = " (you are next!)" if progress.position == 1 else ""
                print(
                    f"[student {name}] #{progress.position} of {progress.queue_length}, "
                    f"~{progress.estimated_wait_minutes} min{note}"
                )
        except KeyboardInterrupt:
            removed = session.leave(entry["entry_id"])
            print(f"[student {name}] left the queue" if removed else f"[student {name}] already out of the queue")
        finally:
            sub.cancel()
    finally:
        session.mqtt.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Student client (MQTT)")
    parser.add_argument("--list", action="store_true", help="show professors holding office hours and exit")
    parser.add_argument("--professor-id")
    parser.add_argument("--name")
    parser.add_argument("--contact", default="", help="email or other contact")
    add_mqtt_args(parser)
    args = parser.parse_args()

    if not args.list and not (args.professor_id and args.name):
        parser.error("--professor-id and --name are required to join a queue")

    label = args.name or "-"
    try:
        if args.list:
            list_office_hours(mqtt_host=args.mqtt_host, mqtt_port=args.mqtt_port, namespace=args.namespace)
            return
        run_student(
            mqtt_host=args.mqtt_host,
            mqtt_port=args.mqtt_port,
            namespace=args.namespace,
            professor_id=args.professor_id,
            name=args.name,
            contact=args.contact,
        )
    except (RuntimeError, TimeoutError) as e:
        print(f"[student {label}] error: {e}")


if __name__ == "__main__":
    main()
