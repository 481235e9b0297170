from __future__ import annotations

# Professor dashboard client (terminal).
#
# - registers (first login creates the professor, later logins refresh name/office)
# - prints the waiting list every time a new snapshot arrives
# - reads one-letter commands from stdin:
#     n = call next, t = toggle available/busy, c = clear queue,
#     e = end office hours, q = quit

import argparse
import time
from typing import Any

from .config import add_mqtt_args
from .feed import Subscription
from .models import QueueSnapshot
from .mqtt_client import MqttClient
from .mqtt_topics import coordinator_requests, coordinator_responses, queue_snapshots

COMMANDS = {
    "n": "call_next",
    "t": "toggle_availability",
    "c": "clear_queue",
    "e": "end_office_hours",
}


def format_snapshot(snapshot: QueueSnapshot) -> str:
    if not snapshot.entries:
        return "No students in queue"
    lines = [f"Queue: {len(snapshot)} students"]
    lines += [f"  #{e.position} {e.student_name}" for e in snapshot.entries]
    return "\n".join(lines)


def describe_response(resp: dict[str, Any]) -> str:
    rtype = resp.get("type")
    if rtype == "error":
        return f"error: {resp.get('message')}"
    if rtype == "next_student":
        entry = resp.get("entry")
        return f"calling {entry['student_name']}" if entry else "queue is empty"
    if rtype == "availability":
        return f"now {resp.get('availability')}"
    if rtype == "queue_cleared":
        return f"removed {len(resp.get('removed') or [])} students"
    if rtype == "office_hours_ended":
        return "office hours ended (students still waiting were kept)"
    return str(rtype)


def run_professor(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    professor_id: str,
    name: str,
    office: str,
) -> None:
    mqtt = MqttClient(client_id=f"professor-{professor_id}-{int(time.time())}", host=mqtt_host, port=mqtt_port)
    mqtt.start()

    reply_topic = coordinator_responses(mqtt.client_id, namespace)
    mqtt.subscribe(reply_topic)

    def request(message: dict[str, Any]) -> dict[str, Any]:
        return mqtt.request(
            request_topic=coordinator_requests(namespace),
            response_topic=reply_topic,
            message=message,
            timeout=5.0,
        )

    try:
        resp = request({"type": "register_professor", "professor_id": professor_id, "name": name, "office": office})
    except TimeoutError:
        mqtt.stop()
        raise
    if resp.get("type") != "professor_registered":
        mqtt.stop()
        raise RuntimeError(f"registration failed: {describe_response(resp)}")
    print(f"[professor {professor_id}] registered as {name} ({office or 'no office'})")

    # Snapshots are printed from the MQTT thread; the Subscription only
    # filters stale/retained versions.
    sub = Subscription(professor_id)
    topic = queue_snapshots(professor_id, namespace)

    def on_message(msg_topic: str, msg: dict[str, Any]) -> None:
        if msg_topic != topic or msg.get("type") != "queue_snapshot":
            return
        snapshot = QueueSnapshot.from_message(msg)
        if sub.offer(snapshot):
            print(f"[professor {professor_id}] {format_snapshot(snapshot)}")

    mqtt.add_handler(on_message)
    mqtt.subscribe(topic)

    try:
        while True:
            cmd = input("[n]ext [t]oggle [c]lear [e]nd [q]uit > ").strip().lower()
            if cmd == "q":
                return
            mtype = COMMANDS.get(cmd)
            if mtype is None:
                continue
            try:
                resp = request({"type": mtype, "professor_id": professor_id})
            except TimeoutError as e:
                print(f"[professor {professor_id}] error: {e}")
                continue
            print(f"[professor {professor_id}] {describe_response(resp)}")
            if mtype == "end_office_hours":
                return
    except (KeyboardInterrupt, EOFError):
        pass
    finally:
        sub.cancel()
        mqtt.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Professor dashboard (MQTT)")
    parser.add_argument("--professor-id", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--office", default="")
    add_mqtt_args(parser)
    args = parser.parse_args()

    try:
        run_professor(
            mqtt_host=args.mqtt_host,
            mqtt_port=args.mqtt_port,
            namespace=args.namespace,
            professor_id=args.professor_id,
            name=args.name,
            office=args.office,
        )
    except (RuntimeError, TimeoutError) as e:
        print(f"[professor {args.professor_id}] error: {e}")


if __name__ == "__main__":
    main()
