from __future__ import annotations

# MQTT adapter around the QueueCoordinator.
#
# This file contains two layers:
# 1) `MqttCoordinatorService` (request dispatch + broadcasts, testable with a
#    fake client exposing subscribe/publish/add_handler)
# 2) `main()` (integration with a real MQTT broker)
#
# Every committed snapshot is republished, retained, on the professor's
# snapshot topic. The professor listing is republished after each
# availability change and periodically for observers that missed it.

import argparse
import logging
import threading
import time
from typing import TYPE_CHECKING, Any, Callable

from .coordinator import QueueCoordinator
from .errors import ErrorResponse, InvariantViolation, QueueError
from .models import QueueSnapshot
from .mqtt_topics import coordinator_requests, professor_listing, queue_snapshots

if TYPE_CHECKING:
    from .mqtt_client import MqttClient

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], dict[str, Any]]


class MqttCoordinatorService:
    def __init__(self, *, mqtt: MqttClient, coordinator: QueueCoordinator, namespace: str) -> None:
        self.mqtt = mqtt
        self.coordinator = coordinator
        self.namespace = namespace

        self._handlers: dict[str, Handler] = {
            "register_professor": self._register_professor,
            "join_queue": self._join_queue,
            "leave_queue": self._leave_queue,
            "call_next": self._call_next,
            "toggle_availability": self._toggle_availability,
            "end_office_hours": self._end_office_hours,
            "clear_queue": self._clear_queue,
            "list_professors": self._list_professors,
            "queue_snapshot": self._queue_snapshot,
        }

        # Background listing publisher control.
        self._stop_event = threading.Event()
        self._listing_thread: threading.Thread | None = None

    def start(self, *, publish_listing_every: float = 10.0) -> None:
        self.coordinator.feed.add_listener(self._publish_snapshot)
        self.mqtt.subscribe(coordinator_requests(self.namespace))
        self.mqtt.add_handler(self._handle_message)

        # Seed the retained topics with the current state.
        self.publish_listing()
        for prof in self.coordinator.list_professors():
            self._publish_snapshot(self.coordinator.snapshot(prof.professor_id))

        if publish_listing_every > 0:
            self._listing_thread = threading.Thread(
                target=self._listing_publisher_loop,
                args=(publish_listing_every,),
                daemon=True,
            )
            self._listing_thread.start()

    def stop(self) -> None:
        """Stop broadcasting. Call before disconnecting MQTT."""
        self.coordinator.feed.remove_listener(self._publish_snapshot)
        self._stop_event.set()
        t = self._listing_thread
        if t and t.is_alive():
            t.join(timeout=1.0)

    # -------------------- broadcasts --------------------

    def publish_listing(self) -> None:
        self.mqtt.publish(
            professor_listing(self.namespace),
            {
                "type": "professor_listing",
                "professors": [p.to_message() for p in self.coordinator.list_professors()],
                "ts": time.time(),
            },
            retain=True,
        )

    def _publish_snapshot(self, snapshot: QueueSnapshot) -> None:
        self.mqtt.publish(
            queue_snapshots(snapshot.professor_id, self.namespace),
            snapshot.to_message(),
            retain=True,
        )

    def _listing_publisher_loop(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                self.publish_listing()
            except QueueError as e:
                logger.warning("listing publish failed: %s", e)

    # -------------------- request dispatch --------------------

    def _reply(self, reply_to: str, corr_id: str | None, message: dict[str, Any]) -> None:
        msg = dict(message)
        if corr_id is not None:
            msg["corr_id"] = corr_id
        self.mqtt.publish(reply_to, msg)

    def _handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        if topic != coordinator_requests(self.namespace):
            return

        mtype = msg.get("type")
        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None
        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None

        handler = self._handlers.get(str(mtype))
        if handler is None:
            if reply_to:
                self._reply(reply_to, corr_id, ErrorResponse("bad_request", f"unknown type {mtype!r}").to_message())
            return

        try:
            response = handler(msg)
        except InvariantViolation as e:
            logger.error("invariant violation while handling %s: %s", mtype, e)
            response = ErrorResponse.from_exception(e).to_message()
        except QueueError as e:
            logger.info("%s rejected: %s", mtype, e)
            response = ErrorResponse.from_exception(e).to_message()
        except (ValueError, TypeError) as e:
            response = ErrorResponse("bad_request", str(e)).to_message()

        if reply_to:
            self._reply(reply_to, corr_id, response)

    # -------------------- handlers --------------------

    def _register_professor(self, msg: dict[str, Any]) -> dict[str, Any]:
        prof = self.coordinator.register_professor(
            _required(msg, "professor_id"), _required(msg, "name"), str(msg.get("office", ""))
        )
        self.publish_listing()
        return {"type": "professor_registered", "professor": prof.to_message()}

    def _join_queue(self, msg: dict[str, Any]) -> dict[str, Any]:
        entry = self.coordinator.join(
            _required(msg, "professor_id"),
            _required(msg, "student_name"),
            str(msg.get("student_contact", "")),
        )
        return {"type": "joined", "entry": entry.to_message()}

    def _leave_queue(self, msg: dict[str, Any]) -> dict[str, Any]:
        entry_id = _required(msg, "entry_id")
        removed = self.coordinator.leave(entry_id)
        return {"type": "left", "entry_id": entry_id, "removed": removed}

    def _call_next(self, msg: dict[str, Any]) -> dict[str, Any]:
        entry = self.coordinator.call_next(_required(msg, "professor_id"))
        return {"type": "next_student", "entry": entry.to_message() if entry else None}

    def _toggle_availability(self, msg: dict[str, Any]) -> dict[str, Any]:
        availability = self.coordinator.toggle_availability(_required(msg, "professor_id"))
        self.publish_listing()
        return {"type": "availability", "availability": availability.value}

    def _end_office_hours(self, msg: dict[str, Any]) -> dict[str, Any]:
        prof = self.coordinator.end_office_hours(_required(msg, "professor_id"))
        self.publish_listing()
        return {"type": "office_hours_ended", "professor": prof.to_message()}

    def _clear_queue(self, msg: dict[str, Any]) -> dict[str, Any]:
        removed = self.coordinator.clear_queue(_required(msg, "professor_id"))
        return {"type": "queue_cleared", "removed": [e.to_message() for e in removed]}

    def _list_professors(self, msg: dict[str, Any]) -> dict[str, Any]:
        return {
            "type": "professor_listing",
            "professors": [p.to_message() for p in self.coordinator.list_professors()],
        }

    def _queue_snapshot(self, msg: dict[str, Any]) -> dict[str, Any]:
        return self.coordinator.snapshot(_required(msg, "professor_id")).to_message()


def _required(msg: dict[str, Any], key: str) -> str:
    value = str(msg.get(key, "") or "").strip()
    if not value:
        raise ValueError(f"{key} required")
    return value


def main() -> None:
    # Import MQTT dependencies only when running the real service.
    from .config import add_logging_args, add_mqtt_args, add_store_args, build_store, configure_logging
    from .mqtt_client import MqttClient

    parser = argparse.ArgumentParser(description="Office hours queue coordinator (MQTT)")
    add_mqtt_args(parser)
    add_store_args(parser)
    add_logging_args(parser)
    parser.add_argument(
        "--publish-listing-every",
        type=float,
        default=10.0,
        help="seconds between retained professor listing broadcasts",
    )
    args = parser.parse_args()
    configure_logging(args.log_level)

    coordinator = QueueCoordinator(build_store(args), poll_interval=args.poll_interval)

    mqtt_client = MqttClient(client_id=f"coordinator-{int(time.time())}", host=args.mqtt_host, port=args.mqtt_port)
    mqtt_client.start()

    service = MqttCoordinatorService(mqtt=mqtt_client, coordinator=coordinator, namespace=args.namespace)
    service.start(publish_listing_every=args.publish_listing_every)

    logger.info(
        "coordinator connected to MQTT %s:%d, namespace=%s, store=%s",
        args.mqtt_host,
        args.mqtt_port,
        args.namespace,
        args.store,
    )

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        coordinator.close()
        mqtt_client.stop()


if __name__ == "__main__":
    main()
