"""JSON-over-MQTT connection shared by the coordinator service and the CLIs.

Two messaging styles run over one paho connection:

- correlated request/reply: `request` tags the message with a fresh `corr_id`
  and a `reply_to` topic, then blocks until the matching reply arrives;
- plain subscriptions: every other decoded message goes to the registered
  handlers as `(topic, payload)`.

Handlers run on paho's network thread. Subscribed topics are remembered and
renewed on every (re)connect, since the session is not persistent.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import uuid
from typing import Any, Callable

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, dict[str, Any]], None]


class MqttClient:
    def __init__(
        self,
        *,
        client_id: str,
        host: str,
        port: int,
        keepalive: int = 30,
        qos: int = 1,
    ) -> None:
        self.client_id = client_id
        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.qos = qos

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
        )
        self._client.on_connect = self._on_connect
        self._client.on_message = self._on_message

        self._lock = threading.Lock()
        self._handlers: list[MessageHandler] = []
        self._topics: set[str] = set()
        self._awaiting: dict[str, "queue.Queue[dict[str, Any]]"] = {}
        self._running = False

    def start(self) -> None:
        if self._running:
            return
        self._client.connect(self.host, self.port, keepalive=self.keepalive)
        self._client.loop_start()
        self._running = True
        logger.debug("%s connected to %s:%d", self.client_id, self.host, self.port)

    def stop(self) -> None:
        if not self._running:
            return
        self._client.loop_stop()
        self._client.disconnect()
        self._running = False

    # -------------------- subscriptions --------------------

    def add_handler(self, handler: MessageHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def remove_handler(self, handler: MessageHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def subscribe(self, topic: str) -> None:
        with self._lock:
            self._topics.add(topic)
        self._client.subscribe(topic, qos=self.qos)

    def unsubscribe(self, topic: str) -> None:
        with self._lock:
            self._topics.discard(topic)
        self._client.unsubscribe(topic)

    # -------------------- sending --------------------

    def publish(self, topic: str, message: dict[str, Any], *, retain: bool = False) -> None:
        body = json.dumps(message, separators=(",", ":")).encode("utf-8")
        self._client.publish(topic, payload=body, qos=self.qos, retain=retain)

    def request(
        self,
        *,
        request_topic: str,
        response_topic: str,
        message: dict[str, Any],
        timeout: float = 5.0,
    ) -> dict[str, Any]:
        """Send `message` and block for its reply on `response_topic`.

        `response_topic` must already be subscribed. Raises TimeoutError when
        no reply arrives within `timeout` seconds.
        """
        corr_id = uuid.uuid4().hex
        outgoing = {**message, "corr_id": corr_id, "reply_to": response_topic}

        inbox: "queue.Queue[dict[str, Any]]" = queue.Queue(maxsize=1)
        with self._lock:
            self._awaiting[corr_id] = inbox
        try:
            self.publish(request_topic, outgoing)
            return inbox.get(timeout=timeout)
        except queue.Empty as e:
            raise TimeoutError(f"coordinator did not answer {message.get('type')} within {timeout}s") from e
        finally:
            with self._lock:
                self._awaiting.pop(corr_id, None)

    # -------------------- paho callbacks --------------------

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.is_failure:
            logger.warning("%s: broker refused connection: %s", self.client_id, reason_code)
            return
        with self._lock:
            topics = sorted(self._topics)
        for topic in topics:
            client.subscribe(topic, qos=self.qos)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        data = _decode(msg.payload)
        if data is None:
            logger.warning("dropping malformed payload on %s", msg.topic)
            return

        corr_id = data.get("corr_id")
        if isinstance(corr_id, str):
            with self._lock:
                inbox = self._awaiting.get(corr_id)
            if inbox is not None:
                try:
                    inbox.put_nowait(data)
                except queue.Full:
                    logger.debug("duplicate reply for corr_id=%s", corr_id)
                return

        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(msg.topic, data)
            except Exception:
                logger.exception("handler failed for message on %s", msg.topic)


def _decode(payload: bytes | str) -> dict[str, Any] | None:
    try:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        data = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None
