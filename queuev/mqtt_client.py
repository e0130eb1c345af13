"""JSON pub/sub over MQTT, built on paho-mqtt.

- `MqttClient` owns the connection and paho's background network loop.
- `publish()`/`add_handler()` exchange JSON objects (datetimes become ISO strings).
- `request()` publishes a message and blocks for the reply carrying the same
  `corr_id` on a dedicated response topic.

Handlers run on paho's network thread. Every `add_handler()` returns a hook
that removes the handler again; components call it on teardown.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import paho.mqtt.client as mqtt

from .timefmt import to_iso

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, dict[str, Any]], None]


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    raise TypeError(f"not JSON serializable: {type(value).__name__}")


def encode(message: dict[str, Any]) -> bytes:
    return json.dumps(message, separators=(",", ":"), default=_json_default).encode("utf-8")


def decode(payload: bytes | str) -> dict[str, Any] | None:
    """Parse a JSON object payload; None for anything else."""
    text = payload.decode("utf-8") if isinstance(payload, bytes) else str(payload)
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


@dataclass(frozen=True)
class PendingResponse:
    corr_id: str
    q: "queue.Queue[dict[str, Any]]"


class MqttClient:
    """Thin wrapper around paho-mqtt with JSON convenience APIs."""

    def __init__(self, *, client_id: str, host: str, port: int, keepalive: int = 30, qos: int = 0) -> None:
        self.client_id = client_id
        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.qos = qos

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id, clean_session=True)
        self._client.on_message = self._on_message

        self._handlers: list[MessageHandler] = []
        self._pending: dict[str, PendingResponse] = {}
        self._lock = threading.Lock()
        self._started = False

    def start(self) -> None:
        """Connect and start the background network loop."""
        if self._started:
            return
        self._client.connect(self.host, self.port, keepalive=self.keepalive)
        self._client.loop_start()
        self._started = True
        logger.debug("mqtt %s connected to %s:%s", self.client_id, self.host, self.port)

    def stop(self) -> None:
        if not self._started:
            return
        self._client.loop_stop()
        self._client.disconnect()
        self._started = False

    # -------------------- pub/sub --------------------

    def add_handler(self, handler: MessageHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def remove() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return remove

    def subscribe(self, topic: str) -> None:
        self._client.subscribe(topic, qos=self.qos)

    def unsubscribe(self, topic: str) -> None:
        self._client.unsubscribe(topic)

    def publish(self, topic: str, message: dict[str, Any]) -> None:
        self._client.publish(topic, payload=encode(message), qos=self.qos)

    def request(
        self,
        *,
        request_topic: str,
        response_topic: str,
        message: dict[str, Any],
        timeout: float = 5.0,
    ) -> dict[str, Any]:
        """Publish `message` and wait for the correlated reply.

        The caller must already be subscribed to `response_topic`.
        """
        corr_id = str(uuid.uuid4())
        msg = dict(message, corr_id=corr_id, reply_to=response_topic)

        q: "queue.Queue[dict[str, Any]]" = queue.Queue(maxsize=1)
        with self._lock:
            self._pending[corr_id] = PendingResponse(corr_id=corr_id, q=q)

        self.publish(request_topic, msg)
        try:
            return q.get(timeout=timeout)
        except queue.Empty as e:
            raise TimeoutError(f"No response for corr_id={corr_id}") from e
        finally:
            with self._lock:
                self._pending.pop(corr_id, None)

    # -------------------- paho callbacks --------------------

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        data = decode(msg.payload)
        if data is None:
            logger.debug("dropping non-JSON message on %s", msg.topic)
            return

        corr_id = data.get("corr_id")
        if isinstance(corr_id, str):
            with self._lock:
                pending = self._pending.get(corr_id)
            if pending is not None:
                try:
                    pending.q.put_nowait(data)
                except queue.Full:
                    pass
                return

        with self._lock:
            handlers = list(self._handlers)
        for h in handlers:
            try:
                h(msg.topic, data)
            except Exception:
                # Keep the network loop alive.
                logger.exception("mqtt handler failed for %s", msg.topic)
