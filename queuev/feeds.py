from __future__ import annotations

# Registration feeds for the notification center.
#
# A feed pushes the *whole* current list of registration records (id, data)
# on every change, and returns an unsubscribe hook from `subscribe`.
#
# - StoreRegistrationFeed: collection-group listener on `registrations`
# - MqttRegistrationFeed:  the desk's broadcast topics, remembered locally
#
# `open_feed` picks one: the store listener when the backend is shared
# (firestore), the MQTT broadcasts otherwise.

import logging
import threading
from collections import OrderedDict
from typing import Any, Callable

from .config import Settings, open_store
from .notifications import DEFAULT_LIMIT, ErrorHandler, RegistrationRecord, SnapshotHandler
from .persistence import REGISTRATIONS
from .topics import DEFAULT_NAMESPACE, queue_id_from_topic, registrations_all

logger = logging.getLogger(__name__)


class StoreRegistrationFeed:
    def __init__(self, store: Any, *, limit: int = DEFAULT_LIMIT) -> None:
        self._store = store
        self._limit = limit

    def subscribe(self, on_snapshot: SnapshotHandler, on_error: ErrorHandler) -> Callable[[], None]:
        return self._store.watch(
            REGISTRATIONS,
            lambda docs: on_snapshot([(d.id, d.data) for d in docs]),
            on_error=on_error,
            limit=self._limit,
            group=True,
        )


class MqttRegistrationFeed:
    """Tracks the most recent `limit` registrations broadcast by the desk."""

    def __init__(self, mqtt: Any, *, namespace: str = DEFAULT_NAMESPACE, limit: int = DEFAULT_LIMIT) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._mqtt = mqtt
        self._namespace = namespace
        self._limit = limit
        self._lock = threading.Lock()
        self._records: "OrderedDict[str, dict[str, Any]]" = OrderedDict()

    def snapshot(self) -> list[RegistrationRecord]:
        with self._lock:
            return [(rid, dict(data)) for rid, data in self._records.items()]

    def subscribe(self, on_snapshot: SnapshotHandler, on_error: ErrorHandler) -> Callable[[], None]:
        topic = registrations_all(self._namespace)

        def handle(msg_topic: str, msg: dict[str, Any]) -> None:
            if msg.get("type") != "registration":
                return
            if queue_id_from_topic(msg_topic, self._namespace) is None:
                return
            record = msg.get("registration")
            rid = msg.get("id")
            if not isinstance(record, dict) or not isinstance(rid, str) or not rid:
                logger.debug("ignoring malformed registration on %s", msg_topic)
                return
            with self._lock:
                self._records[rid] = record
                self._records.move_to_end(rid)
                while len(self._records) > self._limit:
                    self._records.popitem(last=False)
            try:
                on_snapshot(self.snapshot())
            except Exception as e:
                on_error(e)

        remove = self._mqtt.add_handler(handle)
        self._mqtt.subscribe(topic)
        on_snapshot(self.snapshot())

        def unsubscribe() -> None:
            remove()
            self._mqtt.unsubscribe(topic)

        return unsubscribe


def open_feed(settings: Settings, mqtt: Any = None, *, limit: int = DEFAULT_LIMIT) -> Any:
    if settings.backend == "firestore":
        return StoreRegistrationFeed(open_store(settings), limit=limit)
    if mqtt is None:
        raise ValueError("the memory backend is only visible through the desk's MQTT broadcasts")
    return MqttRegistrationFeed(mqtt, namespace=settings.namespace, limit=limit)
