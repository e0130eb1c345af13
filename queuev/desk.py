from __future__ import annotations

# The registration desk accepts same-day check-ins for published queues.
#
# This file contains two layers:
# 1) `RegistrationDesk` (pure logic over the document store, easy to unit test)
# 2) `MqttRegistrationDeskService` + `main()` (integration with the MQTT broker)

import argparse
import logging
import threading
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from .errors import ErrorResponse, RegistrationError
from .invitations import next_queue_number
from .persistence import CATEGORIES, QUEUES, QUEUES_LIST, category_id, registrations_collection
from .timefmt import parse_iso, utc_now

if TYPE_CHECKING:
    from .mqtt_client import MqttClient

logger = logging.getLogger(__name__)


class RegistrationDesk:
    """Core check-in logic (testable without MQTT)."""

    def __init__(self, store: Any, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock
        # Serializes numbering within this process; the store has no transactions.
        self._lock = threading.Lock()

    def register(self, queue_id: str, category_name: str, name: str, *, uid: str = "") -> tuple[str, dict[str, Any]]:
        """Register `name` in a queue category.

        Returns `(entry_id, record)`. The record is written to the flat
        `queuesList` listing and, under the same id, to the queue's
        `registrations` subcollection.
        """
        name = name.strip()
        category_name = category_name.strip()
        if not queue_id or not category_name or not name:
            raise RegistrationError("bad_request", "queue_id, category and name required")

        with self._lock:
            queue = self._store.get(QUEUES, queue_id)
            if queue is None:
                raise RegistrationError("unknown_queue", f"No queue {queue_id}")

            now = self._clock()
            expiration = parse_iso(queue.get("expiration"))
            if expiration is not None and expiration <= now:
                raise RegistrationError("queue_expired", "This queue is no longer accepting registrations")

            cid = category_id(queue_id, category_name)
            category = self._store.get(CATEGORIES, cid)
            if category is None:
                raise RegistrationError("unknown_category", f"No category {category_name!r} in this queue")

            where = [("categoryId", "==", cid)]
            taken = len(self._store.query(QUEUES_LIST, where=where))
            try:
                limit = int(category.get("limit", 0))
            except (TypeError, ValueError):
                limit = None
            if limit is not None and taken >= limit:
                raise RegistrationError("category_full", f"{category_name} is full")

            record = {
                "address": queue.get("address", ""),
                "index1": next_queue_number(self._store, where=where),
                "name": name,
                "schedule": parse_iso(queue.get("dateTime")) or now,
                "status": "pending",
                "time_in": now,
                "type": category.get("name") or category_name,
                "uid": uid,
                "queueId": queue_id,
                "categoryId": cid,
                "queueName": queue.get("queueName", ""),
                "createdAt": now,
            }
            entry_id = self._store.add(QUEUES_LIST, record)
            self._store.set(registrations_collection(queue_id), entry_id, record)

        logger.info("registered %s in %s (#%s)", name, cid, record["index1"])
        return entry_id, record


class MqttRegistrationDeskService:
    """MQTT adapter around the RegistrationDesk."""

    def __init__(self, *, mqtt: MqttClient, store: Any, namespace: str) -> None:
        # Local imports so unit tests can import RegistrationDesk without paho-mqtt.
        from .topics import desk_requests, registrations

        self._desk_requests = desk_requests
        self._registrations = registrations

        self.mqtt = mqtt
        self.namespace = namespace
        self.desk = RegistrationDesk(store)
        self._remove_handler: Callable[[], None] | None = None

    def start(self) -> None:
        self.mqtt.subscribe(self._desk_requests(self.namespace))
        self._remove_handler = self.mqtt.add_handler(self._handle_message)

    def stop(self) -> None:
        if self._remove_handler is not None:
            self._remove_handler()
            self._remove_handler = None

    def _reply(self, reply_to: str, corr_id: str | None, message: dict[str, Any]) -> None:
        msg = dict(message)
        if corr_id is not None:
            msg["corr_id"] = corr_id
        self.mqtt.publish(reply_to, msg)

    def _handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        if topic != self._desk_requests(self.namespace) or msg.get("type") != "register":
            return

        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None
        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None
        if not reply_to:
            return

        try:
            entry_id, record = self.desk.register(
                str(msg.get("queue_id", "")),
                str(msg.get("category", "")),
                str(msg.get("name", "")),
                uid=str(msg.get("uid", "")),
            )
        except RegistrationError as e:
            self._reply(reply_to, corr_id, e.to_response().to_message())
            return
        except Exception:
            logger.exception("registration failed")
            self._reply(reply_to, corr_id, ErrorResponse("internal", "Could not register").to_message())
            return

        self._reply(
            reply_to,
            corr_id,
            {
                "type": "registered",
                "id": entry_id,
                "queue_id": record["queueId"],
                "category": record["type"],
                "name": record["name"],
                "number": record["index1"],
            },
        )
        self.mqtt.publish(
            self._registrations(record["queueId"], self.namespace),
            {"type": "registration", "id": entry_id, "registration": record},
        )


def main(argv: list[str] | None = None) -> None:
    # Import MQTT dependencies only when running the real service.
    from .config import Settings, add_backend_args, add_mqtt_args, open_store, shared_backend_error
    from .mqtt_client import MqttClient

    defaults = Settings.from_env()
    parser = argparse.ArgumentParser(description="Registration desk (MQTT)")
    add_mqtt_args(parser, defaults)
    add_backend_args(parser, defaults)
    args = parser.parse_args(argv)
    settings = Settings.from_args(args, defaults)
    problem = shared_backend_error(settings, "desk")
    if problem:
        parser.exit(2, problem + "\n")

    mqtt_client = MqttClient(client_id="desk", host=settings.mqtt_host, port=settings.mqtt_port)
    mqtt_client.start()

    service = MqttRegistrationDeskService(mqtt=mqtt_client, store=open_store(settings), namespace=settings.namespace)
    service.start()

    print(
        f"[desk] connected to MQTT {settings.mqtt_host}:{settings.mqtt_port}, "
        f"namespace={settings.namespace}, backend={settings.backend}"
    )

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        mqtt_client.stop()


if __name__ == "__main__":
    main()
