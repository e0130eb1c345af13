from datetime import datetime, timezone

import pytest

from queuev import feeds
from queuev.config import Settings
from queuev.feeds import MqttRegistrationFeed, StoreRegistrationFeed, open_feed
from queuev.notifications import NotificationCenter
from queuev.store import MemoryStore

T = datetime(2025, 7, 2, 8, 0, tzinfo=timezone.utc)


class FakeMqtt:
    def __init__(self):
        self.handlers = []
        self.subscriptions = []

    def add_handler(self, handler):
        self.handlers.append(handler)

        def remove():
            self.handlers.remove(handler)

        return remove

    def subscribe(self, topic):
        self.subscriptions.append(topic)

    def unsubscribe(self, topic):
        self.subscriptions.remove(topic)

    def deliver(self, topic, msg):
        for h in list(self.handlers):
            h(topic, msg)


def _registration(rid, name):
    return {"type": "registration", "id": rid, "registration": {"name": name, "type": "Enrollment", "createdAt": T.isoformat()}}


def test_mqtt_feed_tracks_broadcasts():
    mqtt = FakeMqtt()
    feed = MqttRegistrationFeed(mqtt, namespace="demo/v0", limit=2)
    snapshots = []
    unsubscribe = feed.subscribe(snapshots.append, lambda e: None)
    assert mqtt.subscriptions == ["demo/v0/registrations/+"]
    assert snapshots == [[]]

    mqtt.deliver("demo/v0/registrations/Q1", _registration("r1", "Ana"))
    mqtt.deliver("demo/v0/registrations/Q2", _registration("r2", "Ben"))
    mqtt.deliver("demo/v0/registrations/Q2", _registration("r3", "Cy"))
    assert [rid for rid, _ in snapshots[-1]] == ["r2", "r3"]

    # Not a registration topic, or malformed: ignored.
    mqtt.deliver("demo/v0/desk/requests", _registration("r4", "Dee"))
    mqtt.deliver("demo/v0/registrations/Q1", {"type": "registration", "id": "r5"})
    assert len(snapshots) == 4

    unsubscribe()
    assert mqtt.handlers == []
    assert mqtt.subscriptions == []


def test_store_feed_drives_notification_center():
    store = MemoryStore()
    center = NotificationCenter()
    center.start(StoreRegistrationFeed(store))
    assert center.state().loading is False

    store.set("queues/Q1/registrations", "r1", {"name": "Ana", "queueName": "Registrar", "createdAt": T})
    state = center.state()
    assert [n.message for n in state.notifications] == ["Ana registered in the REGISTRAR queue."]
    assert state.has_unread is True

    center.stop()
    store.set("queues/Q1/registrations", "r2", {"name": "Ben", "createdAt": T})
    assert len(center.state().notifications) == 1


def test_open_feed_follows_backend(monkeypatch):
    mqtt = FakeMqtt()
    feed = open_feed(Settings(backend="memory", namespace="demo/v0"), mqtt)
    assert isinstance(feed, MqttRegistrationFeed)
    with pytest.raises(ValueError):
        open_feed(Settings(backend="memory"))

    store = MemoryStore()
    monkeypatch.setattr(feeds, "open_store", lambda settings: store)
    feed = open_feed(Settings(backend="firestore"), mqtt)
    assert isinstance(feed, StoreRegistrationFeed)

    store.set("queues/Q1/registrations", "r1", {"name": "Ana", "type": "Enrollment"})
    snapshots = []
    feed.subscribe(snapshots.append, lambda e: None)
    assert [rid for rid, _ in snapshots[-1]] == ["r1"]
