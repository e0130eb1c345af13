from datetime import datetime, timedelta, timezone

import pytest

from queuev.notifications import (
    UNRESOLVED,
    NotificationCenter,
    Resolved,
    normalize,
    resolve_field,
    visible_notifications,
)

T0 = datetime(2025, 7, 1, 12, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


class FakeFeed:
    def __init__(self):
        self.on_snapshot = None
        self.on_error = None
        self.unsubscribed = False

    def subscribe(self, on_snapshot, on_error):
        self.on_snapshot = on_snapshot
        self.on_error = on_error

        def unsubscribe():
            self.unsubscribed = True

        return unsubscribe


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def test_resolve_field_reports_source():
    assert resolve_field({"name": "Ana"}, ("displayName", "name")) == Resolved("Ana", "name")
    assert resolve_field({"displayName": "", "name": "Ana"}, ("displayName", "name")).source_field == "name"
    assert resolve_field({}, ("displayName", "name")) is UNRESOLVED
    assert not UNRESOLVED


def test_normalize_message_and_defaults():
    n = normalize("r1", {"displayName": "Ana", "queueName": "Registrar", "createdAt": at(0)})
    assert n.message == "Ana registered in the REGISTRAR queue."
    assert n.created_at == at(0)

    fallback = normalize("r2", {"type": "Enrollment", "time_in": at(1).isoformat()})
    assert fallback.message == "Someone registered in the ENROLLMENT queue."
    assert fallback.created_at == at(1)

    bare = normalize("r3", {"createdAt": "not a date"})
    assert bare.message == "Someone registered in the QUEUE queue."
    assert bare.created_at is None


def test_visible_sorted_newest_first_and_unresolved_last():
    records = [
        ("a", {"name": "A", "createdAt": at(1)}),
        ("b", {"name": "B"}),
        ("c", {"name": "C", "createdAt": at(3)}),
    ]
    assert [n.id for n in visible_notifications(records)] == ["c", "a", "b"]
    # Unresolvable timestamps never pass a watermark.
    assert [n.id for n in visible_notifications(records, watermark=at(0))] == ["c", "a"]


def test_watermark_hides_seen_and_shows_new():
    clock = Clock(at(2.5))
    feed = FakeFeed()
    center = NotificationCenter(clock=clock)
    center.start(feed)

    old = [("e1", {"name": "A", "createdAt": at(1)}), ("e2", {"name": "B", "createdAt": at(2)})]
    feed.on_snapshot(old)
    assert len(center.state().notifications) == 2

    state = center.open_panel()
    assert center.watermark == at(2.5)
    assert state.notifications == []

    feed.on_snapshot(old + [("e3", {"name": "C", "createdAt": at(3)})])
    assert [n.id for n in center.state().notifications] == ["e3"]


def test_unread_flag_set_only_while_closed():
    clock = Clock(at(0))
    feed = FakeFeed()
    center = NotificationCenter(clock=clock)
    center.start(feed)
    assert center.state().loading is True

    feed.on_snapshot([])
    assert center.state().loading is False
    assert center.state().has_unread is False

    feed.on_snapshot([("e1", {"name": "A", "createdAt": at(1)})])
    assert center.state().has_unread is True

    clock.now = at(2)
    state = center.open_panel()
    assert state.has_unread is False
    assert state.is_open is True

    feed.on_snapshot([("e1", {"name": "A", "createdAt": at(1)}), ("e2", {"name": "B", "createdAt": at(3)})])
    assert center.state().has_unread is False

    center.close_panel()
    feed.on_snapshot([("e3", {"name": "C", "createdAt": at(4)})])
    assert center.state().has_unread is True


def test_stream_error_keeps_list_and_stops_loading():
    feed = FakeFeed()
    center = NotificationCenter(clock=Clock(at(0)))
    center.start(feed)
    feed.on_snapshot([("e1", {"name": "A", "createdAt": at(1)})])

    feed.on_error(RuntimeError("permission denied"))
    state = center.state()
    assert state.loading is False
    assert [n.id for n in state.notifications] == ["e1"]


def test_stop_unsubscribes_and_listeners_notified():
    feed = FakeFeed()
    center = NotificationCenter(clock=Clock(at(0)))
    seen = []
    remove = center.add_listener(seen.append)
    center.start(feed)
    feed.on_snapshot([("e1", {"name": "A", "createdAt": at(1)})])
    assert seen and seen[-1].notifications[0].id == "e1"

    remove()
    feed.on_snapshot([])
    assert len(seen) == 1

    assert center.running
    center.stop()
    assert feed.unsubscribed
    assert not center.running


def test_limit_applies_to_tracked_records():
    feed = FakeFeed()
    center = NotificationCenter(clock=Clock(at(0)), limit=2)
    center.start(feed)
    feed.on_snapshot([(f"e{i}", {"name": "x", "createdAt": at(i)}) for i in range(5)])
    assert len(center.state().notifications) == 2

    with pytest.raises(ValueError):
        NotificationCenter(limit=0)
