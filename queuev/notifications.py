from __future__ import annotations

# Live "someone joined a queue" notifications.
#
# Registration records come from different writers and do not agree on field
# names, so each one is normalized first (`normalize`). The visible list is
# rebuilt from scratch on every snapshot: normalize, sort newest first, drop
# everything at or before the viewer's "last cleared" watermark.
#
# Opening the panel marks everything read *and* moves the watermark to now,
# so the panel shows what arrived since it was last opened.

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Union

from .timefmt import EPOCH, coerce_timestamp, utc_now

logger = logging.getLogger(__name__)

ACTOR_FIELDS = ("displayName", "name")
QUEUE_LABEL_FIELDS = ("queueName", "name_of_queue", "type")
TIMESTAMP_FIELDS = ("createdAt", "time_in")

DEFAULT_ACTOR = "Someone"
DEFAULT_QUEUE_LABEL = "queue"
DEFAULT_LIMIT = 100

RegistrationRecord = tuple[str, dict[str, Any]]
SnapshotHandler = Callable[[list[RegistrationRecord]], None]
ErrorHandler = Callable[[Exception], None]


@dataclass(frozen=True)
class Resolved:
    value: Any
    source_field: str


class _Unresolved:
    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNRESOLVED"


UNRESOLVED = _Unresolved()
Resolution = Union[Resolved, _Unresolved]


def _text(value: Any) -> str | None:
    text = str(value)
    return text or None


def resolve_field(
    data: dict[str, Any],
    candidates: Iterable[str],
    convert: Callable[[Any], Any] = _text,
) -> Resolution:
    """First candidate field that is present, non-empty and converts cleanly."""
    for name in candidates:
        raw = data.get(name)
        if raw is None or raw == "":
            continue
        value = convert(raw)
        if value is None:
            continue
        return Resolved(value=value, source_field=name)
    return UNRESOLVED


@dataclass(frozen=True)
class Notification:
    id: str
    actor_name: str
    queue_name: str
    message: str
    created_at: datetime | None

    @property
    def sort_key(self) -> datetime:
        return self.created_at or EPOCH


def normalize(record_id: str, data: dict[str, Any]) -> Notification:
    actor = resolve_field(data, ACTOR_FIELDS)
    label = resolve_field(data, QUEUE_LABEL_FIELDS)
    when = resolve_field(data, TIMESTAMP_FIELDS, coerce_timestamp)

    actor_name = actor.value if isinstance(actor, Resolved) else DEFAULT_ACTOR
    queue_name = label.value if isinstance(label, Resolved) else DEFAULT_QUEUE_LABEL
    return Notification(
        id=record_id,
        actor_name=actor_name,
        queue_name=queue_name,
        message=f"{actor_name} registered in the {queue_name.upper()} queue.",
        created_at=when.value if isinstance(when, Resolved) else None,
    )


def visible_notifications(
    records: Iterable[RegistrationRecord],
    watermark: datetime | None = None,
) -> list[Notification]:
    """Normalize, order newest first, and apply the watermark."""
    items = sorted((normalize(rid, data) for rid, data in records), key=lambda n: n.sort_key, reverse=True)
    if watermark is None:
        return items
    return [n for n in items if n.created_at is not None and n.created_at > watermark]


@dataclass(frozen=True)
class PanelState:
    notifications: list[Notification]
    has_unread: bool
    loading: bool
    is_open: bool


class NotificationCenter:
    """Explicit notification context for one viewer.

    `start(feed)` subscribes; `stop()` must be called on teardown.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utc_now, limit: int = DEFAULT_LIMIT) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._lock = threading.Lock()
        self._clock = clock
        self._limit = limit
        self._unsubscribe: Callable[[], None] | None = None
        self._records: list[RegistrationRecord] = []
        self._visible: list[Notification] = []
        self._watermark: datetime | None = None
        self._has_unread = False
        self._is_open = False
        self._loading = True
        self._listeners: list[Callable[[PanelState], None]] = []

    # -------------------- lifecycle --------------------

    def start(self, feed: Any) -> None:
        """Subscribe to a feed exposing `subscribe(on_snapshot, on_error) -> unsubscribe`."""
        if self._unsubscribe is not None:
            return
        with self._lock:
            self._loading = True
        self._unsubscribe = feed.subscribe(self._on_snapshot, self._on_error)

    def stop(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    @property
    def running(self) -> bool:
        return self._unsubscribe is not None

    def add_listener(self, callback: Callable[[PanelState], None]) -> Callable[[], None]:
        """Register for state changes. Returns a removal hook."""
        with self._lock:
            self._listeners.append(callback)

        def remove() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return remove

    # -------------------- viewer actions --------------------

    def open_panel(self) -> PanelState:
        with self._lock:
            self._is_open = True
            self._has_unread = False
            self._watermark = self._clock()
            self._visible = visible_notifications(self._records, self._watermark)
        return self._publish()

    def close_panel(self) -> PanelState:
        with self._lock:
            self._is_open = False
        return self._publish()

    @property
    def watermark(self) -> datetime | None:
        return self._watermark

    def state(self) -> PanelState:
        with self._lock:
            return PanelState(
                notifications=list(self._visible),
                has_unread=self._has_unread,
                loading=self._loading,
                is_open=self._is_open,
            )

    # -------------------- feed callbacks --------------------

    def _on_snapshot(self, records: list[RegistrationRecord]) -> None:
        with self._lock:
            self._records = list(records)[: self._limit]
            self._visible = visible_notifications(self._records, self._watermark)
            self._loading = False
            if not self._is_open and self._visible:
                self._has_unread = True
        self._publish()

    def _on_error(self, exc: Exception) -> None:
        logger.error("notification feed failed: %s", exc)
        with self._lock:
            self._loading = False
        self._publish()

    def _publish(self) -> PanelState:
        snapshot = self.state()
        with self._lock:
            listeners = list(self._listeners)
        for cb in listeners:
            try:
                cb(snapshot)
            except Exception:
                logger.exception("notification listener failed")
        return snapshot
