from __future__ import annotations

# Management listing and who may see it.
#
# A signed-in user sees the registrations of
# - every category of every queue they created, and
# - every category whose invited staff contains their email.
#
# The flat `queuesList` rows are matched by their `type` (category name).
# Tabs are the distinct types left after filtering.

import csv
import io
import logging
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable

from .draft import normalize_email
from .persistence import CATEGORIES, QUEUES, QUEUES_LIST, get_queues_by_user
from .timefmt import format_when

if TYPE_CHECKING:
    from .auth import User

logger = logging.getLogger(__name__)

CSV_HEADER = ("Queue No.", "Name", "Time In")
NO_ACCESS_MESSAGE = "You have no accessible queues. Create a queue or accept an invitation to get started."
EMPTY_MESSAGE = "No entries for this category yet."


class ListingState(str, Enum):
    NO_ACCESS = "no_access"
    EMPTY = "empty"
    ROWS = "rows"


@dataclass(frozen=True)
class ListingRow:
    id: str
    number: int
    name: str
    address: str
    time_in: str
    type: str


@dataclass(frozen=True)
class ListingView:
    state: ListingState
    tabs: list[str] = field(default_factory=list)
    active_tab: str = ""
    rows: list[ListingRow] = field(default_factory=list)
    accessible: frozenset[str] = frozenset()

    @property
    def message(self) -> str:
        if self.state is ListingState.NO_ACCESS:
            return NO_ACCESS_MESSAGE
        if self.state is ListingState.EMPTY:
            return EMPTY_MESSAGE
        return ""


def accessible_categories(store: Any, user: User) -> frozenset[str]:
    """Category names the user created or was invited to."""
    names: set[str] = set()
    for queue in get_queues_by_user(store, user.uid):
        for category in queue.get("categories") or []:
            if category.get("name"):
                names.add(category["name"])

    email = normalize_email(user.email)
    if email:
        for doc in store.query(CATEGORIES, where=[("invitedStaff", "array_contains", email)]):
            if doc.data.get("name"):
                names.add(doc.data["name"])
    return frozenset(names)


def filter_registrations(rows: Iterable[dict[str, Any]], names: Iterable[str]) -> list[dict[str, Any]]:
    allowed = set(names)
    return [r for r in rows if (r.get("type") or "") in allowed]


def tab_labels(rows: Iterable[dict[str, Any]]) -> list[str]:
    """Distinct non-empty row types, in first-seen order."""
    labels: list[str] = []
    for r in rows:
        t = r.get("type") or ""
        if t and t not in labels:
            labels.append(t)
    return labels


def resolve_active_tab(labels: list[str], active: str | None) -> str:
    if not labels:
        return ""
    return active if active in labels else labels[0]


def _listing_rows(rows: list[dict[str, Any]]) -> list[ListingRow]:
    # Queue numbers follow the position in the current view.
    return [
        ListingRow(
            id=str(r.get("id", "")),
            number=i,
            name=str(r.get("name") or ""),
            address=str(r.get("address") or ""),
            time_in=format_when(r.get("time_in")) or format_when(r.get("schedule")),
            type=str(r.get("type") or ""),
        )
        for i, r in enumerate(rows, start=1)
    ]


def build_listing(rows: Iterable[dict[str, Any]], accessible: Iterable[str], active_tab: str | None = None) -> ListingView:
    """Filter the flat listing for one user and pick what to render."""
    names = frozenset(accessible)
    if not names:
        return ListingView(state=ListingState.NO_ACCESS)

    visible = filter_registrations(rows, names)
    labels = tab_labels(visible)
    active = resolve_active_tab(labels, active_tab)
    shown = [r for r in visible if (r.get("type") or "") == active] if active else visible
    return ListingView(
        state=ListingState.ROWS if shown else ListingState.EMPTY,
        tabs=labels,
        active_tab=active,
        rows=_listing_rows(shown),
        accessible=names,
    )


def load_rows(store: Any) -> list[dict[str, Any]]:
    return [dict(doc.data, id=doc.id) for doc in store.query(QUEUES_LIST)]


def remove_entry(store: Any, entry_id: str) -> None:
    store.delete(QUEUES_LIST, entry_id)


def to_csv(view: ListingView) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for row in view.rows:
        writer.writerow((row.number, row.name, row.time_in))
    return buf.getvalue().rstrip("\n")


def csv_filename(view: ListingView) -> str:
    slug = re.sub(r"\s+", "-", view.active_tab.lower())
    return f"manage-queues-{slug}.csv"


class AccessWatcher:
    """Keeps a ListingView current for one user.

    Any change to the user's queues, the categories they were invited to, or
    the flat listing recomputes the view from current store state, so triggers
    may arrive in any order. Call `stop()` on teardown.
    """

    def __init__(self, store: Any, user: User, callback: Callable[[ListingView], None]) -> None:
        self._store = store
        self._user = user
        self._callback = callback
        self._lock = threading.Lock()
        self._active_tab: str | None = None
        self._unsubscribes: list[Callable[[], None]] = []
        self.view: ListingView | None = None

    def start(self) -> None:
        email = normalize_email(self._user.email)
        self._unsubscribes = [
            self._store.watch(
                QUEUES, self._on_change, on_error=self._on_error, where=[("createdBy", "==", self._user.uid)]
            ),
            self._store.watch(
                CATEGORIES, self._on_change, on_error=self._on_error, where=[("invitedStaff", "array_contains", email)]
            ),
            self._store.watch(QUEUES_LIST, self._on_change, on_error=self._on_error),
        ]

    def stop(self) -> None:
        unsubscribes, self._unsubscribes = self._unsubscribes, []
        for unsubscribe in unsubscribes:
            unsubscribe()

    def select_tab(self, label: str) -> ListingView:
        with self._lock:
            self._active_tab = label
        return self.refresh()

    def refresh(self) -> ListingView:
        view = build_listing(load_rows(self._store), accessible_categories(self._store, self._user), self._active_tab)
        with self._lock:
            self._active_tab = view.active_tab or None
            self.view = view
        self._callback(view)
        return view

    def _on_change(self, _docs: list[Any]) -> None:
        self.refresh()

    def _on_error(self, exc: Exception) -> None:
        logger.error("listing subscription failed: %s", exc)
