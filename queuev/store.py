from __future__ import annotations

# Document store.
#
# The application talks to a managed document database (Cloud Firestore in
# production). This module defines the small API the rest of the code uses
# and an in-memory implementation with the same behavior:
#
# - collections addressed by slash paths (`queues`, `queues/<id>/registrations`)
# - equality / membership filters, ordering and limits
# - collection-group queries (match every collection with a given last segment)
# - push-based listeners that receive the full matching snapshot on every change
#
# No transactions: multi-document writes are independent and may partially fail.

import copy
import logging
import operator
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable

from .timefmt import utc_now

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Placeholder resolved to the write time by the store.
SERVER_TIMESTAMP: Any = _ServerTimestamp()

Where = tuple[str, str, Any]
SnapshotCallback = Callable[["list[Document]"], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


def _array_contains(value: Any, needle: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset)) and needle in value


def _in(value: Any, options: Any) -> bool:
    return value in options


_OPS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": _in,
    "array_contains": _array_contains,
}


@dataclass(frozen=True)
class Document:
    id: str
    path: str
    data: dict[str, Any]

    @property
    def collection(self) -> str:
        return self.path.rsplit("/", 1)[0]


@dataclass(frozen=True)
class Query:
    """A filtered, ordered, limited view over one collection or a collection group."""

    collection: str
    where: tuple[Where, ...] = ()
    order_by: str | None = None
    descending: bool = False
    limit: int | None = None
    group: bool = False

    def __post_init__(self) -> None:
        for _field, op, _value in self.where:
            if op not in _OPS:
                raise ValueError(f"unsupported filter operator: {op!r}")

    def covers(self, collection_path: str) -> bool:
        if self.group:
            return collection_path.rsplit("/", 1)[-1] == self.collection
        return collection_path == self.collection

    def matches(self, data: dict[str, Any]) -> bool:
        for fld, op, value in self.where:
            # Like Firestore, a document without the field never matches.
            if fld not in data:
                return False
            try:
                if not _OPS[op](data[fld], value):
                    return False
            except TypeError:
                return False
        return True

    def apply(self, docs: Iterable[Document]) -> list[Document]:
        out = [d for d in docs if self.matches(d.data)]
        if self.order_by is not None:
            key = self.order_by
            out = [d for d in out if d.data.get(key) is not None]
            out.sort(key=lambda d: d.data[key], reverse=self.descending)
        if self.limit is not None:
            out = out[: self.limit]
        return out


@dataclass(eq=False)
class _Listener:
    query: Query
    on_snapshot: SnapshotCallback
    on_error: ErrorCallback | None
    active: bool = True


class MemoryStore:
    """In-process document store.

    Thread-safe; listeners are invoked on the writer's thread, after the
    write, with the complete snapshot of their query.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._lock = threading.RLock()
        self._clock = clock
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._listeners: list[_Listener] = []

    # -------------------- writes --------------------

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict[str, Any], *, merge: bool = False) -> None:
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            resolved = self._resolve(data)
            if merge and doc_id in docs:
                docs[doc_id] = {**docs[doc_id], **resolved}
            else:
                docs[doc_id] = resolved
        self._notify(collection)

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        with self._lock:
            docs = self._collections.get(collection, {})
            if doc_id not in docs:
                raise KeyError(f"{collection}/{doc_id}")
            docs[doc_id] = {**docs[doc_id], **self._resolve(data)}
        self._notify(collection)

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            removed = self._collections.get(collection, {}).pop(doc_id, None)
        if removed is not None:
            self._notify(collection)

    # -------------------- reads --------------------

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            data = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(data) if data is not None else None

    def query(
        self,
        collection: str,
        *,
        where: Iterable[Where] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        group: bool = False,
    ) -> list[Document]:
        q = Query(collection, tuple(where), order_by, descending, limit, group)
        return self._run(q)

    def watch(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        *,
        on_error: ErrorCallback | None = None,
        where: Iterable[Where] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        group: bool = False,
    ) -> Unsubscribe:
        """Listen to a query. The callback fires once immediately, then on every change."""
        q = Query(collection, tuple(where), order_by, descending, limit, group)
        listener = _Listener(query=q, on_snapshot=on_snapshot, on_error=on_error)
        with self._lock:
            self._listeners.append(listener)
        self._deliver(listener, self._run(q))

        def unsubscribe() -> None:
            with self._lock:
                listener.active = False
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # -------------------- internals --------------------

    def _resolve(self, data: dict[str, Any]) -> dict[str, Any]:
        now = self._clock()
        return {k: (now if v is SERVER_TIMESTAMP else copy.deepcopy(v)) for k, v in data.items()}

    def _run(self, q: Query) -> list[Document]:
        with self._lock:
            docs = [
                Document(id=doc_id, path=f"{path}/{doc_id}", data=copy.deepcopy(data))
                for path, coll in self._collections.items()
                if q.covers(path)
                for doc_id, data in coll.items()
            ]
        return q.apply(docs)

    def _notify(self, collection: str) -> None:
        with self._lock:
            targets = [lst for lst in self._listeners if lst.query.covers(collection)]
        for listener in targets:
            self._deliver(listener, self._run(listener.query))

    def _deliver(self, listener: _Listener, docs: list[Document]) -> None:
        if not listener.active:
            return
        try:
            listener.on_snapshot(docs)
        except Exception as e:
            logger.exception("snapshot listener failed for %s", listener.query.collection)
            if listener.on_error is not None:
                listener.on_error(e)
