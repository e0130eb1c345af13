from __future__ import annotations

# Queue persistence.
#
# A submitted draft becomes one `queues/<queueId>` record plus one
# `categories/<categoryId>` record per category. The writes are independent:
# if a category write fails after the queue record was stored, the caller gets
# a PersistenceError carrying the queue id.

import random
import re
import string
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .errors import PersistenceError
from .timefmt import to_iso, utc_now

if TYPE_CHECKING:
    from .draft import QueueDraft

USERS = "users"
QUEUES = "queues"
CATEGORIES = "categories"
INVITATIONS = "invitations"
QUEUES_LIST = "queuesList"
REGISTRATIONS = "registrations"

_ID_ALPHABET = string.ascii_letters + string.digits
_WHITESPACE = re.compile(r"\s+")


def generate_queue_id(*, rng: random.Random | None = None, now_ms: int | None = None) -> str:
    """Random 10-character prefix plus the creation time in epoch milliseconds."""
    r = rng or random.SystemRandom()
    prefix = "".join(r.choice(_ID_ALPHABET) for _ in range(10))
    ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{prefix}-{ms}"


def category_id(queue_id: str, name: str) -> str:
    """`("Q1", "Walk In")` -> `"Q1-walk-in"`."""
    return f"{queue_id}-{_WHITESPACE.sub('-', name).lower()}"


def registrations_collection(queue_id: str) -> str:
    return f"{QUEUES}/{queue_id}/{REGISTRATIONS}"


def create_queue(store: Any, draft: QueueDraft, *, now: datetime | None = None) -> str:
    """Write the queue and its categories; return the queue id."""
    queue_id = draft.queue_id or generate_queue_id()
    created_at = to_iso(now or utc_now())

    record = draft.to_dict()
    record["queueId"] = queue_id
    record["createdAt"] = created_at
    try:
        store.set(QUEUES, queue_id, record)
    except Exception as e:
        raise PersistenceError(f"Could not save queue: {e}") from e

    for category in draft.categories:
        cid = category_id(queue_id, category.name)
        try:
            store.set(
                CATEGORIES,
                cid,
                {**category.to_dict(), "categoryId": cid, "queueId": queue_id, "createdAt": created_at},
            )
        except Exception as e:
            raise PersistenceError(f"Could not save category {category.name!r}: {e}", queue_id=queue_id) from e

    return queue_id


def get_categories(store: Any, queue_id: str) -> list[dict[str, Any]]:
    return [doc.data for doc in store.query(CATEGORIES, where=[("queueId", "==", queue_id)])]


def get_queue_by_id(store: Any, queue_id: str) -> dict[str, Any] | None:
    """Queue record with its stored categories, or None when missing."""
    data = store.get(QUEUES, queue_id)
    if data is None:
        return None
    data["queueId"] = data.get("queueId") or queue_id
    data["categories"] = get_categories(store, queue_id)
    return data


def get_queues_by_user(store: Any, uid: str) -> list[dict[str, Any]]:
    queues = []
    for doc in store.query(QUEUES, where=[("createdBy", "==", uid)]):
        data = dict(doc.data)
        data["queueId"] = data.get("queueId") or doc.id
        data["categories"] = get_categories(store, data["queueId"])
        queues.append(data)
    return queues


def queue_history(store: Any, uid: str) -> list[dict[str, Any]]:
    """The user's queues, newest first."""
    return sorted(get_queues_by_user(store, uid), key=lambda q: str(q.get("createdAt") or ""), reverse=True)
