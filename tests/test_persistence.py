import random
import re
from datetime import datetime, timedelta, timezone

import pytest

from queuev.draft import Category, QueueDraft
from queuev.errors import PersistenceError
from queuev.persistence import (
    CATEGORIES,
    QUEUES,
    category_id,
    create_queue,
    generate_queue_id,
    get_queue_by_id,
    queue_history,
    registrations_collection,
)
from queuev.store import MemoryStore


def _draft(name="Registrar", *categories, created_by="u1"):
    return QueueDraft(
        queue_name=name,
        address="Main St",
        categories=[Category(name=c) for c in categories],
        created_by=created_by,
    )


def test_generate_queue_id_shape():
    qid = generate_queue_id(rng=random.Random(7), now_ms=1720000000000)
    assert re.fullmatch(r"[A-Za-z0-9]{10}-1720000000000", qid)
    assert generate_queue_id(rng=random.Random(7), now_ms=1) != generate_queue_id(rng=random.Random(8), now_ms=1)


def test_category_id_collapses_whitespace():
    assert category_id("Q1", "Walk In") == "Q1-walk-in"
    assert category_id("Q1", "Senior   Citizen\tLane") == "Q1-senior-citizen-lane"


def test_registrations_collection():
    assert registrations_collection("Q1") == "queues/Q1/registrations"


def test_create_queue_writes_queue_and_categories():
    store = MemoryStore()
    qid = create_queue(store, _draft("Registrar", "Enrollment", "Claims"))

    record = store.get(QUEUES, qid)
    assert record["queueId"] == qid
    assert record["createdAt"]
    assert sorted(d.id for d in store.query(CATEGORIES)) == sorted([f"{qid}-enrollment", f"{qid}-claims"])

    loaded = get_queue_by_id(store, qid)
    assert {c["name"] for c in loaded["categories"]} == {"Enrollment", "Claims"}
    assert get_queue_by_id(store, "missing") is None


def test_category_failure_carries_queue_id(monkeypatch):
    store = MemoryStore()
    real_set = store.set

    def flaky(collection, doc_id, data, **kw):
        if collection == CATEGORIES:
            raise OSError("quota")
        real_set(collection, doc_id, data, **kw)

    monkeypatch.setattr(store, "set", flaky)
    with pytest.raises(PersistenceError) as exc:
        create_queue(store, _draft("Registrar", "Enrollment"))

    # The queue record itself was written.
    assert exc.value.queue_id is not None
    assert store.get(QUEUES, exc.value.queue_id) is not None


def test_queue_history_newest_first():
    store = MemoryStore()
    t0 = datetime(2025, 7, 1, tzinfo=timezone.utc)
    older = create_queue(store, _draft("Old"), now=t0)
    newer = create_queue(store, _draft("New"), now=t0 + timedelta(hours=1))
    create_queue(store, _draft("Other", created_by="u2"), now=t0)

    assert [q["queueId"] for q in queue_history(store, "u1")] == [newer, older]
