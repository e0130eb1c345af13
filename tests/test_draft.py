import json

import pytest

from queuev.auth import User
from queuev.draft import Category, DraftCache, DraftStore, QueueDraft
from queuev.errors import ValidationError
from queuev.persistence import CATEGORIES, QUEUES
from queuev.store import MemoryStore

USER = User(uid="u1", email="owner@example.com", display_name="Owner")


def test_defaults():
    d = QueueDraft()
    assert d.form_columns == ["FULL NAME"]
    assert d.categories == []

    c = Category()
    assert c.limit == "10"
    assert c.time_limit == "5"
    assert c.invited_staff == []


def test_update_queue_data_is_shallow_merge():
    s = DraftStore()
    s.update_queue_data(queue_name="Registrar")
    s.update_queue_data(address="Main St")
    d = s.draft
    assert d.queue_name == "Registrar"
    assert d.address == "Main St"

    with pytest.raises(TypeError):
        s.update_queue_data(colour="red")


def test_category_dicts_use_field_names():
    s = DraftStore()
    s.update_queue_data(categories=[{"name": "A", "time_limit": "7"}])
    (c,) = s.draft.categories
    assert c.time_limit == "7"
    assert c.limit == "10"

    s.add_category({"name": "B", "invited_staff": ["b@example.com"]})
    assert s.draft.categories[1].invited_staff == ["b@example.com"]

    with pytest.raises(TypeError):
        s.update_queue_data(categories=[{"timeLimit": "7"}])
    with pytest.raises(TypeError):
        s.add_category({"invitedStaff": []})
    assert len(s.draft.categories) == 2


def test_draft_property_returns_copy():
    s = DraftStore()
    s.add_category({"name": "A"})
    s.draft.categories[0].name = "changed"
    assert s.draft.categories[0].name == "A"


def test_remove_then_add_does_not_leak_invites():
    s = DraftStore()
    s.add_category({"name": "A"})
    s.add_category({"name": "B"})
    s.invite_staff(0, "staff@example.com")

    s.remove_category(0)
    assert [c.name for c in s.draft.categories] == ["B"]

    idx = s.add_category()
    cats = s.draft.categories
    assert idx == 1
    assert [c.name for c in cats] == ["B", ""]
    assert cats[1].invited_staff == []
    assert cats[1].limit == "10"


def test_remove_category_out_of_range():
    s = DraftStore()
    with pytest.raises(IndexError):
        s.remove_category(0)


def test_invite_staff_normalizes_and_dedupes():
    s = DraftStore()
    s.add_category({"name": "A"})
    assert s.invite_staff(0, "  Staff@Example.COM ") is True
    assert s.invite_staff(0, "staff@example.com") is False
    assert s.draft.categories[0].invited_staff == ["staff@example.com"]

    s.uninvite_staff(0, "STAFF@example.com")
    assert s.draft.categories[0].invited_staff == []

    with pytest.raises(ValidationError):
        s.invite_staff(0, "   ")


def test_form_columns_are_positional():
    s = DraftStore()
    s.add_form_column("AGE")
    s.add_form_column("COURSE")
    s.remove_form_column(1)
    assert s.draft.form_columns == ["FULL NAME", "COURSE"]


def test_cache_mirror_and_restore(tmp_path):
    cache = DraftCache(tmp_path)
    s = DraftStore(cache=cache)
    s.update_queue_data(queue_name="Registrar")
    s.add_category({"name": "Enrollment", "limit": "50"})

    saved = json.loads((tmp_path / "queueData.json").read_text(encoding="utf-8"))
    assert saved["queueName"] == "Registrar"
    assert saved["categories"][0]["limit"] == "50"

    restored = DraftStore(cache=DraftCache(tmp_path)).draft
    assert restored.queue_name == "Registrar"
    assert restored.categories[0].name == "Enrollment"
    assert restored.form_columns == ["FULL NAME"]


def test_unreadable_cache_is_ignored(tmp_path):
    (tmp_path / "queueData.json").write_text("{not json", encoding="utf-8")
    s = DraftStore(cache=DraftCache(tmp_path))
    assert s.draft == QueueDraft()


def test_empty_address_is_rejected_before_any_write():
    store = MemoryStore()
    s = DraftStore()
    s.update_queue_data(queue_name="Registrar", address="   ")

    with pytest.raises(ValidationError) as exc:
        s.save_queue(USER, store)

    assert "address" in exc.value.errors
    assert store.query(QUEUES) == []
    assert store.query(CATEGORIES) == []


def test_save_requires_user():
    store = MemoryStore()
    s = DraftStore()
    s.update_queue_data(queue_name="Registrar", address="Main St")
    with pytest.raises(ValidationError) as exc:
        s.save_queue(None, store)
    assert set(exc.value.errors) == {"user"}
    assert store.query(QUEUES) == []


def test_save_trims_defaults_and_clears_cache(tmp_path):
    store = MemoryStore()
    cache = DraftCache(tmp_path)
    s = DraftStore(cache=cache)
    s.update_queue_data(queue_name="  Registrar ", address=" Main St ")

    queue_id = s.save_queue(USER, store)

    record = store.get(QUEUES, queue_id)
    assert record["queueName"] == "Registrar"
    assert record["address"] == "Main St"
    assert record["createdBy"] == "u1"
    assert record["dateTime"]
    assert record["expiration"] > record["dateTime"]
    assert not cache.path.exists()
    assert s.draft.queue_id == queue_id


def test_warnings_are_advisory():
    s = DraftStore()
    s.update_queue_data(
        queue_name="Q",
        address="A",
        date_time="2025-07-02T08:00:00.000Z",
        expiration="2025-07-02T07:00:00.000Z",
    )
    s.add_category({"name": "Walk In"})
    s.add_category({"name": "walk in"})

    warnings = s.warnings()
    assert len(warnings) == 2
    assert s.validate(USER) == {}
