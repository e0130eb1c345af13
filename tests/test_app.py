import subprocess
import sys
from datetime import date, time

import pytest

from queuev import app
from queuev.app import main
from queuev.auth import LocalAuthService
from queuev.draft import Category, QueueDraft
from queuev.persistence import QUEUES_LIST, create_queue
from queuev.store import MemoryStore
from queuev.timefmt import combine, parse_iso


def test_app_help_runs():
    proc = subprocess.run(
        [sys.executable, "-m", "queuev.app", "-h"],
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 0
    out = proc.stdout + proc.stderr
    assert "main entrypoint" in out
    assert "desk" in out
    assert "checkin" in out
    assert "listing" in out


def test_create_help_runs():
    proc = subprocess.run(
        [sys.executable, "-m", "queuev.app", "create", "-h"],
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 0
    out = proc.stdout + proc.stderr
    assert "--queue-name" in out
    assert "--category" in out
    assert "--invite" in out


def test_create_with_memory_backend(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("QUEUEV_BACKEND", raising=False)
    rc = main(
        [
            "create",
            "--backend", "memory",
            "--cache-dir", str(tmp_path),
            "--email", "owner@example.com",
            "--password", "secret123",
            "--sign-up", "Owner",
            "--queue-name", "Registrar",
            "--address", "Main St",
            "--category", "Enrollment:50",
        ]
    )
    assert rc == 0
    assert "[create] queue " in capsys.readouterr().out
    assert not (tmp_path / "queueData.json").exists()


def test_create_reports_missing_address(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("QUEUEV_BACKEND", raising=False)
    rc = main(
        [
            "create",
            "--cache-dir", str(tmp_path),
            "--email", "owner@example.com",
            "--password", "secret123",
            "--sign-up", "Owner",
            "--queue-name", "Registrar",
            "--address", " ",
        ]
    )
    assert rc == 2
    assert "address" in capsys.readouterr().err


@pytest.fixture
def shared(monkeypatch):
    """One store and one account service standing in for Firestore."""
    store = MemoryStore()
    auth = LocalAuthService(store)
    monkeypatch.setattr(app, "open_store", lambda settings: store)
    monkeypatch.setattr(app, "open_auth", lambda settings, s: auth)
    return store, auth


def _login(email):
    return ["--backend", "firestore", "--email", email, "--password", "secret123"]


def test_create_keeps_schedule_and_notes(tmp_path, shared):
    store, _ = shared
    rc = main(
        [
            "create",
            *_login("owner@example.com"),
            "--sign-up", "Owner",
            "--cache-dir", str(tmp_path),
            "--queue-name", "Registrar",
            "--address", "Main St",
            "--date", "2025-07-02",
            "--time", "09:30",
            "--category", "Enrollment:50",
            "--invite", "Enrollment=Staff@Example.com",
            "--notes", "Bring ID",
        ]
    )
    assert rc == 0
    (queue,) = [doc.data for doc in store.query("queues")]
    assert parse_iso(queue["dateTime"]) == combine(date(2025, 7, 2), time(9, 30))
    assert queue["notes"] == "Bring ID"
    assert queue["categories"][0]["limit"] == "50"
    assert queue["categories"][0]["invitedStaff"] == ["staff@example.com"]


def test_listing_rejects_memory_backend(capsys, monkeypatch):
    monkeypatch.delenv("QUEUEV_BACKEND", raising=False)
    rc = main(["listing", "--email", "x@example.com", "--password", "secret123", "--sign-up", "X"])
    assert rc == 2
    err = capsys.readouterr().err
    assert err.startswith("[listing] ")
    assert "--backend firestore" in err


def test_listing_without_access(capsys, shared):
    rc = main(["listing", *_login("x@example.com"), "--sign-up", "X"])
    assert rc == 0
    assert "no accessible queues" in capsys.readouterr().out


def _owned_queue(store, auth):
    owner = auth.sign_up("Owner", "owner@example.com", "owner", "secret123")
    create_queue(
        store,
        QueueDraft(queue_name="Registrar", address="Main St", categories=[Category(name="Enrollment")], created_by=owner.uid),
    )
    mine = store.add(QUEUES_LIST, {"index1": 1, "name": "Ana", "type": "Enrollment", "time_in": "2025-07-02T08:00:00Z"})
    theirs = store.add(QUEUES_LIST, {"index1": 1, "name": "Bo", "type": "Checkup", "time_in": "2025-07-02T08:01:00Z"})
    return mine, theirs


def test_listing_remove_entry(capsys, shared):
    store, auth = shared
    mine, _ = _owned_queue(store, auth)

    rc = main(["listing", *_login("owner@example.com"), "--remove", mine])
    assert rc == 0
    out = capsys.readouterr().out
    assert f"[listing] removed {mine}" in out
    assert "Ana" not in out
    assert store.get(QUEUES_LIST, mine) is None


def test_listing_remove_refuses_rows_outside_access(capsys, shared):
    store, auth = shared
    _, theirs = _owned_queue(store, auth)

    rc = main(["listing", *_login("owner@example.com"), "--remove", theirs])
    assert rc == 1
    assert "no registration" in capsys.readouterr().err
    assert store.get(QUEUES_LIST, theirs) is not None
