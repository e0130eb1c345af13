import argparse

import pytest

from queuev.auth import LocalAuthService
from queuev.config import Settings, add_backend_args, add_mqtt_args, open_auth, open_store, shared_backend_error
from queuev.store import MemoryStore
from queuev.topics import DEFAULT_NAMESPACE


def test_defaults_from_empty_env():
    s = Settings.from_env({})
    assert (s.mqtt_host, s.mqtt_port, s.namespace, s.backend) == ("127.0.0.1", 1883, DEFAULT_NAMESPACE, "memory")


def test_env_overrides():
    s = Settings.from_env(
        {"QUEUEV_MQTT_HOST": "broker", "QUEUEV_MQTT_PORT": "8883", "QUEUEV_NAMESPACE": "demo/v1", "FIREBASE_PROJECT_ID": "p"}
    )
    assert (s.mqtt_host, s.mqtt_port, s.namespace, s.firebase_project_id) == ("broker", 8883, "demo/v1", "p")

    with pytest.raises(ValueError):
        Settings.from_env({"QUEUEV_BACKEND": "sqlite"})


def test_flags_override_env():
    base = Settings.from_env({"QUEUEV_MQTT_HOST": "broker"})
    parser = argparse.ArgumentParser()
    add_mqtt_args(parser, base)
    add_backend_args(parser, base)

    s = Settings.from_args(parser.parse_args(["--mqtt-port", "1999", "--cache-dir", "/tmp/q"]), base)
    assert s.mqtt_host == "broker"
    assert s.mqtt_port == 1999
    assert s.cache_path == "/tmp/q"


def test_memory_backend():
    s = Settings.from_env({})
    store = open_store(s)
    assert isinstance(store, MemoryStore)
    assert isinstance(open_auth(s, store), LocalAuthService)


def test_shared_backend_error():
    assert shared_backend_error(Settings(backend="firestore"), "desk") is None
    message = shared_backend_error(Settings(backend="memory"), "desk")
    assert message.startswith("[desk] ")
    assert "--backend firestore" in message
