from __future__ import annotations

# Runtime settings.
#
# Every CLI subcommand takes the same connection flags. Their defaults come
# from the environment so a deployment can be configured once:
#
#   QUEUEV_MQTT_HOST, QUEUEV_MQTT_PORT, QUEUEV_NAMESPACE
#   QUEUEV_BACKEND (memory | firestore), QUEUEV_CACHE_DIR
#   FIREBASE_PROJECT_ID, FIREBASE_WEB_API_KEY
#   (credentials: FIREBASE_CREDENTIALS_JSON or GOOGLE_APPLICATION_CREDENTIALS)

import argparse
import os
from dataclasses import dataclass
from typing import Any, Mapping

from .topics import DEFAULT_NAMESPACE

BACKENDS = ("memory", "firestore")


@dataclass(frozen=True)
class Settings:
    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = 1883
    namespace: str = DEFAULT_NAMESPACE
    backend: str = "memory"
    cache_dir: str = os.path.join("~", ".queuev")
    firebase_project_id: str = ""
    firebase_api_key: str = ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        defaults = cls()
        backend = env.get("QUEUEV_BACKEND", defaults.backend)
        if backend not in BACKENDS:
            raise ValueError(f"QUEUEV_BACKEND must be one of {', '.join(BACKENDS)}")
        return cls(
            mqtt_host=env.get("QUEUEV_MQTT_HOST", defaults.mqtt_host),
            mqtt_port=int(env.get("QUEUEV_MQTT_PORT", defaults.mqtt_port)),
            namespace=env.get("QUEUEV_NAMESPACE", defaults.namespace),
            backend=backend,
            cache_dir=env.get("QUEUEV_CACHE_DIR", defaults.cache_dir),
            firebase_project_id=env.get("FIREBASE_PROJECT_ID", ""),
            firebase_api_key=env.get("FIREBASE_WEB_API_KEY", ""),
        )

    @classmethod
    def from_args(cls, args: argparse.Namespace, base: Settings | None = None) -> Settings:
        """Overlay parsed CLI flags (where present) on `base`."""
        base = base or cls.from_env()
        values: dict[str, Any] = {}
        for name in ("mqtt_host", "mqtt_port", "namespace", "backend", "cache_dir"):
            if getattr(args, name, None) is not None:
                values[name] = getattr(args, name)
        return cls(**{**base.__dict__, **values})

    @property
    def cache_path(self) -> str:
        return os.path.expanduser(self.cache_dir)


def add_mqtt_args(p: argparse.ArgumentParser, defaults: Settings) -> None:
    p.add_argument("--mqtt-host", default=defaults.mqtt_host)
    p.add_argument("--mqtt-port", type=int, default=defaults.mqtt_port)
    p.add_argument("--namespace", default=defaults.namespace)


def add_backend_args(p: argparse.ArgumentParser, defaults: Settings) -> None:
    p.add_argument("--backend", choices=BACKENDS, default=defaults.backend, help="document store")
    p.add_argument("--cache-dir", default=defaults.cache_dir, help="where the in-progress draft is kept")


def open_store(settings: Settings) -> Any:
    if settings.backend == "firestore":
        # Local import: the memory backend needs no Google libraries.
        from .firestore_store import FirestoreStore

        return FirestoreStore(project_id=settings.firebase_project_id or None)
    from .store import MemoryStore

    return MemoryStore()


def open_auth(settings: Settings, store: Any) -> Any:
    from .auth import FirebaseAuthService, LocalAuthService

    if settings.backend == "firestore":
        return FirebaseAuthService(store, api_key=settings.firebase_api_key)
    return LocalAuthService(store)


def shared_backend_error(settings: Settings, component: str) -> str | None:
    """Message for commands that need to see what other processes wrote."""
    if settings.backend == "memory":
        return f"[{component}] the memory backend is private to this process; use --backend firestore"
    return None
