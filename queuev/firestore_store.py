from __future__ import annotations

# Cloud Firestore implementation of the document store API (see store.py).
#
# Credentials are read once, in this order:
#   1) FIREBASE_CREDENTIALS_JSON          (inline service-account JSON)
#   2) GOOGLE_APPLICATION_CREDENTIALS     (path to a service-account file)
# and must belong to FIREBASE_PROJECT_ID.

import json
import logging
import os
from typing import Any, Iterable

import firebase_admin
from firebase_admin import credentials, firestore as fa_firestore
from google.api_core.exceptions import NotFound
from google.cloud.firestore_v1.base_query import FieldFilter

from .store import SERVER_TIMESTAMP, Document, ErrorCallback, SnapshotCallback, Unsubscribe, Where

logger = logging.getLogger(__name__)


def _load_credentials() -> tuple[credentials.Certificate | None, str | None]:
    inline = (os.getenv("FIREBASE_CREDENTIALS_JSON") or "").strip()
    if inline:
        key = json.loads(inline)
        return credentials.Certificate(key), key.get("project_id")

    path = (os.getenv("GOOGLE_APPLICATION_CREDENTIALS") or "").strip()
    if path:
        if not os.path.exists(path):
            raise RuntimeError(f"GOOGLE_APPLICATION_CREDENTIALS points to a missing file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            key = json.load(f)
        return credentials.Certificate(key), key.get("project_id")

    return None, None


def init_firebase_app(project_id: str | None = None) -> firebase_admin.App:
    """Initialize the default firebase_admin app once and return it."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    project_id = project_id or (os.getenv("FIREBASE_PROJECT_ID") or "").strip()
    if not project_id:
        raise RuntimeError("FIREBASE_PROJECT_ID is not set")

    cred, key_project_id = _load_credentials()
    if cred is None:
        raise RuntimeError(
            "No Firebase credentials found. Set FIREBASE_CREDENTIALS_JSON or GOOGLE_APPLICATION_CREDENTIALS."
        )
    if key_project_id and key_project_id != project_id:
        raise RuntimeError(f"Project mismatch: key={key_project_id} env={project_id}")

    logger.info("initializing firebase app for project %s", project_id)
    return firebase_admin.initialize_app(cred, {"projectId": project_id})


class FirestoreStore:
    """Document store backed by Cloud Firestore."""

    def __init__(self, client: Any | None = None, *, project_id: str | None = None) -> None:
        if client is None:
            client = fa_firestore.client(init_firebase_app(project_id))
        self._db = client

    # -------------------- writes --------------------

    def add(self, collection: str, data: dict[str, Any]) -> str:
        ref = self._db.collection(collection).document()
        ref.set(self._resolve(data))
        return ref.id

    def set(self, collection: str, doc_id: str, data: dict[str, Any], *, merge: bool = False) -> None:
        self._db.collection(collection).document(doc_id).set(self._resolve(data), merge=merge)

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        try:
            self._db.collection(collection).document(doc_id).update(self._resolve(data))
        except NotFound as e:
            raise KeyError(f"{collection}/{doc_id}") from e

    def delete(self, collection: str, doc_id: str) -> None:
        self._db.collection(collection).document(doc_id).delete()

    # -------------------- reads --------------------

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        snap = self._db.collection(collection).document(doc_id).get()
        return snap.to_dict() if snap.exists else None

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
        q = self._build(collection, where, order_by, descending, limit, group)
        return [self._to_document(snap) for snap in q.stream()]

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
        q = self._build(collection, where, order_by, descending, limit, group)

        # Runs on the Firestore watch thread.
        def _callback(snapshots: list[Any], _changes: Any, _read_time: Any) -> None:
            try:
                on_snapshot([self._to_document(s) for s in snapshots])
            except Exception as e:
                logger.exception("snapshot listener failed for %s", collection)
                if on_error is not None:
                    on_error(e)

        watch = q.on_snapshot(_callback)
        return watch.unsubscribe

    # -------------------- internals --------------------

    def _build(
        self,
        collection: str,
        where: Iterable[Where],
        order_by: str | None,
        descending: bool,
        limit: int | None,
        group: bool,
    ) -> Any:
        q = self._db.collection_group(collection) if group else self._db.collection(collection)
        for fld, op, value in where:
            q = q.where(filter=FieldFilter(fld, op, value))
        if order_by is not None:
            direction = fa_firestore.Query.DESCENDING if descending else fa_firestore.Query.ASCENDING
            q = q.order_by(order_by, direction=direction)
        if limit is not None:
            q = q.limit(limit)
        return q

    @staticmethod
    def _resolve(data: dict[str, Any]) -> dict[str, Any]:
        return {k: (fa_firestore.SERVER_TIMESTAMP if v is SERVER_TIMESTAMP else v) for k, v in data.items()}

    @staticmethod
    def _to_document(snap: Any) -> Document:
        return Document(id=snap.id, path=snap.reference.path, data=snap.to_dict() or {})
