from __future__ import annotations

# Authentication service.
#
# Two implementations share one surface:
# - `LocalAuthService`: accounts kept in memory (tests, local demos)
# - `FirebaseAuthService`: Firebase Authentication. Accounts are created with
#   firebase_admin; password sign-in goes through the Identity Toolkit REST API
#   because the admin SDK cannot verify passwords.
#
# Errors are raised as AuthError with the backend's message unchanged. The UI
# decides how to show them via `friendly_auth_message`.

import hashlib
import hmac
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable

import requests

from .errors import AuthError
from .persistence import USERS
from .store import SERVER_TIMESTAMP

logger = logging.getLogger(__name__)

GENERIC_CREDENTIALS_MESSAGE = "Invalid email or password. Please check your credentials."

# Substrings of backend messages that mean "bad email/password".
_CREDENTIAL_MARKERS = (
    "auth/invalid-credential",
    "auth/wrong-password",
    "auth/user-not-found",
    "auth/invalid-email",
    "INVALID_LOGIN_CREDENTIALS",
    "INVALID_PASSWORD",
    "EMAIL_NOT_FOUND",
    "INVALID_EMAIL",
)


def friendly_auth_message(message: str) -> str:
    """Map known credential failures to one generic banner; pass anything else through."""
    if any(marker in message for marker in _CREDENTIAL_MARKERS):
        return GENERIC_CREDENTIALS_MESSAGE
    return message


@dataclass(frozen=True)
class User:
    uid: str
    email: str
    display_name: str = ""


AuthObserver = Callable[["User | None"], None]


class _AuthBase:
    def __init__(self, store: Any | None = None) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._user: User | None = None
        self._observers: list[AuthObserver] = []

    @property
    def current_user(self) -> User | None:
        return self._user

    def on_auth_state_changed(self, callback: AuthObserver) -> Callable[[], None]:
        """Call `callback` now and on every sign-in/sign-out. Returns an unsubscribe hook."""
        with self._lock:
            self._observers.append(callback)
        callback(self._user)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def sign_out(self) -> None:
        self._set_user(None)

    def _set_user(self, user: User | None) -> None:
        with self._lock:
            self._user = user
            observers = list(self._observers)
        for cb in observers:
            try:
                cb(user)
            except Exception:
                logger.exception("auth observer failed")

    def _save_profile(self, user: User, username: str | None = None) -> None:
        """Create or refresh `users/<uid>` so other users can invite this one."""
        if self._store is None:
            return
        existing = self._store.get(USERS, user.uid)
        if existing is None:
            self._store.set(
                USERS,
                user.uid,
                {
                    "uid": user.uid,
                    "email": user.email,
                    "displayName": user.display_name,
                    "username": username or "",
                    "createdAt": SERVER_TIMESTAMP,
                    "lastLogin": SERVER_TIMESTAMP,
                },
            )
        else:
            self._store.update(
                USERS,
                user.uid,
                {"email": user.email, "displayName": user.display_name, "lastLogin": SERVER_TIMESTAMP},
            )


@dataclass
class _Account:
    uid: str
    email: str
    display_name: str
    salt: bytes
    password_hash: bytes


class LocalAuthService(_AuthBase):
    """In-memory accounts with PBKDF2 password hashes."""

    iterations = 100_000

    def __init__(self, store: Any | None = None) -> None:
        super().__init__(store)
        self._accounts: dict[str, _Account] = {}

    def _hash(self, password: str, salt: bytes) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, self.iterations)

    def sign_up(self, name: str, email: str, username: str, password: str) -> User:
        email = email.strip().lower()
        if "@" not in email:
            raise AuthError("Firebase: Error (auth/invalid-email).")
        if len(password) < 6:
            raise AuthError("Firebase: Password should be at least 6 characters (auth/weak-password).")
        salt = os.urandom(16)
        with self._lock:
            if email in self._accounts:
                raise AuthError("Firebase: Error (auth/email-already-in-use).")
            account = _Account(
                uid=uuid.uuid4().hex[:28],
                email=email,
                display_name=name.strip(),
                salt=salt,
                password_hash=self._hash(password, salt),
            )
            self._accounts[email] = account
        user = User(uid=account.uid, email=account.email, display_name=account.display_name)
        self._save_profile(user, username)
        self._set_user(user)
        return user

    def sign_in(self, email: str, password: str) -> User:
        with self._lock:
            account = self._accounts.get(email.strip().lower())
        if account is None or not hmac.compare_digest(account.password_hash, self._hash(password, account.salt)):
            raise AuthError("Firebase: Error (auth/invalid-credential).")
        user = User(uid=account.uid, email=account.email, display_name=account.display_name)
        self._save_profile(user)
        self._set_user(user)
        return user


class FirebaseAuthService(_AuthBase):
    """Firebase Authentication (admin SDK + Identity Toolkit password sign-in)."""

    SIGN_IN_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword"

    def __init__(
        self,
        store: Any | None,
        *,
        api_key: str,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(store)
        if not api_key:
            raise ValueError("api_key required")
        self._api_key = api_key
        self._http = session or requests.Session()
        self._timeout = timeout

    def sign_up(self, name: str, email: str, username: str, password: str) -> User:
        # Local import so the in-memory service works without firebase_admin configured.
        from firebase_admin import auth as fb_auth
        from firebase_admin import exceptions as fb_exceptions

        try:
            record = fb_auth.create_user(email=email.strip(), password=password, display_name=name.strip())
        except (fb_exceptions.FirebaseError, ValueError) as e:
            raise AuthError(str(e)) from e
        user = User(uid=record.uid, email=record.email or email, display_name=record.display_name or name)
        self._save_profile(user, username)
        self._set_user(user)
        return user

    def sign_in(self, email: str, password: str) -> User:
        try:
            resp = self._http.post(
                self.SIGN_IN_URL,
                params={"key": self._api_key},
                json={"email": email.strip(), "password": password, "returnSecureToken": True},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise AuthError(f"Network error during sign-in: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not resp.ok:
            message = (body.get("error") or {}).get("message") or f"HTTP {resp.status_code}"
            raise AuthError(message)

        user = User(
            uid=str(body.get("localId", "")),
            email=str(body.get("email", email)),
            display_name=str(body.get("displayName", "")),
        )
        self._save_profile(user)
        self._set_user(user)
        return user
