from __future__ import annotations

# Draft store for the queue-creation wizard.
#
# A `QueueDraft` is built up across the wizard steps and only becomes stored
# records on submission. Until then categories and form columns are
# identified by position alone: removing index i shifts everything after it.
#
# Every mutation is mirrored into a local JSON cache (one fixed key), so a
# restarted session resumes the in-progress draft. The mirror is cleared only
# after a confirmed save. Two sessions sharing a cache directory overwrite
# each other (last writer wins).

import copy
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from .errors import ValidationError
from .timefmt import parse_iso, to_iso, utc_now

if TYPE_CHECKING:
    from .auth import User

logger = logging.getLogger(__name__)

DRAFT_CACHE_KEY = "queueData"
DEFAULT_FORM_COLUMN = "FULL NAME"
DEFAULT_CATEGORY_LIMIT = "10"
DEFAULT_CATEGORY_TIME_LIMIT = "5"


@dataclass
class Category:
    name: str = ""
    limit: str = DEFAULT_CATEGORY_LIMIT
    time_limit: str = DEFAULT_CATEGORY_TIME_LIMIT
    # Treated as a set; kept as a list so the draft serializes to JSON.
    invited_staff: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "limit": self.limit,
            "timeLimit": self.time_limit,
            "invitedStaff": list(self.invited_staff),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Category:
        return cls(
            name=str(data.get("name", "")),
            limit=str(data.get("limit", DEFAULT_CATEGORY_LIMIT)),
            time_limit=str(data.get("timeLimit", DEFAULT_CATEGORY_TIME_LIMIT)),
            invited_staff=[str(e) for e in data.get("invitedStaff") or []],
        )


@dataclass
class QueueDraft:
    queue_name: str = ""
    address: str = ""
    date_time: str = ""
    expiration: str = ""
    break_time_from: str = ""
    break_time_to: str = ""
    categories: list[Category] = field(default_factory=list)
    notes: str = ""
    form_columns: list[str] = field(default_factory=lambda: [DEFAULT_FORM_COLUMN])
    queue_id: str = ""
    created_by: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the field names used by stored queue records."""
        return {
            "queueName": self.queue_name,
            "address": self.address,
            "dateTime": self.date_time,
            "expiration": self.expiration,
            "breakTimeFrom": self.break_time_from,
            "breakTimeTo": self.break_time_to,
            "categories": [c.to_dict() for c in self.categories],
            "notes": self.notes,
            "formColumns": list(self.form_columns),
            "queueId": self.queue_id,
            "createdBy": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueDraft:
        """Overlay stored fields onto a default draft (unknown keys are ignored)."""
        draft = cls()
        simple = {
            "queueName": "queue_name",
            "address": "address",
            "dateTime": "date_time",
            "expiration": "expiration",
            "breakTimeFrom": "break_time_from",
            "breakTimeTo": "break_time_to",
            "notes": "notes",
            "queueId": "queue_id",
            "createdBy": "created_by",
        }
        for key, attr in simple.items():
            if data.get(key) is not None:
                setattr(draft, attr, str(data[key]))
        if isinstance(data.get("categories"), list):
            draft.categories = [Category.from_dict(c) for c in data["categories"] if isinstance(c, dict)]
        if isinstance(data.get("formColumns"), list) and data["formColumns"]:
            draft.form_columns = [str(c) for c in data["formColumns"]]
        return draft


_DRAFT_FIELDS = {f.name for f in fields(QueueDraft)}
_CATEGORY_FIELDS = {f.name for f in fields(Category)}


def _as_category(value: Category | dict[str, Any] | None) -> Category:
    """Category from an instance or a dict of field names (defaults fill the rest)."""
    if isinstance(value, Category):
        return copy.deepcopy(value)
    category = Category()
    if value:
        unknown = set(value) - _CATEGORY_FIELDS
        if unknown:
            raise TypeError(f"unknown category fields: {', '.join(sorted(unknown))}")
        for name, v in value.items():
            setattr(category, name, list(v) if name == "invited_staff" else v)
    return category


def normalize_email(email: str) -> str:
    return email.strip().lower()


class DraftCache:
    """JSON file holding the in-progress draft under a fixed key."""

    def __init__(self, directory: str | os.PathLike[str], key: str = DRAFT_CACHE_KEY) -> None:
        self.directory = Path(directory)
        self.key = key

    @property
    def path(self) -> Path:
        return self.directory / f"{self.key}.json"

    def load(self) -> dict[str, Any] | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.error("ignoring unreadable draft cache at %s", self.path)
            return None
        return data if isinstance(data, dict) else None

    def save(self, data: dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{self.key}-", suffix=".json")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, separators=(",", ":"))
        os.replace(tmp, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class DraftStore:
    """Single-writer container for one wizard session's draft."""

    def __init__(
        self,
        *,
        cache: DraftCache | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._lock = threading.Lock()
        self._cache = cache
        self._clock = clock
        self._draft = self._restore()

    def _restore(self) -> QueueDraft:
        saved = self._cache.load() if self._cache is not None else None
        return QueueDraft.from_dict(saved) if saved else QueueDraft()

    @property
    def draft(self) -> QueueDraft:
        """A copy of the current draft."""
        with self._lock:
            return copy.deepcopy(self._draft)

    def _commit(self) -> None:
        # Caller holds the lock.
        if self._cache is not None:
            self._cache.save(self._draft.to_dict())

    # -------------------- top-level fields --------------------

    def update_queue_data(self, **partial: Any) -> None:
        """Shallow-merge `partial` into the draft."""
        unknown = set(partial) - _DRAFT_FIELDS
        if unknown:
            raise TypeError(f"unknown draft fields: {', '.join(sorted(unknown))}")
        with self._lock:
            for name, value in partial.items():
                if name == "categories":
                    value = [_as_category(c) for c in value]
                elif name == "form_columns":
                    value = [str(c) for c in value]
                setattr(self._draft, name, value)
            self._commit()

    def reset(self) -> None:
        """Start over with an empty draft and drop the cache mirror."""
        with self._lock:
            self._draft = QueueDraft()
            if self._cache is not None:
                self._cache.clear()

    # -------------------- categories --------------------

    def add_category(self, partial: Category | dict[str, Any] | None = None) -> int:
        """Append a category (defaults overlaid by `partial`); returns its index."""
        category = _as_category(partial)
        with self._lock:
            self._draft.categories.append(category)
            self._commit()
            return len(self._draft.categories) - 1

    def update_category(self, index: int, **changes: Any) -> None:
        unknown = set(changes) - _CATEGORY_FIELDS
        if unknown:
            raise TypeError(f"unknown category fields: {', '.join(sorted(unknown))}")
        with self._lock:
            category = self._draft.categories[index]
            for name, value in changes.items():
                setattr(category, name, list(value) if name == "invited_staff" else value)
            self._commit()

    def remove_category(self, index: int) -> None:
        with self._lock:
            del self._draft.categories[index]
            self._commit()

    def invite_staff(self, index: int, email: str) -> bool:
        """Add an email to a category's invited staff. Returns False if already present."""
        email = normalize_email(email)
        if not email:
            raise ValidationError({"staffEmail": "Staff email is required"})
        with self._lock:
            staff = self._draft.categories[index].invited_staff
            if email in staff:
                return False
            staff.append(email)
            self._commit()
            return True

    def uninvite_staff(self, index: int, email: str) -> None:
        email = normalize_email(email)
        with self._lock:
            staff = self._draft.categories[index].invited_staff
            if email in staff:
                staff.remove(email)
                self._commit()

    # -------------------- form columns --------------------

    def add_form_column(self, label: str) -> None:
        with self._lock:
            self._draft.form_columns.append(label)
            self._commit()

    def remove_form_column(self, index: int) -> None:
        with self._lock:
            del self._draft.form_columns[index]
            self._commit()

    # -------------------- checks and submission --------------------

    def validate(self, user: User | None = None, *, require_user: bool = True) -> dict[str, str]:
        """Field -> message for everything blocking submission (empty when valid)."""
        errors: dict[str, str] = {}
        if require_user and user is None:
            errors["user"] = "User must be authenticated to create a queue"
        with self._lock:
            if not self._draft.queue_name.strip():
                errors["queueName"] = "Queue name is required"
            if not self._draft.address.strip():
                errors["address"] = "Address is required"
        return errors

    def warnings(self) -> list[str]:
        """Advisory problems that do not block submission."""
        out: list[str] = []
        draft = self.draft
        seen: set[str] = set()
        for c in draft.categories:
            key = c.name.strip().lower()
            if key and key in seen:
                out.append(f"Duplicate category name: {c.name.strip()}")
            seen.add(key)
        start = parse_iso(draft.date_time)
        end = parse_iso(draft.expiration)
        if start is not None and end is not None and end <= start:
            out.append("QR expiration is not after the scheduled time")
        return out

    def save_queue(self, user: User | None, store: Any) -> str:
        """Validate, persist the queue and its categories, and return the new queue id.

        Nothing is written when validation fails. On success the cache mirror
        is cleared and the draft keeps the assigned `queue_id`.
        """
        from .persistence import create_queue

        errors = self.validate(user)
        if errors:
            raise ValidationError(errors)
        assert user is not None

        now = self._clock()
        with self._lock:
            payload = copy.deepcopy(self._draft)
        payload.created_by = user.uid
        payload.queue_name = payload.queue_name.strip()
        payload.address = payload.address.strip()
        payload.date_time = payload.date_time or to_iso(now)
        payload.expiration = payload.expiration or to_iso(now + timedelta(days=1))

        queue_id = create_queue(store, payload, now=now)

        with self._lock:
            self._draft.queue_id = queue_id
            self._draft.created_by = user.uid
            if self._cache is not None:
                self._cache.clear()
        logger.info("saved queue %s (%d categories)", queue_id, len(payload.categories))
        return queue_id
