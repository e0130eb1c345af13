from __future__ import annotations

# Queue-creation wizard.
#
#   STEP1 (name, address, schedule)
#     -> STEP2 (QR expiration, break time)
#     -> STEP3 (categories, notes, staff invitations)
#     -> STEP4 (form columns)
#     -> SUCCESS (QR payload)
#
# `next()`/`back()` move exactly one step. "GENERATE QR CODE" (`generate()`)
# is offered on STEP3 and STEP4; it submits the draft and enters SUCCESS.
# Each step only touches its own slice of the draft.

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, tzinfo
from enum import Enum
from typing import Any, Callable

from .draft import DraftStore
from .errors import ValidationError
from .invitations import send_invitations
from .timefmt import (
    combine,
    date_options,
    format_for_datetime_input,
    format_time_label,
    parse_iso,
    time_options,
    to_iso,
    utc_now,
)

logger = logging.getLogger(__name__)


class Step(str, Enum):
    STEP1 = "step1"
    STEP2 = "step2"
    STEP3 = "step3"
    STEP4 = "step4"
    SUCCESS = "success"


_ORDER = [Step.STEP1, Step.STEP2, Step.STEP3, Step.STEP4]
GENERATE_STEPS = frozenset({Step.STEP3, Step.STEP4})

STEP_TITLES = {
    Step.STEP1: "QUEUE DETAILS",
    Step.STEP2: "QR EXPIRATION & BREAK TIME",
    Step.STEP3: "CATEGORIES",
    Step.STEP4: "FORM COLUMNS",
    Step.SUCCESS: "QR CODE",
}


@dataclass(frozen=True)
class Navigation:
    target: str
    params: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StepView:
    """What a UI needs to render the current step."""

    step: Step
    title: str
    fields: dict[str, Any]
    errors: dict[str, str]
    warnings: list[str]
    can_go_back: bool
    can_go_next: bool
    can_generate: bool


class QueueWizard:
    def __init__(
        self,
        drafts: DraftStore,
        *,
        store: Any,
        auth: Any,
        clock: Callable[[], datetime] = utc_now,
        tz: tzinfo | None = None,
    ) -> None:
        self.drafts = drafts
        self._store = store
        self._auth = auth
        self._clock = clock
        self._tz = tz
        self.step = Step.STEP1
        self.errors: dict[str, str] = {}
        self.queue_id: str | None = None

    # -------------------- navigation --------------------

    def validate_step(self, step: Step | None = None) -> dict[str, str]:
        step = step or self.step
        draft = self.drafts.draft
        errors: dict[str, str] = {}
        if step is Step.STEP1:
            if not draft.queue_name.strip():
                errors["queueName"] = "Queue name is required"
            if not draft.address.strip():
                errors["address"] = "Address is required"
            if draft.date_time and parse_iso(draft.date_time) is None:
                errors["dateTime"] = "Invalid date/time"
        elif step is Step.STEP2:
            if draft.expiration and parse_iso(draft.expiration) is None:
                errors["expiration"] = "Invalid expiration"
        return errors

    def next(self) -> Step:
        if self.step not in _ORDER[:-1]:
            raise ValueError(f"cannot advance from {self.step.value}")
        errors = self.validate_step()
        self.errors = errors
        if errors:
            raise ValidationError(errors)
        self.step = _ORDER[_ORDER.index(self.step) + 1]
        return self.step

    def back(self) -> Step:
        if self.step not in _ORDER[1:]:
            raise ValueError(f"cannot go back from {self.step.value}")
        self.errors = {}
        self.step = _ORDER[_ORDER.index(self.step) - 1]
        return self.step

    def _require(self, *steps: Step) -> None:
        if self.step not in steps:
            raise ValueError(f"not available on {self.step.value}")

    # -------------------- step 1 --------------------

    def set_queue_name(self, name: str) -> None:
        self._require(Step.STEP1)
        self.drafts.update_queue_data(queue_name=name)

    def set_address(self, address: str) -> None:
        self._require(Step.STEP1)
        self.drafts.update_queue_data(address=address)

    def set_schedule(self, day: date, at: time) -> None:
        self._require(Step.STEP1)
        self.drafts.update_queue_data(date_time=to_iso(combine(day, at, self._tz)))

    # -------------------- step 2 --------------------

    def set_expiration(self, day: date | None = None, at: time | None = None) -> None:
        """Change the expiration date and/or time; the part not given is kept."""
        self._require(Step.STEP2)
        current = parse_iso(self.drafts.draft.expiration) or self._clock()
        local = current.astimezone(self._tz) if self._tz is not None else current.astimezone()
        new_day = day or local.date()
        new_time = at or local.time()
        self.drafts.update_queue_data(expiration=to_iso(combine(new_day, new_time, self._tz)))

    def set_break_time(self, start: time | None, end: time | None) -> None:
        self._require(Step.STEP2)
        self.drafts.update_queue_data(
            break_time_from=format_time_label(start) if start else "",
            break_time_to=format_time_label(end) if end else "",
        )

    # -------------------- step 3 --------------------

    def add_category(self, name: str, *, limit: str | None = None, time_limit: str | None = None) -> int:
        self._require(Step.STEP3)
        if not name.strip():
            raise ValidationError({"categoryName": "Category name is required"})
        partial: dict[str, Any] = {"name": name.strip()}
        if limit is not None:
            partial["limit"] = limit
        if time_limit is not None:
            partial["time_limit"] = time_limit
        return self.drafts.add_category(partial)

    def update_category(self, index: int, **changes: Any) -> None:
        self._require(Step.STEP3)
        self.drafts.update_category(index, **changes)

    def remove_category(self, index: int) -> None:
        self._require(Step.STEP3)
        self.drafts.remove_category(index)

    def invite_staff(self, index: int, email: str) -> bool:
        self._require(Step.STEP3)
        if "@" not in email:
            raise ValidationError({"staffEmail": "Enter a valid email address"})
        return self.drafts.invite_staff(index, email)

    def set_notes(self, notes: str) -> None:
        self._require(Step.STEP3)
        self.drafts.update_queue_data(notes=notes)

    # -------------------- step 4 --------------------

    def add_form_column(self, label: str) -> None:
        self._require(Step.STEP4)
        if not label.strip():
            raise ValidationError({"formColumn": "Column name is required"})
        self.drafts.add_form_column(label.strip())

    def remove_form_column(self, index: int) -> None:
        self._require(Step.STEP4)
        if index == 0:
            raise ValueError("the first form column cannot be removed")
        self.drafts.remove_form_column(index)

    # -------------------- submission --------------------

    def generate(self) -> Navigation:
        """Submit the draft and move to SUCCESS.

        ValidationError leaves the wizard where it is with `errors` set;
        PersistenceError propagates so the user can retry. Invitation
        failures are logged only.
        """
        self._require(*GENERATE_STEPS)
        user = self._auth.current_user
        try:
            queue_id = self.drafts.save_queue(user, self._store)
        except ValidationError as e:
            self.errors = e.errors
            raise

        self.errors = {}
        try:
            send_invitations(self._store, queue_id, self.drafts.draft, user)
        except Exception:
            logger.warning("could not send staff invitations for queue %s", queue_id, exc_info=True)

        self.queue_id = queue_id
        self.step = Step.SUCCESS
        return Navigation(target=Step.SUCCESS.value, params={"queueId": queue_id})

    @property
    def qr_payload(self) -> str | None:
        """Value encoded in the check-in QR code (the queue id)."""
        return self.queue_id if self.step is Step.SUCCESS else None

    # -------------------- view model --------------------

    def view(self, today: date | None = None) -> StepView:
        draft = self.drafts.draft
        step = self.step
        fields: dict[str, Any]
        if step is Step.STEP1:
            fields = {
                "queueName": draft.queue_name,
                "address": draft.address,
                "dateTime": format_for_datetime_input(draft.date_time, self._tz),
                "timeOptions": [format_time_label(t) for t in time_options()],
            }
        elif step is Step.STEP2:
            fields = {
                "expiration": format_for_datetime_input(draft.expiration, self._tz),
                "breakTimeFrom": draft.break_time_from,
                "breakTimeTo": draft.break_time_to,
                "dateOptions": date_options(today or self._clock().astimezone(self._tz).date()),
                "timeOptions": [format_time_label(t) for t in time_options(13, 23)],
            }
        elif step is Step.STEP3:
            fields = {"categories": [c.to_dict() for c in draft.categories], "notes": draft.notes}
        elif step is Step.STEP4:
            fields = {"formColumns": list(draft.form_columns)}
        else:
            fields = {
                "queueId": self.queue_id,
                "queueName": draft.queue_name,
                "address": draft.address,
                "qrPayload": self.qr_payload,
            }
        return StepView(
            step=step,
            title=STEP_TITLES[step],
            fields=fields,
            errors=dict(self.errors),
            warnings=self.drafts.warnings() if step is not Step.SUCCESS else [],
            can_go_back=step in _ORDER[1:],
            can_go_next=step in _ORDER[:-1],
            can_generate=step in GENERATE_STEPS,
        )
