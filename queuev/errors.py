"""Exceptions and the shared wire error envelope.

Every failure in the application degrades to something the user can see:
a field message, a banner, or an error reply over MQTT. Nothing here is
meant to stop the process.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {"type": "error", "code": self.code, "message": self.message}
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class QueuevError(Exception):
    """Base class for application errors."""


class ValidationError(QueuevError):
    """One or more draft fields are missing or invalid.

    `errors` maps a field name to the message shown next to that field.
    """

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        super().__init__("; ".join(self.errors.values()) or "invalid input")


class AuthError(QueuevError):
    """Raised by auth services with the backend's message verbatim."""


class PersistenceError(QueuevError):
    """A queue or category write failed after validation passed."""

    retry_prompt = "Could not save the queue. Please try again."

    def __init__(self, message: str, *, queue_id: str | None = None) -> None:
        self.queue_id = queue_id
        super().__init__(message)


class InvitationError(QueuevError):
    """Invalid invitation lookup or status transition."""


class RegistrationError(QueuevError):
    """The registration desk refused a check-in."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(self.code, str(self))
