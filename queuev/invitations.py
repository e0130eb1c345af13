from __future__ import annotations

# Staff invitations.
#
# Emails gathered on wizard step 3 become `invitations` records once the queue
# exists. An invitation starts `pending` and moves exactly once, to `accepted`
# or `rejected`; records are never deleted. Accepting puts the invited user on
# the flat `queuesList` listing with the next queue number.

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from .errors import InvitationError
from .persistence import INVITATIONS, QUEUES, QUEUES_LIST, USERS, category_id
from .store import SERVER_TIMESTAMP, Document
from .timefmt import EPOCH, coerce_timestamp, parse_iso, utc_now

if TYPE_CHECKING:
    from .auth import User
    from .draft import QueueDraft

logger = logging.getLogger(__name__)


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Invitation:
    id: str
    queue_id: str
    queue_name: str
    queue_address: str
    category_id: str
    category_name: str
    category_limit: str
    category_time_limit: str
    invited_email: str
    invited_user_id: str
    invited_user_display_name: str
    inviter_user_id: str
    inviter_email: str
    status: InvitationStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: Document) -> Invitation:
        d = doc.data
        try:
            status = InvitationStatus(d.get("status") or "pending")
        except ValueError:
            status = InvitationStatus.PENDING
        return cls(
            id=doc.id,
            queue_id=str(d.get("queueId", "")),
            queue_name=str(d.get("queueName", "")),
            queue_address=str(d.get("queueAddress", "")),
            category_id=str(d.get("categoryId", "")),
            category_name=str(d.get("categoryName", "")),
            category_limit=str(d.get("categoryLimit", "")),
            category_time_limit=str(d.get("categoryTimeLimit", "")),
            invited_email=str(d.get("invitedEmail", "")),
            invited_user_id=str(d.get("invitedUserId", "")),
            invited_user_display_name=str(d.get("invitedUserDisplayName", "")),
            inviter_user_id=str(d.get("inviterUserId", "")),
            inviter_email=str(d.get("inviterEmail", "")),
            status=status,
            created_at=coerce_timestamp(d.get("createdAt")),
            updated_at=coerce_timestamp(d.get("updatedAt")),
        )


def find_user_by_email(store: Any, email: str) -> Document | None:
    docs = store.query(USERS, where=[("email", "==", email.strip().lower())], limit=1)
    return docs[0] if docs else None


def send_invitations(store: Any, queue_id: str, draft: QueueDraft, inviter: User) -> list[str]:
    """Create a pending invitation per (category, invited email).

    Best effort: emails without an account and failed writes are logged and
    skipped. Returns the ids that were written.
    """
    created: list[str] = []
    for category in draft.categories:
        cid = category_id(queue_id, category.name)
        for email in category.invited_staff:
            invited = find_user_by_email(store, email)
            if invited is None:
                logger.warning("no account for invited staff %s (category %s)", email, cid)
                continue
            record = {
                "queueId": queue_id,
                "queueName": draft.queue_name.strip(),
                "queueAddress": draft.address.strip(),
                "categoryId": cid,
                "categoryName": category.name,
                "categoryLimit": category.limit,
                "categoryTimeLimit": category.time_limit,
                "invitedEmail": email,
                "invitedUserId": invited.id,
                "invitedUserDisplayName": invited.data.get("displayName") or "",
                "inviterUserId": inviter.uid,
                "inviterEmail": inviter.email,
                "status": InvitationStatus.PENDING.value,
                "createdAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
            }
            try:
                created.append(store.add(INVITATIONS, record))
            except Exception:
                logger.warning("failed to store invitation for %s (category %s)", email, cid, exc_info=True)
    return created


def _newest_first(invitations: list[Invitation]) -> list[Invitation]:
    return sorted(invitations, key=lambda i: i.created_at or EPOCH, reverse=True)


def pending_invitations(store: Any, uid: str) -> list[Invitation]:
    docs = store.query(
        INVITATIONS,
        where=[("invitedUserId", "==", uid), ("status", "==", InvitationStatus.PENDING.value)],
    )
    return _newest_first([Invitation.from_document(d) for d in docs])


def watch_pending_invitations(
    store: Any,
    uid: str,
    callback: Callable[[list[Invitation]], None],
    *,
    on_error: Callable[[Exception], None] | None = None,
) -> Callable[[], None]:
    """Live variant of `pending_invitations`. Returns the unsubscribe hook."""
    return store.watch(
        INVITATIONS,
        lambda docs: callback(_newest_first([Invitation.from_document(d) for d in docs])),
        on_error=on_error,
        where=[("invitedUserId", "==", uid), ("status", "==", InvitationStatus.PENDING.value)],
    )


def _load(store: Any, invitation_id: str) -> Invitation:
    data = store.get(INVITATIONS, invitation_id)
    if data is None:
        raise InvitationError(f"unknown invitation {invitation_id}")
    return Invitation.from_document(Document(id=invitation_id, path=f"{INVITATIONS}/{invitation_id}", data=data))


def _transition(store: Any, invitation_id: str, status: InvitationStatus) -> Invitation:
    invitation = _load(store, invitation_id)
    if invitation.status is not InvitationStatus.PENDING:
        raise InvitationError(f"invitation {invitation_id} is already {invitation.status.value}")
    store.update(INVITATIONS, invitation_id, {"status": status.value, "updatedAt": SERVER_TIMESTAMP})
    return invitation


def next_queue_number(store: Any, *, where: list[tuple[str, str, Any]] | None = None) -> int:
    """Highest `index1` in the listing (optionally filtered) plus one."""
    highest = 0
    for doc in store.query(QUEUES_LIST, where=where or []):
        raw = doc.data.get("index1", 0)
        try:
            value = int(raw)
        except (TypeError, ValueError):
            value = 0
        highest = max(highest, value)
    return highest + 1


def accept_invitation(store: Any, invitation_id: str) -> str:
    """Accept and add the invited user to the listing; returns the listing entry id."""
    invitation = _transition(store, invitation_id, InvitationStatus.ACCEPTED)

    queue = store.get(QUEUES, invitation.queue_id) or {}
    schedule = parse_iso(queue.get("dateTime")) or utc_now()

    entry = {
        "address": invitation.queue_address,
        "index1": next_queue_number(store),
        "name": invitation.invited_user_display_name,
        "schedule": schedule,
        "status": "pending",
        "time_in": SERVER_TIMESTAMP,
        "type": invitation.category_name,
        "uid": invitation.invited_user_id,
        "queueId": invitation.queue_id,
        "queueName": invitation.queue_name,
        "categoryId": invitation.category_id,
    }
    entry_id = store.add(QUEUES_LIST, entry)
    logger.info("invitation %s accepted, listing entry %s", invitation_id, entry_id)
    return entry_id


def reject_invitation(store: Any, invitation_id: str) -> None:
    _transition(store, invitation_id, InvitationStatus.REJECTED)
