"""MQTT topic helpers.

Topic construction lives in one place so the desk, check-in clients and
panels agree on naming.

Topic layout under a configurable namespace (default: `queuev/v0`):

Request/response:
- `<ns>/desk/requests`
- `<ns>/desk/responses/<client_id>`

Broadcast:
- `<ns>/registrations/<queue_id>`
    The desk publishes every accepted check-in here. Subscribe to
    `registrations_all(ns)` (`+` wildcard) to follow every queue.

Separate deployments can share a broker by using different namespaces.
"""

from __future__ import annotations

DEFAULT_NAMESPACE = "queuev/v0"


def desk_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/desk/requests"


def desk_responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/desk/responses/{client_id}"


def registrations(queue_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    """Check-ins for one queue."""
    if not queue_id or "/" in queue_id or "+" in queue_id or "#" in queue_id:
        raise ValueError(f"invalid queue id for a topic: {queue_id!r}")
    return f"{namespace}/registrations/{queue_id}"


def registrations_all(namespace: str = DEFAULT_NAMESPACE) -> str:
    """Subscription filter covering every queue's check-ins."""
    return f"{namespace}/registrations/+"


def queue_id_from_topic(topic: str, namespace: str = DEFAULT_NAMESPACE) -> str | None:
    prefix = f"{namespace}/registrations/"
    if not topic.startswith(prefix):
        return None
    rest = topic[len(prefix):]
    return rest if rest and "/" not in rest else None
