"""MQTT topic helpers.

Topic construction lives in one place so the service and both clients agree
on naming.

Topic layout under a configurable namespace (default: `officehours/v0`):

Request/response:
- `<ns>/coordinator/requests`
- `<ns>/coordinator/responses/<client_id>`

Streaming/broadcast (retained, so late subscribers get the current state):
- `<ns>/queues/<professor_id>/snapshots`
    Full waiting list after every committed change.
- `<ns>/professors/listing`
    Professors currently visible to students.
"""

from __future__ import annotations

DEFAULT_NAMESPACE = "officehours/v0"


def coordinator_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/coordinator/requests"


def coordinator_responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/coordinator/responses/{client_id}"


def queue_snapshots(professor_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/queues/{professor_id}/snapshots"


def professor_listing(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/professors/listing"
