"""Actions taken while the server was unreachable.

Payloads
--------
start               ``trackable_type``, ``trackable_id``, ``description``;
                    ``timer_id`` once the server has created the timer
pause/resume/stop   ``elapsed_seconds`` and either ``timer_id`` or, for a
                    timer started offline, ``timer_ref`` (the id of the
                    queued start that will create it)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

ACTIONS = ("start", "pause", "resume", "stop")


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_payload(action: str, payload: dict) -> None:
    """Raise ``ValueError`` unless ``payload`` can be replayed as ``action``."""
    if action == "start":
        if not isinstance(payload.get("trackable_type"), str) or not payload["trackable_type"]:
            raise ValueError("start needs a trackable_type")
        if not _is_int(payload.get("trackable_id")):
            raise ValueError("start needs an integer trackable_id")
        if payload.get("description") is not None and not isinstance(payload["description"], str):
            raise ValueError("description must be a string")
        if "timer_id" in payload and not _is_int(payload["timer_id"]):
            raise ValueError("timer_id must be an integer")
        return

    timer_id = payload.get("timer_id")
    timer_ref = payload.get("timer_ref")
    if timer_id is not None and not _is_int(timer_id):
        raise ValueError("timer_id must be an integer")
    if timer_ref is not None and not isinstance(timer_ref, str):
        raise ValueError("timer_ref must be a string")
    if timer_id is None and not timer_ref:
        raise ValueError(f"{action} needs a timer_id or timer_ref")
    elapsed = payload.get("elapsed_seconds")
    if not _is_int(elapsed) or elapsed < 0:
        raise ValueError("elapsed_seconds must be a non-negative integer")


@dataclass
class QueuedAction:
    action: str
    payload: dict
    queued_at: datetime
    attempts: int = 0
    id: str = field(default_factory=lambda: uuid4().hex)

    @property
    def timer_key(self):
        """Which timer this acts on: a server id or a pending start's ref."""
        return self.payload.get("timer_id") or self.payload.get("timer_ref")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "payload": dict(self.payload),
            "queued_at": self.queued_at.isoformat(),
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QueuedAction":
        if data.get("action") not in ACTIONS:
            raise ValueError(f"unknown queued action {data.get('action')!r}")
        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            raise TypeError("payload must be an object")
        check_payload(data["action"], payload)
        return cls(
            action=data["action"],
            payload=payload,
            queued_at=datetime.fromisoformat(data["queued_at"]),
            attempts=int(data.get("attempts", 0)),
            id=str(data.get("id") or uuid4().hex),
        )


def load_queue(items) -> list[QueuedAction]:
    """Rebuild a stored queue, dropping entries that don't parse."""
    if not isinstance(items, list):
        return []
    queue = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            queue.append(QueuedAction.from_dict(item))
        except (KeyError, TypeError, ValueError):
            continue
    return queue


def pending_starts(queue: list[QueuedAction]) -> list[str]:
    """Ids of queued starts the server hasn't created a timer for yet."""
    return [
        item.id for item in queue
        if item.action == "start" and "timer_id" not in item.payload
    ]
