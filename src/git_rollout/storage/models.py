"""Data models for persistent rollout state."""

from __future__ import annotations

import getpass
import os
import socket
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

LOCK_PHASES = ("started", "sync-pending", "sync-failed", "synced")


@dataclass(frozen=True, slots=True)
class Holder:
    """Identity of the process that wants, or holds, the deployment lock."""

    user: str
    host: str
    pid: int

    @classmethod
    def current(cls) -> "Holder":
        return cls(user=getpass.getuser(), host=socket.gethostname(), pid=os.getpid())

    def owns(self, record: "LockRecord") -> bool:
        # A different shell of the same operator still counts as the holder.
        return record.user == self.user and record.host == self.host


@dataclass(slots=True)
class LockRecord:
    user: str
    host: str
    pid: int
    acquired_at: datetime
    action: str
    environment: str
    phase: str = "started"
    start_commit: str | None = None
    tag: str | None = None
    post_sync_done: bool = False

    @classmethod
    def for_holder(
        cls,
        holder: Holder,
        action: str,
        *,
        environment: str,
        start_commit: str | None = None,
    ) -> "LockRecord":
        return cls(
            user=holder.user,
            host=holder.host,
            pid=holder.pid,
            acquired_at=datetime.now(timezone.utc),
            action=action,
            environment=environment,
            start_commit=start_commit,
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["acquired_at"] = self.acquired_at.isoformat()
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "LockRecord":
        phase = payload.get("phase", "started")
        if phase not in LOCK_PHASES:
            raise ValueError(f"unknown lock phase '{phase}'")
        return cls(
            user=str(payload["user"]),
            host=str(payload["host"]),
            pid=int(payload["pid"]),
            acquired_at=datetime.fromisoformat(payload["acquired_at"]),
            action=str(payload["action"]),
            environment=str(payload.get("environment", "")),
            phase=phase,
            start_commit=payload.get("start_commit"),
            tag=payload.get("tag"),
            post_sync_done=bool(payload.get("post_sync_done", False)),
        )


@dataclass(slots=True)
class DeployRecord:
    """Ordered ``key: value`` headers followed by a free-text message.

    Header order is insertion order, so keys set for the first time always land
    after the existing ones.
    """

    headers: dict[str, str] = field(default_factory=dict)
    message: str = ""

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.headers.get(key, default)

    def set(self, key: str, value: str) -> None:
        key = key.strip()
        if not key or ":" in key or "\n" in key:
            raise ValueError(f"invalid deploy record key {key!r}")
        if "\n" in value:
            raise ValueError(f"deploy record value for {key!r} must be a single line")
        self.headers[key] = value

    @property
    def commit(self) -> str | None:
        return self.headers.get("commit")

    @property
    def tag(self) -> str | None:
        return self.headers.get("tag")


__all__ = ["DeployRecord", "Holder", "LOCK_PHASES", "LockRecord"]
