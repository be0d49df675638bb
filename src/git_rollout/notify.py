"""Hand-off point for rollout notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(slots=True)
class RolloutNotice:
    environment: str
    action: str
    tag: str | None
    commit: str
    operator: str
    message: str
    recipients: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def subject(self) -> str:
        return f"[{self.environment}] {self.action} {self.tag or self.commit[:7]} by {self.operator}"


class Notifier(Protocol):
    """Anything that can deliver a finished-rollout notice."""

    def notify(self, notice: RolloutNotice) -> None:
        ...


class LoggingNotifier:
    """Default notifier: record the notice in the log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)

    def notify(self, notice: RolloutNotice) -> None:
        self._logger.info(
            notice.subject,
            extra={
                "environment": notice.environment,
                "tag": notice.tag,
                "commit": notice.commit,
                "recipients": list(notice.recipients),
            },
        )


class RecordingNotifier:
    """Keeps every notice in memory."""

    def __init__(self) -> None:
        self.notices: list[RolloutNotice] = []

    def notify(self, notice: RolloutNotice) -> None:
        self.notices.append(notice)


__all__ = ["LoggingNotifier", "Notifier", "RecordingNotifier", "RolloutNotice"]
