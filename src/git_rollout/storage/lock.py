"""Exclusive deployment lock kept as a JSON file."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from ..errors import AlreadyLocked, MalformedLockRecord, NotLocked
from .models import Holder, LockRecord

logger = logging.getLogger(__name__)


class LockManager:
    """Acquire, update, inspect and release the lock of one deployment root.

    Acquisition links a fully written temporary file into place, so a
    concurrent acquirer either wins or observes a complete record from the
    winner; it never reads a partially written lock.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def inspect(self) -> LockRecord | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return LockRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            raise MalformedLockRecord(f"lock file {self._path} is unreadable: {exc}") from exc

    def acquire(
        self,
        holder: Holder,
        action: str,
        *,
        environment: str,
        start_commit: str | None = None,
        force: bool = False,
    ) -> LockRecord:
        record = LockRecord.for_holder(
            holder, action, environment=environment, start_commit=start_commit
        )
        temp_path = self._write_temp(record)
        try:
            if force:
                previous = self._inspect_quietly()
                os.replace(temp_path, self._path)
                if previous is not None:
                    logger.warning(
                        "Forcibly replaced deployment lock",
                        extra={
                            "previous_holder": f"{previous.user}@{previous.host}",
                            "previous_pid": previous.pid,
                            "previous_action": previous.action,
                            "previous_phase": previous.phase,
                        },
                    )
                return record
            try:
                os.link(temp_path, self._path)
            except FileExistsError:
                raise AlreadyLocked(self._inspect_quietly()) from None
        finally:
            if temp_path.exists():
                temp_path.unlink()

        logger.info(
            "Acquired deployment lock",
            extra={"holder": f"{holder.user}@{holder.host}", "pid": holder.pid, "action": action},
        )
        return record

    def update(self, record: LockRecord) -> LockRecord:
        """Rewrite the lock in place; only the current holder should call this."""

        temp_path = self._write_temp(record)
        os.replace(temp_path, self._path)
        return record

    def release(self, expected_holder: Holder | None = None, *, force: bool = False) -> None:
        existing = self._inspect_quietly() if force else self.inspect()
        if existing is None and not self._path.exists():
            if force:
                return
            raise NotLocked()
        if (
            not force
            and expected_holder is not None
            and existing is not None
            and not expected_holder.owns(existing)
        ):
            raise AlreadyLocked(existing)
        try:
            self._path.unlink()
        except FileNotFoundError:
            if not force:
                raise NotLocked() from None
        logger.info("Released deployment lock", extra={"lock": str(self._path)})

    def _inspect_quietly(self) -> LockRecord | None:
        try:
            return self.inspect()
        except MalformedLockRecord as exc:
            logger.warning("Ignoring unreadable lock file", extra={"error": str(exc)})
            return None

    def _write_temp(self, record: LockRecord) -> Path:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=".lock-", dir=str(self._path.parent))
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(record.to_dict(), handle, indent=2, sort_keys=True)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        return Path(name)


__all__ = ["LockManager"]
