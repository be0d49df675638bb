"""Read and write the deploy file that accompanies every rollout."""

from __future__ import annotations

from pathlib import Path

from ..errors import DeployFileNotFound, MalformedDeployRecord
from .models import DeployRecord

DEPLOY_FILE_NAME = ".deploy"


def default_deploy_file(root: Path) -> Path:
    """Return ``lib/.deploy`` when the root has a ``lib`` directory, else ``.deploy``."""

    root = Path(root)
    lib = root / "lib"
    if lib.is_dir():
        return lib / DEPLOY_FILE_NAME
    return root / DEPLOY_FILE_NAME


def serialize_record(record: DeployRecord) -> str:
    headers = "".join(f"{key}: {value}\n" for key, value in record.headers.items())
    message = record.message.rstrip("\n")
    return headers + "\n" + (message + "\n" if message else "")


def parse_record(text: str, *, source: str = "<deploy file>") -> DeployRecord:
    if text.startswith("\n"):
        header_text, message = "", text[1:]
    else:
        header_text, sep, message = text.partition("\n\n")
        if not sep:
            raise MalformedDeployRecord(f"{source}: missing blank line after the headers")

    record = DeployRecord(message=message.rstrip("\n"))
    for index, line in enumerate(header_text.split("\n") if header_text else []):
        key, sep, value = line.partition(":")
        if not sep or not key.strip():
            raise MalformedDeployRecord(f"{source}: line {index + 1} is not a 'key: value' header")
        record.headers[key.strip()] = value.strip()
    return record


class DeployFileStore:
    """Owns the deploy file at one path."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def write(self, record: DeployRecord) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(serialize_record(record), encoding="utf-8")

    def read(self) -> DeployRecord:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise DeployFileNotFound(f"no deploy file at {self._path}") from exc
        return parse_record(text, source=str(self._path))

    def read_if_current(self, head: str) -> DeployRecord | None:
        """Return the record only when it describes ``head``."""

        try:
            record = self.read()
        except DeployFileNotFound:
            return None
        if record.commit != head:
            return None
        return record


__all__ = ["DEPLOY_FILE_NAME", "DeployFileStore", "default_deploy_file", "parse_record", "serialize_record"]
