"""Data models for snapshot history."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple


class CommitKind(str, Enum):
    SAVE = "save"
    COMPILE = "compile"


def utc_now() -> datetime:
    """Return the current timezone-aware UTC timestamp, truncated to ms."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def check_record_path(path: str) -> str:
    """Validate a history path: relative, normalised POSIX, outside ``.control/``."""
    pure = PurePosixPath(path)
    if not pure.parts or pure.is_absolute():
        raise ValueError(f"history path must be relative to the project: {path!r}")
    if ".." in pure.parts or pure.as_posix() != path:
        raise ValueError(f"history path is not normalised: {path!r}")
    if pure.parts[0] == ".control":
        raise ValueError(f"history path is inside the version store: {path!r}")
    return path


@dataclass(frozen=True, slots=True)
class FileRef:
    """A file's content hash at one point in history."""

    path: str
    hash: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "hash": self.hash}


@dataclass(frozen=True)
class Commit:
    """One immutable entry of the commit log."""

    id: str
    seq: int
    kind: CommitKind
    timestamp: datetime
    files: Tuple[FileRef, ...] = ()
    message: Optional[str] = None
    build_success: Optional[bool] = None

    @property
    def sort_key(self) -> Tuple[datetime, int, str]:
        return (self.timestamp, self.seq, self.id)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to the on-disk record format."""
        data: Dict[str, Any] = {
            "id": self.id,
            "seq": self.seq,
            "kind": self.kind.value,
            "timestamp": format_timestamp(self.timestamp),
        }
        if self.message is not None:
            data["message"] = self.message
        if self.kind is CommitKind.COMPILE and self.build_success is not None:
            data["buildSuccess"] = self.build_success
        data["files"] = [ref.to_dict() for ref in self.files]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Commit":
        """Rebuild a commit from its record. Raises ValueError on bad input."""
        if not isinstance(data, dict):
            raise ValueError("commit record is not an object")

        commit_id = data.get("id")
        if not isinstance(commit_id, str) or not commit_id:
            raise ValueError("commit record has no id")

        try:
            kind = CommitKind(data.get("kind"))
        except ValueError as exc:
            raise ValueError(f"unknown commit kind {data.get('kind')!r}") from exc

        raw_ts = data.get("timestamp")
        if not isinstance(raw_ts, str):
            raise ValueError("commit record has no timestamp")
        timestamp = parse_timestamp(raw_ts)

        seq = data.get("seq", -1)
        if not isinstance(seq, int) or isinstance(seq, bool):
            raise ValueError("commit seq must be an integer")

        message = data.get("message")
        if message is not None and not isinstance(message, str):
            raise ValueError("commit message must be a string")

        build_success = data.get("buildSuccess")
        if build_success is not None and not isinstance(build_success, bool):
            raise ValueError("buildSuccess must be a boolean")

        raw_files = data.get("files", [])
        if not isinstance(raw_files, list):
            raise ValueError("files must be a list")
        files: List[FileRef] = []
        for entry in raw_files:
            if not isinstance(entry, dict):
                raise ValueError("file entry is not an object")
            path, digest = entry.get("path"), entry.get("hash")
            if not isinstance(path, str) or not isinstance(digest, str):
                raise ValueError("file entry needs string path and hash")
            files.append(FileRef(path=check_record_path(path), hash=digest))

        return cls(
            id=commit_id,
            seq=seq,
            kind=kind,
            timestamp=timestamp,
            files=tuple(files),
            message=message,
            build_success=build_success if kind is CommitKind.COMPILE else None,
        )


@dataclass
class ProjectVersionState:
    """Per-project control block persisted as ``.control/config.json``."""

    created_at: datetime
    current_commit: Optional[str] = None
    version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "created": format_timestamp(self.created_at),
            "lastCommit": self.current_commit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectVersionState":
        if not isinstance(data, dict):
            raise ValueError("config.json is not an object")
        created = data.get("created")
        if not isinstance(created, str):
            raise ValueError("config.json has no 'created' timestamp")
        last = data.get("lastCommit")
        if last is not None and not isinstance(last, str):
            raise ValueError("lastCommit must be a string or null")
        version = data.get("version", 1)
        return cls(
            created_at=parse_timestamp(created),
            current_commit=last,
            version=version if isinstance(version, int) else 1,
        )


@dataclass
class HistoryView:
    """Read-only projection of the commit log."""

    commits: List[Commit] = field(default_factory=list)
    head: Optional[str] = None
    corrupted: int = 0

    def __len__(self) -> int:
        return len(self.commits)


@dataclass(frozen=True)
class GcReport:
    """Result of a blob garbage-collection pass."""

    deleted: Tuple[str, ...]
    bytes_freed: int
    examined: int
    remaining: int
    dry_run: bool
