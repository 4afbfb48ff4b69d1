"""Append-only commit log with a head pointer and a per-path history index.

Each commit is one JSON file under ``commits/``. A record is fsynced and
renamed into place before ``append`` returns; the head pointer in
``config.json`` only moves afterwards.
"""

from __future__ import annotations

import json
import logging
import threading
from bisect import bisect_right
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from easypaper.errors import CommitNotFoundError, StoreIOError
from easypaper.versioning.models import Commit, ProjectVersionState
from easypaper.versioning.store import atomic_write

logger = logging.getLogger(__name__)

_RECORD_SUFFIX = ".json"


class PathIndex:
    """path -> ordered ``(log position, hash)`` entries, grown on each append."""

    def __init__(self) -> None:
        self._positions: Dict[str, List[int]] = {}
        self._hashes: Dict[str, List[str]] = {}

    def add(self, position: int, commit: Commit) -> None:
        for ref in commit.files:
            self._positions.setdefault(ref.path, []).append(position)
            self._hashes.setdefault(ref.path, []).append(ref.hash)

    def paths(self) -> List[str]:
        return sorted(self._positions)

    def hash_at(self, path: str, position: int) -> Optional[str]:
        """Latest hash recorded for *path* at or before *position*."""
        positions = self._positions.get(path)
        if not positions:
            return None
        idx = bisect_right(positions, position) - 1
        if idx < 0:
            return None
        return self._hashes[path][idx]

    def snapshot(self, position: int) -> Dict[str, str]:
        """Effective file set as of *position*."""
        files: Dict[str, str] = {}
        for path in self._positions:
            digest = self.hash_at(path, position)
            if digest is not None:
                files[path] = digest
        return files

    def latest(self) -> Dict[str, str]:
        return {path: hashes[-1] for path, hashes in self._hashes.items()}

    def all_hashes(self) -> Set[str]:
        return {digest for hashes in self._hashes.values() for digest in hashes}


class CommitLog:
    """Durable, linear commit history for one project."""

    def __init__(self, commits_dir: Path, state_path: Path) -> None:
        self._dir = Path(commits_dir)
        self._state_path = Path(state_path)
        self._lock = threading.RLock()
        self._loaded = False
        self._commits: List[Commit] = []
        self._positions: Dict[str, int] = {}
        self._index = PathIndex()
        self._corrupted: List[str] = []
        self._state: Optional[ProjectVersionState] = None

    # ---- loading ----

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.reload()

    def reload(self) -> int:
        """Re-read every record from disk. Returns the corrupted-record count."""
        with self._lock:
            commits: List[Commit] = []
            corrupted: List[str] = []
            if self._dir.is_dir():
                for path in sorted(self._dir.glob(f"*{_RECORD_SUFFIX}")):
                    commit = self._read_record(path)
                    if commit is None:
                        corrupted.append(path.name)
                    else:
                        commits.append(commit)

            commits.sort(key=lambda c: c.sort_key)
            self._commits = []
            self._positions = {}
            self._index = PathIndex()
            for commit in commits:
                self._index_commit(commit)
            self._corrupted = corrupted
            self._state = self._read_state()
            self._loaded = True
            if corrupted:
                logger.warning(
                    "Skipped %d corrupted commit record(s) in %s: %s",
                    len(corrupted), self._dir, ", ".join(corrupted),
                )
            return len(corrupted)

    def _read_record(self, path: Path) -> Optional[Commit]:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            commit = Commit.from_dict(raw)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValueError) as exc:
            logger.warning("Unreadable commit record %s: %s", path.name, exc)
            return None
        if path.name != f"{commit.id}{_RECORD_SUFFIX}":
            logger.warning("Commit record %s does not match its id %s", path.name, commit.id)
            return None
        return commit

    def _read_state(self) -> Optional[ProjectVersionState]:
        try:
            raw = json.loads(self._state_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StoreIOError(f"Corrupted version config {self._state_path}: {exc}") from exc
        try:
            return ProjectVersionState.from_dict(raw)
        except ValueError as exc:
            raise StoreIOError(f"Corrupted version config {self._state_path}: {exc}") from exc

    def _index_commit(self, commit: Commit) -> None:
        position = len(self._commits)
        self._commits.append(commit)
        self._positions[commit.id] = position
        self._index.add(position, commit)

    # ---- contract ----

    def append(self, commit: Commit) -> None:
        """Persist *commit* durably, then make it visible to readers."""
        with self._lock:
            self._ensure_loaded()
            if commit.id in self._positions:
                raise ValueError(f"Commit id already used: {commit.id}")
            record = json.dumps(commit.to_dict(), ensure_ascii=False, indent=2)
            try:
                atomic_write(self._dir / f"{commit.id}{_RECORD_SUFFIX}", record.encode("utf-8"))
            except OSError as exc:
                raise StoreIOError(f"Failed to append commit {commit.id}: {exc}") from exc
            self._index_commit(commit)

    def get(self, commit_id: str) -> Commit:
        with self._lock:
            self._ensure_loaded()
            position = self._positions.get(commit_id)
            if position is None:
                raise CommitNotFoundError(commit_id)
            return self._commits[position]

    def list(self) -> List[Commit]:
        """All readable commits, oldest first."""
        with self._lock:
            self._ensure_loaded()
            return list(self._commits)

    @property
    def corrupted(self) -> int:
        with self._lock:
            self._ensure_loaded()
            return len(self._corrupted)

    def set_head(self, commit_id: str) -> None:
        """Point ``lastCommit`` at an already appended commit."""
        with self._lock:
            self._ensure_loaded()
            if commit_id not in self._positions:
                raise CommitNotFoundError(commit_id)
            if self._state is None:
                raise StoreIOError(f"Missing version config {self._state_path}")
            self._state.current_commit = commit_id
            self.write_state(self._state)

    def head(self) -> Optional[str]:
        with self._lock:
            self._ensure_loaded()
            return self._state.current_commit if self._state else None

    # ---- state file ----

    def write_state(self, state: ProjectVersionState) -> None:
        payload = json.dumps(state.to_dict(), indent=2).encode("utf-8")
        try:
            atomic_write(self._state_path, payload)
        except OSError as exc:
            raise StoreIOError(f"Failed to write {self._state_path}: {exc}") from exc
        with self._lock:
            self._state = state

    @property
    def state(self) -> Optional[ProjectVersionState]:
        with self._lock:
            self._ensure_loaded()
            return self._state

    # ---- history queries ----

    def last(self) -> Optional[Commit]:
        with self._lock:
            self._ensure_loaded()
            return self._commits[-1] if self._commits else None

    def next_seq(self) -> int:
        with self._lock:
            self._ensure_loaded()
            return max((c.seq for c in self._commits), default=-1) + 1

    def files_at(self, commit_id: str) -> Dict[str, str]:
        """Effective ``path -> hash`` set as of *commit_id*."""
        with self._lock:
            self._ensure_loaded()
            position = self._positions.get(commit_id)
            if position is None:
                raise CommitNotFoundError(commit_id)
            return self._index.snapshot(position)

    def latest_files(self) -> Dict[str, str]:
        with self._lock:
            self._ensure_loaded()
            return self._index.latest()

    def tracked_paths(self) -> List[str]:
        with self._lock:
            self._ensure_loaded()
            return self._index.paths()

    def referenced_hashes(self) -> Tuple[Set[str], int]:
        """Hashes referenced by readable commits, plus the corrupted count."""
        with self._lock:
            self._ensure_loaded()
            return self._index.all_hashes(), len(self._corrupted)
