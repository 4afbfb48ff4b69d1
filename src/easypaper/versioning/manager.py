"""Version manager — init / save / commit / history / restore / diff.

All mutations of the commit log and the head pointer for one project go
through a single ``VersionManager`` and its lock. Operations are safe to
retry: blobs are write-once, and a retried save or commit only appends a
new record.
"""

from __future__ import annotations

import logging
import os
import stat
import threading
import uuid
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from easypaper.errors import (
    CommitNotFoundError,
    CorruptHistoryError,
    NotInitializedError,
    StoreIOError,
)
from easypaper.versioning.diffing import FileDelta, TreeDelta, unified_lines
from easypaper.versioning.log import CommitLog
from easypaper.versioning.models import (
    Commit,
    CommitKind,
    FileRef,
    GcReport,
    HistoryView,
    ProjectVersionState,
    utc_now,
)
from easypaper.versioning.store import ContentStore, atomic_write, digest_bytes

logger = logging.getLogger(__name__)

CONTROL_DIR = ".control"
CONFIG_FILE = "config.json"
COMMITS_DIR = "commits"
SNAPSHOTS_DIR = "snapshots"

DEFAULT_TRACK = ("*.tex", "*.bib", "*.sty", "*.cls", "*.bst")
_NEW_FILE_MODE = 0o644


class VersionManager:
    """Owns the snapshot store, commit log and head pointer of one project."""

    def __init__(
        self,
        project_dir: Union[str, Path],
        *,
        track: Sequence[str] = DEFAULT_TRACK,
        exclude_dirs: Iterable[str] = (),
        auto_init: bool = False,
    ) -> None:
        self._project_dir = Path(project_dir).resolve()
        self._control = self._project_dir / CONTROL_DIR
        self._store = ContentStore(self._control / SNAPSHOTS_DIR)
        self._log = CommitLog(self._control / COMMITS_DIR, self._control / CONFIG_FILE)
        self._auto_init = auto_init
        self._lock = threading.RLock()
        self.set_tracking(track, exclude_dirs)

    def set_tracking(self, track: Sequence[str], exclude_dirs: Iterable[str] = ()) -> None:
        """Replace the track patterns and the directories discovery skips."""
        with self._lock:
            self._track = tuple(track)
            self._exclude_dirs = {
                CONTROL_DIR, *(d.strip("/") for d in exclude_dirs if d.strip("/"))
            }

    @property
    def project_dir(self) -> Path:
        return self._project_dir

    @property
    def store(self) -> ContentStore:
        return self._store

    @property
    def log(self) -> CommitLog:
        return self._log

    @property
    def is_initialized(self) -> bool:
        return (self._control / CONFIG_FILE).is_file()

    # ---- setup ----

    def init(self) -> ProjectVersionState:
        """Create the on-disk layout if missing. Never touches existing history."""
        with self._lock:
            try:
                (self._control / COMMITS_DIR).mkdir(parents=True, exist_ok=True)
                (self._control / SNAPSHOTS_DIR).mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StoreIOError(f"Failed to create {self._control}: {exc}") from exc

            if self.is_initialized:
                self._log.reload()
                state = self._log.state
                if state is None:
                    raise StoreIOError(f"Version config missing in {self._control}")
                return state

            state = ProjectVersionState(created_at=utc_now())
            self._log.write_state(state)
            self._log.reload()
            logger.info("Initialized versioning in %s", self._control)
            return state

    def _require_init(self) -> None:
        if self.is_initialized:
            return
        if self._auto_init:
            self.init()
            return
        raise NotInitializedError(str(self._project_dir))

    # ---- paths ----

    def relative_path(self, path: Union[str, Path]) -> str:
        """Normalise *path* to a POSIX path relative to the project root."""
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._project_dir / candidate
        resolved = Path(os.path.normpath(candidate))
        try:
            rel = resolved.relative_to(self._project_dir)
        except ValueError:
            raise ValueError(f"Path is outside the project: {path}") from None
        if not rel.parts:
            raise ValueError(f"Path does not name a file: {path}")
        if rel.parts[0] == CONTROL_DIR:
            raise ValueError(f"Path is inside the version store: {path}")
        return rel.as_posix()

    def _restore_target(self, rel_path: str) -> Path:
        """Where restore writes *rel_path*; a symlink resolves to its target."""
        target = self._project_dir / self.relative_path(rel_path)
        if target.is_symlink():
            target = self._project_dir / self.relative_path(target.resolve())
        return target

    def discover_tracked_paths(self) -> List[str]:
        """History paths plus on-disk files matching the track patterns."""
        found = set(self._log.tracked_paths())
        for dirpath, dirnames, filenames in os.walk(self._project_dir):
            rel_dir = Path(dirpath).relative_to(self._project_dir)
            dirnames[:] = sorted(
                d for d in dirnames
                if not d.startswith(".")
                and (rel_dir / d).as_posix() not in self._exclude_dirs
            )
            for name in filenames:
                if any(fnmatch(name, pat) for pat in self._track):
                    found.add((rel_dir / name).as_posix())
        return sorted(found)

    # ---- commit construction ----

    def _new_commit(
        self,
        kind: CommitKind,
        files: Sequence[FileRef],
        *,
        message: Optional[str] = None,
        build_success: Optional[bool] = None,
    ) -> Commit:
        last = self._log.last()
        timestamp = utc_now()
        if last is not None and timestamp < last.timestamp:
            timestamp = last.timestamp
        return Commit(
            id=uuid.uuid4().hex,
            seq=self._log.next_seq(),
            kind=kind,
            timestamp=timestamp,
            files=tuple(files),
            message=message,
            build_success=build_success,
        )

    def _append(self, commit: Commit) -> str:
        self._log.append(commit)
        self._log.set_head(commit.id)
        logger.debug(
            "commit %s kind=%s files=%d", commit.id[:8], commit.kind.value, len(commit.files)
        )
        return commit.id

    # ---- operations ----

    def save(self, path: Union[str, Path], content: Union[str, bytes]) -> str:
        """Snapshot one file's content and record a Save commit."""
        rel = self.relative_path(path)
        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
        with self._lock:
            self._require_init()
            digest = self._store.put(data)
            commit = self._new_commit(CommitKind.SAVE, [FileRef(path=rel, hash=digest)])
            return self._append(commit)

    def commit(
        self,
        message: Optional[str] = None,
        build_success: Optional[bool] = None,
        tracked_paths: Optional[Iterable[Union[str, Path]]] = None,
    ) -> str:
        """Record a Compile commit covering every tracked file that changed.

        A commit is written even when nothing changed, so every build outcome
        stays in history.
        """
        with self._lock:
            self._require_init()
            paths = (
                self.discover_tracked_paths()
                if tracked_paths is None
                else sorted({self.relative_path(p) for p in tracked_paths})
            )
            latest = self._log.latest_files()
            refs: List[FileRef] = []
            for rel in paths:
                target = self._project_dir / rel
                try:
                    data = target.read_bytes()
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    raise StoreIOError(f"Failed to read {rel}: {exc}") from exc
                digest = digest_bytes(data)
                if latest.get(rel) == digest:
                    continue
                self._store.put(data)
                refs.append(FileRef(path=rel, hash=digest))

            commit = self._new_commit(
                CommitKind.COMPILE, refs, message=message, build_success=build_success
            )
            return self._append(commit)

    def history(self) -> HistoryView:
        with self._lock:
            self._require_init()
            return HistoryView(
                commits=self._log.list(),
                head=self._log.head(),
                corrupted=self._log.corrupted,
            )

    def resolve_commit(self, ref: str) -> str:
        """Expand a full id or a unique id prefix (as shown by ``history``)."""
        with self._lock:
            self._require_init()
            ref = ref.strip().lower()
            matches = [c.id for c in self._log.list() if c.id.startswith(ref)] if ref else []
            if len(matches) != 1:
                raise CommitNotFoundError(ref)
            return matches[0]

    def files_at(self, commit_id: str) -> Dict[str, str]:
        with self._lock:
            self._require_init()
            return self._log.files_at(commit_id)

    def restore(self, commit_id: str) -> List[str]:
        """Overwrite working files with their content as of *commit_id*.

        Files with no record up to that commit are left alone. Every target
        and blob is checked before the first write. Existing files keep
        their permission bits, and symlinks are written through. Returns the
        paths that were rewritten.
        """
        with self._lock:
            self._require_init()
            snapshot = self._log.files_at(commit_id)
            plan = [
                (rel, self._restore_target(rel), self._store.get(digest))
                for rel, digest in sorted(snapshot.items())
            ]

            restored: List[str] = []
            for rel, target, data in plan:
                try:
                    mode = _NEW_FILE_MODE
                    if target.is_file():
                        if target.read_bytes() == data:
                            continue
                        mode = stat.S_IMODE(target.stat().st_mode)
                    atomic_write(target, data, mode=mode)
                except OSError as exc:
                    raise StoreIOError(f"Failed to restore {rel}: {exc}") from exc
                restored.append(rel)
            logger.info("Restored %d file(s) from %s", len(restored), commit_id[:8])
            return restored

    def compare(self, commit_id: str) -> TreeDelta:
        """Structured delta between *commit_id* and the working tree."""
        with self._lock:
            self._require_init()
            snapshot = self._log.files_at(commit_id)
            on_disk = set(self.discover_tracked_paths())
            delta = TreeDelta(commit_id=commit_id)

            for rel in sorted(snapshot):
                target = self._project_dir / rel
                if not target.is_file():
                    delta.removed.append(rel)
                    continue
                try:
                    current = target.read_bytes()
                except OSError as exc:
                    raise StoreIOError(f"Failed to read {rel}: {exc}") from exc
                if digest_bytes(current) == snapshot[rel]:
                    continue
                old = self._store.get(snapshot[rel])
                delta.modified.append(
                    FileDelta(
                        path=rel,
                        lines=unified_lines(rel, old, current, old_label=commit_id[:8], new_label="working"),
                    )
                )

            delta.added = sorted(
                rel for rel in on_disk
                if rel not in snapshot and (self._project_dir / rel).is_file()
            )
            return delta

    def diff(self, commit_id: str) -> str:
        return self.compare(commit_id).render()

    # ---- maintenance ----

    def collect_garbage(self, *, dry_run: bool = False, force: bool = False) -> GcReport:
        """Delete blobs that no commit references."""
        with self._lock:
            self._require_init()
            referenced, corrupted = self._log.referenced_hashes()
            if corrupted and not force:
                raise CorruptHistoryError(
                    f"{corrupted} commit record(s) are unreadable; "
                    "their blobs cannot be told apart from garbage"
                )
            deleted, freed, examined = self._store.delete_unreferenced(referenced, dry_run=dry_run)
            if deleted and not dry_run:
                logger.info("Garbage collected %d blob(s), %d bytes", len(deleted), freed)
            return GcReport(
                deleted=deleted,
                bytes_freed=freed,
                examined=examined,
                remaining=examined - len(deleted),
                dry_run=dry_run,
            )
