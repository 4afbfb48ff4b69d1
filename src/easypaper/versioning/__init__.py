"""Versioning — snapshot store, commit log, version manager."""

from easypaper.versioning.diffing import TreeDelta
from easypaper.versioning.log import CommitLog
from easypaper.versioning.manager import VersionManager
from easypaper.versioning.models import Commit, CommitKind, FileRef, GcReport, HistoryView
from easypaper.versioning.store import ContentStore

__all__ = [
    "Commit",
    "CommitKind",
    "CommitLog",
    "ContentStore",
    "FileRef",
    "GcReport",
    "HistoryView",
    "TreeDelta",
    "VersionManager",
]
