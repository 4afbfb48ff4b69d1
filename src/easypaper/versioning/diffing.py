"""Line-level deltas between a historical snapshot and the working tree."""

from __future__ import annotations

import difflib
from dataclasses import dataclass, field
from typing import Dict, List, Optional


def _decode(data: bytes) -> Optional[str]:
    """Decode text content; ``None`` for binary blobs."""
    if b"\0" in data:
        return None
    return data.decode("utf-8", errors="replace")


def unified_lines(path: str, old: bytes, new: bytes, *, old_label: str, new_label: str) -> List[str]:
    """Return unified-diff lines (without trailing newlines) for one file."""
    old_text, new_text = _decode(old), _decode(new)
    if old_text is None or new_text is None:
        return [f"Binary files {old_label}/{path} and {new_label}/{path} differ"]
    return [
        line.rstrip("\n")
        for line in difflib.unified_diff(
            old_text.splitlines(keepends=True),
            new_text.splitlines(keepends=True),
            fromfile=f"{old_label}/{path}",
            tofile=f"{new_label}/{path}",
        )
    ]


@dataclass
class FileDelta:
    path: str
    lines: List[str] = field(default_factory=list)


@dataclass
class TreeDelta:
    """Differences between the files of a commit and the project on disk."""

    commit_id: str
    modified: List[FileDelta] = field(default_factory=list)
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.modified or self.added or self.removed)

    def render(self) -> str:
        """Render as plain text: per-file unified diffs, then path lists."""
        if self.is_empty:
            return f"No changes since {self.commit_id}\n"
        out: List[str] = []
        for delta in self.modified:
            out.extend(delta.lines)
        if self.added:
            out.append("Added:")
            out.extend(f"  {path}" for path in self.added)
        if self.removed:
            out.append("Removed:")
            out.extend(f"  {path}" for path in self.removed)
        return "\n".join(out) + "\n"

    def to_dict(self) -> Dict[str, object]:
        return {
            "commit": self.commit_id,
            "modified": {d.path: "\n".join(d.lines) for d in self.modified},
            "added": list(self.added),
            "removed": list(self.removed),
        }
