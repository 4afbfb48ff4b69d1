"""JSON reporter for editor integrations and scripts."""

from __future__ import annotations

import json
from typing import Any, Dict

from easypaper.build.models import BuildResult
from easypaper.versioning.diffing import TreeDelta
from easypaper.versioning.models import GcReport, HistoryView


def history_to_dict(view: HistoryView) -> Dict[str, Any]:
    return {
        "head": view.head,
        "corrupted": view.corrupted,
        "commits": [commit.to_dict() for commit in view.commits],
    }


def gc_to_dict(report: GcReport) -> Dict[str, Any]:
    return {
        "deleted": list(report.deleted),
        "bytes_freed": report.bytes_freed,
        "examined": report.examined,
        "remaining": report.remaining,
        "dry_run": report.dry_run,
    }


def render(payload: Any) -> str:
    """Return formatted JSON for a result object or plain data."""
    if isinstance(payload, BuildResult):
        payload = payload.to_dict()
    elif isinstance(payload, HistoryView):
        payload = history_to_dict(payload)
    elif isinstance(payload, TreeDelta):
        payload = payload.to_dict()
    elif isinstance(payload, GcReport):
        payload = gc_to_dict(payload)
    return json.dumps(payload, indent=2, ensure_ascii=False)
