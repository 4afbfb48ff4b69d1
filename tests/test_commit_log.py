"""Tests for the commit log, its head pointer and the path index."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from easypaper.errors import CommitNotFoundError, StoreIOError
from easypaper.versioning.log import CommitLog, PathIndex
from easypaper.versioning.models import Commit, CommitKind, FileRef, ProjectVersionState

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _commit(cid: str, seq: int, *files, offset_ms: int = 0, kind=CommitKind.SAVE, **kw) -> Commit:
    return Commit(
        id=cid,
        seq=seq,
        kind=kind,
        timestamp=T0 + timedelta(milliseconds=offset_ms),
        files=tuple(FileRef(path=p, hash=h) for p, h in files),
        **kw,
    )


@pytest.fixture
def log(tmp_path: Path) -> CommitLog:
    control = tmp_path / ".control"
    (control / "commits").mkdir(parents=True)
    commit_log = CommitLog(control / "commits", control / "config.json")
    commit_log.write_state(ProjectVersionState(created_at=T0))
    return commit_log


def _reopen(log: CommitLog, tmp_path: Path) -> CommitLog:
    control = tmp_path / ".control"
    return CommitLog(control / "commits", control / "config.json")


class TestPathIndex:
    def test_snapshot_carries_forward(self):
        index = PathIndex()
        index.add(0, _commit("a", 0, ("main.tex", "h1"), ("refs.bib", "b1")))
        index.add(1, _commit("b", 1, ("main.tex", "h2")))
        index.add(2, _commit("c", 2))
        assert index.snapshot(0) == {"main.tex": "h1", "refs.bib": "b1"}
        assert index.snapshot(2) == {"main.tex": "h2", "refs.bib": "b1"}

    def test_path_not_yet_recorded(self):
        index = PathIndex()
        index.add(0, _commit("a", 0, ("main.tex", "h1")))
        index.add(1, _commit("b", 1, ("late.tex", "l1")))
        assert index.hash_at("late.tex", 0) is None
        assert index.snapshot(0) == {"main.tex": "h1"}

    def test_latest_and_all_hashes(self):
        index = PathIndex()
        index.add(0, _commit("a", 0, ("main.tex", "h1")))
        index.add(1, _commit("b", 1, ("main.tex", "h2")))
        assert index.latest() == {"main.tex": "h2"}
        assert index.all_hashes() == {"h1", "h2"}
        assert index.paths() == ["main.tex"]


class TestAppend:
    def test_append_is_durable(self, log: CommitLog, tmp_path: Path):
        log.append(_commit("c1", 0, ("main.tex", "h1")))
        reopened = _reopen(log, tmp_path)
        assert [c.id for c in reopened.list()] == ["c1"]
        assert reopened.get("c1").files == (FileRef("main.tex", "h1"),)

    def test_record_file_named_by_id(self, log: CommitLog, tmp_path: Path):
        log.append(_commit("c1", 0))
        record = json.loads((tmp_path / ".control" / "commits" / "c1.json").read_text())
        assert record["id"] == "c1"
        assert record["kind"] == "save"
        assert record["timestamp"] == "2024-03-01T12:00:00.000+00:00"

    def test_duplicate_id_rejected(self, log: CommitLog):
        log.append(_commit("c1", 0))
        with pytest.raises(ValueError):
            log.append(_commit("c1", 1))

    def test_order_by_timestamp_then_seq(self, log: CommitLog, tmp_path: Path):
        log.append(_commit("zz", 0, offset_ms=0))
        log.append(_commit("aa", 1, offset_ms=0))
        log.append(_commit("mm", 2, offset_ms=5))
        reopened = _reopen(log, tmp_path)
        assert [c.id for c in reopened.list()] == ["zz", "aa", "mm"]
        assert reopened.next_seq() == 3

    def test_build_success_only_on_compile(self, log: CommitLog, tmp_path: Path):
        log.append(_commit("c1", 0, kind=CommitKind.COMPILE, build_success=False, message="Build failed"))
        record = json.loads((tmp_path / ".control" / "commits" / "c1.json").read_text())
        assert record["buildSuccess"] is False
        assert _reopen(log, tmp_path).get("c1").build_success is False


class TestHead:
    def test_head_follows_set_head(self, log: CommitLog, tmp_path: Path):
        assert log.head() is None
        log.append(_commit("c1", 0))
        log.set_head("c1")
        log.append(_commit("c2", 1, offset_ms=1))
        log.set_head("c2")
        assert log.head() == "c2"
        state = json.loads((tmp_path / ".control" / "config.json").read_text())
        assert state["lastCommit"] == "c2"
        assert state["version"] == 1

    def test_head_must_exist(self, log: CommitLog):
        with pytest.raises(CommitNotFoundError):
            log.set_head("missing")

    def test_corrupted_config_raises(self, log: CommitLog, tmp_path: Path):
        (tmp_path / ".control" / "config.json").write_text("{not json")
        with pytest.raises(StoreIOError):
            _reopen(log, tmp_path).head()


class TestCorruption:
    def test_corrupted_record_skipped_and_counted(self, log: CommitLog, tmp_path: Path):
        log.append(_commit("c1", 0, ("main.tex", "h1")))
        log.append(_commit("c2", 1, ("main.tex", "h2"), offset_ms=1))
        commits_dir = tmp_path / ".control" / "commits"
        (commits_dir / "broken.json").write_text("{\"id\": ", encoding="utf-8")

        reopened = _reopen(log, tmp_path)
        assert [c.id for c in reopened.list()] == ["c1", "c2"]
        assert reopened.corrupted == 1

    def test_record_with_mismatched_name_skipped(self, log: CommitLog, tmp_path: Path):
        log.append(_commit("c1", 0))
        commits_dir = tmp_path / ".control" / "commits"
        (commits_dir / "other.json").write_text((commits_dir / "c1.json").read_text())
        reopened = _reopen(log, tmp_path)
        assert [c.id for c in reopened.list()] == ["c1"]
        assert reopened.corrupted == 1

    @pytest.mark.parametrize(
        "bad_path", ["../outside.txt", "/etc/passwd", "a/../../b.tex", ".control/config.json", "./main.tex", ""]
    )
    def test_record_with_escaping_path_skipped(self, log: CommitLog, tmp_path: Path, bad_path: str):
        log.append(_commit("c1", 0, ("main.tex", "h1")))
        record = _commit("c2", 1, ("main.tex", "h2"), offset_ms=1).to_dict()
        record["files"].append({"path": bad_path, "hash": "h3"})
        (tmp_path / ".control" / "commits" / "c2.json").write_text(json.dumps(record))

        reopened = _reopen(log, tmp_path)
        assert [c.id for c in reopened.list()] == ["c1"]
        assert reopened.corrupted == 1
        assert bad_path not in reopened.tracked_paths()

    def test_referenced_hashes_reports_corruption(self, log: CommitLog, tmp_path: Path):
        log.append(_commit("c1", 0, ("main.tex", "h1")))
        (tmp_path / ".control" / "commits" / "bad.json").write_text("[]")
        hashes, corrupted = _reopen(log, tmp_path).referenced_hashes()
        assert hashes == {"h1"}
        assert corrupted == 1


class TestFilesAt:
    def test_files_at_each_commit(self, log: CommitLog):
        log.append(_commit("c1", 0, ("main.tex", "h1"), ("refs.bib", "b1")))
        log.append(_commit("c2", 1, ("main.tex", "h2"), offset_ms=1))
        assert log.files_at("c1") == {"main.tex": "h1", "refs.bib": "b1"}
        assert log.files_at("c2") == {"main.tex": "h2", "refs.bib": "b1"}

    def test_unknown_commit(self, log: CommitLog):
        with pytest.raises(CommitNotFoundError):
            log.files_at("nope")
