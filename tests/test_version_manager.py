"""Tests for the version manager: save, commit, history, restore, diff, gc."""

import json
import stat
import sys
from pathlib import Path

import pytest

from easypaper.errors import (
    CommitNotFoundError,
    CorruptHistoryError,
    HashMismatchError,
    NotInitializedError,
    StoreIOError,
)
from easypaper.versioning.log import CommitLog
from easypaper.versioning.manager import VersionManager
from easypaper.versioning.models import CommitKind
from easypaper.versioning.store import digest_bytes


class TestInit:
    def test_creates_layout(self, project_dir: Path):
        vm = VersionManager(project_dir)
        state = vm.init()
        control = project_dir / ".control"
        assert (control / "commits").is_dir()
        assert (control / "snapshots").is_dir()
        data = json.loads((control / "config.json").read_text())
        assert data["version"] == 1
        assert data["lastCommit"] is None
        assert state.current_commit is None

    def test_init_is_idempotent(self, manager: VersionManager, project_dir: Path):
        commit_id = manager.save("main.tex", "v1")
        state = VersionManager(project_dir).init()
        assert state.current_commit == commit_id
        assert len(VersionManager(project_dir).history()) == 1

    def test_operations_require_init(self, project_dir: Path):
        vm = VersionManager(project_dir)
        with pytest.raises(NotInitializedError):
            vm.save("main.tex", "x")
        with pytest.raises(NotInitializedError):
            vm.history()
        assert not (project_dir / ".control").exists()

    def test_auto_init(self, project_dir: Path):
        vm = VersionManager(project_dir, auto_init=True)
        vm.save("main.tex", "x")
        assert vm.is_initialized

    def test_reinit_without_readable_state_raises(self, manager: VersionManager, monkeypatch):
        monkeypatch.setattr(CommitLog, "state", property(lambda self: None))
        with pytest.raises(StoreIOError):
            manager.init()


class TestSave:
    def test_save_records_one_file(self, manager: VersionManager):
        commit_id = manager.save("main.tex", "\\documentclass{article}")
        commit = manager.log.get(commit_id)
        assert commit.kind is CommitKind.SAVE
        assert [ref.path for ref in commit.files] == ["main.tex"]
        assert commit.files[0].hash == digest_bytes(b"\\documentclass{article}")

    def test_save_does_not_write_working_file(self, manager: VersionManager, project_dir: Path):
        before = (project_dir / "main.tex").read_text()
        manager.save("main.tex", "something else")
        assert (project_dir / "main.tex").read_text() == before

    def test_absolute_path_normalised(self, manager: VersionManager, project_dir: Path):
        commit_id = manager.save(project_dir / "sections" / "intro.tex", "x")
        assert manager.log.get(commit_id).files[0].path == "sections/intro.tex"

    def test_identical_saves_share_blob(self, manager: VersionManager):
        manager.save("main.tex", "same")
        manager.save("main.tex", "same")
        assert len(manager.history()) == 2
        assert len(list(manager.store.iter_blobs())) == 1

    @pytest.mark.parametrize("bad", ["../outside.tex", ".control/config.json", "."])
    def test_rejects_paths_outside_project(self, manager: VersionManager, bad: str):
        with pytest.raises(ValueError):
            manager.save(bad, "x")


class TestCommit:
    def test_first_commit_records_all_tracked_files(self, manager: VersionManager):
        commit_id = manager.commit("Build succeeded", True)
        commit = manager.log.get(commit_id)
        assert commit.kind is CommitKind.COMPILE
        assert commit.build_success is True
        assert sorted(ref.path for ref in commit.files) == [
            "main.tex", "refs.bib", "sections/intro.tex",
        ]

    def test_only_changed_files_recorded(self, manager: VersionManager, project_dir: Path):
        manager.commit()
        (project_dir / "refs.bib").write_text("@misc{new}\n")
        commit_id = manager.commit()
        assert [ref.path for ref in manager.log.get(commit_id).files] == ["refs.bib"]

    def test_unchanged_tree_still_commits(self, manager: VersionManager):
        manager.commit("first", True)
        commit_id = manager.commit("second", False)
        commit = manager.log.get(commit_id)
        assert commit.files == ()
        assert commit.build_success is False
        assert manager.history().head == commit_id

    def test_saved_file_not_recommitted(self, manager: VersionManager, project_dir: Path):
        content = (project_dir / "main.tex").read_bytes()
        manager.save("main.tex", content)
        commit_id = manager.commit()
        assert "main.tex" not in [ref.path for ref in manager.log.get(commit_id).files]

    def test_untracked_and_excluded_files_ignored(self, manager: VersionManager, project_dir: Path):
        (project_dir / "notes.txt").write_text("scratch")
        (project_dir / "out").mkdir()
        (project_dir / "out" / "main.tex").write_text("copied")
        commit_id = manager.commit()
        paths = [ref.path for ref in manager.log.get(commit_id).files]
        assert "notes.txt" not in paths
        assert "out/main.tex" not in paths

    def test_saved_path_stays_tracked(self, manager: VersionManager, project_dir: Path):
        (project_dir / "figure.tikz").write_text("v1")
        manager.save("figure.tikz", "v1")
        (project_dir / "figure.tikz").write_text("v2")
        commit_id = manager.commit()
        assert "figure.tikz" in [ref.path for ref in manager.log.get(commit_id).files]

    def test_explicit_tracked_paths(self, manager: VersionManager):
        commit_id = manager.commit(tracked_paths=["main.tex"])
        assert [ref.path for ref in manager.log.get(commit_id).files] == ["main.tex"]

    def test_set_tracking_changes_discovery(self, manager: VersionManager, project_dir: Path):
        (project_dir / "out").mkdir()
        (project_dir / "out" / "main.bib").write_text("generated")
        manager.set_tracking(["*.bib"], exclude_dirs=["sections"])
        assert manager.discover_tracked_paths() == ["out/main.bib", "refs.bib"]


class TestHistory:
    def test_monotonic_and_head_is_last(self, manager: VersionManager):
        ids = [manager.save("main.tex", f"v{i}") for i in range(5)]
        ids.append(manager.commit("done", True))
        view = manager.history()
        assert [c.id for c in view.commits] == ids
        stamps = [c.timestamp for c in view.commits]
        assert stamps == sorted(stamps)
        assert view.head == ids[-1]

    def test_history_survives_reopen(self, manager: VersionManager, project_dir: Path):
        ids = [manager.save("main.tex", f"v{i}") for i in range(3)]
        view = VersionManager(project_dir).history()
        assert [c.id for c in view.commits] == ids
        assert view.head == ids[-1]

    def test_corrupted_record_counted(self, manager: VersionManager, project_dir: Path):
        manager.save("main.tex", "v1")
        (project_dir / ".control" / "commits" / "junk.json").write_text("garbage")
        view = VersionManager(project_dir).history()
        assert len(view) == 1
        assert view.corrupted == 1

    def test_resolve_prefix(self, manager: VersionManager):
        commit_id = manager.save("main.tex", "v1")
        assert manager.resolve_commit(commit_id[:10]) == commit_id
        with pytest.raises(CommitNotFoundError):
            manager.resolve_commit("zzzz")

    def test_record_escaping_project_counted_as_corrupted(
        self, manager: VersionManager, project_dir: Path, tmp_path: Path
    ):
        first = manager.save("main.tex", "v1")
        (tmp_path / "outside.txt").write_text("secret")
        record = manager.log.get(first).to_dict()
        record.update(id="f" * 32, seq=1)
        record["files"] = [{"path": "../outside.txt", "hash": digest_bytes(b"secret")}]
        (project_dir / ".control" / "commits" / f"{'f' * 32}.json").write_text(json.dumps(record))

        reopened = VersionManager(project_dir)
        view = reopened.history()
        assert [c.id for c in view.commits] == [first]
        assert view.corrupted == 1
        assert "../outside.txt" not in reopened.discover_tracked_paths()
        committed = reopened.log.get(reopened.commit())
        assert all(not ref.path.startswith("..") for ref in committed.files)


class TestRestore:
    def test_restores_exact_bytes(self, manager: VersionManager, project_dir: Path):
        main = project_dir / "main.tex"
        first = manager.commit()
        original = main.read_bytes()
        main.write_text("broken edit")
        manager.commit()

        restored = manager.restore(first)
        assert "main.tex" in restored
        assert main.read_bytes() == original

    def test_restore_uses_latest_entry_before_commit(self, manager: VersionManager, project_dir: Path):
        manager.save("main.tex", "v1")
        second = manager.save("main.tex", "v2")
        manager.save("main.tex", "v3")
        manager.restore(second)
        assert (project_dir / "main.tex").read_text() == "v2"

    def test_restore_recreates_deleted_file(self, manager: VersionManager, project_dir: Path):
        first = manager.commit()
        (project_dir / "sections" / "intro.tex").unlink()
        (project_dir / "sections").rmdir()
        manager.restore(first)
        assert (project_dir / "sections" / "intro.tex").read_text() == "\\section{Intro}\n"

    def test_restore_leaves_untracked_alone(self, manager: VersionManager, project_dir: Path):
        first = manager.commit()
        (project_dir / "new.tex").write_text("added later")
        manager.restore(first)
        assert (project_dir / "new.tex").read_text() == "added later"

    def test_restore_does_not_move_head(self, manager: VersionManager):
        first = manager.save("main.tex", "v1")
        last = manager.save("main.tex", "v2")
        manager.restore(first)
        assert manager.history().head == last

    def test_unknown_commit(self, manager: VersionManager):
        with pytest.raises(CommitNotFoundError):
            manager.restore("deadbeef")

    def test_tampered_blob_aborts_restore(self, manager: VersionManager, project_dir: Path):
        commit_id = manager.save("main.tex", "v1")
        digest = manager.log.get(commit_id).files[0].hash
        (manager.store.root / digest[:2] / digest[2:]).write_bytes(b"evil")
        before = (project_dir / "main.tex").read_bytes()
        with pytest.raises(HashMismatchError):
            manager.restore(commit_id)
        assert (project_dir / "main.tex").read_bytes() == before

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permission bits")
    def test_restore_keeps_file_mode(self, manager: VersionManager, project_dir: Path):
        main = project_dir / "main.tex"
        main.chmod(0o644)
        first = manager.save("main.tex", "A")
        main.write_text("edited")
        main.chmod(0o640)
        manager.restore(first)
        assert main.read_text() == "A"
        assert stat.S_IMODE(main.stat().st_mode) == 0o640

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permission bits")
    def test_restore_new_file_is_readable(self, manager: VersionManager, project_dir: Path):
        first = manager.commit()
        (project_dir / "refs.bib").unlink()
        manager.restore(first)
        assert stat.S_IMODE((project_dir / "refs.bib").stat().st_mode) == 0o644

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need privileges")
    def test_restore_writes_through_symlink(self, manager: VersionManager, project_dir: Path):
        real = project_dir / "sections" / "intro.tex"
        link = project_dir / "intro-link.tex"
        link.symlink_to(real)
        first = manager.save("intro-link.tex", "linked v1")
        real.write_text("changed")
        manager.restore(first)
        assert link.is_symlink()
        assert real.read_text() == "linked v1"

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need privileges")
    def test_symlink_leaving_project_aborts_before_writing(
        self, manager: VersionManager, project_dir: Path, tmp_path: Path
    ):
        manager.save("a.tex", "a v1")
        commit_id = manager.save("z.tex", "z v1")
        (project_dir / "a.tex").write_text("a edited")
        outside = tmp_path / "outside.tex"
        outside.write_text("not ours")
        (project_dir / "z.tex").symlink_to(outside)

        with pytest.raises(ValueError):
            manager.restore(commit_id)
        assert (project_dir / "a.tex").read_text() == "a edited"
        assert outside.read_text() == "not ours"


class TestDiff:
    def test_no_changes(self, manager: VersionManager):
        commit_id = manager.commit()
        assert manager.diff(commit_id) == f"No changes since {commit_id}\n"

    def test_modified_added_removed(self, manager: VersionManager, project_dir: Path):
        commit_id = manager.commit()
        (project_dir / "main.tex").write_text(
            "\\documentclass{article}\n\\begin{document}\nGoodbye.\n\\end{document}\n"
        )
        (project_dir / "appendix.tex").write_text("\\appendix\n")
        (project_dir / "refs.bib").unlink()

        delta = manager.compare(commit_id)
        assert [d.path for d in delta.modified] == ["main.tex"]
        assert delta.added == ["appendix.tex"]
        assert delta.removed == ["refs.bib"]

        text = manager.diff(commit_id)
        assert "-Hello." in text
        assert "+Goodbye." in text
        assert "Added:\n  appendix.tex" in text
        assert "Removed:\n  refs.bib" in text

    def test_binary_content(self, manager: VersionManager, project_dir: Path):
        commit_id = manager.save("main.tex", b"\x00\x01")
        text = manager.diff(commit_id)
        assert "Binary files" in text


class TestGarbageCollection:
    def test_keeps_referenced_blobs(self, manager: VersionManager):
        commit_id = manager.save("main.tex", "v1")
        report = manager.collect_garbage()
        assert report.deleted == ()
        assert manager.restore(commit_id) == ["main.tex"]

    def test_removes_orphans(self, manager: VersionManager):
        manager.save("main.tex", "v1")
        orphan = manager.store.put(b"orphan")
        report = manager.collect_garbage()
        assert report.deleted == (orphan,)
        assert report.remaining == 1
        assert not manager.store.exists(orphan)

    def test_dry_run_keeps_orphans(self, manager: VersionManager):
        orphan = manager.store.put(b"orphan")
        report = manager.collect_garbage(dry_run=True)
        assert report.deleted == (orphan,)
        assert report.dry_run is True
        assert manager.store.exists(orphan)

    def test_refuses_with_corrupted_records(self, manager: VersionManager, project_dir: Path):
        manager.save("main.tex", "v1")
        (project_dir / ".control" / "commits" / "junk.json").write_text("garbage")
        vm = VersionManager(project_dir)
        with pytest.raises(CorruptHistoryError):
            vm.collect_garbage()
        assert vm.collect_garbage(force=True).deleted == ()
