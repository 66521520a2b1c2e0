"""Tests for agentsync.codegen.emitter: write, skip and delete decisions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from agentsync.codegen.emitter import FileStatus, PendingFile, emit, unified_diff, write_atomic

if TYPE_CHECKING:
    from pathlib import Path


class TestEmit:
    def test_creates_new_file(self, tmp_path: Path) -> None:
        (result,) = emit(tmp_path, [PendingFile("a/b.ts", None, "x\n")])
        assert result.status is FileStatus.WRITTEN
        assert result.created
        assert (tmp_path / "a" / "b.ts").read_text(encoding="utf-8") == "x\n"

    def test_identical_content_not_rewritten(self, tmp_path: Path) -> None:
        target = tmp_path / "a.ts"
        target.write_text("same\n", encoding="utf-8")
        mtime = target.stat().st_mtime_ns
        (result,) = emit(tmp_path, [PendingFile("a.ts", "same\n", "same\n")])
        assert result.status is FileStatus.UNCHANGED
        assert target.stat().st_mtime_ns == mtime

    def test_dry_run_reports_diff(self, tmp_path: Path) -> None:
        target = tmp_path / "a.ts"
        target.write_text("old\n", encoding="utf-8")
        (result,) = emit(tmp_path, [PendingFile("a.ts", "old\n", "new\n")], dry_run=True)
        assert result.status is FileStatus.WOULD_WRITE
        assert "-old" in result.diff
        assert "+new" in result.diff
        assert target.read_text(encoding="utf-8") == "old\n"

    def test_delete(self, tmp_path: Path) -> None:
        target = tmp_path / "gone.md"
        target.write_text("bye\n", encoding="utf-8")
        (result,) = emit(tmp_path, [PendingFile("gone.md", "bye\n", None)])
        assert result.status is FileStatus.DELETED
        assert not target.exists()

    def test_dry_run_delete_keeps_file(self, tmp_path: Path) -> None:
        target = tmp_path / "gone.md"
        target.write_text("bye\n", encoding="utf-8")
        (result,) = emit(tmp_path, [PendingFile("gone.md", "bye\n", None)], dry_run=True)
        assert result.status is FileStatus.WOULD_DELETE
        assert target.exists()

    def test_delete_of_missing_file_ignored(self, tmp_path: Path) -> None:
        assert emit(tmp_path, [PendingFile("never.ts", None, None)]) == []

    def test_results_sorted_by_path(self, tmp_path: Path) -> None:
        results = emit(
            tmp_path, [PendingFile("b.ts", None, "b\n"), PendingFile("a.ts", None, "a\n")]
        )
        assert [r.path for r in results] == ["a.ts", "b.ts"]


class TestHelpers:
    def test_new_file_diff_header(self) -> None:
        diff = unified_diff("x.ts", None, "line\n")
        assert diff.startswith("--- /dev/null\n+++ b/x.ts\n")

    def test_write_atomic_leaves_no_temp_files(self, tmp_path: Path) -> None:
        target = tmp_path / "deep" / "file.ts"
        write_atomic(target, "content\n")
        write_atomic(target, "content 2\n")
        assert target.read_text(encoding="utf-8") == "content 2\n"
        assert [p.name for p in target.parent.iterdir()] == ["file.ts"]
