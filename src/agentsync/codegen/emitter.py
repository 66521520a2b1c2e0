"""Emitter: compare merged content with disk and write only what changed."""

from __future__ import annotations

import difflib
import logging
import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from agentsync.errors import FatalSyncError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class FileStatus(str, Enum):
    WRITTEN = "written"
    UNCHANGED = "unchanged"
    WOULD_WRITE = "would-write"
    DELETED = "deleted"
    WOULD_DELETE = "would-delete"


@dataclass
class FileResult:
    """What happened (or would happen) to one target file."""

    path: str
    status: FileStatus
    created: bool = False
    diff: str = ""


@dataclass
class PendingFile:
    """Merged content for one file; ``content=None`` requests deletion."""

    path: str
    original: str | None
    content: str | None


def unified_diff(path: str, before: str | None, after: str | None) -> str:
    lines = difflib.unified_diff(
        (before or "").splitlines(keepends=True),
        (after or "").splitlines(keepends=True),
        fromfile=f"a/{path}" if before is not None else "/dev/null",
        tofile=f"b/{path}" if after is not None else "/dev/null",
    )
    return "".join(lines)


def write_atomic(target: Path, content: str) -> None:
    """Write *content* to *target* through a temp file in the same directory."""
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(content)
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as exc:
        raise FatalSyncError(f"Cannot write {target}: {exc}") from exc


def emit(root: Path, pending: list[PendingFile], *, dry_run: bool = False) -> list[FileResult]:
    """Apply *pending* changes under *root*.

    Content identical to what is on disk is never rewritten, which is what
    makes a repeated run produce zero writes.
    """
    results: list[FileResult] = []
    for item in sorted(pending, key=lambda p: p.path):
        target = root / item.path
        created = item.original is None
        if item.content is None:
            if item.original is None:
                continue
            diff = unified_diff(item.path, item.original, None)
            if dry_run:
                results.append(FileResult(item.path, FileStatus.WOULD_DELETE, diff=diff))
                continue
            try:
                target.unlink()
            except OSError as exc:
                raise FatalSyncError(f"Cannot delete {target}: {exc}") from exc
            logger.info("Deleted %s", item.path)
            results.append(FileResult(item.path, FileStatus.DELETED, diff=diff))
            continue

        if item.content == item.original:
            results.append(FileResult(item.path, FileStatus.UNCHANGED))
            continue
        diff = unified_diff(item.path, item.original, item.content)
        if dry_run:
            results.append(FileResult(item.path, FileStatus.WOULD_WRITE, created, diff))
            continue
        write_atomic(target, item.content)
        logger.info("%s %s", "Created" if created else "Updated", item.path)
        results.append(FileResult(item.path, FileStatus.WRITTEN, created, diff))
    return results
