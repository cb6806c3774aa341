from __future__ import annotations

from pathlib import Path

import pytest

from harness_kernel.observability import EventLog
from harness_kernel.runtime import WorkspaceError, WorkspaceLayout, WorkspacePreparer, resolve_scratch_root


def _layout(root: Path) -> WorkspaceLayout:
    return WorkspaceLayout(root=root, buckets=("aptrust.staging", "aptrust.receiving.test.edu"))


def _tree(root: Path) -> set[str]:
    return {str(path.relative_to(root)) for path in root.rglob("*")}


def test_prepare_creates_directories_and_buckets(tmp_path: Path) -> None:
    # Every bucket gets its own directory under the object store root.
    root = tmp_path / "tmp"
    WorkspacePreparer(_layout(root)).prepare()
    for name in ("bin", "logs", "minio", "nsq", "redis", "restore"):
        assert (root / name).is_dir()
    assert (root / "minio" / "aptrust.staging").is_dir()
    assert (root / "minio" / "aptrust.receiving.test.edu").is_dir()


def test_prepare_is_idempotent(tmp_path: Path) -> None:
    # Preparing twice leaves the same tree.
    root = tmp_path / "tmp"
    preparer = WorkspacePreparer(_layout(root))
    preparer.prepare()
    first = _tree(root)
    preparer.prepare()
    assert _tree(root) == first


def test_prepare_wipes_previous_contents(tmp_path: Path) -> None:
    # Leftovers from earlier runs are removed.
    root = tmp_path / "tmp"
    (root / "redis").mkdir(parents=True)
    (root / "redis" / "dump.rdb").write_text("stale", encoding="utf-8")
    (root / "leftover").mkdir()
    WorkspacePreparer(_layout(root)).prepare()
    assert not (root / "redis" / "dump.rdb").exists()
    assert not (root / "leftover").exists()


def test_guard_refuses_unexpected_root(tmp_path: Path) -> None:
    # The recursive delete only ever targets a directory named like the scratch root.
    root = tmp_path / "precious"
    root.mkdir()
    (root / "keep.txt").write_text("data", encoding="utf-8")
    events = EventLog()
    with pytest.raises(WorkspaceError, match="tmp"):
        WorkspacePreparer(_layout(root), events=events).prepare()
    assert (root / "keep.txt").exists()
    assert events.events("workspace_guard_refused")


def test_guard_applies_to_symlink_target(tmp_path: Path) -> None:
    # The guard checks where a symlinked root really points.
    target = tmp_path / "important"
    target.mkdir()
    link = tmp_path / "tmp"
    link.symlink_to(target, target_is_directory=True)
    with pytest.raises(WorkspaceError):
        WorkspacePreparer(_layout(link)).prepare()
    assert target.exists()


def test_resolve_scratch_root_uses_home() -> None:
    # The scratch root hangs off HOME; its name is configurable.
    assert resolve_scratch_root({"HOME": "/home/dev"}) == Path("/home/dev/tmp")
    assert resolve_scratch_root({"HOME": "/home/dev"}, "scratch") == Path("/home/dev/scratch")
