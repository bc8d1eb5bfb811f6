"""Tests for workspace staging and result synchronization."""

from jobworker.engine.sync import sync_results
from jobworker.engine.workspace import prepare_workspace, remove_workspace, stage_sources


def test_sync_copies_missing_entries(tmp_path):
    workspace = tmp_path / "ws"
    results = tmp_path / "results"
    (workspace / "out" / "deep").mkdir(parents=True)
    (workspace / "a.txt").write_bytes(b"\x00\x01binary")
    (workspace / "out" / "deep" / "b.txt").write_text("b")
    results.mkdir()

    copied = sync_results(workspace, results)

    assert (results / "a.txt").read_bytes() == b"\x00\x01binary"
    assert (results / "out" / "deep" / "b.txt").read_text() == "b"
    assert sorted(copied) == ["a.txt", "out"]


def test_sync_merges_directories_without_overwriting(tmp_path):
    workspace = tmp_path / "ws"
    results = tmp_path / "results"
    (workspace / "out").mkdir(parents=True)
    (workspace / "out" / "keep.txt").write_text("new")
    (workspace / "out" / "added.txt").write_text("added")
    (results / "out").mkdir(parents=True)
    (results / "out" / "keep.txt").write_text("old")

    copied = sync_results(workspace, results)

    assert (results / "out" / "keep.txt").read_text() == "old"
    assert (results / "out" / "added.txt").read_text() == "added"
    assert copied == ["out/added.txt"]


def test_sync_file_does_not_replace_directory(tmp_path):
    workspace = tmp_path / "ws"
    results = tmp_path / "results"
    workspace.mkdir()
    (workspace / "thing").write_text("file")
    (results / "thing").mkdir(parents=True)

    assert sync_results(workspace, results) == []
    assert (results / "thing").is_dir()


def test_stage_skips_results(tmp_path):
    source = tmp_path / "src"
    (source / "results").mkdir(parents=True)
    (source / "results" / "result.json").write_text("{}")
    (source / "input.txt").write_text("in")
    workspace = prepare_workspace(tmp_path / "ws")

    assert stage_sources(source, workspace) == 1
    assert (workspace / "input.txt").read_text() == "in"
    assert not (workspace / "results").exists()


def test_prepare_workspace_discards_previous(tmp_path):
    workspace = tmp_path / "ws"
    workspace.mkdir()
    (workspace / "stale").write_text("x")

    prepare_workspace(workspace)

    assert workspace.is_dir()
    assert list(workspace.iterdir()) == []


def test_remove_missing_workspace_is_noop(tmp_path):
    remove_workspace(tmp_path / "absent")
