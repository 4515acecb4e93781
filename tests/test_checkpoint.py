"""Tests for the checkpoint store and atomic writes."""

import json
import os

import pytest

from agentic_build_loop.checkpoint import CheckpointStore
from agentic_build_loop.loop_state import LoopState, Phase
from agentic_build_loop.storage import atomic_write_text


@pytest.fixture
def store(tmp_path) -> CheckpointStore:
    return CheckpointStore(tmp_path / "loop_state.json")


class TestRoundTrip:
    def test_save_then_load(self, store):
        store.save(LoopState(Phase.WAITING_FOR_BUILD, 4))

        loaded = store.load()

        assert loaded.phase == Phase.WAITING_FOR_BUILD
        assert loaded.iteration == 4
        assert loaded.updated_at_ms > 0

    def test_overwrite_replaces_record(self, store):
        store.save(LoopState(Phase.WAITING_FOR_BUILD, 4))
        store.save(LoopState(Phase.CHECKING_FRESHNESS, 5))

        assert store.load().phase == Phase.CHECKING_FRESHNESS

    def test_record_format(self, store):
        """The record is a small JSON object keyed by phase name."""
        store.save(LoopState(Phase.SUBMITTING_PROMPT, 2))
        data = json.loads(store.path.read_text())
        assert data["phase"] == "SUBMITTING_PROMPT"
        assert data["iteration"] == 2
        assert "updatedAtMs" in data

    def test_clear(self, store):
        store.save(LoopState(Phase.WAITING_FOR_BUILD, 1))
        store.clear()
        assert store.load() is None

    def test_clear_when_missing(self, store):
        store.clear()
        assert store.load() is None


class TestCorruptRecords:
    """Anything unusable is treated as no checkpoint."""

    @pytest.mark.parametrize("content", [
        "",
        "{not json",
        "[]",
        '{"iteration": 1}',
        '{"phase": "LAUNCHING_ROCKETS", "iteration": 1}',
        '{"phase": "WAITING_FOR_BUILD", "iteration": -1}',
        '{"phase": "WAITING_FOR_BUILD", "iteration": "3"}',
        '{"phase": "WAITING_FOR_BUILD", "iteration": true}',
    ])
    def test_corrupt_is_absent(self, store, content):
        store.path.write_text(content)
        assert store.load() is None

    def test_undecodable_bytes(self, store):
        store.path.write_bytes(b"\xff\xfe\x00garbage")
        assert store.load() is None


class TestAtomicWrite:
    def test_no_temp_files_left(self, tmp_path):
        target = tmp_path / "state.json"
        atomic_write_text(target, "one")
        atomic_write_text(target, "two")

        assert target.read_text() == "two"
        assert os.listdir(tmp_path) == ["state.json"]

    def test_failed_write_keeps_previous_content(self, tmp_path, monkeypatch):
        """A crash before the rename leaves the old file intact and no temp file."""
        target = tmp_path / "state.json"
        atomic_write_text(target, "first version")

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", broken_replace)
        with pytest.raises(OSError):
            atomic_write_text(target, "partial")

        assert target.read_text() == "first version"
        assert os.listdir(tmp_path) == ["state.json"]

    def test_creates_parent_directories(self, tmp_path):
        target = tmp_path / "a" / "b" / "state.json"
        atomic_write_text(target, "x")
        assert target.read_text() == "x"
