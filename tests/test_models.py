"""Tests for sysgopher data models."""

from dataclasses import FrozenInstanceError
from datetime import datetime

import pytest

from sysgopher.models import (
    UNKNOWN,
    CPUInfo,
    DiskRow,
    GPUInfo,
    MemoryInfo,
    OSInfo,
    ProcessRow,
    Snapshot,
    dedupe_processes,
    top_by_memory,
)


def test_process_row_creation():
    """Test ProcessRow dataclass creation."""
    row = ProcessRow(
        pid=123,
        name="test_process",
        username="testuser",
        cpu_percent=50.0,
        memory_bytes=1024000,
        threads=4,
        state="R",
        start_time="2024-01-02 03:04:05",
    )

    assert row.pid == 123
    assert row.name == "test_process"
    assert row.username == "testuser"
    assert row.cpu_percent == 50.0
    assert row.memory_bytes == 1024000
    assert row.threads == 4
    assert row.state == "R"
    assert row.identity == 123


def test_process_row_is_frozen():
    """Test that ProcessRow is immutable (frozen)."""
    row = ProcessRow(pid=1, name="init")

    with pytest.raises(FrozenInstanceError):
        row.pid = 999


def test_process_row_uses_slots():
    """Slots-based dataclasses don't have __dict__."""
    assert not hasattr(ProcessRow(pid=1, name="init"), "__dict__")


def test_defaults_make_a_valid_snapshot():
    """Every section has defaults so a partial sample is still a Snapshot."""
    snapshot = Snapshot(taken_at=datetime(2024, 1, 1))

    assert snapshot.os == OSInfo()
    assert snapshot.os.hostname == UNKNOWN
    assert snapshot.cpu.cores == 1
    assert snapshot.memory.total == 0
    assert snapshot.gpu.model == ""
    assert snapshot.gpu.notes == {}
    assert snapshot.disks == ()
    assert snapshot.processes == ()


class TestMemoryInfo:
    """Tests for MemoryInfo."""

    def test_usage_percent(self):
        info = MemoryInfo(total=8 * 1024**3, used=6 * 1024**3)
        assert info.usage_percent == 75.0

    def test_usage_percent_with_unknown_total(self):
        assert MemoryInfo().usage_percent == 0.0


class TestGPUInfo:
    """Tests for GPUInfo."""

    def test_notes_explain_missing_fields(self):
        info = GPUInfo(notes={"model": "No dedicated GPU detected"})
        assert info.model == ""
        assert info.notes["model"] == "No dedicated GPU detected"

    def test_default_notes_are_read_only(self):
        with pytest.raises(TypeError):
            GPUInfo().notes["model"] = "x"


def test_disk_row_identity_is_device():
    row = DiskRow("/dev/sda1", percent=50, mount_point="/")
    assert row.identity == "/dev/sda1"


def test_cpu_info_defaults():
    info = CPUInfo()
    assert info.model == UNKNOWN
    assert info.threads == 1
    assert info.usage == 0.0


class TestProcessHelpers:
    """Tests for dedupe_processes and top_by_memory."""

    def test_dedupe_keeps_first_row_per_pid(self):
        rows = [
            ProcessRow(pid=1, name="a"),
            ProcessRow(pid=2, name="b"),
            ProcessRow(pid=1, name="c"),
        ]
        result = dedupe_processes(rows)
        assert [r.name for r in result] == ["a", "b"]

    def test_top_by_memory(self):
        rows = [ProcessRow(pid=i, name=f"p{i}", memory_bytes=i * 100) for i in range(1, 16)]
        top = top_by_memory(rows, 10)

        assert len(top) == 10
        assert top[0].pid == 15
        assert [r.memory_bytes for r in top] == sorted((r.memory_bytes for r in top), reverse=True)

    def test_top_by_memory_with_few_rows(self):
        rows = (ProcessRow(pid=1, name="a", memory_bytes=5),)
        assert top_by_memory(rows, 10) == [rows[0]]
