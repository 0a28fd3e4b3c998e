"""Shared test fixtures for process-scout."""

from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import psutil
import pytest
from prometheus_client.parser import text_string_to_metric_families

from process_scout.config import Config, LabelsConfig

MB = 1024 * 1024
GB = 1024 * MB


def make_proc(
    pid: int = 100,
    name: str = "python3",
    cmdline: list[str] | None = None,
    cwd: str = "/srv/app",
    username: str = "app",
    rss: int = 64 * MB,
    cpu: float = 12.5,
    name_error: Exception | None = None,
    cmdline_error: Exception | None = None,
    cwd_error: Exception | None = None,
    username_error: Exception | None = None,
    memory_error: Exception | None = None,
    cpu_error: Exception | None = None,
) -> MagicMock:
    """Create a fake psutil.Process.

    Each ``*_error`` makes the corresponding accessor raise instead.
    """
    proc = MagicMock(spec=psutil.Process)
    proc.pid = pid
    proc.name.return_value = name
    proc.name.side_effect = name_error
    proc.cmdline.return_value = cmdline if cmdline is not None else [name]
    proc.cmdline.side_effect = cmdline_error
    proc.cwd.return_value = cwd
    proc.cwd.side_effect = cwd_error
    proc.username.return_value = username
    proc.username.side_effect = username_error
    proc.memory_info.return_value = SimpleNamespace(rss=rss, vms=rss * 2)
    proc.memory_info.side_effect = memory_error
    proc.cpu_percent.return_value = cpu
    proc.cpu_percent.side_effect = cpu_error
    return proc


def write_cgroup(proc_root: Path, pid: int, content: str) -> None:
    """Write a fake /proc/<pid>/cgroup file."""
    pid_dir = proc_root / str(pid)
    pid_dir.mkdir(parents=True, exist_ok=True)
    (pid_dir / "cgroup").write_text(content)


def parse_metrics(body: bytes) -> dict[str, list]:
    """Parse exposition text into {metric name: [samples]}."""
    return {
        family.name: list(family.samples)
        for family in text_string_to_metric_families(body.decode())
    }


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    """Empty fake /proc tree."""
    root = tmp_path / "proc"
    root.mkdir()
    return root


@pytest.fixture
def make_config(proc_root: Path):
    """Factory for configs reading cgroups from the fake /proc tree."""

    def factory(include_types: list[str] | None = None, **labels: bool) -> Config:
        return Config(
            include_types=include_types if include_types is not None else ["java", "python"],
            labels=LabelsConfig(**labels),
            proc_root=proc_root,
        )

    return factory


@pytest.fixture
def host_stats() -> Iterator[dict[str, MagicMock]]:
    """Patch host-wide psutil probes: 16GB total, 8GB available, 8 cores at 25% busy."""
    with (
        patch(
            "psutil.virtual_memory",
            return_value=SimpleNamespace(total=16 * GB, available=8 * GB),
        ) as virtual_memory,
        patch("psutil.cpu_count", return_value=8) as cpu_count,
        patch("psutil.cpu_percent", return_value=25.0) as cpu_percent,
    ):
        yield {
            "virtual_memory": virtual_memory,
            "cpu_count": cpu_count,
            "cpu_percent": cpu_percent,
        }
