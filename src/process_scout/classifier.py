"""Heuristic process classification by runtime type."""

from enum import Enum
from pathlib import Path

import psutil


class ProcessType(str, Enum):
    """Category a process is exported under."""

    JAVA = "java"
    PYTHON = "python"
    NODE = "node"
    DOCKER = "docker"
    DOCKER_APP = "docker_app"  # Detected via cgroup, not by name
    SYSTEM = "system"


# Checked in order, first match wins
NAME_PATTERNS: tuple[tuple[tuple[str, ...], ProcessType], ...] = (
    (("java",), ProcessType.JAVA),
    (("python",), ProcessType.PYTHON),
    (("node",), ProcessType.NODE),
    (("docker", "containerd"), ProcessType.DOCKER),
)


def process_name(proc: psutil.Process) -> str:
    """Return the reported process name, or "" if it can't be read."""
    try:
        return proc.name() or ""
    except psutil.Error:
        return ""


def in_docker_cgroup(pid: int, proc_root: Path = Path("/proc")) -> bool:
    """Return True if the process's cgroup file mentions docker.

    An unreadable cgroup file (process gone, no permission, not Linux)
    counts as no evidence.
    """
    try:
        data = (proc_root / str(pid) / "cgroup").read_text(errors="replace")
    except OSError:
        return False
    return "docker" in data


def classify(proc: psutil.Process, proc_root: Path = Path("/proc")) -> ProcessType:
    """Map a process to exactly one ProcessType.

    Name substrings are checked first (case-insensitive), then the cgroup
    file, and everything else is SYSTEM. This is a heuristic: a process
    named "nodejs-helper" is NODE, a Java app whose binary was renamed is
    SYSTEM. Errors never propagate; they only remove evidence.
    """
    name = process_name(proc).lower()
    for patterns, ptype in NAME_PATTERNS:
        if any(p in name for p in patterns):
            return ptype

    if in_docker_cgroup(proc.pid, proc_root):
        return ProcessType.DOCKER_APP

    return ProcessType.SYSTEM
