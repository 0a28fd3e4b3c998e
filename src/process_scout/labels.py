"""Per-process label values for the process gauges."""

import os

import psutil

from process_scout.classifier import ProcessType, process_name
from process_scout.config import LabelsConfig

UNKNOWN_CWD = "(unknown)"

# Command-line flag carrying a human-assigned service id, e.g.
# ``java -D.system.id=worker-7 -jar app.jar``
SYSTEM_ID_FLAG = "-D.system.id="

# Only these runtimes are launched with SYSTEM_ID_FLAG
_SYSTEM_ID_TYPES = frozenset({ProcessType.JAVA, ProcessType.PYTHON})


def working_directory(proc: psutil.Process) -> str:
    """Absolute working directory of the process, or UNKNOWN_CWD."""
    try:
        cwd = proc.cwd()
    except (psutil.Error, OSError):
        return UNKNOWN_CWD
    if not cwd:
        return UNKNOWN_CWD
    return os.path.abspath(cwd)


def display_name(proc: psutil.Process, process_type: ProcessType) -> str:
    """Name shown in the process_name label.

    Java and Python processes can carry ``-D.system.id=<value>``; when
    present the value is used instead of the executable name.
    """
    if process_type in _SYSTEM_ID_TYPES:
        try:
            cmdline = proc.cmdline()
        except (psutil.Error, OSError):
            cmdline = []
        for arg in cmdline:
            if arg.startswith(SYSTEM_ID_FLAG):
                return arg.split("=", 1)[1]
    return process_name(proc)


def username(proc: psutil.Process) -> str:
    """Owning user name, or "" if it can't be resolved."""
    try:
        return proc.username()
    except (psutil.Error, KeyError, OSError):
        return ""


class LabelExtractor:
    """Builds label value tuples matching the registered label names."""

    def __init__(self, labels: LabelsConfig):
        self.names = labels.names

    def values(self, proc: psutil.Process, process_type: ProcessType) -> tuple[str, ...]:
        """Return label values for *proc* in the same order as ``names``."""
        values: list[str] = []
        for name in self.names:
            if name == "cwd":
                values.append(working_directory(proc))
            elif name == "process_name":
                values.append(display_name(proc, process_type))
            elif name == "type":
                values.append(process_type.value)
            elif name == "user":
                values.append(username(proc))
        return tuple(values)
