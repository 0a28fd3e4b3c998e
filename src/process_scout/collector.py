"""Process and host sampling for the /metrics endpoint.

Each scrape runs one full pass: host memory/CPU probes, then every process
is classified, filtered by ``include_types``, labelled and measured. The pass
produces fresh metric families, so nothing from a previous scrape can leak
into the next one and concurrent scrapes never share partial state.
"""

import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass, field

import psutil
import structlog
from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily, Metric

from process_scout.classifier import ProcessType, classify
from process_scout.config import Config
from process_scout.labels import LabelExtractor

log = structlog.get_logger()

MB = 1024 * 1024

PROCESS_MEMORY = ("process_memory_mb", "Memory usage in MB")
PROCESS_CPU = ("process_cpu_percent", "CPU usage percent")
SERVER_TOTAL_MEMORY = ("server_total_memory_mb", "Total server memory in MB")
SERVER_AVAILABLE_MEMORY = (
    "server_available_memory_mb",
    "Available (free + cached) memory in MB",
)
SERVER_TOTAL_CPU = ("server_total_cpu_cores", "Total number of logical CPU cores")
SERVER_AVAILABLE_CPU = (
    "server_available_cpu_cores",
    "Estimated number of free CPU cores (based on idle %)",
)

_HOST_GAUGES = {
    "total_memory_mb": SERVER_TOTAL_MEMORY,
    "available_memory_mb": SERVER_AVAILABLE_MEMORY,
    "total_cpu_cores": SERVER_TOTAL_CPU,
    "available_cpu_cores": SERVER_AVAILABLE_CPU,
}


@dataclass
class HostSample:
    """Host-wide readings. None means the probe failed on this pass."""

    total_memory_mb: float | None = None
    available_memory_mb: float | None = None
    total_cpu_cores: float | None = None
    available_cpu_cores: float | None = None


@dataclass
class ProcessSample:
    """One exported process."""

    pid: int
    process_type: ProcessType
    labels: tuple[str, ...]
    memory_mb: float
    cpu_percent: float


@dataclass
class ScrapeResult:
    """Outcome of one collection pass."""

    host: HostSample
    processes: list[ProcessSample] = field(default_factory=list)
    seen: int = 0  # Processes enumerated
    skipped: int = 0  # Included processes dropped (memory query failed or process gone)
    duration: float = 0.0  # Seconds

    def series(self) -> tuple[dict[tuple[str, ...], float], dict[tuple[str, ...], float]]:
        """Memory and CPU values keyed by label tuple.

        Processes sharing a label tuple collapse into one series; the last
        one in enumeration order wins.
        """
        memory: dict[tuple[str, ...], float] = {}
        cpu: dict[tuple[str, ...], float] = {}
        for sample in self.processes:
            memory[sample.labels] = sample.memory_mb
            cpu[sample.labels] = sample.cpu_percent
        return memory, cpu


def sample_host() -> HostSample:
    """Probe host memory and CPU. Each probe fails independently."""
    host = HostSample()

    try:
        vm = psutil.virtual_memory()
        host.total_memory_mb = vm.total / MB
        host.available_memory_mb = vm.available / MB
    except (psutil.Error, OSError) as e:
        log.warning("host_memory_failed", error=str(e))

    cores: int | None = None
    try:
        cores = psutil.cpu_count(logical=True)
    except (psutil.Error, OSError) as e:
        log.warning("host_cpu_count_failed", error=str(e))
    if cores:
        host.total_cpu_cores = float(cores)
    else:
        log.warning("host_cpu_count_unknown")

    # interval=None compares against the previous call: zero-duration, non-blocking
    try:
        busy = psutil.cpu_percent(interval=None)
    except (psutil.Error, OSError) as e:
        log.warning("host_cpu_percent_failed", error=str(e))
    else:
        if cores:
            host.available_cpu_cores = (100.0 - busy) / 100.0 * cores

    return host


class ProcessCollector:
    """Custom prometheus_client collector sampling the host on every collect().

    Registered into its own CollectorRegistry. The per-process gauges carry
    the labels enabled in the config; the four server_* gauges carry none.

    A host gauge whose probe fails keeps its last successful value rather
    than disappearing or dropping to zero, so ``server_available_cpu_cores``
    goes stale (not absent) when CPU utilization can't be read.
    """

    def __init__(self, config: Config, registry: CollectorRegistry | None = None):
        self.config = config
        self.include_types = frozenset(config.include_types)
        self.extractor = LabelExtractor(config.labels)
        self.label_names = list(self.extractor.names)

        self._lock = threading.Lock()
        self._last_host = HostSample()
        self.last_result: ScrapeResult | None = None

        self.registry = registry if registry is not None else CollectorRegistry()
        self.registry.register(self)

        # Prime the system-wide CPU counter, the first call always returns 0.0
        try:
            psutil.cpu_percent(interval=None)
        except (psutil.Error, OSError) as e:
            log.debug("host_cpu_percent_prime_failed", error=str(e))

    def sample_processes(self) -> tuple[list[ProcessSample], int, int]:
        """Classify, filter and measure all processes.

        Returns:
            (samples, seen, skipped)
        """
        samples: list[ProcessSample] = []
        seen = 0
        skipped = 0

        for proc in psutil.process_iter():
            seen += 1
            ptype = classify(proc, self.config.proc_root)
            if ptype.value not in self.include_types:
                continue

            labels = self.extractor.values(proc, ptype)
            try:
                memory_mb = proc.memory_info().rss / MB
            except (psutil.Error, OSError):
                skipped += 1
                continue

            try:
                cpu_percent = proc.cpu_percent()
            except (psutil.Error, OSError):
                cpu_percent = 0.0

            samples.append(
                ProcessSample(
                    pid=proc.pid,
                    process_type=ptype,
                    labels=labels,
                    memory_mb=memory_mb,
                    cpu_percent=cpu_percent,
                )
            )

        return samples, seen, skipped

    def sample(self) -> ScrapeResult:
        """Run one collection pass."""
        start = time.monotonic()
        host = sample_host()
        processes, seen, skipped = self.sample_processes()
        result = ScrapeResult(
            host=host,
            processes=processes,
            seen=seen,
            skipped=skipped,
            duration=time.monotonic() - start,
        )
        log.debug(
            "scrape_complete",
            seen=seen,
            exported=len(processes),
            skipped=skipped,
            duration_ms=round(result.duration * 1000, 1),
        )
        return result

    def _merge_host(self, host: HostSample) -> HostSample:
        """Fill failed probes from the last successful values."""
        with self._lock:
            for attr in _HOST_GAUGES:
                value = getattr(host, attr)
                if value is not None:
                    setattr(self._last_host, attr, value)
            return HostSample(**{attr: getattr(self._last_host, attr) for attr in _HOST_GAUGES})

    def describe(self) -> Iterator[Metric]:
        """Metric names for registry collision checks, without sampling."""
        yield GaugeMetricFamily(*PROCESS_MEMORY, labels=self.label_names)
        yield GaugeMetricFamily(*PROCESS_CPU, labels=self.label_names)
        for name, documentation in _HOST_GAUGES.values():
            yield GaugeMetricFamily(name, documentation)

    def collect(self) -> Iterator[Metric]:
        """Sample the host and yield freshly built metric families."""
        result = self.sample()
        host = self._merge_host(result.host)
        self.last_result = result

        memory_series, cpu_series = result.series()
        memory = GaugeMetricFamily(*PROCESS_MEMORY, labels=self.label_names)
        for labels, value in memory_series.items():
            memory.add_metric(list(labels), value)
        cpu = GaugeMetricFamily(*PROCESS_CPU, labels=self.label_names)
        for labels, value in cpu_series.items():
            cpu.add_metric(list(labels), value)
        yield memory
        yield cpu

        for attr, (name, documentation) in _HOST_GAUGES.items():
            value = getattr(host, attr)
            family = GaugeMetricFamily(name, documentation)
            # None until the probe first succeeds
            if value is not None:
                family.add_metric([], value)
            yield family

    def scrape(self) -> bytes:
        """Run a collection pass and render it in the text exposition format."""
        return generate_latest(self.registry)
