"""
Metrics sink for the tiling pipeline

Each MetricsSink owns its own prometheus CollectorRegistry, so a pipeline run
(or a test) never shares counters with another one. The pipeline only ever
increments; reads are for the exporter and the final summary.
"""

import logging
import threading
from typing import Dict, Optional
from dataclasses import dataclass, asdict

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

# Set up logging
logger = logging.getLogger(__name__)

NAMESPACE = "tile_processor"


@dataclass(frozen=True)
class CounterSnapshot:
    """Point-in-time copy of the pipeline counters"""

    files_processed: int = 0
    tiles_written: int = 0
    errors: int = 0
    rejected_blurry: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class MetricsSink:
    """Counters for files, tiles, errors and blur rejections"""

    def __init__(self, version: str, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.version = version

        self._files_processed = Counter(
            "files_processed",
            "Counts number of files processed",
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self._tiles_written = Counter(
            "tiles_written",
            "Counts number of tiles generated",
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self._errors = Counter(
            "errors",
            "Counts processing errors",
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self._rejected_blurry = Counter(
            "rejected_blurry",
            "Counts number of source images rejected as blurry",
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self._version = Gauge(
            "version",
            "App version.",
            ["version"],
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self._version.labels(version=version).set(1)

    def file_processed(self) -> None:
        self._files_processed.inc()

    def tile_written(self) -> None:
        self._tiles_written.inc()

    def error(self) -> None:
        self._errors.inc()

    def rejected_blurry(self) -> None:
        self._rejected_blurry.inc()

    def _read(self, name: str) -> int:
        value = self.registry.get_sample_value(f"{NAMESPACE}_{name}_total")
        return int(value or 0)

    def snapshot(self) -> CounterSnapshot:
        return CounterSnapshot(
            files_processed=self._read("files_processed"),
            tiles_written=self._read("tiles_written"),
            errors=self._read("errors"),
            rejected_blurry=self._read("rejected_blurry"),
        )


class MetricsServer:
    """Pull endpoint serving a sink's registry on /metrics"""

    def __init__(self, sink: MetricsSink, port: int, addr: str = "0.0.0.0"):
        self.sink = sink
        self.port = port
        self.addr = addr
        self._server = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """
        Start serving in a background thread

        Raises:
            OSError: if the port cannot be bound
        """
        self._server, self._thread = start_http_server(
            self.port, addr=self.addr, registry=self.sink.registry
        )
        logger.info(f"HTTP Metrics server listening at :{self.bound_port}")

    @property
    def bound_port(self) -> Optional[int]:
        """Port actually bound, which differs from `port` when it is 0"""
        if self._server is None:
            return None
        return self._server.server_port

    def stop(self, grace_period: float = 5.0) -> bool:
        """
        Stop the server, waiting at most `grace_period` seconds

        Returns:
            True if the server thread stopped within the grace period
        """
        if self._server is None:
            return True

        server = self._server
        self._server = None

        closer = threading.Thread(
            target=server.shutdown, name="metrics-shutdown", daemon=True
        )
        closer.start()
        closer.join(grace_period)
        if closer.is_alive():
            logger.warning(
                f"Metrics server did not stop within {grace_period:.1f}s, abandoning it"
            )
            return False

        server.server_close()
        if self._thread is not None:
            self._thread.join(grace_period)
        return True
