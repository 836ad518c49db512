"""
Tile Processing Pipeline

Walks a source directory tree and turns every image into training tiles:
1. Producer thread walks the tree depth-first and queues file paths
2. Worker threads pop one path at a time and process it fully:
   blur check -> resize -> grid tiles -> random validation tiles
3. When the walk ends the producer closes the queue; workers drain it and exit

Features:
- Bounded queue (capacity = worker count) so the walk never runs far ahead
- Per-file failures are logged and counted, they never stop a worker
- A walk failure, or a metrics port that cannot be bound, is fatal for the run
- Cooperative shutdown: request_shutdown() is checked between jobs
"""

import logging
import os
import queue
import random
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, Optional
from dataclasses import dataclass, asdict

from .blur_detector import DEFAULT_BLUR_THRESHOLD, BlurDetector
from .errors import TileProcessingError, TooSmall, WalkError
from .grid_planner import GridPlan, check_tile_fits, plan_grid
from .image_codec import ImageCodec, PillowCodec
from .metrics import CounterSnapshot, MetricsServer, MetricsSink
from .random_planner import make_random_source, plan_random_tiles
from .tile_saver import TileSaver

# Set up logging
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INVALID_CONFIG = 1
EXIT_FAILURE = 2
EXIT_CANCELLED = 130

# Marks the end of the job stream, one per worker
_QUEUE_CLOSED = object()

# How often blocked threads wake up to look at the shutdown flag
_POLL_INTERVAL = 0.2


@dataclass
class PipelineConfig:
    """Configuration for the tiling pipeline"""

    # Input/output
    source_dir: str
    dest_dir: str

    # Tiling settings
    tile_width: int = 400
    tile_height: int = 400
    resize_divisor: int = 2  # Divide image size by this before tiling (1 = keep)
    allow_remainder_anchoring: bool = False  # Tile the borders with overlap

    # Validation tiles
    validation_tile_count: int = 0
    validation_only: bool = False  # Skip grid tiles, emit only random tiles
    seed: Optional[int] = None  # None = time-derived

    # Blur rejection
    reject_blurry: bool = False
    blur_threshold: float = DEFAULT_BLUR_THRESHOLD

    # Processing settings
    worker_count: int = 8
    metrics_port: int = 34130  # 0 disables the metrics endpoint
    shutdown_grace_period: float = 5.0
    log_level: str = "INFO"

    def validate(self) -> None:
        """Raise ValueError describing the first invalid setting"""
        if not self.source_dir:
            raise ValueError("source directory is required")
        if not self.dest_dir:
            raise ValueError("destination directory is required")
        if self.tile_width <= 0 or self.tile_height <= 0:
            raise ValueError(
                f"tile size must be positive, got {self.tile_width}x{self.tile_height}"
            )
        if self.resize_divisor < 1:
            raise ValueError(f"resize divisor must be >= 1, got {self.resize_divisor}")
        if self.worker_count < 1:
            raise ValueError(f"worker count must be >= 1, got {self.worker_count}")
        if self.validation_tile_count < 0:
            raise ValueError("validation tile count can't be negative")
        if self.validation_only and self.validation_tile_count == 0:
            raise ValueError("validation-only mode needs a validation tile count")
        if self.metrics_port < 0:
            raise ValueError(f"invalid metrics port {self.metrics_port}")

    def grid_plan(self) -> GridPlan:
        return GridPlan(
            tile_width=self.tile_width,
            tile_height=self.tile_height,
            resize_divisor=self.resize_divisor,
            allow_remainder_anchoring=self.allow_remainder_anchoring,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PipelineState(Enum):
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class JobOutcome(Enum):
    """What happened to a single source file"""

    TILED = "tiled"
    REJECTED_BLURRY = "rejected_blurry"
    FAILED = "failed"
    SKIPPED = "skipped"  # Dequeued after shutdown was requested


@dataclass
class PipelineResult:
    """Final status of a pipeline run"""

    state: PipelineState
    counters: CounterSnapshot
    error: Optional[BaseException] = None
    cancelled: bool = False
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.cancelled

    @property
    def exit_code(self) -> int:
        if self.error is not None:
            return EXIT_FAILURE
        if self.cancelled:
            return EXIT_CANCELLED
        return EXIT_OK

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        result = {
            "state": self.state.value,
            "cancelled": self.cancelled,
            "error": str(self.error) if self.error else None,
        }
        result.update(self.counters.to_dict())
        if self.start_time:
            result["start_time"] = self.start_time.isoformat()
        if self.end_time:
            result["end_time"] = self.end_time.isoformat()
        return result


@dataclass
class _ProducerStatus:
    queued: int = 0
    error: Optional[BaseException] = None


class TilePipeline:
    """
    Producer/worker pipeline that tiles every image under a source directory
    """

    def __init__(
        self,
        config: PipelineConfig,
        metrics: Optional[MetricsSink] = None,
        codec: Optional[ImageCodec] = None,
        blur_detector: Optional[BlurDetector] = None,
        rng: Optional[random.Random] = None,
        version: str = "dev",
    ):
        config.validate()
        self.config = config
        self.plan = config.grid_plan()

        self.metrics = metrics or MetricsSink(version=version)
        self.codec = codec or PillowCodec()
        self.blur_detector = blur_detector or BlurDetector(
            threshold=config.blur_threshold
        )
        self.tile_saver = TileSaver(
            source_root=config.source_dir,
            dest_root=config.dest_dir,
            metrics=self.metrics,
            codec=self.codec,
        )
        # Seeding happens here and nowhere else
        self.rng = rng or make_random_source(config.seed)

        self._state = PipelineState.STARTING
        self._state_lock = threading.Lock()
        self._shutdown = threading.Event()
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=config.worker_count)
        self._producer_status = _ProducerStatus()
        self._metrics_server: Optional[MetricsServer] = None

    @property
    def state(self) -> PipelineState:
        return self._state

    def _set_state(self, state: PipelineState) -> None:
        with self._state_lock:
            logger.debug(f"Pipeline state {self._state.value} -> {state.value}")
            self._state = state

    def request_shutdown(self) -> None:
        """Ask the pipeline to stop after the jobs currently in flight"""
        if not self._shutdown.is_set():
            logger.warning("Received shutdown signal")
        self._shutdown.set()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    def run(self) -> PipelineResult:
        """
        Run the pipeline to completion (or until shutdown is requested)

        Returns:
            PipelineResult with the counters and the terminal status
        """
        start_time = datetime.now()
        logger.info(
            f"Tiling {self.config.source_dir} -> {self.config.dest_dir} "
            f"with {self.config.worker_count} workers"
        )

        metrics_error = self._start_metrics_server()
        if metrics_error is not None:
            self._set_state(PipelineState.STOPPED)
            result = PipelineResult(
                state=self._state,
                counters=self.metrics.snapshot(),
                error=metrics_error,
                start_time=start_time,
                end_time=datetime.now(),
            )
            self._log_final_stats(result)
            return result

        # One source per worker, derived from the shared seed
        worker_rngs = [
            random.Random(self.rng.getrandbits(64))
            for _ in range(self.config.worker_count)
        ]
        workers = [
            threading.Thread(
                target=self._worker_loop,
                args=(worker_id, worker_rngs[worker_id]),
                name=f"tile-worker-{worker_id}",
                daemon=True,
            )
            for worker_id in range(self.config.worker_count)
        ]
        producer = threading.Thread(
            target=self._producer_loop, name="tile-producer", daemon=True
        )

        for worker in workers:
            worker.start()
        producer.start()
        self._set_state(PipelineState.RUNNING)

        _join(producer)
        self._set_state(PipelineState.DRAINING)
        for worker in workers:
            _join(worker)

        if self._metrics_server is not None:
            self._metrics_server.stop(self.config.shutdown_grace_period)

        self._set_state(PipelineState.STOPPED)
        result = PipelineResult(
            state=self._state,
            counters=self.metrics.snapshot(),
            error=self._producer_status.error,
            cancelled=self.shutdown_requested,
            start_time=start_time,
            end_time=datetime.now(),
        )
        self._log_final_stats(result)
        return result

    def _start_metrics_server(self) -> Optional[OSError]:
        """
        Start the /metrics endpoint unless it is disabled

        Returns:
            The bind error, which is fatal for the run, or None
        """
        if self.config.metrics_port <= 0:
            return None
        server = MetricsServer(self.metrics, self.config.metrics_port)
        try:
            server.start()
        except OSError as e:
            logger.error(
                f"Metrics server failed to bind on port {self.config.metrics_port}: {e}"
            )
            return e
        self._metrics_server = server
        return None

    # Producer

    def walk_source(self) -> Iterator[str]:
        """
        Yield every non-directory entry under the source root, depth-first

        Raises:
            WalkError: if any directory of the tree cannot be read
        """

        def _on_error(error: OSError) -> None:
            raise WalkError(
                f"Failure accessing a path {error.filename!r}: {error}",
                path=error.filename,
            ) from error

        if not os.path.isdir(self.config.source_dir):
            raise WalkError(
                f"Source directory {self.config.source_dir!r} does not exist",
                path=self.config.source_dir,
            )

        for root, dirs, files in os.walk(self.config.source_dir, onerror=_on_error):
            dirs.sort()
            for filename in sorted(files):
                yield os.path.join(root, filename)

    def _producer_loop(self) -> None:
        status = self._producer_status
        try:
            for path in self.walk_source():
                if self.shutdown_requested:
                    logger.info("Shutdown requested, stopping directory walk")
                    break
                if not self._enqueue(path):
                    break
                status.queued += 1
        except WalkError as e:
            logger.error(f"Directory walk failed: {e}")
            status.error = e
        except Exception as e:
            logger.critical(f"Unexpected error walking source tree: {e}", exc_info=True)
            status.error = e
        finally:
            self._close_queue()
            logger.debug(f"Producer finished after queuing {status.queued} files")

    def _enqueue(self, path: str) -> bool:
        """Block until `path` is queued; False if shutdown came first"""
        logger.debug(f"Queuing {path}")
        while True:
            try:
                self._queue.put(path, timeout=_POLL_INTERVAL)
                return True
            except queue.Full:
                if self.shutdown_requested:
                    return False

    def _close_queue(self) -> None:
        # Workers keep consuming, so these puts always complete
        for _ in range(self.config.worker_count):
            self._queue.put(_QUEUE_CLOSED)

    # Workers

    def _worker_loop(self, worker_id: int, rng: random.Random) -> None:
        while True:
            job = self._queue.get()
            if job is _QUEUE_CLOSED:
                break
            outcome = self.process_file(job, rng)
            if outcome is JobOutcome.SKIPPED:
                logger.debug(f"Worker {worker_id} skipped {job} after shutdown")
        logger.debug(f"Stopping worker {worker_id}")

    def process_file(self, path: str, rng: Optional[random.Random] = None) -> JobOutcome:
        """
        Fully process one source file, absorbing every per-file failure

        Args:
            path: Source image path
            rng: Random source for validation tiles (defaults to the pipeline's)

        Returns:
            JobOutcome describing what happened
        """
        if self.shutdown_requested:
            return JobOutcome.SKIPPED

        rng = rng or self.rng
        logger.debug(f"Processing {path}")

        try:
            if self.config.reject_blurry:
                blur = self.blur_detector.classify(path)
                if blur.is_rejected:
                    self.metrics.rejected_blurry()
                    logger.warning(
                        f"Rejected blurry image {path} (variance={blur.variance:.1f})"
                    )
                    return JobOutcome.REJECTED_BLURRY

            self.metrics.file_processed()
            self._tile_file(path, rng)
            return JobOutcome.TILED

        except TileProcessingError as e:
            self.metrics.error()
            logger.error(f"Error processing {path}: {e}")
            return JobOutcome.FAILED
        except Exception as e:
            self.metrics.error()
            logger.error(f"Unexpected error processing {path}: {e}", exc_info=True)
            return JobOutcome.FAILED

    def _tile_file(self, path: str, rng: random.Random) -> None:
        image = self.codec.decode(path)
        image = self._resize(image, path)
        width, height = self.codec.size(image)

        if not self.config.validation_only:
            tiles = plan_grid(width, height, self.plan)
            self.tile_saver.save_tiles(image, tiles, path)
            logger.debug(f"Saved {len(tiles)} grid tiles from {path}")

        if self.config.validation_tile_count > 0:
            tiles = plan_random_tiles(
                width,
                height,
                self.plan.tile_width,
                self.plan.tile_height,
                self.config.validation_tile_count,
                rng,
            )
            self.tile_saver.save_tiles(image, tiles, path)
            logger.debug(f"Saved {len(tiles)} validation tiles from {path}")

    def _resize(self, image, path: str):
        divisor = self.plan.resize_divisor
        if divisor <= 1:
            return image

        width, height = self.codec.size(image)
        new_width, new_height = width // divisor, height // divisor
        try:
            check_tile_fits(
                new_width, new_height, self.plan.tile_width, self.plan.tile_height
            )
        except TooSmall as e:
            e.path = path
            raise

        logger.debug(f"Resizing {path} from {width}x{height} to {new_width}x{new_height}")
        return self.codec.resize(image, new_width, new_height)

    def _log_final_stats(self, result: PipelineResult) -> None:
        counters = result.counters
        duration = None
        if result.start_time and result.end_time:
            duration = result.end_time - result.start_time

        logger.info(
            f"Pipeline {result.state.value}: files={counters.files_processed} "
            f"tiles={counters.tiles_written} errors={counters.errors} "
            f"rejected_blurry={counters.rejected_blurry}"
            + (f" duration={duration}" if duration else "")
        )
        if result.cancelled:
            logger.warning("Pipeline was cancelled")
        if result.error is not None:
            logger.error(f"Pipeline stopped with error: {result.error}")


def _join(thread: threading.Thread) -> None:
    # Short joins keep the main thread responsive to signals
    while thread.is_alive():
        thread.join(_POLL_INTERVAL)
