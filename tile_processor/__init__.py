"""
ML Image Tile Processor

Cuts every image of a directory tree into fixed-size training tiles, with
optional blur rejection and random validation tiles.
"""

import logging
from .core.grid_planner import GridPlan, TileSpec, plan_grid
from .core.random_planner import make_random_source, plan_random_tiles
from .core.blur_detector import BlurDetector
from .core.metrics import MetricsSink
from .core.tile_pipeline import PipelineConfig, PipelineResult, TilePipeline

__version__ = "0.1.0"

# Set up logging
logger = logging.getLogger(__name__)

# Add console handler by default if no handlers exist
if not logger.handlers:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    logger.setLevel(logging.INFO)

LOG_LEVELS = ("DEBUG", "INFO", "WARN", "WARNING", "ERROR")


def configure_logging(level: str = "INFO") -> None:
    """Set the package log level from a DEBUG|INFO|WARN|ERROR string"""
    name = level.upper()
    if name == "WARN":
        name = "WARNING"
    if name not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")
    logger.setLevel(getattr(logging, name))


def run_pipeline(config: PipelineConfig) -> PipelineResult:
    """Apply `config.log_level`, then build a pipeline and run it to completion"""
    configure_logging(config.log_level)
    return TilePipeline(config, version=__version__).run()


__all__ = [
    "BlurDetector",
    "GridPlan",
    "MetricsSink",
    "PipelineConfig",
    "PipelineResult",
    "TilePipeline",
    "TileSpec",
    "configure_logging",
    "make_random_source",
    "plan_grid",
    "plan_random_tiles",
    "run_pipeline",
]
