"""Evaluation metrics for texture rectification.

This module implements quality metrics for rectified textures (corner
reprojection error, pixel error and PSNR against a reference) and the timing
utilities used to report per-stage runtimes.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import Callable, Dict, List, Optional, Union

import numpy as np

from texrect import geometry

logger = logging.getLogger(__name__)


def reprojection_rmse(H: np.ndarray, src: np.ndarray, dst: np.ndarray) -> float:
    """Calculate the root mean square error of H applied to src against dst.

    Args:
        H: 3x3 homography
        src: Nx2 source points
        dst: Nx2 expected destination points

    Returns:
        Root mean square reprojection error in pixels
    """
    src = np.asarray(src, dtype=np.float64)
    dst = np.asarray(dst, dtype=np.float64)
    if len(src) == 0:
        logger.warning("No points provided for reprojection error calculation")
        return float('inf')

    projected = geometry.apply_homography(H, src)
    squared_errors = np.sum((projected - dst) ** 2, axis=1)
    return float(np.sqrt(np.mean(squared_errors)))


def mean_absolute_error(image: np.ndarray, reference: np.ndarray) -> float:
    """Mean absolute per-pixel difference between two equally sized images."""
    if image.shape != reference.shape:
        raise ValueError(f"Image shapes differ: {image.shape} vs {reference.shape}")
    return float(np.mean(np.abs(image.astype(np.float64) - reference.astype(np.float64))))


def psnr(image: np.ndarray, reference: np.ndarray, peak: float = 255.0) -> float:
    """Peak signal-to-noise ratio in dB (inf for identical images)."""
    if image.shape != reference.shape:
        raise ValueError(f"Image shapes differ: {image.shape} vs {reference.shape}")

    mse = np.mean((image.astype(np.float64) - reference.astype(np.float64)) ** 2)
    if mse == 0:
        return float('inf')
    return float(10.0 * np.log10(peak ** 2 / mse))


class Timer:
    """Wall-clock timer for pipeline stages.

    Usable as a context manager around a whole call, as a decorator, or as a
    lap counter that splits one run into named stages.
    """

    def __init__(self, name: str = "Timer", logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self._mark: Optional[float] = None
        self._laps: Dict[str, float] = {}

    def start(self) -> None:
        self.start_time = self._mark = time.perf_counter()
        self.end_time = None

    def stop(self) -> float:
        """Stop the timer and return the seconds since start."""
        if self.start_time is None:
            self.logger.warning(f"{self.name}: stop() called before start()")
            return 0.0

        self.end_time = time.perf_counter()
        duration = self.end_time - self.start_time
        self.logger.debug(f"{self.name} took {duration:.4f}s")
        return duration

    def __enter__(self) -> "Timer":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def timeit(self, func: Callable) -> Callable:
        """Wrap func so each call runs inside this timer."""
        @functools.wraps(func)
        def timed(*args, **kwargs):
            with self:
                return func(*args, **kwargs)

        return timed

    def lap(self, stage: str) -> float:
        """Close the current stage and record its duration.

        The first lap starts the timer if it is not running.

        Args:
            stage: Name the duration is stored under

        Returns:
            Seconds since the previous lap
        """
        now = time.perf_counter()
        if self._mark is None:
            self.start_time = self._mark = now

        duration = now - self._mark
        self._mark = now
        self._laps[stage] = duration

        self.logger.debug(f"{self.name}/{stage}: {duration:.4f}s")
        return duration

    @property
    def timings(self) -> Dict[str, float]:
        return dict(self._laps)

    @property
    def elapsed(self) -> float:
        """Seconds since start, without stopping."""
        if self.start_time is None:
            return 0.0
        return time.perf_counter() - self.start_time


class RectificationMetrics:
    """Collects the metrics of one rectification run."""

    def __init__(self):
        self.metrics = {
            "status": None,
            "n_markers": 0,
            "marker_ids": [],
            "reprojection_rmse_px": None,
            "out_of_bounds_px": 0,
            "runtime_s": 0.0,
            "stage_timings": {},
        }

    def update(self, metric_name: str, value: Union[int, float, str, List, Dict, None]) -> None:
        self.metrics[metric_name] = value

    def update_stage_timing(self, stage: str, seconds: float) -> None:
        self.metrics["stage_timings"][stage] = seconds

    def compute_rectification_metrics(self, H: np.ndarray, quad: np.ndarray, target: np.ndarray) -> None:
        """Record how closely H maps the source quadrilateral onto the target square.

        Args:
            H: Rectifying homography
            quad: 4x2 source corners in the coordinates H was solved in
            target: 4x2 target square corners
        """
        self.metrics["reprojection_rmse_px"] = reprojection_rmse(H, quad, target)

    def to_dict(self) -> Dict:
        """Return a copy of the metrics, stage timings included."""
        metrics = self.metrics.copy()
        metrics["stage_timings"] = dict(self.metrics["stage_timings"])
        return metrics

    def summary(self) -> str:
        """Multi-line report for logs and the CLI."""
        lines = [
            "Rectification Metrics:",
            f"  Status: {self.metrics['status']}",
            f"  Markers: {self.metrics['n_markers']} {self.metrics['marker_ids']}",
        ]

        if self.metrics["reprojection_rmse_px"] is not None:
            lines.append(f"  Corner reprojection RMSE: {self.metrics['reprojection_rmse_px']:.6f} px")

        lines.append(f"  Out-of-bounds pixels: {self.metrics['out_of_bounds_px']}")
        lines.append(f"  Total runtime: {self.metrics['runtime_s']:.3f}s")

        stages = self.metrics["stage_timings"]
        if stages:
            lines.append("  Stages: " + ", ".join(f"{stage} {seconds:.3f}s" for stage, seconds in stages.items()))

        return "\n".join(lines)
