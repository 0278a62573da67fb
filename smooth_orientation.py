#!/usr/bin/env python3
"""
Cluster-constrained bilateral smoothing of an orientation field.

Each iteration:
1. Freeze the current field as a read-only snapshot
2. For every pixel, gather same-cluster neighbors inside a k x k window
   (optionally only neighbors at least as strong as the pixel itself)
3. Weight neighbors by spatial distance and color distance (Gaussians)
4. Replace magnitude by the weighted mean and angle by the period-pi
   circular mean weighted by bilateral weight x magnitude
5. Swap in the new generation

The first FILTERED_ITERATIONS rounds use the magnitude-dominance filter so
strong edges propagate outward first; later rounds smooth over the full
same-cluster window.
"""

import numpy as np
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterator, Optional
import math

from orientation_field import (
    HALF_PI, PixelField, DegenerateWeightError,
    as_color_sample, check_dimensions,
)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_WINDOW_SIZE = 7
SPATIAL_SIGMA = 2.0  # pixels
RANGE_SIGMA = 10.0  # color units (0-255 per channel)
FILTERED_ITERATIONS = 20  # rounds with the magnitude-dominance filter on


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class KernelConfig:
    """Scales of the spatial and range Gaussians."""
    spatial_sigma: float = SPATIAL_SIGMA
    range_sigma: float = RANGE_SIGMA

    def __post_init__(self):
        if not self.spatial_sigma > 0:
            raise ValueError(f"spatial_sigma must be positive, got {self.spatial_sigma}")
        if not self.range_sigma > 0:
            raise ValueError(f"range_sigma must be positive, got {self.range_sigma}")


@dataclass(frozen=True)
class SmoothingConfig:
    """Parameters held fixed for a whole smoothing run."""
    window_size: int = DEFAULT_WINDOW_SIZE
    kernel: KernelConfig = field(default_factory=KernelConfig)
    filtered_iterations: int = FILTERED_ITERATIONS
    workers: int = 1  # threads for the per-row map

    def __post_init__(self):
        if self.window_size < 1:
            raise ValueError(f"window_size must be at least 1, got {self.window_size}")
        if self.filtered_iterations < 0:
            raise ValueError(f"filtered_iterations must be non-negative, got {self.filtered_iterations}")
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")

    def magnitude_filter(self, iteration: int) -> bool:
        """Whether 1-based `iteration` runs with the magnitude-dominance filter."""
        return iteration <= self.filtered_iterations


# =============================================================================
# Neighborhood selection
# =============================================================================

@dataclass(frozen=True, eq=False)
class Neighborhood:
    """Qualifying candidates of one cell, read from the snapshot (row-major order)."""
    rows: np.ndarray
    cols: np.ndarray
    angles: np.ndarray
    magnitudes: np.ndarray

    def __len__(self) -> int:
        return len(self.rows)


def window_bounds(row: int, col: int, window_size: int,
                  shape: tuple[int, int]) -> tuple[int, int, int, int]:
    """Half-open (top, bottom, left, right) of the window clipped to the grid."""
    half = window_size // 2
    rows, cols = shape
    return (max(0, row - half), min(rows, row + half + 1),
            max(0, col - half), min(cols, col + half + 1))


def select_neighbors(snapshot: PixelField, row: int, col: int, window_size: int,
                     ignore_magnitude: bool) -> Neighborhood:
    """
    Same-cluster candidates for (row, col) inside the clipped window.

    Without `ignore_magnitude`, a candidate must also be at least as strong
    as the cell. The cell always qualifies, so the result is never empty.
    """
    top, bottom, left, right = window_bounds(row, col, window_size, snapshot.shape)

    mask = snapshot.cluster[top:bottom, left:right] == snapshot.cluster[row, col]
    if not ignore_magnitude:
        mask &= snapshot.magnitude[top:bottom, left:right] >= snapshot.magnitude[row, col]

    rr, cc = np.nonzero(mask)
    rr = rr + top
    cc = cc + left
    return Neighborhood(
        rows=rr,
        cols=cc,
        angles=snapshot.angle[rr, cc],
        magnitudes=snapshot.magnitude[rr, cc],
    )


# =============================================================================
# Bilateral weighting
# =============================================================================

def gaussian(x: np.ndarray, sigma: float) -> np.ndarray:
    """Zero-mean normal density."""
    return np.exp(-0.5 * (x / sigma) ** 2) / (sigma * math.sqrt(2 * math.pi))


def bilateral_weights(row: int, col: int, neighborhood: Neighborhood,
                      colors: np.ndarray, kernel: KernelConfig) -> np.ndarray:
    """
    Spatial x range weight of each candidate relative to the center (row, col).

    `colors` is the (rows, cols, channels) color sample; it is only read.
    """
    spatial_distance = np.hypot(neighborhood.rows - row, neighborhood.cols - col)
    color_delta = colors[neighborhood.rows, neighborhood.cols] - colors[row, col]
    color_distance = np.linalg.norm(color_delta, axis=-1)

    return gaussian(spatial_distance, kernel.spatial_sigma) * gaussian(color_distance, kernel.range_sigma)


# =============================================================================
# Aggregation
# =============================================================================

def interpolate_magnitude(magnitudes: np.ndarray, weights: np.ndarray) -> float:
    """Weighted arithmetic mean of candidate magnitudes."""
    total = weights.sum()
    if not (total > 0 and np.isfinite(total)):
        raise DegenerateWeightError(f"Bilateral weights sum to {total}")
    return float((weights * magnitudes).sum() / total)


def circular_mean(angles: np.ndarray, weights: np.ndarray) -> float:
    """
    Weighted mean of undirected angles on a circle of circumference pi.

    The sorted angles are cut open at the largest gap between neighbours
    (the wrap-around gap counts as gap 0, and the first maximum wins).
    Everything before the cut is shifted by +pi so the set is contiguous,
    the weighted mean is taken on the line and folded back into
    (-pi/2, pi/2].

    Args:
        angles: Angles in (-pi/2, pi/2]
        weights: Non-negative combination weights, same length

    Raises:
        DegenerateWeightError: If the weights do not sum to a positive value
    """
    angles = np.asarray(angles, dtype=np.float64)
    weights = np.asarray(weights, dtype=np.float64)

    total = weights.sum()
    if not (total > 0 and np.isfinite(total)):
        raise DegenerateWeightError(f"Angle weights sum to {total}")

    order = np.argsort(angles, kind='stable')
    sorted_angles = angles[order]
    sorted_weights = weights[order]

    gaps = np.empty_like(sorted_angles)
    gaps[0] = sorted_angles[0] + math.pi - sorted_angles[-1]
    gaps[1:] = np.diff(sorted_angles)
    cut = int(np.argmax(gaps))

    unwrapped = sorted_angles.copy()
    unwrapped[:cut] += math.pi

    mean = float((unwrapped * sorted_weights).sum() / sorted_weights.sum())
    if mean >= HALF_PI:
        mean -= math.pi
    if mean <= -HALF_PI:
        mean += math.pi
    return mean


def interpolate_angle(angles: np.ndarray, magnitudes: np.ndarray, weights: np.ndarray,
                      fallback: float) -> float:
    """
    Circular mean of candidate angles weighted by bilateral weight x magnitude.

    When every candidate has zero magnitude there is no orientation evidence
    and `fallback` (the cell's own angle) is returned.
    """
    mag_weights = weights * magnitudes
    if not mag_weights.any():
        return fallback
    return circular_mean(angles, mag_weights)


# =============================================================================
# Per-cell update
# =============================================================================

def update_cell(snapshot: PixelField, colors: np.ndarray, row: int, col: int,
                config: SmoothingConfig, ignore_magnitude: bool) -> tuple[float, float]:
    """New (angle, magnitude) of one cell, computed only from the snapshot."""
    angle = float(snapshot.angle[row, col])
    magnitude = float(snapshot.magnitude[row, col])

    neighborhood = select_neighbors(snapshot, row, col, config.window_size, ignore_magnitude)
    if len(neighborhood) == 1:
        # Only the cell itself: leave isolated pixels alone
        return angle, magnitude

    weights = bilateral_weights(row, col, neighborhood, colors, config.kernel)
    new_magnitude = interpolate_magnitude(neighborhood.magnitudes, weights)
    new_angle = interpolate_angle(neighborhood.angles, neighborhood.magnitudes, weights, angle)
    return new_angle, new_magnitude


def _update_row(snapshot: PixelField, colors: np.ndarray, row: int,
                config: SmoothingConfig, ignore_magnitude: bool) -> tuple[np.ndarray, np.ndarray]:
    angles = np.empty(snapshot.cols)
    magnitudes = np.empty(snapshot.cols)
    for col in range(snapshot.cols):
        angles[col], magnitudes[col] = update_cell(snapshot, colors, row, col, config, ignore_magnitude)
    return angles, magnitudes


# =============================================================================
# Iteration driver
# =============================================================================

def iterate_once(snapshot: PixelField, colors: np.ndarray, config: SmoothingConfig,
                 ignore_magnitude: bool) -> PixelField:
    """
    Compute the next generation of `snapshot`.

    Rows are independent: every read goes to the frozen snapshot and each
    worker fills a disjoint output row, so no locking is needed.
    """
    def run(row):
        return row, _update_row(snapshot, colors, row, config, ignore_magnitude)

    rows = range(snapshot.rows)
    if config.workers == 1:
        results = list(map(run, rows))
    else:
        with ThreadPoolExecutor(max_workers=config.workers) as pool:
            results = list(pool.map(run, rows))

    new_angle = np.empty(snapshot.shape)
    new_magnitude = np.empty(snapshot.shape)
    for row, (angles, magnitudes) in results:
        new_angle[row] = angles
        new_magnitude[row] = magnitudes

    return snapshot.next_generation(new_angle, new_magnitude)


def _generations(current: PixelField, colors: np.ndarray, iterations: int,
                 config: SmoothingConfig) -> Iterator[tuple[int, PixelField]]:
    for iteration in range(1, iterations + 1):
        ignore_magnitude = not config.magnitude_filter(iteration)
        current = iterate_once(current, colors, config, ignore_magnitude)
        yield iteration, current


def iterate_field(pixel_field: PixelField, colors: np.ndarray, iterations: int,
                  config: Optional[SmoothingConfig] = None) -> Iterator[tuple[int, PixelField]]:
    """
    Run `iterations` smoothing rounds, yielding (iteration, field) after each.

    Inputs are validated before the first iteration starts. Iterations are
    numbered from 1; stopping the iterator between yields cancels the run
    after a whole iteration.

    Raises:
        DimensionMismatchError: If the color sample does not match the field
        ValueError: If iterations is negative
    """
    if config is None:
        config = SmoothingConfig()
    if iterations < 0:
        raise ValueError(f"iterations must be non-negative, got {iterations}")

    colors = as_color_sample(colors)
    check_dimensions(pixel_field, colors)

    return _generations(pixel_field, colors, iterations, config)


def smooth_field(pixel_field: PixelField, colors: np.ndarray, iterations: int,
                 config: Optional[SmoothingConfig] = None) -> PixelField:
    """Run all iterations and return the final generation."""
    result = pixel_field
    for _, result in iterate_field(pixel_field, colors, iterations, config):
        pass
    return result
