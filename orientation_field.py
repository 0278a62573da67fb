#!/usr/bin/env python3
"""
Per-pixel orientation field built from image gradients.

Each pixel carries its position, a dense cluster id, the two gradient
components, an undirected tangent angle in (-pi/2, pi/2] and a gradient
magnitude. Fields are immutable: smoothing produces a new generation
rather than editing cells in place.
"""

import numpy as np
from dataclasses import dataclass, replace
from typing import Optional
import math


HALF_PI = math.pi / 2


# =============================================================================
# Errors
# =============================================================================

class DimensionMismatchError(ValueError):
    """Gradient, color and cluster grids disagree in shape."""


class EmptyFieldError(ValueError):
    """A grid has zero rows or columns."""


class InvalidClusterIdError(ValueError):
    """A cluster id does not fit the single-byte debug channel."""


class DegenerateWeightError(RuntimeError):
    """Aggregation weights sum to zero. Should never happen."""


# =============================================================================
# Angles
# =============================================================================

def normalize_angle(angle):
    """Fold angles with period pi into (-pi/2, pi/2]."""
    folded = HALF_PI - np.mod(HALF_PI - angle, math.pi)
    # np.mod can round up to exactly pi for tiny negative inputs
    return np.where(folded <= -HALF_PI, folded + math.pi, folded)


def tangent_angle(dx: np.ndarray, dy: np.ndarray) -> np.ndarray:
    """
    Tangent direction perpendicular to the gradient (dx, dy).

    Same branch as atan(dx / -dy), but defined where dy is zero:
    a vertical tangent comes out as pi/2 and a zero gradient as 0.
    """
    return normalize_angle(np.arctan2(dx, -dy))


# =============================================================================
# Data model
# =============================================================================

@dataclass(frozen=True)
class PixelCell:
    """A single pixel of a PixelField."""
    row: int
    col: int
    cluster: int
    dx: float
    dy: float
    angle: float
    magnitude: float


@dataclass(frozen=True, eq=False)
class PixelField:
    """
    Dense rows x cols grid of pixel descriptors, one array per attribute.

    All arrays are copied on construction and frozen, so a field can be
    shared as a read-only snapshot between workers.
    """
    cluster: np.ndarray  # dense ids, int64
    dx: np.ndarray
    dy: np.ndarray
    angle: np.ndarray
    magnitude: np.ndarray

    def __post_init__(self):
        shape = np.shape(self.cluster)
        if len(shape) != 2:
            raise DimensionMismatchError(f"Field must be 2-D, got shape {shape}")
        if shape[0] == 0 or shape[1] == 0:
            raise EmptyFieldError(f"Field has no pixels: {shape[0]}x{shape[1]}")

        for name in ('cluster', 'dx', 'dy', 'angle', 'magnitude'):
            dtype = np.int64 if name == 'cluster' else np.float64
            arr = np.array(getattr(self, name), dtype=dtype)
            if arr.shape != shape:
                raise DimensionMismatchError(
                    f"'{name}' has shape {arr.shape}, expected {shape}"
                )
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @property
    def shape(self) -> tuple[int, int]:
        return self.cluster.shape

    @property
    def rows(self) -> int:
        return self.cluster.shape[0]

    @property
    def cols(self) -> int:
        return self.cluster.shape[1]

    @property
    def num_clusters(self) -> int:
        return int(self.cluster.max()) + 1

    def cell(self, row: int, col: int) -> PixelCell:
        return PixelCell(
            row=row,
            col=col,
            cluster=int(self.cluster[row, col]),
            dx=float(self.dx[row, col]),
            dy=float(self.dy[row, col]),
            angle=float(self.angle[row, col]),
            magnitude=float(self.magnitude[row, col]),
        )

    def next_generation(self, angle: np.ndarray, magnitude: np.ndarray) -> 'PixelField':
        """New field with updated angles and magnitudes; gradients and clusters carry over."""
        return replace(self, angle=angle, magnitude=magnitude)


# =============================================================================
# Construction
# =============================================================================

def remap_clusters(labels: np.ndarray) -> np.ndarray:
    """
    Remap arbitrary integer labels to dense ids 0..n-1.

    Ids are handed out in row-major first-encounter order, so the
    top-left pixel always belongs to cluster 0.
    """
    labels = np.asarray(labels)
    if labels.ndim != 2:
        raise DimensionMismatchError(f"Cluster partition must be 2-D, got shape {labels.shape}")
    if labels.size == 0:
        raise EmptyFieldError(f"Cluster partition is empty: {labels.shape}")

    mapping = {}
    flat = labels.ravel()
    dense = np.empty(flat.shape, dtype=np.int64)
    for i, label in enumerate(flat.tolist()):
        if label not in mapping:
            mapping[label] = len(mapping)
        dense[i] = mapping[label]
    return dense.reshape(labels.shape)


def as_color_sample(colors: np.ndarray) -> np.ndarray:
    """Color raster as a read-only float (rows, cols, channels) array."""
    sample = np.array(colors, dtype=np.float64)
    if sample.ndim == 2:
        sample = sample[:, :, np.newaxis]
    if sample.ndim != 3:
        raise DimensionMismatchError(f"Color sample must be 2-D or 3-D, got shape {sample.shape}")
    sample.setflags(write=False)
    return sample


def check_dimensions(field: PixelField, colors: np.ndarray) -> None:
    """Raise unless the color sample covers exactly the field's pixels."""
    if tuple(colors.shape[:2]) != field.shape:
        raise DimensionMismatchError(
            f"Color sample is {colors.shape[0]}x{colors.shape[1]}, "
            f"field is {field.rows}x{field.cols}"
        )


def build_pixel_field(dx: np.ndarray, dy: np.ndarray, clusters: np.ndarray,
                      colors: Optional[np.ndarray] = None) -> PixelField:
    """
    Build the initial field from gradient components and a cluster partition.

    Args:
        dx, dy: Orthogonal gradient components, one value per pixel
        clusters: Raw cluster labels, same shape
        colors: Optional color sample; when given its shape is checked too

    Raises:
        EmptyFieldError: If any grid has zero rows or columns
        DimensionMismatchError: If the grids disagree in shape
    """
    dx = np.asarray(dx, dtype=np.float64)
    dy = np.asarray(dy, dtype=np.float64)
    clusters = np.asarray(clusters)

    for name, arr in (('dx', dx), ('dy', dy), ('clusters', clusters)):
        if arr.ndim != 2:
            raise DimensionMismatchError(f"'{name}' must be 2-D, got shape {arr.shape}")
        if arr.shape[0] == 0 or arr.shape[1] == 0:
            raise EmptyFieldError(f"'{name}' has no pixels: {arr.shape}")
    if dx.shape != dy.shape:
        raise DimensionMismatchError(f"Gradient components differ: {dx.shape} vs {dy.shape}")
    if clusters.shape != dx.shape:
        raise DimensionMismatchError(
            f"Cluster partition is {clusters.shape[0]}x{clusters.shape[1]}, "
            f"gradient is {dx.shape[0]}x{dx.shape[1]}"
        )

    field = PixelField(
        cluster=remap_clusters(clusters),
        dx=dx,
        dy=dy,
        angle=tangent_angle(dx, dy),
        magnitude=np.hypot(dx, dy),
    )

    if colors is not None:
        check_dimensions(field, as_color_sample(colors))

    return field
