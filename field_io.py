#!/usr/bin/env python3
"""
File formats and rasters around the orientation field.

- Images are read with Pillow; the grayscale copy feeds a Scharr gradient
  operator, the RGB copy is the color sample for the range kernel
- Cluster partitions and exported angle/magnitude grids share one text
  format: a "rows cols" header line followed by rows of whitespace
  separated values
- Checkpoints render angles as a hue wheel and pack dx, dy and cluster id
  into the channels of a debug image
"""

import numpy as np
from PIL import Image
from scipy.ndimage import correlate
from matplotlib.colors import hsv_to_rgb
from pathlib import Path
import math

from orientation_field import (
    HALF_PI, PixelField, InvalidClusterIdError, EmptyFieldError,
    build_pixel_field, as_color_sample,
)


# =============================================================================
# Constants
# =============================================================================

# Image size limits (security: prevent decompression bombs)
MAX_IMAGE_PIXELS = 50_000_000  # 50 megapixels
MAX_IMAGE_DIMENSION = 10_000  # 10k pixels per side

# Debug raster stores cluster ids in one byte; 255 is reserved
MAX_DEBUG_CLUSTER = 254

SCHARR_X = np.array([
    [-3, 0, 3],
    [-10, 0, 10],
    [-3, 0, 3],
], dtype=np.float64)
SCHARR_Y = SCHARR_X.T


# =============================================================================
# Images and gradients
# =============================================================================

def load_image(image_path: str) -> tuple[np.ndarray, np.ndarray]:
    """
    Load an image as (grayscale, rgb) arrays.

    Raises:
        FileNotFoundError: If image file doesn't exist
        ValueError: If file is not a valid image or exceeds size limits
    """
    try:
        img = Image.open(image_path)
    except FileNotFoundError:
        raise FileNotFoundError(f"Image not found: {image_path}")
    except Exception as e:
        raise ValueError(f"Could not open image: {e}")

    width, height = img.size
    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        raise ValueError(
            f"Image dimensions {width}x{height} exceed maximum "
            f"{MAX_IMAGE_DIMENSION}x{MAX_IMAGE_DIMENSION}"
        )
    if width * height > MAX_IMAGE_PIXELS:
        raise ValueError(
            f"Image has {width * height:,} pixels, exceeding maximum {MAX_IMAGE_PIXELS:,}"
        )

    rgb = np.array(img.convert('RGB'))
    gray = np.array(img.convert('L'))
    return gray, rgb


def scharr_gradients(gray: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Horizontal and vertical Scharr derivatives of a single-channel image.

    Borders are mirrored without repeating the edge pixel (reflect-101).
    """
    gray = np.asarray(gray, dtype=np.float64)
    dx = correlate(gray, SCHARR_X, mode='mirror')
    dy = correlate(gray, SCHARR_Y, mode='mirror')
    return dx, dy


# =============================================================================
# Text matrices
# =============================================================================

def load_matrix(file_path: str, dtype=np.float64) -> np.ndarray:
    """
    Load a "rows cols" headed, whitespace separated matrix.

    Raises:
        FileNotFoundError: If the file doesn't exist
        EmptyFieldError: If the header declares zero rows or columns
        ValueError: If the header or data is malformed, or the value count
            differs from rows x cols
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Matrix file not found: {file_path}")

    tokens = path.read_text().split()
    if len(tokens) < 2:
        raise ValueError(f"{file_path}: missing 'rows cols' header")
    try:
        rows, cols = int(tokens[0]), int(tokens[1])
    except ValueError:
        raise ValueError(f"{file_path}: bad header {tokens[0]!r} {tokens[1]!r}")
    if rows <= 0 or cols <= 0:
        raise EmptyFieldError(f"{file_path}: header declares {rows}x{cols} matrix")

    values = tokens[2:]
    if len(values) != rows * cols:
        raise ValueError(f"{file_path}: expected {rows * cols} values, found {len(values)}")

    try:
        if np.issubdtype(dtype, np.integer):
            data = [int(v) for v in values]
        else:
            data = [float(v) for v in values]
    except ValueError as e:
        raise ValueError(f"{file_path}: {e}")
    return np.array(data, dtype=dtype).reshape(rows, cols)


def load_cluster_partition(file_path: str) -> np.ndarray:
    """Load raw integer cluster labels."""
    return load_matrix(file_path, dtype=np.int64)


def save_matrix(file_path: str, matrix: np.ndarray, fmt: str = '%.6g') -> None:
    """Write a matrix in the headed text format."""
    matrix = np.asarray(matrix)
    rows, cols = matrix.shape
    with open(file_path, 'w') as f:
        f.write(f"{rows} {cols}\n")
        np.savetxt(f, matrix, fmt=fmt, delimiter=' ')


def save_angles(file_path: str, pixel_field: PixelField) -> None:
    save_matrix(file_path, pixel_field.angle)


def save_magnitudes(file_path: str, pixel_field: PixelField) -> None:
    save_matrix(file_path, pixel_field.magnitude)


# =============================================================================
# Rasters
# =============================================================================

def angle_to_rgb(angles: np.ndarray) -> np.ndarray:
    """
    Map angles in (-pi/2, pi/2] to fully saturated hues.

    -pi/2 (exclusive) to pi/2 runs once around the hue wheel, so the two
    ends of the range, which are the same orientation, share a color.
    """
    hue = np.mod((np.asarray(angles) + HALF_PI) / math.pi, 1.0)
    hsv = np.stack([hue, np.ones_like(hue), np.ones_like(hue)], axis=-1)
    return np.round(hsv_to_rgb(hsv) * 255).astype(np.uint8)


def check_debug_clusters(pixel_field: PixelField) -> None:
    """
    Verify every cluster id fits the blue channel of the debug raster.

    Raises:
        InvalidClusterIdError: If a cluster id does not fit in one byte
    """
    max_cluster = int(pixel_field.cluster.max())
    if max_cluster > MAX_DEBUG_CLUSTER:
        raise InvalidClusterIdError(
            f"Cluster id {max_cluster} does not fit the debug raster (max {MAX_DEBUG_CLUSTER})"
        )


def gradient_debug_rgb(pixel_field: PixelField) -> np.ndarray:
    """
    Pack dx (red), dy (green) and cluster id (blue) into an 8-bit image.

    Gradients are scaled by the largest positive component; negative values
    clip to 0.

    Raises:
        InvalidClusterIdError: If a cluster id does not fit in one byte
    """
    check_debug_clusters(pixel_field)

    max_grad = max(float(pixel_field.dx.max()), float(pixel_field.dy.max()), 0.0)
    if max_grad == 0:
        max_grad = 1.0

    red = np.clip(pixel_field.dx / max_grad * 255, 0, 255)
    green = np.clip(pixel_field.dy / max_grad * 255, 0, 255)
    blue = pixel_field.cluster
    return np.stack([red, green, blue], axis=-1).astype(np.uint8)


def save_raster(image_path: str, rgb: np.ndarray) -> None:
    Image.fromarray(rgb).save(image_path)
    print(f"saving {image_path}")


# =============================================================================
# Pipeline helpers
# =============================================================================

def prepare_field(image_path: str, cluster_path: str) -> tuple[PixelField, np.ndarray]:
    """
    Build the initial field and color sample from an image and a cluster file.

    Returns:
        Tuple of (pixel_field, color_sample)
    """
    gray, rgb = load_image(image_path)
    clusters = load_cluster_partition(cluster_path)
    dx, dy = scharr_gradients(gray)
    colors = as_color_sample(rgb)
    pixel_field = build_pixel_field(dx, dy, clusters, colors)
    return pixel_field, colors


def save_checkpoint(out_dir: Path, stem: str, iteration: int, pixel_field: PixelField) -> list[Path]:
    """
    Write angle/magnitude text and both rasters for one iteration.

    Both rasters are rendered before anything is written, so a field the
    debug raster cannot encode leaves no partial checkpoint behind.
    """
    angle_rgb = angle_to_rgb(pixel_field.angle)
    gradient_rgb = gradient_debug_rgb(pixel_field)

    base = out_dir / f"{stem}_{iteration}_iter"
    paths = [
        base.with_name(base.name + '.txt'),
        base.with_name(base.name + '_mag.txt'),
        base.with_name(base.name + '.png'),
        base.with_name(base.name + '_grad.png'),
    ]
    save_angles(str(paths[0]), pixel_field)
    save_magnitudes(str(paths[1]), pixel_field)
    save_raster(str(paths[2]), angle_rgb)
    save_raster(str(paths[3]), gradient_rgb)
    return paths
