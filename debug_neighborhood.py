#!/usr/bin/env python3
"""Debug script to inspect the smoothing neighborhood of a single pixel."""

import sys

import numpy as np

from field_io import prepare_field
from smooth_orientation import (
    SmoothingConfig, select_neighbors, bilateral_weights,
    interpolate_magnitude, interpolate_angle,
)


def describe_cell(pixel_field, colors, row: int, col: int, config: SmoothingConfig,
                  ignore_magnitude: bool) -> list[str]:
    """
    Report the candidates of (row, col) and the values they aggregate to.

    Returns list of output lines.
    """
    cell = pixel_field.cell(row, col)
    lines = [
        f"Cell r: {row}, c: {col}, cluster: {cell.cluster}, "
        f"angle: {cell.angle:.4f}, magnitude: {cell.magnitude:.4f}",
        f"Window {config.window_size}, magnitude filter {'off' if ignore_magnitude else 'on'}",
    ]

    neighborhood = select_neighbors(pixel_field, row, col, config.window_size, ignore_magnitude)
    weights = bilateral_weights(row, col, neighborhood, colors, config.kernel)

    lines.append(f"\n  {len(neighborhood)} qualified neighbors:")
    for r, c, a, m, w in zip(neighborhood.rows, neighborhood.cols, neighborhood.angles,
                             neighborhood.magnitudes, weights):
        lines.append(f"    r: {r}, c: {c}, angle: {a:.4f}, magnitude: {m:.4f}, weight: {w:.3e}")

    if len(neighborhood) == 1:
        lines.append("\n  Only the cell itself qualifies; it is left unchanged.")
        return lines

    magnitude = interpolate_magnitude(neighborhood.magnitudes, weights)
    angle = interpolate_angle(neighborhood.angles, neighborhood.magnitudes, weights, cell.angle)
    lines.append(f"\n  New magnitude: {magnitude:.4f}")
    lines.append(f"  New angle: {angle:.4f} ({np.degrees(angle):.1f}°)")
    return lines


def main():
    if len(sys.argv) < 5:
        print("Usage: python debug_neighborhood.py <image_path> <cluster_file> <row> <col> [--no-filter]")
        sys.exit(1)

    image_path, cluster_path = sys.argv[1], sys.argv[2]
    row, col = int(sys.argv[3]), int(sys.argv[4])
    ignore_magnitude = '--no-filter' in sys.argv[5:]

    try:
        pixel_field, colors = prepare_field(image_path, cluster_path)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not (0 <= row < pixel_field.rows and 0 <= col < pixel_field.cols):
        print(f"Cell ({row}, {col}) outside {pixel_field.rows}x{pixel_field.cols} field",
              file=sys.stderr)
        sys.exit(1)

    for line in describe_cell(pixel_field, colors, row, col, SmoothingConfig(), ignore_magnitude):
        print(line)


if __name__ == "__main__":
    main()
