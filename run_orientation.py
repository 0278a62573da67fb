#!/usr/bin/env python3
"""
Smooth the orientation field of an image and save checkpoints.

Usage:
    python run_orientation.py -i drawing.png -c drawing_clusters.txt -n 40 -s 10 -o out/

Writes <stem>_original_mag.txt before the first iteration and, every
--save-step iterations, the angle and magnitude matrices plus the hue and
gradient debug rasters.
"""

import argparse
import sys
import time
from pathlib import Path

from field_io import check_debug_clusters, prepare_field, save_checkpoint, save_magnitudes
from smooth_orientation import (
    DEFAULT_WINDOW_SIZE, SPATIAL_SIGMA, RANGE_SIGMA, FILTERED_ITERATIONS,
    KernelConfig, SmoothingConfig, iterate_field,
)


def run(image_path: Path, cluster_path: Path, iterations: int, save_step: int,
        output_dir: Path, config: SmoothingConfig) -> list[Path]:
    """
    Run the full smoothing pipeline.

    Returns:
        Paths of every file written, in order.
    """
    pixel_field, colors = prepare_field(str(image_path), str(cluster_path))
    print(f"Image: {pixel_field.cols}x{pixel_field.rows}, "
          f"{pixel_field.num_clusters} clusters")

    # Cluster ids are fixed for the whole run; fail before any compute
    if save_step <= iterations:
        check_debug_clusters(pixel_field)

    output_dir.mkdir(parents=True, exist_ok=True)
    stem = image_path.stem

    written = []
    original_mag = output_dir / f"{stem}_original_mag.txt"
    save_magnitudes(str(original_mag), pixel_field)
    print(f"saving {original_mag}")
    written.append(original_mag)

    run_start = time.perf_counter()
    iter_start = run_start
    for iteration, current in iterate_field(pixel_field, colors, iterations, config):
        phase = "magnitude filter" if config.magnitude_filter(iteration) else "full window"
        now = time.perf_counter()
        print(f"iter {iteration}/{iterations} ({phase}) {now - iter_start:.2f}s")
        iter_start = now

        if iteration % save_step == 0:
            written.extend(save_checkpoint(output_dir, stem, iteration, current))

    print(f"\nCompleted {iterations} iterations in {time.perf_counter() - run_start:.2f}s")
    return written


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Smooth an image orientation field within precomputed clusters.'
    )
    parser.add_argument(
        '--input', '-i',
        required=True,
        help='Path to the image file'
    )
    parser.add_argument(
        '--clusters', '-c',
        required=True,
        help='Cluster partition text file ("rows cols" header, then labels)'
    )
    parser.add_argument(
        '--iterations', '-n',
        type=int,
        required=True,
        help='Number of smoothing iterations'
    )
    parser.add_argument(
        '--save-step', '-s',
        type=int,
        required=True,
        help='Save a checkpoint every N iterations'
    )
    parser.add_argument(
        '--output', '-o',
        required=True,
        help='Directory for checkpoint files'
    )
    parser.add_argument(
        '--window', '-k',
        type=int,
        default=DEFAULT_WINDOW_SIZE,
        help=f'Neighborhood window size (default {DEFAULT_WINDOW_SIZE})'
    )
    parser.add_argument(
        '--spatial-sigma',
        type=float,
        default=SPATIAL_SIGMA,
        help=f'Spatial Gaussian scale in pixels (default {SPATIAL_SIGMA})'
    )
    parser.add_argument(
        '--range-sigma',
        type=float,
        default=RANGE_SIGMA,
        help=f'Color Gaussian scale (default {RANGE_SIGMA})'
    )
    parser.add_argument(
        '--filtered-iterations',
        type=int,
        default=FILTERED_ITERATIONS,
        help=f'Iterations using the magnitude-dominance filter (default {FILTERED_ITERATIONS})'
    )
    parser.add_argument(
        '--workers', '-j',
        type=int,
        default=1,
        help='Worker threads per iteration (default 1)'
    )

    args = parser.parse_args(argv)

    if args.iterations < 0:
        parser.error('--iterations must be non-negative')
    if args.save_step < 1:
        parser.error('--save-step must be at least 1')

    try:
        config = SmoothingConfig(
            window_size=args.window,
            kernel=KernelConfig(spatial_sigma=args.spatial_sigma, range_sigma=args.range_sigma),
            filtered_iterations=args.filtered_iterations,
            workers=args.workers,
        )
    except ValueError as e:
        parser.error(str(e))

    try:
        run(Path(args.input), Path(args.clusters), args.iterations, args.save_step,
            Path(args.output), config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
