#!/usr/bin/env python3
"""Profile orientation smoothing to identify performance bottlenecks."""

import cProfile
import pstats
import io
import sys
import time
from pathlib import Path

from field_io import prepare_field
from smooth_orientation import SmoothingConfig, iterate_once, iterate_field


def profile_image(image_path: str, cluster_path: str, iterations: int = 3,
                  config: SmoothingConfig = SmoothingConfig(), verbose: bool = True) -> dict:
    """Time field construction and each smoothing iteration for one image."""

    if verbose:
        print(f"\n{'='*60}")
        print(f"Profiling: {Path(image_path).name}")
        print(f"{'='*60}")

    timings = {}

    start = time.perf_counter()
    pixel_field, colors = prepare_field(image_path, cluster_path)
    timings['prepare_field'] = time.perf_counter() - start

    if verbose:
        print(f"  Pixels: {pixel_field.rows * pixel_field.cols:,}")
        print(f"  Clusters: {pixel_field.num_clusters:,}")

    start = time.perf_counter()
    for iteration, _ in iterate_field(pixel_field, colors, iterations, config):
        now = time.perf_counter()
        timings[f'iteration_{iteration}'] = now - start
        start = now

    total = sum(timings.values())
    timings['total'] = total

    if verbose:
        print(f"\nStage timings:")
        for stage, t in timings.items():
            pct = (t / total * 100) if stage != 'total' and total > 0 else 100
            print(f"  {stage:20s}: {t:6.3f}s ({pct:5.1f}%)")

    return timings


def detailed_profile(image_path: str, cluster_path: str,
                     config: SmoothingConfig = SmoothingConfig()) -> str:
    """Run cProfile on a single unfiltered iteration (the main compute stage)."""

    print(f"\n{'='*60}")
    print(f"Detailed profile of iterate_once()")
    print(f"{'='*60}")

    pixel_field, colors = prepare_field(image_path, cluster_path)

    profiler = cProfile.Profile()
    profiler.enable()
    iterate_once(pixel_field, colors, config, ignore_magnitude=True)
    profiler.disable()

    stream = io.StringIO()
    stats = pstats.Stats(profiler, stream=stream)
    stats.sort_stats('cumulative')
    stats.print_stats(20)

    report = stream.getvalue()
    print(report)
    return report


def main():
    if len(sys.argv) < 3:
        print("Usage: python profile_orientation.py <image_path> <cluster_file> [iterations]")
        sys.exit(1)

    image_path, cluster_path = sys.argv[1], sys.argv[2]
    iterations = int(sys.argv[3]) if len(sys.argv) > 3 else 3

    try:
        profile_image(image_path, cluster_path, iterations)
        detailed_profile(image_path, cluster_path)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
