"""Shared test fixtures."""

import numpy as np
import pytest

from orientation_field import PixelField


def make_field(angle, magnitude, cluster=None) -> PixelField:
    """Field with the given angles/magnitudes; gradients are left at zero."""
    angle = np.asarray(angle, dtype=np.float64)
    magnitude = np.asarray(magnitude, dtype=np.float64)
    if cluster is None:
        cluster = np.zeros(angle.shape, dtype=np.int64)
    return PixelField(
        cluster=cluster,
        dx=np.zeros(angle.shape),
        dy=np.zeros(angle.shape),
        angle=angle,
        magnitude=magnitude,
    )


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def noisy_field(rng) -> PixelField:
    """12x10 field with random angles, magnitudes and three clusters."""
    shape = (12, 10)
    angle = rng.uniform(-np.pi / 2, np.pi / 2, size=shape)
    magnitude = rng.uniform(0.0, 50.0, size=shape)
    cluster = np.zeros(shape, dtype=np.int64)
    cluster[:, 4:] = 1
    cluster[8:, :] = 2
    return make_field(angle, magnitude, cluster)


@pytest.fixture
def noisy_colors(rng) -> np.ndarray:
    return rng.integers(0, 256, size=(12, 10, 3)).astype(np.float64)
