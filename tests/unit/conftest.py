"""Shared pytest fixtures for unit tests."""

import numpy as np
import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from thermal_enkf.config import EnKFConfig
from thermal_enkf.observations import ObservationOperator


@pytest.fixture
def rng():
    """Seeded random number generator."""
    return np.random.default_rng(42)


@pytest.fixture
def rod_config():
    """Five-cell rod, boundary cells pinned at 300, radius covering one neighbour."""
    return EnKFConfig(
        n_members=3,
        cx=np.arange(5, dtype=float),
        localization_radius=1.0,
        n_iter=1,
        boundary_value=300.0,
        sample_std=1.0,
    )


@pytest.fixture
def rod_operator():
    """Single point sensor in the middle cell, unit error variance."""
    return ObservationOperator.from_cells('T', [2], 5, std=1.0)


@pytest.fixture
def correlated_ensemble():
    """Rod ensemble [5, 3] with perfectly correlated interior cells."""
    d = np.array([-2.0, -1.0, 0.0])
    x = np.full((5, 3), 300.0)
    x[1:4] += d
    return x


@pytest.fixture
def wide_system(rng):
    """Twelve-cell rod with three sensors and a random forecast ensemble."""
    N, q = 12, 8
    cx = np.linspace(0.0, 1.1, N)
    obs_cells = [3, 6, 9]
    R = np.diag([0.5, 1.0, 0.8])
    operator = ObservationOperator.from_cells('T', obs_cells, N, R=R)
    x = 300.0 + rng.standard_normal((N, q))
    x[[0, -1]] = 300.0
    return {'cx': cx, 'operator': operator, 'x': x, 'N': N, 'q': q}


def check_psd(matrix, tol=1e-10):
    """Check if matrix is positive semi-definite."""
    return np.all(np.linalg.eigvalsh(matrix) >= -tol)
