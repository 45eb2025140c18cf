"""Shared pytest fixtures for octrecon tests."""

import numpy as np
import pytest

from octrecon.calibration import Calibration


def make_jitter_calibration(n: int, seed: int = 0) -> Calibration:
    """Non-trivial but valid calibration: random background, jittered interpolation."""
    rng = np.random.default_rng(seed)
    background = rng.uniform(100.0, 200.0, n)
    pos = np.clip(np.arange(n) + rng.uniform(-0.4, 0.4, n), 0, n - 1.001)
    index = np.floor(pos).astype(np.intp)
    frac = pos - index
    return Calibration.from_arrays(background, index, 1.0 - frac, frac)


def random_fringe(n_lines: int, n: int, seed: int = 1) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 4096, size=(n_lines, n), dtype=np.uint16)


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def jitter_calib():
    """128-sample calibration with jittered phase coefficients."""
    return make_jitter_calibration(128)


@pytest.fixture
def identity_calib():
    """128-sample identity calibration (zero background, phase[i] = {i, 1, 0})."""
    return Calibration.identity(128)


@pytest.fixture
def calib_dir(tmp_path):
    """Calibration directory holding a 64-sample jittered calibration."""
    calib = make_jitter_calibration(64, seed=3)
    path = tmp_path / "OCTcalib test"
    calib.save_to_dir(path)
    return path
