"""Pytest configuration for dimsfast tests.

This module provides common fixtures and configuration for all tests.
Spectra are synthetic (see dimsfast.synthetic), so no data files are needed.
"""

import numpy as np
import pytest

from dimsfast.containers import Peak
from dimsfast.peaks import PeakDetectionParams
from dimsfast.synthetic import synthetic_study


STUDY_PEAKS = (100.0, 150.0, 200.0)


@pytest.fixture(scope="session")
def sample_groups():
    """Two groups with two samples each."""
    return {"A1": "A", "A2": "A", "B1": "B", "B2": "B"}


@pytest.fixture(scope="session")
def study_spectra(sample_groups):
    """Four noisy spectra with peaks at m/z 100, 150 and 200."""
    return synthetic_study(
        STUDY_PEAKS,
        sample_groups,
        seed=7,
        mz_range=(95.0, 205.0),
        mz_step=0.001,
        peak_fwhm=0.01,
        baseline=100.0,
        noise_level=50.0,
        mz_jitter_ppm=2.0,
    )


@pytest.fixture
def detection_params():
    """Detection parameters matched to the synthetic peak width (~4 points sigma)."""
    return PeakDetectionParams(
        scales=(2.0, 3.0, 4.0, 6.0, 8.0),
        snr_threshold=10.0,
        noise_window_size=500,
    )


@pytest.fixture
def make_peak():
    """Factory for peaks with a symmetric +-0.005 boundary."""
    def _make(sample_id, mz, into=1000.0, width=0.005):
        return Peak(
            sample_id=sample_id,
            mz=mz,
            mzmin=mz - width,
            mzmax=mz + width,
            into=into,
            maxo=into / 10.0,
        )
    return _make


# Random seed for reproducibility
@pytest.fixture(scope="session", autouse=True)
def set_random_seed():
    """Set random seed for reproducible tests."""
    np.random.seed(42)
