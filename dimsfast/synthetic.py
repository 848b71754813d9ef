"""Synthetic direct-infusion spectra for examples and tests.

Spectra are sums of Gaussian peaks on an equidistant m/z grid, with optional
constant baseline, Gaussian noise and per-sample m/z jitter.

Examples
--------
>>> from dimsfast.synthetic import synthetic_study
>>> groups = {"A1": "A", "A2": "A", "B1": "B", "B2": "B"}
>>> spectra = synthetic_study([100.0, 150.0, 200.0], groups, noise_level=50.0, seed=1)
"""

from typing import List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .constants import PPM
from .containers import Spectrum

# FWHM = 2.355 * sigma for a Gaussian
FWHM_TO_SIGMA = 1.0 / 2.3548


def synthetic_spectrum(
    sample_id: str,
    peak_mz: Sequence[float],
    peak_heights: Optional[Sequence[float]] = None,
    mz_range: Optional[Tuple[float, float]] = None,
    mz_step: float = 0.001,
    peak_fwhm: float = 0.01,
    baseline: float = 0.0,
    noise_level: float = 0.0,
    mz_jitter_ppm: float = 0.0,
    rng: Optional[np.random.Generator] = None,
) -> Spectrum:
    """Generate one profile spectrum with Gaussian peaks.

    Args:
        sample_id: Sample name
        peak_mz: True peak centres (m/z)
        peak_heights: Peak apex heights (default: 1e5 each)
        mz_range: Grid range (default: 5 Da beyond the outer peaks)
        mz_step: Grid spacing (Da)
        peak_fwhm: Peak full width at half maximum (Da)
        baseline: Constant offset added everywhere
        noise_level: Standard deviation of additive Gaussian noise
        mz_jitter_ppm: Standard deviation of random per-peak m/z shifts (ppm)
        rng: Random generator (default: unseeded)

    Returns:
        Spectrum with non-negative intensities
    """
    rng = rng if rng is not None else np.random.default_rng()
    peak_mz = np.asarray(peak_mz, dtype=np.float64)
    if peak_heights is None:
        peak_heights = np.full(len(peak_mz), 1e5)
    peak_heights = np.asarray(peak_heights, dtype=np.float64)

    if mz_range is None:
        if len(peak_mz) == 0:
            raise ValueError("mz_range is required when no peaks are given")
        mz_range = (float(peak_mz.min()) - 5.0, float(peak_mz.max()) + 5.0)

    mz = np.arange(mz_range[0], mz_range[1], mz_step)
    intensity = np.full(len(mz), baseline, dtype=np.float64)

    sigma = peak_fwhm * FWHM_TO_SIGMA
    for centre, height in zip(peak_mz, peak_heights):
        if mz_jitter_ppm > 0:
            centre = centre + rng.normal(0.0, mz_jitter_ppm) * centre * PPM
        # Only evaluate within 8 sigma
        lo, hi = np.searchsorted(mz, [centre - 8 * sigma, centre + 8 * sigma])
        intensity[lo:hi] += height * np.exp(-0.5 * ((mz[lo:hi] - centre) / sigma) ** 2)

    if noise_level > 0:
        intensity += rng.normal(0.0, noise_level, len(mz))

    return Spectrum(sample_id, mz, np.maximum(intensity, 0.0))


def synthetic_study(
    peak_mz: Sequence[float],
    sample_groups: Mapping[str, str],
    seed: Optional[int] = None,
    **kwargs,
) -> List[Spectrum]:
    """One synthetic spectrum per sample of ``sample_groups`` (same peaks in each).

    Extra keyword arguments are passed to :func:`synthetic_spectrum`.
    """
    rng = np.random.default_rng(seed)
    return [
        synthetic_spectrum(sample_id, peak_mz, rng=rng, **kwargs)
        for sample_id in sample_groups
    ]
