"""Multiscale wavelet peak detection for direct-infusion profile spectra.

Algorithm (MassSpecWavelet-style):
1. Ricker wavelet transform at every usable scale
2. Local maxima of the positive coefficients at each scale
3. Local noise from |coefficients| at the smallest scale in a sliding window
4. Keep maxima with SNR above threshold
5. Support = coefficient zero crossings, apex refined to the raw maximum
6. Merge candidates across scales into peaks (shared apex always; adjacent
   scales with mutually contained apexes when ``use_neighboring_peaks``)
7. Trim overlapping neighbours at the raw intensity valley
8. Integrate raw intensity within the final boundaries

Spectra too short for a scale simply skip that scale; a spectrum with no
qualifying maxima yields an empty tuple.

Examples
--------
>>> from dimsfast.peaks import PeakDetectionParams, detect_peaks
>>> params = PeakDetectionParams(scales=(2, 4, 8), snr_threshold=5.0)
>>> peaks = detect_peaks(spectrum, params)
>>> print(f"{len(peaks)} peaks, first at m/z {peaks[0].mz:.4f}")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple

import numpy as np
from numba import njit

from ..constants import (
    DEFAULT_MIN_NOISE_LEVEL,
    DEFAULT_NOISE_WINDOW,
    DEFAULT_SCALES,
    DEFAULT_SNR_THRESHOLD,
    MAD_SCALE,
    NOISE_EPSILON,
    NOISE_QUANTILE,
)
from ..containers import Peak, Spectrum
from ..errors import InvalidConfiguration
from .wavelet import cwt_matrix, usable_scales

logger = logging.getLogger(__name__)


class NoiseMethod(Enum):
    """Statistic applied to |coefficients| in the noise window."""
    MEAN = "mean"
    MEDIAN = "median"
    QUANTILE = "quantile"  # 95th percentile, MassSpecWavelet default
    MAD = "mad"            # 1.4826 * median absolute deviation


# Numba kernels take plain int codes
_NOISE_CODES = {
    NoiseMethod.MEAN: 0,
    NoiseMethod.MEDIAN: 1,
    NoiseMethod.QUANTILE: 2,
    NoiseMethod.MAD: 3,
}
assert set(_NOISE_CODES) == set(NoiseMethod), "every NoiseMethod needs a kernel code"


@dataclass(frozen=True)
class PeakDetectionParams:
    """Parameters for wavelet peak detection.

    Attributes
    ----------
    scales : tuple of float
        Ricker scales in array points; positive and strictly increasing
    snr_threshold : float
        Minimum signal-to-noise ratio (strictly exceeded)
    noise_window_size : int
        Points in the sliding noise window
    use_neighboring_peaks : bool
        Merge maxima at adjacent scales whose supports contain each other's
        apex, spanning the merged support
    noise_method : NoiseMethod
        Noise statistic
    min_noise_level : float
        Noise floor as a fraction of the largest |coefficient| at the noise scale
    amp_threshold : float
        Minimum coefficient as a fraction of the largest coefficient (0 disables)
    """

    scales: Tuple[float, ...] = DEFAULT_SCALES
    snr_threshold: float = DEFAULT_SNR_THRESHOLD
    noise_window_size: int = DEFAULT_NOISE_WINDOW
    use_neighboring_peaks: bool = True
    noise_method: NoiseMethod = NoiseMethod.MEDIAN
    min_noise_level: float = DEFAULT_MIN_NOISE_LEVEL
    amp_threshold: float = 0.0

    def __post_init__(self):
        try:
            scales = tuple(float(s) for s in self.scales)
        except (TypeError, ValueError):
            raise InvalidConfiguration(f"scales must be numbers, got {self.scales!r}") from None
        if not scales:
            raise InvalidConfiguration("scales must not be empty")
        if any(not np.isfinite(s) or s <= 0 for s in scales):
            raise InvalidConfiguration(f"scales must be positive, got {scales}")
        if any(b <= a for a, b in zip(scales, scales[1:])):
            raise InvalidConfiguration(f"scales must be strictly increasing, got {scales}")
        object.__setattr__(self, "scales", scales)

        try:
            object.__setattr__(self, "noise_method", NoiseMethod(self.noise_method))
        except ValueError:
            raise InvalidConfiguration(f"Unknown noise method: {self.noise_method}") from None

        if self.snr_threshold < 0:
            raise InvalidConfiguration(f"snr_threshold must be >= 0, got {self.snr_threshold}")
        if int(self.noise_window_size) != self.noise_window_size or self.noise_window_size < 1:
            raise InvalidConfiguration(
                f"noise_window_size must be a positive integer, got {self.noise_window_size}"
            )
        object.__setattr__(self, "noise_window_size", int(self.noise_window_size))
        if not 0.0 <= self.min_noise_level < 1.0:
            raise InvalidConfiguration(
                f"min_noise_level must be in [0, 1), got {self.min_noise_level}"
            )
        if not 0.0 <= self.amp_threshold < 1.0:
            raise InvalidConfiguration(
                f"amp_threshold must be in [0, 1), got {self.amp_threshold}"
            )


# =============================================================================
# Numba kernels
# =============================================================================

@njit(nogil=True)
def find_local_maxima(coefs: np.ndarray) -> np.ndarray:
    """Interior indices where positive coefficients peak.

    Plateaus report their first point (strict rise, non-strict fall).
    """
    n = len(coefs)
    out = np.empty(max(n, 0), dtype=np.int64)
    count = 0
    for i in range(1, n - 1):
        c = coefs[i]
        if c > 0.0 and c > coefs[i - 1] and c >= coefs[i + 1]:
            out[count] = i
            count += 1
    return out[:count]


@njit(nogil=True)
def local_noise(
    abs_coefs: np.ndarray,
    positions: np.ndarray,
    window: int,
    method_code: int,
    quantile: float,
) -> np.ndarray:
    """Noise estimate around each position over a window of ``window`` points.

    The window is kept at full size near the edges by shifting it inward.
    """
    n = len(abs_coefs)
    noise = np.zeros(len(positions), dtype=np.float64)
    if n == 0:
        return noise
    w = min(window, n)
    half = w // 2

    for i in range(len(positions)):
        lo = positions[i] - half
        if lo < 0:
            lo = 0
        hi = lo + w
        if hi > n:
            hi = n
            lo = n - w
        seg = abs_coefs[lo:hi]

        if method_code == 0:
            noise[i] = np.mean(seg)
        elif method_code == 1:
            noise[i] = np.median(seg)
        elif method_code == 2:
            noise[i] = np.percentile(seg, quantile * 100.0)
        else:
            med = np.median(seg)
            noise[i] = MAD_SCALE * np.median(np.abs(seg - med))

    return noise


@njit(nogil=True)
def zero_crossing_bounds(coefs: np.ndarray, pos: int) -> Tuple[int, int]:
    """Extend left/right from ``pos`` while coefficients stay positive."""
    n = len(coefs)
    lb = pos
    while lb > 0 and coefs[lb - 1] > 0.0:
        lb -= 1
    rb = pos
    while rb < n - 1 and coefs[rb + 1] > 0.0:
        rb += 1
    return lb, rb


@njit(nogil=True)
def scale_candidates(
    coefs: np.ndarray,
    noise_abs_coefs: np.ndarray,
    intensities: np.ndarray,
    window: int,
    method_code: int,
    noise_floor: float,
    snr_threshold: float,
    amp_min: float,
):
    """Peak candidates at one scale.

    Returns
    -------
    apex, lb, rb : np.ndarray (int64)
        Raw-intensity apex and support boundaries
    coef, snr : np.ndarray (float64)
        Wavelet coefficient and signal-to-noise at the maximum
    """
    positions = find_local_maxima(coefs)
    noise = local_noise(noise_abs_coefs, positions, window, method_code, NOISE_QUANTILE)

    m = len(positions)
    apex = np.empty(m, dtype=np.int64)
    lbs = np.empty(m, dtype=np.int64)
    rbs = np.empty(m, dtype=np.int64)
    coef = np.empty(m, dtype=np.float64)
    snr = np.empty(m, dtype=np.float64)
    count = 0

    for i in range(m):
        p = positions[i]
        c = coefs[p]
        if c < amp_min:
            continue
        s = c / max(noise[i], noise_floor)
        if s <= snr_threshold:
            continue

        lb, rb = zero_crossing_bounds(coefs, p)
        best = lb
        for j in range(lb + 1, rb + 1):
            if intensities[j] > intensities[best]:
                best = j

        apex[count] = best
        lbs[count] = lb
        rbs[count] = rb
        coef[count] = c
        snr[count] = s
        count += 1

    return apex[:count], lbs[:count], rbs[:count], coef[:count], snr[:count]


@njit(nogil=True)
def integrate_peak(
    mz: np.ndarray, intensities: np.ndarray, lb: int, rb: int, apex: int
) -> Tuple[float, float, float]:
    """Integrated intensity, apex intensity and centroid m/z of one peak.

    The centroid is intensity-weighted over points at or above half the
    apex intensity and clamped to [mz[lb], mz[rb]] against rounding.
    """
    into = 0.0
    for j in range(lb, rb + 1):
        if intensities[j] > 0.0:
            into += intensities[j]

    maxo = intensities[apex]
    half = maxo / 2.0
    wsum = 0.0
    msum = 0.0
    if maxo > 0.0:
        for j in range(lb, rb + 1):
            if intensities[j] >= half:
                wsum += intensities[j]
                msum += intensities[j] * mz[j]
    centroid = msum / wsum if wsum > 0.0 else mz[apex]
    centroid = min(max(centroid, mz[lb]), mz[rb])
    return into, maxo, centroid


# =============================================================================
# Candidate merging
# =============================================================================

def _find(parent: List[int], i: int) -> int:
    while parent[i] != i:
        parent[i] = parent[parent[i]]
        i = parent[i]
    return i


def _union(parent: List[int], i: int, j: int) -> None:
    ri, rj = _find(parent, i), _find(parent, j)
    if ri != rj:
        parent[max(ri, rj)] = min(ri, rj)


def merge_candidates(
    scale_idx: np.ndarray,
    apex: np.ndarray,
    lb: np.ndarray,
    rb: np.ndarray,
    snr: np.ndarray,
    use_neighboring_peaks: bool,
) -> List[Tuple[int, int, int, int]]:
    """Merge per-scale candidates into peaks.

    Returns
    -------
    list of (apex, lb, rb, best_candidate)
        Sorted by apex. ``best_candidate`` is the member with the highest SNR
        (lowest scale on ties).
    """
    n = len(apex)
    if n == 0:
        return []
    parent = list(range(n))

    # Shared apex
    order = np.lexsort((scale_idx, apex))
    for a, b in zip(order[:-1], order[1:]):
        if apex[a] == apex[b]:
            _union(parent, int(a), int(b))

    # Adjacent scales, apex contained in each other's support
    if use_neighboring_peaks:
        n_scales = int(scale_idx.max()) + 1
        by_scale = [np.flatnonzero(scale_idx == k) for k in range(n_scales)]
        for k in range(n_scales - 1):
            upper = by_scale[k + 1]
            if len(upper) == 0:
                continue
            upper = upper[np.argsort(apex[upper], kind="stable")]
            upper_apex = apex[upper]
            for i in by_scale[k]:
                lo = np.searchsorted(upper_apex, lb[i], side="left")
                hi = np.searchsorted(upper_apex, rb[i], side="right")
                for j in upper[lo:hi]:
                    if lb[j] <= apex[i] <= rb[j]:
                        _union(parent, int(i), int(j))

    groups = {}
    for i in range(n):
        groups.setdefault(_find(parent, i), []).append(i)

    merged = []
    for members in groups.values():
        best = max(members, key=lambda i: (snr[i], -scale_idx[i]))
        if use_neighboring_peaks:
            lo = int(min(lb[i] for i in members))
            hi = int(max(rb[i] for i in members))
        else:
            lo, hi = int(lb[best]), int(rb[best])
        merged.append((int(apex[best]), lo, hi, best))

    merged.sort()
    return merged


def trim_overlaps(
    intensities: np.ndarray, merged: List[Tuple[int, int, int, int]]
) -> List[Tuple[int, int, int, int]]:
    """Split overlapping neighbours at the raw intensity valley between apexes."""
    trimmed = [list(m) for m in merged]
    for i in range(len(trimmed) - 1):
        left, right = trimmed[i], trimmed[i + 1]
        if left[2] < right[1]:
            continue
        a, b = left[0], right[0]
        valley = a + int(np.argmin(intensities[a:b + 1]))
        if valley >= b:
            valley = b - 1
        left[2] = min(left[2], valley)
        right[1] = max(right[1], valley + 1)
    return [tuple(t) for t in trimmed]


# =============================================================================
# Public API
# =============================================================================

def detect_peaks(spectrum: Spectrum, params: PeakDetectionParams) -> Tuple[Peak, ...]:
    """Detect peaks in one spectrum.

    Parameters
    ----------
    spectrum : Spectrum
        Profile spectrum of one sample
    params : PeakDetectionParams
        Detection parameters

    Returns
    -------
    tuple of Peak
        Sorted by m/z; empty when nothing qualifies
    """
    scales = usable_scales(len(spectrum), np.array(params.scales))
    if len(scales) < len(params.scales):
        logger.debug(
            f"{spectrum.sample_id}: {len(params.scales) - len(scales)} scale(s) "
            f"skipped, spectrum has only {len(spectrum)} points"
        )
    if len(scales) == 0:
        return ()

    intensities = spectrum.intensity
    coefs = cwt_matrix(intensities, scales)

    noise_abs = np.abs(coefs[0])
    noise_floor = max(params.min_noise_level * float(noise_abs.max()), NOISE_EPSILON)
    amp_min = params.amp_threshold * float(coefs.max()) if params.amp_threshold > 0 else -np.inf
    method_code = _NOISE_CODES[params.noise_method]

    parts = []
    for k in range(len(scales)):
        apex, lb, rb, coef, snr = scale_candidates(
            coefs[k], noise_abs, intensities,
            params.noise_window_size, method_code,
            noise_floor, params.snr_threshold, amp_min,
        )
        parts.append((np.full(len(apex), k, dtype=np.int64), apex, lb, rb, snr))

    scale_idx, apex, lb, rb, snr = (np.concatenate(cols) for cols in zip(*parts))

    merged = merge_candidates(scale_idx, apex, lb, rb, snr, params.use_neighboring_peaks)
    merged = trim_overlaps(intensities, merged)

    peaks = []
    for peak_apex, peak_lb, peak_rb, best in merged:
        into, maxo, centroid = integrate_peak(
            spectrum.mz, intensities, peak_lb, peak_rb, peak_apex
        )
        if maxo <= 0.0:
            continue
        peaks.append(Peak(
            sample_id=spectrum.sample_id,
            mz=float(centroid),
            mzmin=float(spectrum.mz[peak_lb]),
            mzmax=float(spectrum.mz[peak_rb]),
            into=float(into),
            maxo=float(maxo),
            sn=float(snr[best]),
            scale=float(scales[scale_idx[best]]),
        ))

    peaks.sort(key=lambda p: p.mz)
    logger.debug(f"{spectrum.sample_id}: {len(peaks):,} peaks from {len(apex):,} candidates")
    return tuple(peaks)


class PeakDetector:
    """Wavelet peak detector bound to one parameter set.

    Examples
    --------
    >>> detector = PeakDetector(PeakDetectionParams(snr_threshold=10.0))
    >>> peaks = detector.detect(spectrum)
    """

    def __init__(self, params: PeakDetectionParams = None):
        self.params = params if params is not None else PeakDetectionParams()

    def detect(self, spectrum: Spectrum) -> Tuple[Peak, ...]:
        return detect_peaks(spectrum, self.params)
