"""Calibrant-based m/z calibration of detected peaks.

Each calibrant (known reference m/z) is matched to the closest detected peak
within ``max(mz_abs_tolerance, mz_ppm_tolerance * mz / 1e6)``. The offsets
(calibrant − observed) of the matched pairs define the correction:

- ``edgeshift``: linear interpolation between the bracketing matched peaks,
  constant shift by the boundary offset outside the matched range. Peaks are
  bracketed by the matched peaks' observed m/z, not the calibrant m/z, so
  the correction is a function of what was measured and every matched peak
  lands exactly on its calibrant. The two brackets differ only between a
  calibrant and its own matched peak, where the closest-peak rule leaves no
  other unclaimed peak.
- ``linear``: one least-squares line of offset vs m/z applied everywhere
- ``shift``: the mean offset applied everywhere

Unmatched calibrants are skipped and logged. Too few matches raise
:class:`~dimsfast.errors.CalibrationError`.

Examples
--------
>>> from dimsfast.calibration import CalibrationParams, calibrate_peaks
>>> params = CalibrationParams(method="edgeshift", mz_ppm_tolerance=10.0)
>>> calibrated, report = calibrate_peaks(peaks, [100.001, 150.002, 200.0005], params)
>>> print(f"{report.n_matched} calibrants matched, offsets {report.offsets}")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from numba import njit

from ..constants import (
    DEFAULT_CALIBRANT_ABS_TOLERANCE,
    DEFAULT_CALIBRANT_PPM_TOLERANCE,
    PPM,
)
from ..containers import Peak
from ..errors import CalibrationError, InvalidConfiguration

logger = logging.getLogger(__name__)


class CalibrationMethod(Enum):
    """How matched calibrant offsets are turned into a correction."""
    EDGESHIFT = "edgeshift"
    LINEAR = "linear"
    SHIFT = "shift"


@dataclass(frozen=True)
class CalibrationParams:
    """Parameters for calibrant matching and correction.

    Attributes
    ----------
    method : CalibrationMethod
        Correction model
    mz_abs_tolerance : float
        Absolute matching tolerance (Da)
    mz_ppm_tolerance : float
        Relative matching tolerance (ppm); the larger of the two applies
    """

    method: CalibrationMethod = CalibrationMethod.EDGESHIFT
    mz_abs_tolerance: float = DEFAULT_CALIBRANT_ABS_TOLERANCE
    mz_ppm_tolerance: float = DEFAULT_CALIBRANT_PPM_TOLERANCE

    def __post_init__(self):
        try:
            object.__setattr__(self, "method", CalibrationMethod(self.method))
        except ValueError:
            raise InvalidConfiguration(f"Unknown calibration method: {self.method}") from None

        for name in ("mz_abs_tolerance", "mz_ppm_tolerance"):
            value = getattr(self, name)
            if not np.isfinite(value) or value < 0:
                raise InvalidConfiguration(f"{name} must be a non-negative number, got {value}")

    @property
    def min_matches(self) -> int:
        return _MIN_MATCHES[self.method]


@dataclass(frozen=True, eq=False)
class CalibrationReport:
    """Matched calibrant pairs and the offsets derived from them."""

    sample_id: str
    method: CalibrationMethod
    calibrant_mz: np.ndarray
    peak_mz: np.ndarray
    offsets: np.ndarray
    unmatched: Tuple[float, ...]

    @property
    def n_matched(self) -> int:
        return len(self.calibrant_mz)


# =============================================================================
# Matching
# =============================================================================

@njit(nogil=True)
def match_calibrants(
    peak_mz: np.ndarray,
    calibrant_mz: np.ndarray,
    abs_tolerance: float,
    ppm_tolerance: float,
) -> np.ndarray:
    """Index of the closest peak for each calibrant, -1 if none within tolerance.

    Parameters
    ----------
    peak_mz : np.ndarray
        Sorted observed peak m/z values
    calibrant_mz : np.ndarray
        Reference m/z values
    abs_tolerance : float
        Absolute tolerance (Da)
    ppm_tolerance : float
        Relative tolerance (ppm)

    Returns
    -------
    matches : np.ndarray (int64)
        Peak index per calibrant
    """
    n = len(peak_mz)
    matches = np.full(len(calibrant_mz), -1, dtype=np.int64)

    for c in range(len(calibrant_mz)):
        target = calibrant_mz[c]
        tol = max(abs_tolerance, ppm_tolerance * target * PPM)

        # Binary search for first peak >= target - tol
        left, right = 0, n
        while left < right:
            mid = (left + right) // 2
            if peak_mz[mid] < target - tol:
                left = mid + 1
            else:
                right = mid

        best = -1
        best_dist = tol
        i = left
        while i < n and peak_mz[i] <= target + tol:
            dist = abs(peak_mz[i] - target)
            if dist <= best_dist:
                if best == -1 or dist < best_dist:
                    best = i
                    best_dist = dist
            i += 1
        matches[c] = best

    return matches


def _resolve_shared_matches(
    matches: np.ndarray,
    peak_mz: np.ndarray,
    calibrant_mz: np.ndarray,
    abs_tolerance: float,
    ppm_tolerance: float,
) -> np.ndarray:
    """When several calibrants claim one peak, the closest calibrant keeps it.

    Calibrants that lose fall back to their next-closest unclaimed peak within
    tolerance. Pairs are assigned greedily by distance, ties going to the
    lower calibrant and then the lower peak index.
    """
    claimed = matches[matches >= 0]
    if len(np.unique(claimed)) == len(claimed):
        return matches

    pairs: List[Tuple[float, int, int]] = []
    for c, target in enumerate(calibrant_mz.tolist()):
        tol = max(abs_tolerance, ppm_tolerance * target * PPM)
        lo = int(np.searchsorted(peak_mz, target - tol, side="left"))
        hi = int(np.searchsorted(peak_mz, target + tol, side="right"))
        pairs.extend((abs(float(peak_mz[p]) - target), c, p) for p in range(lo, hi))
    pairs.sort()

    resolved = np.full(len(calibrant_mz), -1, dtype=np.int64)
    taken = set()
    for _, c, p in pairs:
        if resolved[c] < 0 and p not in taken:
            resolved[c] = p
            taken.add(p)
    return resolved


# =============================================================================
# Correction models
# =============================================================================

@njit(nogil=True)
def _linear_fit(x, y):
    """
    Ordinary least squares: y = a*x + b

    Closed-form solution; falls back to a constant when x is degenerate.
    """
    n = x.size
    sx = 0.0
    sy = 0.0
    sxx = 0.0
    sxy = 0.0
    for i in range(n):
        xi = x[i]
        yi = y[i]
        sx += xi
        sy += yi
        sxx += xi*xi
        sxy += xi*yi
    den = n*sxx - sx*sx
    if abs(den) < 1e-24:
        a = 0.0
        b = sy / n
    else:
        a = (n*sxy - sx*sy) / den
        b = (sy - a*sx) / n
    return a, b


@njit(nogil=True)
def edgeshift_offsets(
    mz_values: np.ndarray, knot_mz: np.ndarray, knot_offsets: np.ndarray
) -> np.ndarray:
    """Piecewise-linear offsets between knots, constant beyond the outer knots.

    ``knot_mz`` must be sorted ascending.
    """
    n_knots = len(knot_mz)
    out = np.empty(len(mz_values), dtype=np.float64)

    for i in range(len(mz_values)):
        x = mz_values[i]
        if x <= knot_mz[0]:
            out[i] = knot_offsets[0]
        elif x >= knot_mz[n_knots - 1]:
            out[i] = knot_offsets[n_knots - 1]
        else:
            # Bracketing knot: first knot strictly above x
            left, right = 0, n_knots
            while left < right:
                mid = (left + right) // 2
                if knot_mz[mid] <= x:
                    left = mid + 1
                else:
                    right = mid
            hi = left
            lo = hi - 1
            dx = knot_mz[hi] - knot_mz[lo]
            if dx <= 0.0:
                out[i] = knot_offsets[hi]
            else:
                alpha = (x - knot_mz[lo]) / dx
                out[i] = (1.0 - alpha) * knot_offsets[lo] + alpha * knot_offsets[hi]

    return out


@njit(nogil=True)
def linear_offsets(
    mz_values: np.ndarray, knot_mz: np.ndarray, knot_offsets: np.ndarray
) -> np.ndarray:
    """Offsets from a least-squares line through (knot_mz, knot_offsets)."""
    a, b = _linear_fit(knot_mz, knot_offsets)
    return a * mz_values + b


@njit(nogil=True)
def shift_offsets(
    mz_values: np.ndarray, knot_mz: np.ndarray, knot_offsets: np.ndarray
) -> np.ndarray:
    """Constant mean offset for every m/z."""
    return np.full(len(mz_values), np.mean(knot_offsets))


_OFFSET_FUNCTIONS: Dict[CalibrationMethod, Callable] = {
    CalibrationMethod.EDGESHIFT: edgeshift_offsets,
    CalibrationMethod.LINEAR: linear_offsets,
    CalibrationMethod.SHIFT: shift_offsets,
}
_MIN_MATCHES: Dict[CalibrationMethod, int] = {
    CalibrationMethod.EDGESHIFT: 2,
    CalibrationMethod.LINEAR: 2,
    CalibrationMethod.SHIFT: 1,
}
assert set(_OFFSET_FUNCTIONS) == set(CalibrationMethod), "every method needs an offset model"
assert set(_MIN_MATCHES) == set(CalibrationMethod), "every method needs a match minimum"


# =============================================================================
# Public API
# =============================================================================

def calibrate_peaks(
    peaks: Sequence[Peak],
    calibrants: Sequence[float],
    params: CalibrationParams,
    sample_id: Optional[str] = None,
) -> Tuple[Tuple[Peak, ...], CalibrationReport]:
    """Calibrate one sample's peaks against reference m/z values.

    Parameters
    ----------
    peaks : Sequence[Peak]
        Detected peaks of a single sample
    calibrants : Sequence[float]
        Known calibrant m/z values
    params : CalibrationParams
        Matching tolerances and correction method
    sample_id : str, optional
        Sample name for reporting (taken from the peaks when omitted)

    Returns
    -------
    calibrated : tuple of Peak
        New peaks in input order with ``mz``, ``mzmin`` and ``mzmax`` shifted
    report : CalibrationReport
        Matched pairs, offsets and unmatched calibrants

    Raises
    ------
    CalibrationError
        Fewer calibrants matched than the method requires
    """
    if sample_id is None:
        sample_id = peaks[0].sample_id if len(peaks) > 0 else "<unknown>"

    calibrant_mz = np.unique(np.asarray(calibrants, dtype=np.float64))
    peak_mz = np.array([p.mz for p in peaks], dtype=np.float64)
    order = np.argsort(peak_mz, kind="stable")
    sorted_mz = peak_mz[order]

    matches = match_calibrants(
        sorted_mz, calibrant_mz, params.mz_abs_tolerance, params.mz_ppm_tolerance
    )
    matches = _resolve_shared_matches(
        matches, sorted_mz, calibrant_mz, params.mz_abs_tolerance, params.mz_ppm_tolerance
    )

    matched = matches >= 0
    unmatched = tuple(float(c) for c in calibrant_mz[~matched])
    for c in unmatched:
        logger.warning(f"{sample_id}: calibrant m/z {c:.5f} has no peak within tolerance")

    n_matched = int(matched.sum())
    if n_matched < params.min_matches:
        raise CalibrationError(sample_id, n_matched, params.min_matches)

    # Knots sorted by observed m/z; peaks are bracketed on the observed scale
    knot_calibrants = calibrant_mz[matched]
    knot_mz = sorted_mz[matches[matched]]
    knot_order = np.argsort(knot_mz, kind="stable")
    knot_calibrants = knot_calibrants[knot_order]
    knot_mz = knot_mz[knot_order]
    knot_offsets = knot_calibrants - knot_mz

    offsets = _OFFSET_FUNCTIONS[params.method](peak_mz, knot_mz, knot_offsets)

    calibrated = tuple(
        replace(p, mz=p.mz + off, mzmin=p.mzmin + off, mzmax=p.mzmax + off)
        for p, off in zip(peaks, offsets.tolist())
    )

    logger.debug(
        f"{sample_id}: {params.method.value} calibration with {n_matched} calibrant(s), "
        f"offsets {np.round(knot_offsets, 6).tolist()}"
    )

    report = CalibrationReport(
        sample_id=sample_id,
        method=params.method,
        calibrant_mz=knot_calibrants,
        peak_mz=knot_mz,
        offsets=knot_offsets,
        unmatched=unmatched,
    )
    return calibrated, report


class Calibrator:
    """Calibrant-based m/z corrector bound to one parameter set."""

    def __init__(self, params: CalibrationParams = None):
        self.params = params if params is not None else CalibrationParams()

    def calibrate(
        self,
        peaks: Sequence[Peak],
        calibrants: Sequence[float],
        sample_id: Optional[str] = None,
    ) -> Tuple[Tuple[Peak, ...], CalibrationReport]:
        return calibrate_peaks(peaks, calibrants, self.params, sample_id)
