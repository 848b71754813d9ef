"""Wavelet-based peak detection for direct-infusion spectra.

Key Features
------------
- Ricker wavelet transform over user-defined scales (numba, GIL-free)
- Sliding-window noise estimation (mean, median, 95% quantile, MAD)
- Cross-scale merging of neighbouring maxima
- Raw-intensity integration within zero-crossing boundaries

Examples
--------
>>> from dimsfast.peaks import PeakDetectionParams, detect_peaks
>>> peaks = detect_peaks(spectrum, PeakDetectionParams(snr_threshold=5.0))
"""

from .detection import (
    NoiseMethod,
    PeakDetectionParams,
    PeakDetector,
    detect_peaks,
    find_local_maxima,
    integrate_peak,
    local_noise,
    merge_candidates,
    trim_overlaps,
)

from .wavelet import (
    convolve_ricker,
    cwt_matrix,
    min_points_for_scale,
    ricker_kernel,
    usable_scales,
)

__all__ = [
    # Detection
    "NoiseMethod",
    "PeakDetectionParams",
    "PeakDetector",
    "detect_peaks",
    "find_local_maxima",
    "integrate_peak",
    "local_noise",
    "merge_candidates",
    "trim_overlaps",
    # Wavelet transform
    "convolve_ricker",
    "cwt_matrix",
    "min_points_for_scale",
    "ricker_kernel",
    "usable_scales",
]
