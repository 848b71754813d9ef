"""Calibrant-based m/z calibration."""

from .mz_calibration import (
    CalibrationMethod,
    CalibrationParams,
    CalibrationReport,
    Calibrator,
    calibrate_peaks,
    edgeshift_offsets,
    linear_offsets,
    match_calibrants,
    shift_offsets,
)

__all__ = [
    'CalibrationMethod',
    'CalibrationParams',
    'CalibrationReport',
    'Calibrator',
    'calibrate_peaks',
    'edgeshift_offsets',
    'linear_offsets',
    'match_calibrants',
    'shift_offsets',
]
