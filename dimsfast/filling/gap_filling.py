"""Gap filling: recover signal for samples without a peak in a feature.

For every feature and every sample lacking a member peak, the raw spectrum is
integrated over the feature's integration range (the median boundaries of
its member peaks) widened by the integration window.
The result is appended as a synthetic peak (``filled=True``). If the region
holds no raw data points the sample is recorded in the feature's
``missing_samples`` and reported as ``NA`` - distinct from an integrated
value of 0.0, which is a real measurement.

Gap filling never removes features or peaks.

Examples
--------
>>> from dimsfast.filling import GapFillParams, fill_gaps
>>> features, peaks = fill_gaps(features, peaks, spectra, GapFillParams(integration_window=0.005))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Sequence, Tuple, Union

import numpy as np
from numba import njit

from ..constants import PPM
from ..containers import NA, Feature, Missing, Peak, Spectrum, is_missing
from ..errors import InvalidConfiguration
from ..parallel import WorkerPool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GapFillParams:
    """Parameters for gap filling.

    Attributes
    ----------
    integration_window : float
        Absolute widening of the feature's m/z range on each side (Da)
    integration_ppm : float
        Additional relative widening (ppm of the range edge)
    """

    integration_window: float = 0.0
    integration_ppm: float = 0.0

    def __post_init__(self):
        for name in ("integration_window", "integration_ppm"):
            value = getattr(self, name)
            if not np.isfinite(value) or value < 0:
                raise InvalidConfiguration(f"{name} must be a non-negative number, got {value}")

    def region(self, feature: Feature) -> Tuple[float, float]:
        """m/z interval integrated for ``feature``."""
        mzmin, mzmax = feature.integration_range()
        low = mzmin - self.integration_window - self.integration_ppm * mzmin * PPM
        high = mzmax + self.integration_window + self.integration_ppm * mzmax * PPM
        return low, high


@njit(nogil=True)
def mz_range_indices(mz_array: np.ndarray, low_mz: float, high_mz: float) -> Tuple[int, int]:
    """Find [start, end) of points with low_mz <= mz <= high_mz using binary search.

    Parameters
    ----------
    mz_array : np.ndarray
        Sorted array of m/z values
    low_mz, high_mz : float
        Closed interval bounds

    Returns
    -------
    start_idx : int
        Start index (inclusive)
    end_idx : int
        End index (exclusive, Python convention)
    """
    left, right = 0, len(mz_array)
    while left < right:
        mid = (left + right) // 2
        if mz_array[mid] < low_mz:
            left = mid + 1
        else:
            right = mid
    start_idx = left

    left, right = start_idx, len(mz_array)
    while left < right:
        mid = (left + right) // 2
        if mz_array[mid] <= high_mz:
            left = mid + 1
        else:
            right = mid
    end_idx = left

    return start_idx, end_idx


@njit(nogil=True)
def integrate_region(
    mz_array: np.ndarray, intensity_array: np.ndarray, low_mz: float, high_mz: float
) -> Tuple[int, int, float, float, float]:
    """Integrate raw signal in [low_mz, high_mz].

    Returns
    -------
    (start, end, into, maxo, centroid)
        ``end - start`` is the number of raw points found (0 means no data);
        ``centroid`` is NaN when the summed intensity is zero
    """
    start, end = mz_range_indices(mz_array, low_mz, high_mz)
    into = 0.0
    maxo = 0.0
    msum = 0.0
    for i in range(start, end):
        inten = intensity_array[i]
        if inten > 0.0:
            into += inten
            msum += inten * mz_array[i]
            if inten > maxo:
                maxo = inten
    centroid = msum / into if into > 0.0 else np.nan
    return start, end, into, maxo, centroid


def fill_feature_sample(
    spectrum: Spectrum, feature: Feature, params: GapFillParams
) -> Union[Peak, Missing]:
    """Integrate one sample's spectrum in one feature's region.

    Returns
    -------
    Peak or NA
        A filled peak when the region holds raw points (``into`` may be 0.0),
        ``NA`` when it holds none
    """
    low, high = params.region(feature)
    start, end, into, maxo, centroid = integrate_region(
        spectrum.mz, spectrum.intensity, low, high
    )
    if end == start:
        return NA

    mzmin = float(spectrum.mz[start])
    mzmax = float(spectrum.mz[end - 1])
    if np.isnan(centroid):
        centroid = feature.mz
    centroid = min(max(centroid, mzmin), mzmax)

    return Peak(
        sample_id=spectrum.sample_id,
        mz=float(centroid),
        mzmin=mzmin,
        mzmax=mzmax,
        into=float(into),
        maxo=float(maxo),
        filled=True,
    )


def fill_gaps(
    features: Sequence[Feature],
    peaks: Sequence[Peak],
    spectra: Mapping[str, Spectrum],
    params: GapFillParams,
    pool: WorkerPool = None,
) -> Tuple[Tuple[Feature, ...], Tuple[Peak, ...]]:
    """Fill missing (feature, sample) cells from raw spectra.

    Parameters
    ----------
    features : Sequence[Feature]
        Grouped features (read-only)
    peaks : Sequence[Peak]
        Flat peak sequence the features refer to
    spectra : Mapping[str, Spectrum]
        Raw spectrum per sample id; every sample is considered
    params : GapFillParams
        Integration window
    pool : WorkerPool, optional
        Worker pool; samples are processed concurrently

    Returns
    -------
    features : tuple of Feature
        Same features, same order, with filled peak indices appended and
        ``missing_samples`` extended
    peaks : tuple of Peak
        Input peaks followed by the new filled peaks

    Raises
    ------
    BatchProcessingError
        Integration failed for one or more samples
    """
    pool = pool if pool is not None else WorkerPool()

    present = [feature.sample_ids(peaks) for feature in features]
    todo: Dict[str, List[int]] = {
        sample_id: [
            fi for fi, feature in enumerate(features)
            if sample_id not in present[fi] and sample_id not in feature.missing_samples
        ]
        for sample_id in spectra
    }

    def fill_sample(sample_id: str) -> List[Tuple[int, Union[Peak, Missing]]]:
        spectrum = spectra[sample_id]
        return [(fi, fill_feature_sample(spectrum, features[fi], params)) for fi in todo[sample_id]]

    batch = pool.map_samples(fill_sample, {s: s for s, todo_list in todo.items() if todo_list})
    batch.raise_for_failures("gap filling")

    added: Dict[int, List[int]] = {}
    missing: Dict[int, List[str]] = {}
    new_peaks: List[Peak] = list(peaks)
    n_filled = 0
    n_missing = 0

    # Feature order, then sample order, independent of task completion order
    per_feature: Dict[int, List[Tuple[str, Union[Peak, Missing]]]] = {}
    for sample_id in spectra:
        for fi, outcome in batch.succeeded.get(sample_id, []):
            per_feature.setdefault(fi, []).append((sample_id, outcome))

    for fi in sorted(per_feature):
        for sample_id, outcome in per_feature[fi]:
            if is_missing(outcome):
                missing.setdefault(fi, []).append(sample_id)
                n_missing += 1
            else:
                added.setdefault(fi, []).append(len(new_peaks))
                new_peaks.append(outcome)
                n_filled += 1

    filled_features = tuple(
        replace(
            feature,
            peak_indices=feature.peak_indices + tuple(added.get(fi, ())),
            missing_samples=feature.missing_samples | frozenset(missing.get(fi, ())),
        )
        if fi in added or fi in missing
        else feature
        for fi, feature in enumerate(features)
    )

    logger.info(
        f"Gap filling: {n_filled:,} values recovered, {n_missing:,} without signal (NA) "
        f"across {len(features):,} features"
    )
    return filled_features, tuple(new_peaks)


class GapFiller:
    """Gap filler bound to one parameter set."""

    def __init__(self, params: GapFillParams = None):
        self.params = params if params is not None else GapFillParams()

    def fill(
        self,
        features: Sequence[Feature],
        peaks: Sequence[Peak],
        spectra: Mapping[str, Spectrum],
        pool: WorkerPool = None,
    ) -> Tuple[Tuple[Feature, ...], Tuple[Peak, ...]]:
        return fill_gaps(features, peaks, spectra, self.params, pool)
