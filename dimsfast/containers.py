"""Data containers for the DIMS feature-detection pipeline.

Spectrum → Peak → Feature → FeatureTable. All containers are immutable:
each pipeline stage builds new records instead of editing earlier ones.

Missing values are modelled explicitly. A measurement is either
``Present(value)`` or the ``NA`` singleton, so "no signal" can never be
confused with a true zero or with a stray NaN.

Examples
--------
>>> spectrum = Spectrum("S1", mz=np.array([100.0, 100.001]), intensity=np.array([5.0, 7.0]))
>>> table = FeatureTable.from_features(features, peaks, ["S1", "S2"])
>>> values, missing = table.to_array()
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

import numpy as np

from .constants import FLOAT_DTYPE, NA_STRING
from .errors import InvalidConfiguration


# =============================================================================
# Measurements
# =============================================================================

@dataclass(frozen=True)
class Present:
    """A measured value (may legitimately be 0.0)."""

    value: float


class Missing:
    """No data: nothing to integrate at this location. Use the ``NA`` singleton."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return NA_STRING

    def __reduce__(self):
        return (Missing, ())


NA = Missing()

Measurement = Union[Present, Missing]


def is_missing(measurement: Measurement) -> bool:
    """True if ``measurement`` is the NA marker."""
    return measurement is NA


# =============================================================================
# Spectrum and Peak
# =============================================================================

@dataclass(frozen=True, eq=False)
class Spectrum:
    """One sample's profile spectrum.

    ``mz`` must be strictly ascending (unique). Both arrays are copied to
    float64 and made read-only, so a Spectrum cannot change once loaded.
    """

    sample_id: str
    mz: np.ndarray
    intensity: np.ndarray

    def __post_init__(self):
        mz = np.array(self.mz, dtype=FLOAT_DTYPE)
        intensity = np.array(self.intensity, dtype=FLOAT_DTYPE)

        if mz.ndim != 1 or intensity.ndim != 1:
            raise ValueError(f"Spectrum '{self.sample_id}': mz and intensity must be 1-D")
        if len(mz) != len(intensity):
            raise ValueError(
                f"Spectrum '{self.sample_id}': {len(mz)} m/z values "
                f"but {len(intensity)} intensities"
            )
        if not (np.all(np.isfinite(mz)) and np.all(np.isfinite(intensity))):
            raise ValueError(f"Spectrum '{self.sample_id}': non-finite values")
        if len(mz) > 1 and np.any(np.diff(mz) <= 0):
            raise ValueError(
                f"Spectrum '{self.sample_id}': m/z must be strictly ascending "
                "(use Spectrum.from_unsorted for raw input)"
            )

        mz.setflags(write=False)
        intensity.setflags(write=False)
        object.__setattr__(self, "mz", mz)
        object.__setattr__(self, "intensity", intensity)

    @classmethod
    def from_unsorted(
        cls, sample_id: str, mz: Sequence[float], intensity: Sequence[float]
    ) -> "Spectrum":
        """Sort by m/z and merge duplicate m/z values by summing intensity."""
        mz = np.asarray(mz, dtype=FLOAT_DTYPE)
        intensity = np.asarray(intensity, dtype=FLOAT_DTYPE)
        if len(mz) != len(intensity):
            raise ValueError(
                f"Spectrum '{sample_id}': {len(mz)} m/z values "
                f"but {len(intensity)} intensities"
            )

        order = np.argsort(mz, kind="stable")
        unique_mz, inverse = np.unique(mz[order], return_inverse=True)
        merged = np.zeros(len(unique_mz), dtype=FLOAT_DTYPE)
        np.add.at(merged, inverse, intensity[order])

        return cls(sample_id, unique_mz, merged)

    def __len__(self) -> int:
        return len(self.mz)


@dataclass(frozen=True)
class Peak:
    """A peak detected in (or integrated from) one sample's spectrum.

    Attributes
    ----------
    sample_id : str
        Owning sample
    mz : float
        Representative m/z (intensity-weighted centroid)
    mzmin, mzmax : float
        Peak boundaries
    into : float
        Integrated raw intensity within [mzmin, mzmax]
    maxo : float
        Apex intensity
    sn : float
        Signal-to-noise ratio (NaN for gap-filled peaks)
    scale : float
        Wavelet scale with the strongest response (0.0 for gap-filled peaks)
    filled : bool
        True if created by gap filling rather than detection
    """

    sample_id: str
    mz: float
    mzmin: float
    mzmax: float
    into: float
    maxo: float = 0.0
    sn: float = np.nan
    scale: float = 0.0
    filled: bool = False


# =============================================================================
# Feature and FeatureTable
# =============================================================================

@dataclass(frozen=True)
class Feature:
    """A cluster of peaks across samples representing one ion species.

    ``peak_indices`` are back-references into the dataset's flat peak tuple;
    the feature does not own the peaks. ``missing_samples`` lists samples for
    which gap filling found no raw data in the feature's region.

    ``region_mzmin`` and ``region_mzmax`` bound the m/z interval gap filling
    integrates: the median boundaries of the member peaks, never narrower
    than ``[mzmin, mzmax]``. ``None`` means the feature range itself.
    """

    feature_id: str
    mz: float
    mzmin: float
    mzmax: float
    peak_indices: Tuple[int, ...]
    missing_samples: FrozenSet[str] = field(default_factory=frozenset)
    region_mzmin: Optional[float] = None
    region_mzmax: Optional[float] = None

    def sample_ids(self, peaks: Sequence[Peak]) -> FrozenSet[str]:
        """Distinct samples that contribute a peak to this feature."""
        return frozenset(peaks[i].sample_id for i in self.peak_indices)

    def overlaps(self, other: "Feature") -> bool:
        return self.mzmin <= other.mzmax and other.mzmin <= self.mzmax

    def integration_range(self) -> Tuple[float, float]:
        """m/z interval to integrate when filling a sample without a peak."""
        low = self.mzmin if self.region_mzmin is None else min(self.region_mzmin, self.mzmin)
        high = self.mzmax if self.region_mzmax is None else max(self.region_mzmax, self.mzmax)
        return low, high


class FeatureValueMethod(Enum):
    """How to resolve several peaks of one sample within a feature."""
    MAXINT = "maxint"  # value of the most intense peak (xcms default)
    SUM = "sum"        # sum over all peaks of the sample


_VALUE_COLUMNS = ("into", "maxo")


@dataclass(frozen=True, eq=False)
class FeatureTable:
    """Feature × sample matrix of measurements, ready for downstream tools."""

    feature_ids: Tuple[str, ...]
    mz: np.ndarray
    mzmin: np.ndarray
    mzmax: np.ndarray
    sample_ids: Tuple[str, ...]
    values: Tuple[Tuple[Measurement, ...], ...]

    @classmethod
    def from_features(
        cls,
        features: Sequence[Feature],
        peaks: Sequence[Peak],
        sample_ids: Sequence[str],
        value: str = "into",
        method: Union[str, FeatureValueMethod] = FeatureValueMethod.MAXINT,
    ) -> "FeatureTable":
        """Build the feature table from grouped (and optionally filled) features.

        Parameters
        ----------
        features : Sequence[Feature]
            Features in output order
        peaks : Sequence[Peak]
            Flat peak tuple that ``Feature.peak_indices`` point into
        sample_ids : Sequence[str]
            Column order
        value : str, default="into"
            Peak attribute to report ("into" or "maxo")
        method : str or FeatureValueMethod, default="maxint"
            Resolution when a sample has several peaks in one feature

        Returns
        -------
        FeatureTable
            Samples without a peak in a feature get ``NA``.
        """
        if value not in _VALUE_COLUMNS:
            raise InvalidConfiguration(
                f"Unknown feature value '{value}'. Use one of {_VALUE_COLUMNS}."
            )
        try:
            method = FeatureValueMethod(method)
        except ValueError:
            raise InvalidConfiguration(f"Unknown feature value method: {method}") from None

        rows: List[Tuple[Measurement, ...]] = []
        for feature in features:
            per_sample: Dict[str, List[Peak]] = {}
            for idx in feature.peak_indices:
                per_sample.setdefault(peaks[idx].sample_id, []).append(peaks[idx])

            row: List[Measurement] = []
            for sample_id in sample_ids:
                sample_peaks = per_sample.get(sample_id)
                if not sample_peaks:
                    row.append(NA)
                elif method is FeatureValueMethod.SUM:
                    row.append(Present(float(sum(getattr(p, value) for p in sample_peaks))))
                else:
                    best = max(sample_peaks, key=lambda p: p.into)
                    row.append(Present(float(getattr(best, value))))
            rows.append(tuple(row))

        return cls(
            feature_ids=tuple(f.feature_id for f in features),
            mz=np.array([f.mz for f in features], dtype=FLOAT_DTYPE),
            mzmin=np.array([f.mzmin for f in features], dtype=FLOAT_DTYPE),
            mzmax=np.array([f.mzmax for f in features], dtype=FLOAT_DTYPE),
            sample_ids=tuple(sample_ids),
            values=tuple(rows),
        )

    @property
    def shape(self) -> Tuple[int, int]:
        return len(self.feature_ids), len(self.sample_ids)

    def value(self, feature_id: str, sample_id: str) -> Measurement:
        row = self.feature_ids.index(feature_id)
        col = self.sample_ids.index(sample_id)
        return self.values[row][col]

    def to_array(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return (values, missing) arrays of shape (n_features, n_samples).

        ``values`` holds NaN where ``missing`` is True; always consult the
        mask rather than testing for NaN.
        """
        n_features, n_samples = self.shape
        values = np.full((n_features, n_samples), np.nan, dtype=FLOAT_DTYPE)
        missing = np.ones((n_features, n_samples), dtype=np.bool_)
        for i, row in enumerate(self.values):
            for j, measurement in enumerate(row):
                if not is_missing(measurement):
                    values[i, j] = measurement.value
                    missing[i, j] = False
        return values, missing

    def to_csv(self, path: Union[str, Path]) -> Path:
        """Write the table as CSV with ``NA`` for missing cells."""
        path = Path(path)
        with path.open("w", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(["feature_id", "mz", "mzmin", "mzmax", *self.sample_ids])
            for i, row in enumerate(self.values):
                cells = [
                    NA_STRING if is_missing(m) else repr(float(m.value))
                    for m in row
                ]
                writer.writerow([
                    self.feature_ids[i],
                    repr(float(self.mz[i])),
                    repr(float(self.mzmin[i])),
                    repr(float(self.mzmax[i])),
                    *cells,
                ])
        return path

    def to_dataframe(self):
        """Feature table as a pandas DataFrame indexed by feature id.

        Sample columns use the nullable ``Float64`` dtype, so missing cells
        are ``pd.NA`` rather than NaN.
        """
        import pandas as pd

        data = {
            "mz": self.mz,
            "mzmin": self.mzmin,
            "mzmax": self.mzmax,
        }
        for j, sample_id in enumerate(self.sample_ids):
            data[sample_id] = pd.array(
                [None if is_missing(row[j]) else row[j].value for row in self.values],
                dtype="Float64",
            )
        return pd.DataFrame(data, index=pd.Index(self.feature_ids, name="feature_id"))
