"""Correspondence of peaks across samples by 1-D m/z clustering (mzClust).

Groups peaks from all samples that represent the same ion species into
features. Direct-infusion data has no retention time, so clustering runs on
the m/z axis alone.

Algorithm:
1. Pool all peaks and sort by (m/z, sample, index)
2. Segment wherever the gap between neighbours exceeds the tolerance
   ``ppm * mz / 1e6 + abs_mz`` (single linkage)
3. Inside each segment, agglomerate adjacent clusters, smallest merged spread
   first (lower m/z on ties), while the merged spread stays within tolerance
   (complete linkage). With ``prefer_distinct_samples`` a merge is refused
   when both clusters already qualify as features on their own and share a
   sample, since keeping them apart retains more distinct samples
4. Discard clusters with too few distinct samples overall or per group

Clusters are contiguous runs of the sorted peaks and never split between
identical m/z values, so feature ranges never overlap.

Examples
--------
>>> from dimsfast.correspondence import MzClustParams, group_peaks
>>> params = MzClustParams(ppm=10.0, min_fraction_samples=0.5)
>>> features = group_peaks(peaks, sample_ids, sample_groups, params)
>>> for f in features:
...     print(f.feature_id, f"{f.mz:.4f}", len(f.peak_indices))
"""

from __future__ import annotations

import heapq
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..constants import DEFAULT_MIN_FRACTION, DEFAULT_MZCLUST_ABS_MZ, DEFAULT_MZCLUST_PPM, PPM
from ..containers import Feature, Peak
from ..errors import InvalidConfiguration

logger = logging.getLogger(__name__)


class GroupingMethod(Enum):
    """Correspondence algorithms."""
    MZCLUST = "mzClust"


class InstrumentType(Enum):
    """Instrument types with different mass accuracy characteristics."""
    FTICR = "fticr"        # <1 ppm
    ORBITRAP = "orbitrap"  # 2-5 ppm
    TOF = "tof"            # 10-20 ppm


@dataclass(frozen=True)
class MzClustParams:
    """Parameters for mzClust correspondence.

    Attributes
    ----------
    method : GroupingMethod
        Always MZCLUST
    ppm : float
        Relative merge tolerance (ppm)
    abs_mz : float
        Absolute merge tolerance added to the ppm part (Da)
    min_fraction_samples : float
        Minimum fraction of all samples a feature must contain
    min_fraction_per_group : float, optional
        Minimum fraction of every sample group (None disables the check)
    min_samples : int
        Minimum absolute number of distinct samples
    prefer_distinct_samples : bool
        Keep qualifying clusters that share a sample apart instead of merging
    """

    method: GroupingMethod = GroupingMethod.MZCLUST
    ppm: float = DEFAULT_MZCLUST_PPM
    abs_mz: float = DEFAULT_MZCLUST_ABS_MZ
    min_fraction_samples: float = DEFAULT_MIN_FRACTION
    min_fraction_per_group: Optional[float] = None
    min_samples: int = 1
    prefer_distinct_samples: bool = True

    def __post_init__(self):
        try:
            object.__setattr__(self, "method", GroupingMethod(self.method))
        except ValueError:
            raise InvalidConfiguration(f"Unknown grouping method: {self.method}") from None

        for name in ("ppm", "abs_mz"):
            value = getattr(self, name)
            if not np.isfinite(value) or value < 0:
                raise InvalidConfiguration(f"{name} must be a non-negative number, got {value}")
        if not 0.0 <= self.min_fraction_samples <= 1.0:
            raise InvalidConfiguration(
                f"min_fraction_samples must be in [0, 1], got {self.min_fraction_samples}"
            )
        if self.min_fraction_per_group is not None and not 0.0 <= self.min_fraction_per_group <= 1.0:
            raise InvalidConfiguration(
                f"min_fraction_per_group must be in [0, 1], got {self.min_fraction_per_group}"
            )
        if self.min_samples < 1:
            raise InvalidConfiguration(f"min_samples must be >= 1, got {self.min_samples}")

    @classmethod
    def for_instrument(cls, instrument: InstrumentType) -> 'MzClustParams':
        """Create parameters optimized for specific instrument type.

        Args:
            instrument: Instrument type enum

        Returns:
            MzClustParams with instrument-specific tolerances
        """
        if instrument == InstrumentType.FTICR:
            return cls(ppm=2.0, abs_mz=0.0)
        elif instrument == InstrumentType.ORBITRAP:
            return cls(ppm=5.0, abs_mz=0.0)
        elif instrument == InstrumentType.TOF:
            return cls(ppm=20.0, abs_mz=0.001)
        else:
            raise InvalidConfiguration(f"Unknown instrument type: {instrument}")

    def tolerance(self, mz: float) -> float:
        """Merge tolerance (Da) at ``mz``."""
        return self.ppm * mz * PPM + self.abs_mz


def _required(fraction: float, n: int) -> int:
    # round() guards against 0.3 * 10 == 3.0000000000000004
    return int(math.ceil(round(fraction * n, 9)))


class _SampleFilter:
    """Decides whether a set of samples is enough to report a feature."""

    def __init__(
        self,
        sample_ids: Sequence[str],
        sample_groups: Optional[Mapping[str, str]],
        params: MzClustParams,
    ):
        self.min_total = max(
            params.min_samples, _required(params.min_fraction_samples, len(sample_ids))
        )
        self.group_of: Dict[str, str] = {}
        self.group_min: Dict[str, int] = {}

        if params.min_fraction_per_group is not None:
            if sample_groups is None:
                raise InvalidConfiguration(
                    "min_fraction_per_group requires a sample group mapping"
                )
            unmapped = [s for s in sample_ids if s not in sample_groups]
            if unmapped:
                raise InvalidConfiguration(f"Samples without group: {unmapped}")
            sizes: Dict[str, int] = {}
            for s in sample_ids:
                group = sample_groups[s]
                self.group_of[s] = group
                sizes[group] = sizes.get(group, 0) + 1
            self.group_min = {
                g: _required(params.min_fraction_per_group, size) for g, size in sizes.items()
            }

    def passes(self, samples: FrozenSet[str]) -> bool:
        if len(samples) < self.min_total:
            return False
        if self.group_min:
            counts: Dict[str, int] = {}
            for s in samples:
                group = self.group_of[s]
                counts[group] = counts.get(group, 0) + 1
            for group, needed in self.group_min.items():
                if counts.get(group, 0) < needed:
                    return False
        return True


def _segment_bounds(mz: np.ndarray, params: MzClustParams) -> List[Tuple[int, int]]:
    """Split sorted m/z into [start, end) runs at gaps larger than the tolerance."""
    if len(mz) == 0:
        return []
    gaps = np.diff(mz)
    midpoints = (mz[:-1] + mz[1:]) / 2.0
    limits = params.ppm * midpoints * PPM + params.abs_mz
    cuts = np.flatnonzero(gaps > limits) + 1
    starts = np.concatenate(([0], cuts))
    ends = np.concatenate((cuts, [len(mz)]))
    return list(zip(starts.tolist(), ends.tolist()))


def _cluster_segment(
    mz: np.ndarray,
    samples: Sequence[str],
    start: int,
    end: int,
    params: MzClustParams,
    sample_filter: _SampleFilter,
) -> List[Tuple[int, int]]:
    """Agglomerate one segment into [start, end) clusters of the sorted peaks."""
    # Initial clusters: runs of identical m/z are never split
    cl_start: List[int] = []
    cl_end: List[int] = []
    i = start
    while i < end:
        j = i + 1
        while j < end and mz[j] == mz[i]:
            j += 1
        cl_start.append(i)
        cl_end.append(j)
        i = j

    n = len(cl_start)
    if n == 1:
        return [(cl_start[0], cl_end[0])]

    cl_samples = [frozenset(samples[cl_start[c]:cl_end[c]]) for c in range(n)]
    next_cl = list(range(1, n)) + [-1]
    prev_cl = [-1] + list(range(n - 1))
    version = [0] * n
    alive = [True] * n

    def merged_spread(left: int, right: int) -> float:
        return mz[cl_end[right] - 1] - mz[cl_start[left]]

    def push(heap, left: int) -> None:
        right = next_cl[left]
        if right < 0:
            return
        lo = mz[cl_start[left]]
        hi = mz[cl_end[right] - 1]
        spread = hi - lo
        if spread > params.tolerance((lo + hi) / 2.0):
            return
        heapq.heappush(heap, (spread, lo, left, right, version[left], version[right]))

    heap: list = []
    for c in range(n - 1):
        push(heap, c)

    while heap:
        spread, _, left, right, v_left, v_right = heapq.heappop(heap)
        if not (alive[left] and alive[right]) or next_cl[left] != right:
            continue
        if version[left] != v_left or version[right] != v_right:
            continue

        if (
            params.prefer_distinct_samples
            and cl_samples[left] & cl_samples[right]
            and sample_filter.passes(cl_samples[left])
            and sample_filter.passes(cl_samples[right])
        ):
            continue

        # Merge right into left
        cl_end[left] = cl_end[right]
        cl_samples[left] = cl_samples[left] | cl_samples[right]
        alive[right] = False
        version[left] += 1
        next_cl[left] = next_cl[right]
        if next_cl[right] >= 0:
            prev_cl[next_cl[right]] = left

        if prev_cl[left] >= 0:
            push(heap, prev_cl[left])
        push(heap, left)

    return [(cl_start[c], cl_end[c]) for c in range(n) if alive[c]]


def group_peaks(
    peaks: Sequence[Peak],
    sample_ids: Sequence[str],
    sample_groups: Optional[Mapping[str, str]],
    params: MzClustParams,
) -> Tuple[Feature, ...]:
    """Group peaks from all samples into features.

    Parameters
    ----------
    peaks : Sequence[Peak]
        Flat peak sequence (all samples); feature peak indices refer to it
    sample_ids : Sequence[str]
        All samples of the run, including those without peaks
    sample_groups : Mapping[str, str], optional
        Sample → group label (required with ``min_fraction_per_group``)
    params : MzClustParams
        Clustering and filter parameters

    Returns
    -------
    tuple of Feature
        Sorted by m/z with ids FT001, FT002, ...
    """
    sample_filter = _SampleFilter(sample_ids, sample_groups, params)
    if len(peaks) == 0:
        return ()

    mz_all = np.array([p.mz for p in peaks], dtype=np.float64)
    sample_names = [p.sample_id for p in peaks]
    rank = {s: i for i, s in enumerate(sorted(set(sample_names)))}
    sample_rank = np.array([rank[s] for s in sample_names], dtype=np.int64)
    order = np.lexsort((np.arange(len(peaks)), sample_rank, mz_all))
    mz = mz_all[order]
    samples = [sample_names[i] for i in order]

    clusters: List[Tuple[int, int]] = []
    for seg_start, seg_end in _segment_bounds(mz, params):
        clusters.extend(
            _cluster_segment(mz, samples, seg_start, seg_end, params, sample_filter)
        )

    kept = [
        (s, e) for s, e in clusters
        if sample_filter.passes(frozenset(samples[s:e]))
    ]

    width = max(3, len(str(len(kept))))
    features = []
    for n, (s, e) in enumerate(kept, start=1):
        members = mz[s:e]
        member_peaks = [peaks[int(i)] for i in order[s:e]]
        features.append(Feature(
            feature_id=f"FT{n:0{width}d}",
            mz=float(np.median(members)),
            mzmin=float(members[0]),
            mzmax=float(members[-1]),
            peak_indices=tuple(sorted(int(i) for i in order[s:e])),
            region_mzmin=float(np.median([p.mzmin for p in member_peaks])),
            region_mzmax=float(np.median([p.mzmax for p in member_peaks])),
        ))

    logger.info(
        f"Grouped {len(peaks):,} peaks into {len(clusters):,} clusters, "
        f"{len(features):,} kept as features"
    )
    return tuple(features)


class CorrespondenceGrouper:
    """mzClust correspondence bound to one parameter set."""

    def __init__(self, params: MzClustParams = None):
        self.params = params if params is not None else MzClustParams()

    def group(
        self,
        peaks: Sequence[Peak],
        sample_ids: Sequence[str],
        sample_groups: Optional[Mapping[str, str]] = None,
    ) -> Tuple[Feature, ...]:
        return group_peaks(peaks, sample_ids, sample_groups, self.params)
