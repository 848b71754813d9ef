"""Tests for mzClust correspondence.

Tests cover:
1. Parameters, presets and tolerance
2. Grouping across samples and feature numbering
3. Sample fraction filters (overall and per group)
4. Tie-break and distinct-sample policy
5. Non-overlapping feature ranges
"""

import numpy as np
import pytest

from dimsfast.correspondence import (
    CorrespondenceGrouper,
    GroupingMethod,
    InstrumentType,
    MzClustParams,
    group_peaks,
)
from dimsfast.errors import InvalidConfiguration


SAMPLES = ["S1", "S2", "S3", "S4"]
GROUPS = {"S1": "A", "S2": "A", "S3": "B", "S4": "B"}


# =============================================================================
# Parameters
# =============================================================================

class TestMzClustParams:
    """Test parameter validation and presets."""

    def test_defaults(self):
        params = MzClustParams()
        assert params.method == GroupingMethod.MZCLUST
        assert params.ppm == 20.0
        assert params.min_fraction_per_group is None

    def test_method_from_string(self):
        assert MzClustParams(method="mzClust").method == GroupingMethod.MZCLUST

    def test_unknown_method(self):
        with pytest.raises(InvalidConfiguration):
            MzClustParams(method="density")

    @pytest.mark.parametrize("kwargs", [
        {"ppm": -1.0},
        {"abs_mz": -0.1},
        {"min_fraction_samples": 1.5},
        {"min_fraction_per_group": -0.1},
        {"min_samples": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(InvalidConfiguration):
            MzClustParams(**kwargs)

    def test_tolerance(self):
        params = MzClustParams(ppm=10.0, abs_mz=0.001)
        assert params.tolerance(200.0) == pytest.approx(0.003)

    def test_presets(self):
        assert MzClustParams.for_instrument(InstrumentType.FTICR).ppm == 2.0
        assert MzClustParams.for_instrument(InstrumentType.ORBITRAP).ppm == 5.0
        tof = MzClustParams.for_instrument(InstrumentType.TOF)
        assert tof.ppm == 20.0
        assert tof.abs_mz == 0.001


# =============================================================================
# Grouping
# =============================================================================

class TestGrouping:
    """Test feature construction."""

    def test_three_features_across_four_samples(self, make_peak):
        offsets = {"S1": 0.0, "S2": 0.0003, "S3": -0.0002, "S4": 0.0001}
        peaks = tuple(
            make_peak(s, mz + offsets[s]) for s in SAMPLES for mz in (200.0, 100.0, 150.0)
        )
        features = group_peaks(peaks, SAMPLES, GROUPS, MzClustParams(ppm=10.0))

        assert [f.feature_id for f in features] == ["FT001", "FT002", "FT003"]
        assert [round(f.mz) for f in features] == [100, 150, 200]
        for feature in features:
            assert len(feature.peak_indices) == 4
            assert feature.sample_ids(peaks) == set(SAMPLES)
            assert feature.missing_samples == frozenset()

    def test_feature_range_and_median(self, make_peak):
        peaks = (make_peak("S1", 100.0004), make_peak("S2", 100.0), make_peak("S3", 100.0002))
        features = group_peaks(peaks, SAMPLES[:3], None, MzClustParams(ppm=10.0))

        assert len(features) == 1
        feature = features[0]
        assert feature.mz == pytest.approx(100.0002)
        assert feature.mzmin == 100.0
        assert feature.mzmax == 100.0004

    def test_integration_region_from_peak_boundaries(self, make_peak):
        peaks = (
            make_peak("S1", 100.0004, width=0.002),
            make_peak("S2", 100.0, width=0.004),
            make_peak("S3", 100.0002, width=0.006),
        )
        feature = group_peaks(peaks, SAMPLES[:3], None, MzClustParams(ppm=10.0))[0]

        assert feature.region_mzmin == pytest.approx(100.0 - 0.004)
        assert feature.region_mzmax == pytest.approx(100.0 + 0.004)
        assert feature.integration_range() == (feature.region_mzmin, feature.region_mzmax)

    def test_peak_indices_refer_to_input(self, make_peak):
        peaks = (make_peak("S1", 200.0), make_peak("S2", 100.0), make_peak("S1", 100.0001))
        features = group_peaks(peaks, ["S1", "S2"], None, MzClustParams(ppm=10.0, min_fraction_samples=0.0))

        assert features[0].peak_indices == (1, 2)
        assert features[1].peak_indices == (0,)

    def test_split_beyond_tolerance(self, make_peak):
        peaks = (make_peak("S1", 100.0), make_peak("S2", 100.01))
        features = group_peaks(peaks, ["S1", "S2"], None, MzClustParams(ppm=10.0, min_fraction_samples=0.0))
        assert len(features) == 2

    def test_absolute_tolerance_merges(self, make_peak):
        peaks = (make_peak("S1", 100.0), make_peak("S2", 100.01))
        params = MzClustParams(ppm=10.0, abs_mz=0.01, min_fraction_samples=0.0)
        assert len(group_peaks(peaks, ["S1", "S2"], None, params)) == 1

    def test_chain_is_not_merged_beyond_tolerance(self, make_peak):
        # Each neighbour is within 10 ppm but the whole chain spans ~30 ppm
        mzs = [100.0, 100.0008, 100.0016, 100.0024, 100.0032]
        peaks = tuple(make_peak(f"S{i}", mz) for i, mz in enumerate(mzs))
        params = MzClustParams(ppm=10.0, min_fraction_samples=0.0)
        features = group_peaks(peaks, [f"S{i}" for i in range(5)], None, params)

        assert len(features) > 1
        for feature in features:
            assert feature.mzmax - feature.mzmin <= params.tolerance(feature.mz)

    def test_identical_mz_never_split(self, make_peak):
        peaks = (make_peak("S1", 100.0), make_peak("S2", 100.0), make_peak("S1", 100.0))
        features = group_peaks(peaks, ["S1", "S2"], None, MzClustParams(ppm=10.0))
        assert len(features) == 1
        assert features[0].peak_indices == (0, 1, 2)

    def test_no_peaks(self):
        assert group_peaks((), SAMPLES, None, MzClustParams()) == ()

    def test_deterministic(self, make_peak):
        rng = np.random.default_rng(5)
        peaks = tuple(
            make_peak(s, 100.0 + rng.normal(0, 0.0005)) for s in SAMPLES for _ in range(3)
        )
        params = MzClustParams(ppm=10.0, min_fraction_samples=0.0)
        assert group_peaks(peaks, SAMPLES, None, params) == group_peaks(peaks, SAMPLES, None, params)

    def test_grouper_class(self, make_peak):
        peaks = (make_peak("S1", 100.0), make_peak("S2", 100.0001))
        grouper = CorrespondenceGrouper(MzClustParams(ppm=10.0))
        assert len(grouper.group(peaks, ["S1", "S2"])) == 1


# =============================================================================
# Filters
# =============================================================================

class TestSampleFilters:
    """Test minimum sample fractions."""

    def test_min_fraction_samples(self, make_peak):
        peaks = (
            make_peak("S1", 100.0), make_peak("S2", 100.0001),
            make_peak("S1", 300.0),
        )
        features = group_peaks(peaks, SAMPLES, None, MzClustParams(min_fraction_samples=0.5))
        assert [round(f.mz) for f in features] == [100]

        features = group_peaks(peaks, SAMPLES, None, MzClustParams(min_fraction_samples=0.0))
        assert [round(f.mz) for f in features] == [100, 300]

    def test_samples_without_peaks_count(self, make_peak):
        peaks = (make_peak("S1", 100.0), make_peak("S2", 100.0001))
        # 2 of 5 samples < 50 %
        features = group_peaks(peaks, SAMPLES + ["S5"], None, MzClustParams(min_fraction_samples=0.5))
        assert features == ()

    def test_min_samples(self, make_peak):
        peaks = (make_peak("S1", 100.0), make_peak("S2", 100.0001))
        params = MzClustParams(min_fraction_samples=0.0, min_samples=3)
        assert group_peaks(peaks, SAMPLES, None, params) == ()

    def test_min_fraction_per_group(self, make_peak):
        peaks = (
            make_peak("S1", 100.0), make_peak("S2", 100.0001),  # group A only
            make_peak("S1", 200.0), make_peak("S3", 200.0001),  # both groups
        )
        params = MzClustParams(min_fraction_samples=0.5, min_fraction_per_group=0.5)
        features = group_peaks(peaks, SAMPLES, GROUPS, params)
        assert [round(f.mz) for f in features] == [200]

        without = group_peaks(peaks, SAMPLES, GROUPS, MzClustParams(min_fraction_samples=0.5))
        assert [round(f.mz) for f in without] == [100, 200]

    def test_per_group_needs_mapping(self, make_peak):
        params = MzClustParams(min_fraction_per_group=0.5)
        with pytest.raises(InvalidConfiguration):
            group_peaks((make_peak("S1", 100.0),), SAMPLES, None, params)

    def test_per_group_rejects_unmapped_sample(self, make_peak):
        params = MzClustParams(min_fraction_per_group=0.5)
        with pytest.raises(InvalidConfiguration):
            group_peaks((make_peak("S1", 100.0),), SAMPLES + ["S5"], GROUPS, params)


# =============================================================================
# Merge policy
# =============================================================================

class TestMergePolicy:
    """Test the distinct-sample rule and tie-breaking."""

    @staticmethod
    def two_species(make_peak):
        # Two species 8 ppm apart, each seen in every sample
        peaks = []
        for i, s in enumerate(SAMPLES):
            peaks.append(make_peak(s, 100.0 + 0.0001 * i))
            peaks.append(make_peak(s, 100.0008 + 0.0001 * i))
        return tuple(peaks)

    def test_prefer_distinct_samples_keeps_species_apart(self, make_peak):
        peaks = self.two_species(make_peak)
        features = group_peaks(peaks, SAMPLES, None, MzClustParams(ppm=20.0))

        assert len(features) == 2
        for feature in features:
            assert feature.sample_ids(peaks) == set(SAMPLES)
            assert len(feature.peak_indices) == 4

    def test_without_preference_species_merge(self, make_peak):
        peaks = self.two_species(make_peak)
        params = MzClustParams(ppm=20.0, prefer_distinct_samples=False)
        features = group_peaks(peaks, SAMPLES, None, params)

        assert len(features) == 1
        assert len(features[0].peak_indices) == 8

    def test_equal_spread_merges_lower_mz_first(self, make_peak):
        # Gaps of exactly 2**-10 Da; the tolerance allows only one merge
        step = 2.0 ** -10
        peaks = (make_peak("S1", 100.0), make_peak("S2", 100.0 + step), make_peak("S3", 100.0 + 2 * step))
        params = MzClustParams(ppm=12.0, min_fraction_samples=0.0)
        features = group_peaks(peaks, ["S1", "S2", "S3"], None, params)

        assert len(features) == 2
        assert features[0].peak_indices == (0, 1)
        assert features[1].peak_indices == (2,)


# =============================================================================
# Properties
# =============================================================================

@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
def test_features_never_overlap(seed, make_peak):
    rng = np.random.default_rng(seed)
    species = rng.uniform(100.0, 101.0, 30)
    peaks = tuple(
        make_peak(s, mz + rng.normal(0, mz * 3e-6))
        for s in SAMPLES for mz in species if rng.random() < 0.8
    )
    features = group_peaks(peaks, SAMPLES, None, MzClustParams(ppm=10.0, min_fraction_samples=0.0))

    for feature in features:
        members = [peaks[i].mz for i in feature.peak_indices]
        assert feature.mzmin == min(members)
        assert feature.mzmax == max(members)
    for left, right in zip(features, features[1:]):
        assert left.mzmax < right.mzmin

    # Every peak is used at most once
    used = [i for f in features for i in f.peak_indices]
    assert len(used) == len(set(used))
