"""Tests for the data containers.

Tests cover:
1. Spectrum validation and immutability
2. Explicit missing values (Present / NA)
3. Feature helpers
4. FeatureTable construction, array export and CSV export
"""

import csv
import pickle

import numpy as np
import pytest

from dimsfast.containers import (
    NA,
    Feature,
    FeatureTable,
    Missing,
    Present,
    Spectrum,
    is_missing,
)
from dimsfast.errors import InvalidConfiguration


class TestSpectrum:
    """Test spectrum validation."""

    def test_valid_spectrum(self):
        spectrum = Spectrum("S1", [100.0, 100.1, 100.2], [1.0, 5.0, 1.0])
        assert len(spectrum) == 3
        assert spectrum.mz.dtype == np.float64

    def test_arrays_are_read_only(self):
        spectrum = Spectrum("S1", [100.0, 100.1], [1.0, 2.0])
        with pytest.raises(ValueError):
            spectrum.intensity[0] = 10.0

    def test_input_arrays_are_copied(self):
        mz = np.array([100.0, 100.1])
        spectrum = Spectrum("S1", mz, [1.0, 2.0])
        mz[0] = 50.0
        assert spectrum.mz[0] == 100.0

    def test_unsorted_mz_rejected(self):
        with pytest.raises(ValueError, match="ascending"):
            Spectrum("S1", [100.1, 100.0], [1.0, 2.0])

    def test_duplicate_mz_rejected(self):
        with pytest.raises(ValueError):
            Spectrum("S1", [100.0, 100.0], [1.0, 2.0])

    def test_length_mismatch_rejected(self):
        with pytest.raises(ValueError):
            Spectrum("S1", [100.0, 100.1], [1.0])

    def test_non_finite_rejected(self):
        with pytest.raises(ValueError):
            Spectrum("S1", [100.0, 100.1], [1.0, np.nan])

    def test_from_unsorted_sorts_and_merges(self):
        spectrum = Spectrum.from_unsorted("S1", [100.2, 100.0, 100.2], [1.0, 2.0, 3.0])
        np.testing.assert_array_equal(spectrum.mz, [100.0, 100.2])
        np.testing.assert_array_equal(spectrum.intensity, [2.0, 4.0])

    def test_empty_spectrum_allowed(self):
        spectrum = Spectrum("S1", [], [])
        assert len(spectrum) == 0


class TestMeasurements:
    """Test the Present / NA sum type."""

    def test_na_is_singleton(self):
        assert Missing() is NA
        assert is_missing(NA)

    def test_na_survives_pickle(self):
        assert pickle.loads(pickle.dumps(NA)) is NA

    def test_zero_is_not_missing(self):
        assert not is_missing(Present(0.0))

    def test_na_repr(self):
        assert repr(NA) == "NA"


def _features_and_peaks(make_peak):
    peaks = (
        make_peak("S1", 100.0, into=10.0),
        make_peak("S1", 100.0005, into=30.0),
        make_peak("S2", 100.0002, into=20.0),
        make_peak("S2", 200.0, into=5.0),
    )
    features = (
        Feature("FT001", 100.0002, 100.0, 100.0005, (0, 1, 2)),
        Feature("FT002", 200.0, 200.0, 200.0, (3,)),
    )
    return features, peaks


class TestFeature:
    """Test feature helpers."""

    def test_sample_ids(self, make_peak):
        features, peaks = _features_and_peaks(make_peak)
        assert features[0].sample_ids(peaks) == {"S1", "S2"}
        assert features[1].sample_ids(peaks) == {"S2"}

    def test_overlaps(self):
        a = Feature("a", 100.0, 99.9, 100.1, ())
        b = Feature("b", 100.15, 100.1, 100.2, ())
        c = Feature("c", 101.0, 100.9, 101.1, ())
        assert a.overlaps(b)
        assert not a.overlaps(c)

    def test_integration_range(self):
        assert Feature("a", 100.0, 99.9, 100.1, ()).integration_range() == (99.9, 100.1)
        wide = Feature("b", 100.0, 99.9, 100.1, (), region_mzmin=99.8, region_mzmax=100.05)
        assert wide.integration_range() == (99.8, 100.1)


class TestFeatureTable:
    """Test feature table construction and export."""

    def test_maxint_picks_most_intense_peak(self, make_peak):
        features, peaks = _features_and_peaks(make_peak)
        table = FeatureTable.from_features(features, peaks, ["S1", "S2", "S3"])

        assert table.shape == (2, 3)
        assert table.value("FT001", "S1") == Present(30.0)
        assert table.value("FT001", "S2") == Present(20.0)
        assert table.value("FT001", "S3") is NA
        assert table.value("FT002", "S1") is NA

    def test_sum_method(self, make_peak):
        features, peaks = _features_and_peaks(make_peak)
        table = FeatureTable.from_features(features, peaks, ["S1", "S2"], method="sum")
        assert table.value("FT001", "S1") == Present(40.0)

    def test_maxo_value(self, make_peak):
        features, peaks = _features_and_peaks(make_peak)
        table = FeatureTable.from_features(features, peaks, ["S1", "S2"], value="maxo")
        assert table.value("FT001", "S1") == Present(3.0)

    def test_invalid_value_rejected(self, make_peak):
        features, peaks = _features_and_peaks(make_peak)
        with pytest.raises(InvalidConfiguration):
            FeatureTable.from_features(features, peaks, ["S1"], value="area")
        with pytest.raises(InvalidConfiguration):
            FeatureTable.from_features(features, peaks, ["S1"], method="median")

    def test_to_array_keeps_missing_mask(self, make_peak):
        features, peaks = _features_and_peaks(make_peak)
        table = FeatureTable.from_features(features, peaks, ["S1", "S2"])
        values, missing = table.to_array()

        np.testing.assert_array_equal(missing, [[False, False], [True, False]])
        assert values[0, 0] == 30.0
        assert np.isnan(values[1, 0])

    def test_to_csv(self, make_peak, tmp_path):
        features, peaks = _features_and_peaks(make_peak)
        table = FeatureTable.from_features(features, peaks, ["S1", "S2"])
        path = table.to_csv(tmp_path / "features.csv")

        with path.open() as handle:
            rows = list(csv.reader(handle))

        assert rows[0] == ["feature_id", "mz", "mzmin", "mzmax", "S1", "S2"]
        assert rows[1][0] == "FT001"
        assert float(rows[1][4]) == 30.0
        assert rows[2][4] == "NA"
        assert float(rows[2][5]) == 5.0

    def test_empty_table(self):
        table = FeatureTable.from_features((), (), ["S1"])
        values, missing = table.to_array()
        assert table.shape == (0, 1)
        assert values.shape == (0, 1)

    def test_to_dataframe(self, make_peak):
        pd = pytest.importorskip("pandas")
        features, peaks = _features_and_peaks(make_peak)
        table = FeatureTable.from_features(features, peaks, ["S1", "S2"])
        df = table.to_dataframe()

        assert list(df.columns) == ["mz", "mzmin", "mzmax", "S1", "S2"]
        assert list(df.index) == ["FT001", "FT002"]
        assert df.loc["FT001", "S1"] == 30.0
        assert df.loc["FT002", "S1"] is pd.NA
        assert df["S1"].isna().tolist() == [False, True]
