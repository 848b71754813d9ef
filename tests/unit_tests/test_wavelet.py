"""Tests for the Ricker wavelet transform."""

import numpy as np
import pytest

from dimsfast.peaks.wavelet import (
    convolve_ricker,
    cwt_matrix,
    min_points_for_scale,
    ricker_kernel,
    usable_scales,
)


def gaussian(n, centre, sigma, height=1000.0):
    x = np.arange(n, dtype=np.float64)
    return height * np.exp(-0.5 * ((x - centre) / sigma) ** 2)


class TestRickerKernel:
    """Test kernel shape and normalization."""

    def test_odd_length_and_symmetric(self):
        kernel = ricker_kernel(4.0, 5.0)
        assert len(kernel) == 41
        np.testing.assert_allclose(kernel, kernel[::-1])

    def test_centre_is_maximum(self):
        kernel = ricker_kernel(3.0, 5.0)
        assert np.argmax(kernel) == len(kernel) // 2

    def test_zero_mean(self):
        kernel = ricker_kernel(4.0, 5.0)
        assert abs(kernel.sum()) < 1e-3

    def test_unit_energy(self):
        kernel = ricker_kernel(4.0, 5.0)
        assert np.sum(kernel ** 2) == pytest.approx(1.0, rel=0.02)

    def test_small_scale_has_minimum_radius(self):
        kernel = ricker_kernel(0.1, 5.0)
        assert len(kernel) == 3


class TestConvolution:
    """Test single-scale and matrix transforms."""

    def test_peak_maps_to_coefficient_maximum(self):
        signal = gaussian(201, 100, 4.0)
        coefs = convolve_ricker(signal, 4.0, 5.0)
        assert len(coefs) == len(signal)
        assert np.argmax(coefs) == 100
        assert coefs[100] > 0

    def test_constant_signal_gives_near_zero(self):
        signal = np.full(100, 100.0)
        coefs = convolve_ricker(signal, 3.0, 5.0)
        np.testing.assert_allclose(coefs, 0.0, atol=0.1)

    def test_edges_are_reflected(self):
        # A peak at the first point is mirrored, so the transform still peaks there
        signal = gaussian(50, 0, 2.0)
        coefs = convolve_ricker(signal, 2.0, 5.0)
        assert np.argmax(coefs) == 0

    def test_single_point(self):
        coefs = convolve_ricker(np.array([5.0]), 1.0, 5.0)
        assert coefs.shape == (1,)

    def test_matrix_rows_match_single_scale(self):
        signal = gaussian(101, 50, 3.0)
        scales = np.array([1.0, 2.0, 4.0])
        coefs = cwt_matrix(signal, scales, 5.0)

        assert coefs.shape == (3, 101)
        for k, scale in enumerate(scales):
            np.testing.assert_allclose(coefs[k], convolve_ricker(signal, scale, 5.0))


class TestUsableScales:
    """Test the short-spectrum rule."""

    def test_min_points(self):
        assert min_points_for_scale(1.0) == 3
        assert min_points_for_scale(2.5) == 7
        assert min_points_for_scale(8.0) == 17

    def test_drops_scales_too_large(self):
        np.testing.assert_array_equal(usable_scales(5, [1.0, 2.0, 3.0]), [1.0, 2.0])

    def test_none_usable(self):
        assert len(usable_scales(2, [1.0, 2.0])) == 0
