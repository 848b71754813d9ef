"""Gap filling of missing feature values from raw spectra."""

from .gap_filling import (
    GapFillParams,
    GapFiller,
    fill_feature_sample,
    fill_gaps,
    integrate_region,
    mz_range_indices,
)

__all__ = [
    'GapFillParams',
    'GapFiller',
    'fill_feature_sample',
    'fill_gaps',
    'integrate_region',
    'mz_range_indices',
]
