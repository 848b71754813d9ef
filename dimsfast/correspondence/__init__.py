"""Cross-sample correspondence (feature grouping).

This module provides:
- mzClust-style 1-D clustering of pooled peaks on the m/z axis
- Sample-fraction and per-group filters
- Instrument-specific tolerance presets (FT-ICR, Orbitrap, TOF)
"""

from .mzclust import (
    CorrespondenceGrouper,
    GroupingMethod,
    InstrumentType,
    MzClustParams,
    group_peaks,
)

__all__ = [
    'CorrespondenceGrouper',
    'GroupingMethod',
    'InstrumentType',
    'MzClustParams',
    'group_peaks',
]
