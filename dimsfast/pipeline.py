"""End-to-end DIMS feature-detection pipeline.

A dataset moves through

    RAW → PEAKS_DETECTED → CALIBRATED (optional) → GROUPED → FILLED

Each transition is one pure function taking a :class:`Dataset` and returning
a new one; nothing produced by an earlier stage is modified. Per-sample
stages (detection, calibration, gap filling) run on an explicit
:class:`~dimsfast.parallel.WorkerPool`; grouping is a single step that needs
every sample's peaks (a barrier).

Examples
--------
>>> from dimsfast.pipeline import PipelineConfig, run_pipeline
>>> config = PipelineConfig.from_dict({
...     "detection": {"scales": [2, 4, 8], "snr_threshold": 10.0},
...     "grouping": {"ppm": 10.0, "min_fraction_samples": 0.5},
...     "filling": {"integration_window": 0.005},
... })
>>> dataset = run_pipeline(spectra, {"S1": "ctrl", "S2": "treat"}, config)
>>> values, missing = dataset.feature_table().to_array()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from .calibration.mz_calibration import CalibrationParams, CalibrationReport, calibrate_peaks
from .containers import Feature, FeatureTable, FeatureValueMethod, Peak, Spectrum
from .correspondence.mzclust import MzClustParams, group_peaks
from .errors import InvalidConfiguration, InvalidStateError
from .filling.gap_filling import GapFillParams, fill_gaps
from .parallel import WorkerPool
from .peaks.detection import PeakDetectionParams, detect_peaks

logger = logging.getLogger(__name__)

Calibrants = Union[Sequence[float], Mapping[str, Sequence[float]]]


class ProcessingState(Enum):
    """Pipeline stage a dataset has reached."""
    RAW = "raw"
    PEAKS_DETECTED = "peaks_detected"
    CALIBRATED = "calibrated"
    GROUPED = "grouped"
    FILLED = "filled"


@dataclass(frozen=True, eq=False)
class Dataset:
    """Immutable snapshot of a run at one processing state."""

    state: ProcessingState
    spectra: Mapping[str, Spectrum]
    sample_groups: Mapping[str, str] = field(default_factory=dict)
    peaks: Tuple[Peak, ...] = ()
    features: Tuple[Feature, ...] = ()
    calibration_reports: Mapping[str, CalibrationReport] = field(default_factory=dict)

    @classmethod
    def from_spectra(
        cls,
        spectra: Sequence[Spectrum],
        sample_groups: Optional[Mapping[str, str]] = None,
    ) -> "Dataset":
        """Create a RAW dataset. Sample ids must be unique."""
        by_id: Dict[str, Spectrum] = {}
        for spectrum in spectra:
            if spectrum.sample_id in by_id:
                raise InvalidConfiguration(f"Duplicate sample id: {spectrum.sample_id}")
            by_id[spectrum.sample_id] = spectrum
        return cls(
            state=ProcessingState.RAW,
            spectra=MappingProxyType(by_id),
            sample_groups=MappingProxyType(dict(sample_groups or {})),
        )

    @property
    def sample_ids(self) -> Tuple[str, ...]:
        return tuple(self.spectra)

    def peaks_for(self, sample_id: str) -> Tuple[Peak, ...]:
        return tuple(p for p in self.peaks if p.sample_id == sample_id)

    def advance(self, state: ProcessingState, **changes: Any) -> "Dataset":
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(changes, state=state)
        return Dataset(**values)

    def feature_table(
        self,
        value: str = "into",
        method: Union[str, FeatureValueMethod] = FeatureValueMethod.MAXINT,
    ) -> FeatureTable:
        """Feature × sample table (requires GROUPED or FILLED)."""
        _require_state(self, (ProcessingState.GROUPED, ProcessingState.FILLED), "feature table")
        return FeatureTable.from_features(self.features, self.peaks, self.sample_ids, value, method)


def _require_state(dataset: Dataset, allowed: Tuple[ProcessingState, ...], stage: str) -> None:
    if dataset.state not in allowed:
        expected = ", ".join(s.name for s in allowed)
        raise InvalidStateError(
            f"{stage} needs a dataset in state {expected}, got {dataset.state.name}"
        )


# =============================================================================
# Stages
# =============================================================================

def detect_peaks_batch(
    dataset: Dataset, params: PeakDetectionParams, pool: WorkerPool = None
) -> Dataset:
    """RAW → PEAKS_DETECTED.

    Raises
    ------
    BatchProcessingError
        Detection failed for one or more samples (all samples were attempted)
    """
    _require_state(dataset, (ProcessingState.RAW,), "peak detection")
    pool = pool if pool is not None else WorkerPool()

    batch = pool.map_samples(lambda spectrum: detect_peaks(spectrum, params), dataset.spectra)
    batch.raise_for_failures("peak detection")

    peaks = tuple(p for sample_id in dataset.sample_ids for p in batch.succeeded[sample_id])
    logger.info(f"Detected {len(peaks):,} peaks in {len(dataset.spectra):,} samples")
    return dataset.advance(ProcessingState.PEAKS_DETECTED, peaks=peaks)


def calibrate_batch(
    dataset: Dataset,
    calibrants: Calibrants,
    params: CalibrationParams,
    pool: WorkerPool = None,
) -> Dataset:
    """PEAKS_DETECTED → CALIBRATED.

    ``calibrants`` is either one list for all samples or a mapping from
    sample id to that sample's list.

    Raises
    ------
    BatchProcessingError
        One or more samples raised CalibrationError (all samples were attempted)
    """
    _require_state(dataset, (ProcessingState.PEAKS_DETECTED,), "calibration")
    pool = pool if pool is not None else WorkerPool()

    if isinstance(calibrants, Mapping):
        missing = [s for s in dataset.sample_ids if s not in calibrants]
        if missing:
            raise InvalidConfiguration(f"No calibrants given for samples: {missing}")
        per_sample = {s: tuple(calibrants[s]) for s in dataset.sample_ids}
    else:
        shared = tuple(calibrants)
        per_sample = {s: shared for s in dataset.sample_ids}

    def calibrate_sample(sample_id: str):
        return calibrate_peaks(
            dataset.peaks_for(sample_id), per_sample[sample_id], params, sample_id
        )

    batch = pool.map_samples(calibrate_sample, {s: s for s in dataset.sample_ids})
    batch.raise_for_failures("calibration")

    peaks = tuple(p for s in dataset.sample_ids for p in batch.succeeded[s][0])
    reports = MappingProxyType({s: batch.succeeded[s][1] for s in dataset.sample_ids})
    logger.info(
        f"Calibrated {len(peaks):,} peaks in {len(dataset.sample_ids):,} samples "
        f"({params.method.value})"
    )
    return dataset.advance(ProcessingState.CALIBRATED, peaks=peaks, calibration_reports=reports)


def group_features(dataset: Dataset, params: MzClustParams) -> Dataset:
    """PEAKS_DETECTED or CALIBRATED → GROUPED (single synchronized step)."""
    _require_state(
        dataset, (ProcessingState.PEAKS_DETECTED, ProcessingState.CALIBRATED), "grouping"
    )
    features = group_peaks(dataset.peaks, dataset.sample_ids, dataset.sample_groups, params)
    return dataset.advance(ProcessingState.GROUPED, features=features)


def fill_gaps_batch(
    dataset: Dataset, params: GapFillParams, pool: WorkerPool = None
) -> Dataset:
    """GROUPED → FILLED."""
    _require_state(dataset, (ProcessingState.GROUPED,), "gap filling")
    features, peaks = fill_gaps(dataset.features, dataset.peaks, dataset.spectra, params, pool)
    return dataset.advance(ProcessingState.FILLED, features=features, peaks=peaks)


# =============================================================================
# Configuration and driver
# =============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """Parameters for a full run.

    Calibration runs only when both ``calibration`` and ``calibrants`` are
    given; gap filling is skipped when ``filling`` is None.
    """

    detection: PeakDetectionParams = field(default_factory=PeakDetectionParams)
    calibration: Optional[CalibrationParams] = None
    calibrants: Optional[Calibrants] = None
    grouping: MzClustParams = field(default_factory=MzClustParams)
    filling: Optional[GapFillParams] = field(default_factory=GapFillParams)
    max_workers: Optional[int] = None

    def __post_init__(self):
        if (self.calibration is None) != (self.calibrants is None):
            raise InvalidConfiguration(
                "calibration and calibrants must be given together"
            )
        if self.calibrants is not None and not isinstance(self.calibrants, Mapping):
            object.__setattr__(self, "calibrants", tuple(float(c) for c in self.calibrants))
        if self.max_workers is not None and self.max_workers < 1:
            raise InvalidConfiguration(f"max_workers must be >= 1, got {self.max_workers}")

    _SECTIONS = {
        "detection": PeakDetectionParams,
        "calibration": CalibrationParams,
        "grouping": MzClustParams,
        "filling": GapFillParams,
    }

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> "PipelineConfig":
        """Build a configuration from plain structured values (e.g. parsed JSON).

        Sections are mappings of parameter names; enum fields take their
        string values. A section explicitly set to None is disabled.
        """
        allowed = set(cls._SECTIONS) | {"calibrants", "max_workers"}
        unknown = set(config) - allowed
        if unknown:
            raise InvalidConfiguration(f"Unknown configuration keys: {sorted(unknown)}")

        kwargs: Dict[str, Any] = {}
        for name, params_cls in cls._SECTIONS.items():
            if name not in config:
                continue
            section = config[name]
            if section is None:
                kwargs[name] = None
                continue
            try:
                kwargs[name] = params_cls(**section)
            except TypeError as exc:
                raise InvalidConfiguration(f"Invalid '{name}' section: {exc}") from exc

        if "calibrants" in config:
            kwargs["calibrants"] = config["calibrants"]
        if "max_workers" in config:
            kwargs["max_workers"] = config["max_workers"]
        return cls(**kwargs)


def run_pipeline(
    spectra: Sequence[Spectrum],
    sample_groups: Optional[Mapping[str, str]],
    config: PipelineConfig,
    pool: WorkerPool = None,
) -> Dataset:
    """Run detection → (calibration) → grouping → (gap filling).

    Returns
    -------
    Dataset
        FILLED, or GROUPED when gap filling is disabled
    """
    pool = pool if pool is not None else WorkerPool(config.max_workers)

    dataset = Dataset.from_spectra(spectra, sample_groups)
    logger.info(f"Running pipeline on {len(dataset.sample_ids):,} samples ({pool.max_workers} workers)")

    dataset = detect_peaks_batch(dataset, config.detection, pool)
    if config.calibration is not None:
        dataset = calibrate_batch(dataset, config.calibrants, config.calibration, pool)
    dataset = group_features(dataset, config.grouping)
    if config.filling is not None:
        dataset = fill_gaps_batch(dataset, config.filling, pool)
    return dataset
