"""dimsfast - Numba-accelerated direct-infusion MS feature detection.

Pipeline: wavelet peak detection → calibrant m/z calibration (optional) →
mzClust correspondence → gap filling, producing a feature × sample table
with explicit NA for missing values.

Per-sample stages run on an explicit worker pool; numba kernels release the
GIL so threads scale across cores.
"""

__version__ = "0.1.0"

# Import main submodules for convenient access
from dimsfast import peaks
from dimsfast import calibration
from dimsfast import correspondence
from dimsfast import filling
from dimsfast import pipeline

from dimsfast.containers import (
    NA,
    Feature,
    FeatureTable,
    Measurement,
    Missing,
    Peak,
    Present,
    Spectrum,
    is_missing,
)
from dimsfast.errors import (
    BatchProcessingError,
    CalibrationError,
    DimsError,
    InvalidConfiguration,
    InvalidStateError,
)
from dimsfast.parallel import BatchResult, WorkerPool
from dimsfast.pipeline import Dataset, PipelineConfig, ProcessingState, run_pipeline

__all__ = [
    # Submodules
    "peaks",
    "calibration",
    "correspondence",
    "filling",
    "pipeline",
    # Data model
    "NA",
    "Feature",
    "FeatureTable",
    "Measurement",
    "Missing",
    "Peak",
    "Present",
    "Spectrum",
    "is_missing",
    # Errors
    "BatchProcessingError",
    "CalibrationError",
    "DimsError",
    "InvalidConfiguration",
    "InvalidStateError",
    # Execution
    "BatchResult",
    "WorkerPool",
    "Dataset",
    "PipelineConfig",
    "ProcessingState",
    "run_pipeline",
]
