"""Error kinds raised by the dimsfast pipeline.

Only genuinely exceptional situations are errors. An empty peak list is a
valid detection result, and missing signal during gap filling is the
``NA`` measurement (see :mod:`dimsfast.containers`), never an exception.
"""

from typing import Dict, Mapping, Optional


class DimsError(Exception):
    """Base class for all dimsfast errors."""


class InvalidConfiguration(DimsError, ValueError):
    """Bad parameter values. Raised at construction, before any processing."""


class InvalidStateError(DimsError):
    """A pipeline stage was applied to a dataset in the wrong state."""


class CalibrationError(DimsError):
    """Too few calibrants matched detected peaks for the chosen method.

    Parameters
    ----------
    sample_id : str
        Sample that could not be calibrated
    matched : int
        Number of calibrants that matched a peak
    required : int
        Minimum number of matches the method needs
    """

    def __init__(self, sample_id: str, matched: int, required: int):
        self.sample_id = sample_id
        self.matched = matched
        self.required = required
        super().__init__(
            f"Sample '{sample_id}': {matched} calibrant(s) matched, "
            f"at least {required} required"
        )


class BatchProcessingError(DimsError):
    """One or more per-sample tasks of a batch stage failed.

    All tasks of the batch ran to completion before this is raised, so
    ``succeeded`` holds every result that could be computed and ``failed``
    maps each offending sample to its exception.
    """

    def __init__(
        self,
        stage: str,
        failed: Mapping[str, BaseException],
        succeeded: Optional[Mapping[str, object]] = None,
    ):
        self.stage = stage
        self.failed: Dict[str, BaseException] = dict(failed)
        self.succeeded: Dict[str, object] = dict(succeeded or {})
        details = "; ".join(
            f"{sample_id}: {type(exc).__name__}: {exc}"
            for sample_id, exc in sorted(self.failed.items())
        )
        super().__init__(
            f"{stage} failed for {len(self.failed)} sample(s) "
            f"({len(self.succeeded)} succeeded): {details}"
        )
