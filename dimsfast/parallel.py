"""Explicit worker pool for per-sample pipeline stages.

Peak detection, calibration and gap filling are independent per sample, so
each stage maps a function over samples on a thread pool. The numba kernels
release the GIL (``nogil=True``), which lets the threads run concurrently.

A batch never aborts on the first failure: every scheduled task runs to
completion, failures are collected per key, and the caller decides whether
to raise (see :meth:`BatchResult.raise_for_failures`).

Examples
--------
>>> pool = WorkerPool(max_workers=4)
>>> result = pool.map_samples(detect, {"S1": spectrum1, "S2": spectrum2})
>>> result.raise_for_failures("peak detection")
>>> peaks_by_sample = result.succeeded
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, Generic, Hashable, Iterable, Mapping, Optional, Tuple, TypeVar, Union

from .errors import BatchProcessingError, InvalidConfiguration

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchResult(Generic[R]):
    """Outcome of a batch: results and exceptions keyed like the input."""

    succeeded: Dict[Hashable, R] = field(default_factory=dict)
    failed: Dict[Hashable, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self, stage: str) -> None:
        """Raise BatchProcessingError naming every failed key, if any."""
        if self.failed:
            raise BatchProcessingError(stage, self.failed, self.succeeded)


@dataclass(frozen=True)
class WorkerPool:
    """Handle describing how per-sample work is executed.

    Parameters
    ----------
    max_workers : int, optional
        Concurrency limit. Defaults to the number of available cores.
    """

    max_workers: Optional[int] = None

    def __post_init__(self):
        if self.max_workers is None:
            object.__setattr__(self, "max_workers", os.cpu_count() or 1)
        elif self.max_workers < 1:
            raise InvalidConfiguration(
                f"max_workers must be >= 1, got {self.max_workers}"
            )

    def map_samples(
        self,
        func: Callable[[T], R],
        items: Union[Mapping[Hashable, T], Iterable[Tuple[Hashable, T]]],
    ) -> BatchResult[R]:
        """Apply ``func`` to every item concurrently and collect all outcomes.

        Parameters
        ----------
        func : callable
            Task applied to each item. Must not mutate shared state.
        items : mapping or iterable of (key, item)
            Work items keyed by sample id (or any hashable key)

        Returns
        -------
        BatchResult
            ``succeeded`` preserves input key order.
        """
        pairs = list(items.items()) if isinstance(items, Mapping) else list(items)
        if not pairs:
            return BatchResult()

        outcomes: Dict[Hashable, Tuple[bool, object]] = {}
        n_workers = min(self.max_workers, len(pairs))

        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = {executor.submit(func, item): key for key, item in pairs}

            for future in as_completed(futures):
                key = futures[future]
                try:
                    outcomes[key] = (True, future.result())
                except Exception as exc:
                    logger.warning(f"Task for {key!r} failed: {type(exc).__name__}: {exc}")
                    outcomes[key] = (False, exc)

        result: BatchResult[R] = BatchResult()
        for key, _ in pairs:
            ok, value = outcomes[key]
            if ok:
                result.succeeded[key] = value
            else:
                result.failed[key] = value
        return result
