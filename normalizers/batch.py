"""
Batch Run

Streams a feed through one normalizer in fixed-size batches.

    run = normalizer.normalize_batch(records, options, on_batch=report)
    for result in run:        # one NormalizationResult per input record, in order
        ...
    stats = run.stats         # final NormalizationStats

or simply ``stats = run.run()`` when the results themselves are not needed.

A run moves idle -> streaming -> completed and cannot be restarted.
Item failures never stop the stream; an unexpected fault in one record
becomes a failed result for that record only.
"""

import gc
import logging
import time
import tracemalloc
from enum import Enum
from itertools import islice
from typing import Any, Iterable, Iterator, Optional

from .base import (
    BatchCallback,
    ErrorKind,
    NormalizationOptions,
    NormalizationResult,
    NormalizationStats,
    Normalizer,
)

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"


class BatchRun:
    """Single-use iterator of NormalizationResult with terminal stats."""

    def __init__(self, normalizer: Normalizer, records: Iterable[Any],
                 options: Optional[NormalizationOptions] = None,
                 on_batch: Optional[BatchCallback] = None):
        self.normalizer = normalizer
        self.options = options or NormalizationOptions()
        self.on_batch = on_batch
        self.stats = NormalizationStats()
        self.state = RunState.IDLE
        self.batches = 0
        self._records = records

    @property
    def store_id(self) -> str:
        return self.normalizer.store_id

    def __iter__(self) -> Iterator[NormalizationResult]:
        if self.state != RunState.IDLE:
            raise RuntimeError(f"[{self.store_id}] Batch run already {self.state.value}")
        self.state = RunState.STREAMING
        return self._stream()

    def run(self) -> NormalizationStats:
        """Drain the run and return the final stats."""
        for _ in self:
            pass
        return self.stats

    def _stream(self) -> Iterator[NormalizationResult]:
        batch_size = max(1, self.options.batch_size)
        records = iter(self._records)
        started = time.perf_counter()
        line_number = 0

        logger.info(f"[{self.store_id}] Starting batch run (batch size {batch_size})")

        while True:
            batch = list(islice(records, batch_size))
            if not batch:
                break

            self.batches += 1
            for raw in batch:
                line_number += 1
                result = self._normalize_item(raw, line_number)
                self.stats.record(result)
                yield result

            del batch
            self._checkpoint(started)

        self.stats.processing_time = (time.perf_counter() - started) * 1000
        self.state = RunState.COMPLETED
        logger.info(
            f"[{self.store_id}] Completed: {self.stats.successful}/{self.stats.total} normalized, "
            f"{self.stats.failed} failed, {self.stats.unmapped} unmapped "
            f"in {self.stats.processing_time:.0f}ms"
        )

    def _normalize_item(self, raw: Any, line_number: int) -> NormalizationResult:
        try:
            return self.normalizer.normalize(raw, self.options, line_number=line_number)
        except Exception as e:
            logger.warning(f"[{self.store_id}] Line {line_number}: unexpected fault: {e}")
            return NormalizationResult(
                success=False,
                errors=[f"Batch processing error: {e}"],
                line_number=line_number,
                raw_product=raw,
                error_kind=ErrorKind.BATCH_ITEM_FAULT,
            )

    def _checkpoint(self, started: float):
        """End-of-batch bookkeeping: timing, memory and the progress callback."""
        self.stats.processing_time = (time.perf_counter() - started) * 1000

        if self.normalizer.config.processing.memory_checkpoint:
            gc.collect()
        if tracemalloc.is_tracing():
            self.stats.memory_usage = tracemalloc.get_traced_memory()[0]

        logger.debug(
            f"[{self.store_id}] Batch {self.batches}: {self.stats.total} records, "
            f"{self.stats.failed} failed"
        )
        if self.on_batch is not None:
            self.on_batch(self.batches, self.stats)
