"""
Processing Pipeline

Runs shop feeds through their normalizers and collects what the external
writer and reporter need: canonical products (through on_product), stats,
reject records and the shop's unmapped categories.

Feeds are processed one shop at a time; records inside a shop keep their
input order. Several pipelines may share one CategoryMappingEngine, whose
rule store and unmapped queue are lock-guarded.

Usage:
    pipeline = ProcessingPipeline()
    result = pipeline.process_shop("freshful", records, source_file=path,
                                   on_product=writer.write)
    print(pipeline.build_summary([result]))
"""

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from itertools import islice
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from category_mapping import CategoryMappingEngine, UnmappedCategory
from normalization.config import PreprocessorConfig, default_config
from normalization.exceptions import UnknownStoreError
from normalizers import (
    SUPPORTED_STORES,
    BatchRun,
    NormalizationOptions,
    NormalizationStats,
    Normalizer,
    create_normalizer,
)
from normalizers.base import BatchCallback

logger = logging.getLogger(__name__)


ProductCallback = Callable[[Dict[str, Any]], None]

# (shop, records, source_file)
Feed = Tuple[str, Iterable[Any], Optional[str]]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RejectRecord:
    """A record that could not be normalized, kept for the reject report."""
    message: str
    source_file: Optional[str]
    line_number: Optional[int]
    product_name: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'message': self.message,
            'source_file': self.source_file,
            'line_number': self.line_number,
            'product_name': self.product_name,
            'error_kind': self.error_kind,
        }


@dataclass
class ProcessingResult:
    shop: str
    success: bool
    stats: NormalizationStats
    unmapped: List[UnmappedCategory] = field(default_factory=list)
    rejects: List[RejectRecord] = field(default_factory=list)
    duration: float = 0.0  # seconds
    source_file: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'shop': self.shop,
            'success': self.success,
            'stats': self.stats.to_dict(),
            'unmapped': [u.to_dict() for u in self.unmapped],
            'rejects': [r.to_dict() for r in self.rejects],
            'duration': round(self.duration, 3),
            'source_file': self.source_file,
            'error': self.error,
        }


@dataclass
class ProcessingJob:
    """Bookkeeping for one multi-shop run."""
    job_id: str
    shops: List[str]
    options: NormalizationOptions
    status: str = 'pending'  # "pending" | "running" | "completed" | "failed"
    created_at: str = field(default_factory=_now)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    results: List[ProcessingResult] = field(default_factory=list)
    error: Optional[str] = None


def _product_name(raw: Any, normalizer: Normalizer) -> Optional[str]:
    """Best-effort name for a reject report."""
    if not isinstance(raw, dict):
        return None
    try:
        return normalizer.extract(raw, NormalizationOptions()).name
    except (AttributeError, KeyError, TypeError, ValueError):
        return None


class ProcessingPipeline:
    """
    Batch orchestrator over the per-shop normalizers.

    Example:
        pipeline = ProcessingPipeline(config)
        for result in pipeline.stream("mega", records):
            ...
    """

    def __init__(self, config: Optional[PreprocessorConfig] = None,
                 engine: Optional[CategoryMappingEngine] = None):
        self.config = config or default_config
        self.engine = engine or CategoryMappingEngine.from_config(self.config)
        self._normalizers: Dict[str, Normalizer] = {}

    # === Registry ===

    def register(self, normalizer: Normalizer):
        """Use a custom normalizer for its store."""
        self._normalizers[normalizer.store_id] = normalizer
        logger.debug(f"[{normalizer.store_id}] Registered {type(normalizer).__name__} v{normalizer.version}")

    def normalizer_for(self, shop: str) -> Normalizer:
        """
        Raises:
            UnknownStoreError: If the shop has no normalizer
        """
        normalizer = self._normalizers.get(shop)
        if normalizer is None:
            normalizer = create_normalizer(shop, self.engine, self.config)
            self._normalizers[shop] = normalizer
        return normalizer

    @property
    def shops(self) -> List[str]:
        return sorted(set(SUPPORTED_STORES) | set(self._normalizers))

    def default_options(self, source_file: Optional[str] = None) -> NormalizationOptions:
        return NormalizationOptions(
            batch_size=self.config.processing.batch_size,
            source_file=source_file,
        )

    # === Processing ===

    def stream(self, shop: str, records: Iterable[Any],
               options: Optional[NormalizationOptions] = None,
               on_batch: Optional[BatchCallback] = None) -> BatchRun:
        """Lazy per-record results for one shop feed."""
        normalizer = self.normalizer_for(shop)
        return normalizer.normalize_batch(records, options or self.default_options(), on_batch)

    def process_shop(
        self,
        shop: str,
        records: Iterable[Any],
        source_file: Optional[str] = None,
        limit: Optional[int] = None,
        strict: bool = False,
        on_product: Optional[ProductCallback] = None,
        options: Optional[NormalizationOptions] = None,
    ) -> ProcessingResult:
        """
        Normalize a whole shop feed.

        Args:
            shop: Store id
            records: Raw records, any iterable
            source_file: Feed file name, also the category hint for some shops
            limit: Process at most this many records
            strict: Unmapped products make the run unsuccessful
            on_product: Called with every canonical product dict
            options: Normalization options (batch size from config by default)

        Returns:
            ProcessingResult

        Raises:
            UnknownStoreError: If the shop has no normalizer
        """
        normalizer = self.normalizer_for(shop)
        if not self.config.store(shop).enabled:
            logger.warning(f"[{shop}] Store is disabled in configuration, processing anyway")

        options = replace(options) if options else self.default_options()
        if source_file:
            options.source_file = source_file
        options.strict_mapping = options.strict_mapping or strict
        if limit is not None:
            records = islice(records, limit)

        started = time.perf_counter()
        max_rejects = self.config.processing.max_errors_reported
        rejects: List[RejectRecord] = []

        logger.info(f"[{shop}] Processing {options.source_file or 'feed'}")

        run = normalizer.normalize_batch(records, options)
        for result in run:
            if result.success:
                if on_product is not None:
                    on_product(result.product)
                continue
            if len(rejects) < max_rejects:
                rejects.append(RejectRecord(
                    message='; '.join(result.errors),
                    source_file=options.source_file,
                    line_number=result.line_number,
                    product_name=_product_name(result.raw_product, normalizer),
                    error_kind=result.error_kind.value if result.error_kind else None,
                ))

        stats = run.stats
        unmapped = self.engine.get_unmapped_queue(shop)
        success = stats.successful > 0 or stats.total == 0
        if options.strict_mapping and stats.unmapped > 0:
            logger.warning(f"[{shop}] Strict mapping: {stats.unmapped} products unmapped")
            success = False

        duration = time.perf_counter() - started
        logger.info(
            f"[{shop}] {stats.successful}/{stats.total} products, {stats.failed} rejected, "
            f"{len(unmapped)} unmapped categories in {duration:.2f}s"
        )
        return ProcessingResult(
            shop=shop,
            success=success,
            stats=stats,
            unmapped=unmapped,
            rejects=rejects,
            duration=duration,
            source_file=options.source_file,
        )

    def process_multiple(self, feeds: Iterable[Feed], strict: bool = False,
                         on_product: Optional[ProductCallback] = None) -> List[ProcessingResult]:
        """
        Process several feeds one after another.

        An unknown shop fails its own entry and the others still run.
        """
        results = []
        for shop, records, source_file in feeds:
            try:
                results.append(self.process_shop(shop, records, source_file=source_file,
                                                 strict=strict, on_product=on_product))
            except UnknownStoreError as e:
                logger.error(f"[{shop}] {e}")
                results.append(ProcessingResult(
                    shop=shop,
                    success=False,
                    stats=NormalizationStats(),
                    source_file=source_file,
                    error=str(e),
                ))
        return results

    def build_summary(self, results: List[ProcessingResult]) -> Dict[str, Any]:
        """Totals across shop results for the run report."""
        totals = {'total': 0, 'successful': 0, 'failed': 0, 'mapped': 0, 'unmapped': 0}
        by_shop = {}
        coverage: Dict[str, int] = {}

        for result in results:
            stats = result.stats
            for key in totals:
                totals[key] += getattr(stats, key)
            for path, count in stats.category_coverage.items():
                coverage[path] = coverage.get(path, 0) + count
            by_shop[result.shop] = {
                'success': result.success,
                'total': stats.total,
                'successful': stats.successful,
                'failed': stats.failed,
                'unmapped_categories': len(result.unmapped),
                'duration': round(result.duration, 3),
            }

        return {
            'shops_processed': len(results),
            'shops_failed': sum(1 for r in results if not r.success),
            'success_rate': round(totals['successful'] / totals['total'], 4) if totals['total'] else 0.0,
            'duration': round(sum(r.duration for r in results), 3),
            **totals,
            'by_shop': by_shop,
            'category_coverage': dict(sorted(coverage.items(), key=lambda kv: kv[1], reverse=True)),
            'mapping': self.engine.get_stats(),
        }

    # === Jobs ===

    def create_job(self, shops: Optional[List[str]] = None,
                   options: Optional[NormalizationOptions] = None) -> ProcessingJob:
        """
        Raises:
            UnknownStoreError: If any requested shop has no normalizer
        """
        shops = list(shops) if shops else [s for s in self.shops if self.config.store(s).enabled]
        for shop in shops:
            self.normalizer_for(shop)
        job = ProcessingJob(
            job_id=f"job_{uuid.uuid4().hex[:12]}",
            shops=shops,
            options=options or self.default_options(),
        )
        logger.info(f"Created job {job.job_id} for {', '.join(shops)}")
        return job

    def run_job(self, job: ProcessingJob, feeds: Dict[str, List[Tuple[Iterable[Any], Optional[str]]]],
                on_product: Optional[ProductCallback] = None) -> ProcessingJob:
        """
        Run a job over {shop: [(records, source_file), ...]}.

        Shops without feeds are skipped with a warning.
        """
        job.status = 'running'
        job.started_at = _now()

        try:
            for shop in job.shops:
                shop_feeds = feeds.get(shop) or []
                if not shop_feeds:
                    logger.warning(f"[{shop}] No feeds for job {job.job_id}")
                for records, source_file in shop_feeds:
                    job.results.append(self.process_shop(
                        shop, records,
                        source_file=source_file,
                        strict=job.options.strict_mapping,
                        on_product=on_product,
                        options=job.options,
                    ))
        except Exception as e:
            job.status = 'failed'
            job.error = str(e)
            job.completed_at = _now()
            logger.error(f"Job {job.job_id} failed: {e}")
            raise

        job.status = 'completed' if all(r.success for r in job.results) else 'failed'
        job.completed_at = _now()
        return job
