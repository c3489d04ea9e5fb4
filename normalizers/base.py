"""
Normalizer Interface

Every retailer implements the same contract:

    can_handle(raw)                -> bool
    normalize(raw, options)        -> NormalizationResult
    normalize_batch(raws, options) -> BatchRun (results + final stats)
    get_schema()                   -> NormalizerSchema

A normalizer only knows its retailer's raw field names (extract) and where
its category hint lives (category_signal). Parsing, mapping, id generation
and assembly are shared helpers from normalizers.assembly.

normalize() never raises: every problem ends up in the result's errors.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from category_mapping import CategoryMappingEngine, CategoryMappingResult, MappingContext
from normalization.config import PreprocessorConfig, StoreSettings, default_config
from normalization.schema import MappingStatus, validate_product

from .assembly import apply_shop_override, assemble_product

logger = logging.getLogger(__name__)


@dataclass
class NormalizationOptions:
    batch_size: int = 1000
    enable_validation: bool = True
    enable_audit_trail: bool = True
    enable_fuzzy_matching: bool = True
    strict_mapping: bool = False      # Unmapped products fail the shop run
    source_file: Optional[str] = None
    fetched_at: Optional[str] = None
    verbose: bool = False


@dataclass
class NormalizerSchema:
    required_fields: List[str]
    optional_fields: List[str] = field(default_factory=list)
    description: str = ""
    # Required field -> other keys accepted in its place
    alternatives: Dict[str, List[str]] = field(default_factory=dict)


class ErrorKind(str, Enum):
    STRUCTURAL_REJECTION = "structural_rejection"
    VALIDATION_FAILURE = "validation_failure"
    NORMALIZATION_ERROR = "normalization_error"
    BATCH_ITEM_FAULT = "batch_item_fault"


@dataclass
class ExtractedFields:
    """
    Retailer-neutral view of one raw record.

    Values are still raw text; parsing happens during assembly.
    """
    name: Optional[str] = None
    brand: Optional[str] = None
    price: Any = None
    original_price: Any = None
    unit_price: Optional[str] = None
    size: Optional[str] = None
    url: Optional[str] = None
    image: Optional[str] = None
    promo_label: Optional[str] = None
    shop_product_id: Optional[str] = None
    gtin: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    organic: bool = False
    promotional: bool = False
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NormalizationResult:
    success: bool
    product: Optional[Dict[str, Any]] = None  # CanonicalProduct as a JSON-ready dict
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    line_number: Optional[int] = None
    processing_time: float = 0.0  # ms
    raw_product: Any = None
    error_kind: Optional[ErrorKind] = None


@dataclass
class NormalizationStats:
    total: int = 0
    successful: int = 0
    failed: int = 0
    mapped: int = 0
    unmapped: int = 0
    category_coverage: Dict[str, int] = field(default_factory=dict)
    errors_by_kind: Dict[str, int] = field(default_factory=dict)
    processing_time: float = 0.0  # ms
    memory_usage: int = 0         # bytes, when tracemalloc is tracing

    def record(self, result: NormalizationResult):
        """Fold one result into the counters."""
        self.total += 1

        if not result.success or result.product is None:
            self.failed += 1
            kind = result.error_kind.value if result.error_kind else ErrorKind.NORMALIZATION_ERROR.value
            self.errors_by_kind[kind] = self.errors_by_kind.get(kind, 0) + 1
            return

        self.successful += 1
        if result.product.get('mapping_status') == MappingStatus.UNMAPPED.value:
            self.unmapped += 1
        else:
            self.mapped += 1

        key = ' > '.join(result.product.get('category_path') or [])
        self.category_coverage[key] = self.category_coverage.get(key, 0) + 1

    @property
    def success_rate(self) -> float:
        return self.successful / self.total if self.total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'successful': self.successful,
            'failed': self.failed,
            'mapped': self.mapped,
            'unmapped': self.unmapped,
            'success_rate': round(self.success_rate, 4),
            'category_coverage': dict(self.category_coverage),
            'errors_by_kind': dict(self.errors_by_kind),
            'processing_time': round(self.processing_time, 2),
            'memory_usage': self.memory_usage,
        }


BatchCallback = Callable[[int, NormalizationStats], None]


def first_value(raw: Dict[str, Any], keys: Iterable[str]) -> Any:
    """First non-empty value among keys, None if all are missing."""
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        return value
    return None


def text_value(value: Any) -> Optional[str]:
    """Stripped string form of value, None when empty."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def has_required_fields(raw: Any, required: Iterable[str],
                        alternatives: Optional[Dict[str, List[str]]] = None) -> bool:
    """
    True if raw is a mapping with every required field present and non-empty.

    A required field is also satisfied by any of its alternatives.
    """
    if not isinstance(raw, dict):
        return False
    alternatives = alternatives or {}
    return all(
        first_value(raw, [name] + list(alternatives.get(name, ()))) is not None
        for name in required
    )


class Normalizer(ABC):
    """
    Per-retailer normalizer.

    Subclasses provide store_id, get_schema(), extract() and
    category_signal(); normalize() composes everything else.
    """

    VERSION = "1.0.0"

    def __init__(self, engine: CategoryMappingEngine, config: Optional[PreprocessorConfig] = None):
        self.engine = engine
        self.config = config or default_config

    @property
    @abstractmethod
    def store_id(self) -> str:
        pass

    @property
    def version(self) -> str:
        return self.VERSION

    @property
    def settings(self) -> StoreSettings:
        return self.config.store(self.store_id)

    @abstractmethod
    def get_schema(self) -> NormalizerSchema:
        pass

    @abstractmethod
    def extract(self, raw: Dict[str, Any], options: NormalizationOptions) -> ExtractedFields:
        """Map the retailer's raw field names onto ExtractedFields."""
        pass

    @abstractmethod
    def category_signal(self, fields: ExtractedFields, options: NormalizationOptions) -> Optional[str]:
        """Best category hint for the record, None when there is none."""
        pass

    def can_handle(self, raw: Any) -> bool:
        schema = self.get_schema()
        return has_required_fields(raw, schema.required_fields, schema.alternatives)

    def map_category(self, fields: ExtractedFields, options: NormalizationOptions) -> CategoryMappingResult:
        context = MappingContext(
            shop=self.store_id,
            original_category=self.category_signal(fields, options),
            product_name=fields.name,
            brand_name=fields.brand,
            allow_fuzzy=options.enable_fuzzy_matching,
        )
        result = self.engine.map_category(context)
        return apply_shop_override(result, self.settings.other_override_path)

    def normalize(self, raw: Any, options: Optional[NormalizationOptions] = None,
                  line_number: Optional[int] = None) -> NormalizationResult:
        """
        Normalize one raw record into a CanonicalProduct dict.

        Args:
            raw: Raw vendor record
            options: Normalization options
            line_number: 1-based position in the source feed

        Returns:
            NormalizationResult; success=False carries the reason in errors
        """
        options = options or NormalizationOptions()
        started = time.perf_counter()

        def finish(result: NormalizationResult) -> NormalizationResult:
            result.line_number = line_number
            result.processing_time = (time.perf_counter() - started) * 1000
            if not result.success:
                result.raw_product = raw
                log = logger.info if options.verbose else logger.debug
                log(f"[{self.store_id}] Line {line_number}: {'; '.join(result.errors)}")
            return result

        if not self.can_handle(raw):
            return finish(NormalizationResult(
                success=False,
                errors=["Raw product format not supported by this normalizer"],
                error_kind=ErrorKind.STRUCTURAL_REJECTION,
            ))

        try:
            fields = self.extract(raw, options)
            mapping = self.map_category(fields, options)
            data, warnings = assemble_product(
                shop=self.store_id,
                version=self.version,
                fields=fields,
                mapping=mapping,
                options=options,
                line_number=line_number,
            )
        except Exception as e:
            return finish(NormalizationResult(
                success=False,
                errors=[f"Normalization error: {e}"],
                error_kind=ErrorKind.NORMALIZATION_ERROR,
            ))

        if options.enable_validation:
            product, error = validate_product(data)
            if error:
                return finish(NormalizationResult(
                    success=False,
                    errors=[f"Validation failed: {error}"],
                    warnings=warnings,
                    error_kind=ErrorKind.VALIDATION_FAILURE,
                ))
            data = product.to_dict()

        return finish(NormalizationResult(success=True, product=data, warnings=warnings))

    def normalize_batch(self, raws: Iterable[Any], options: Optional[NormalizationOptions] = None,
                        on_batch: Optional[BatchCallback] = None) -> "BatchRun":
        """
        Lazily normalize a feed in batches.

        Example:
            run = normalizer.normalize_batch(records, options)
            for result in run:
                ...
            print(run.stats.successful)
        """
        from .batch import BatchRun
        return BatchRun(self, raws, options, on_batch)
