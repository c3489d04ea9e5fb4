"""
Retail Feed Normalization Core

Pure building blocks shared by the category mapping engine and the
per-shop normalizers. Nothing in here touches the network or the disk
except the configuration loader.

Key Components:
- text_utils: Diacritic folding, slugs, token similarity
- price_parser: Romanian price / unit / size / unit-price parsing with confidences
- ids: GTIN checks and deterministic canonical ids
- attributes: Country, dietary, allergen, promo and stock extraction
- schema: CanonicalProduct model and validation
- config: PreprocessorConfig and environment overrides
"""

from .exceptions import (
    PreprocessorError,
    ConfigurationError,
    TaxonomyError,
    RuleStoreError,
    UnknownStoreError,
)
from .config import (
    MappingConfig,
    ProcessingConfig,
    StoreSettings,
    DataPaths,
    PreprocessorConfig,
    configure_logging,
    default_config,
)
from .text_utils import normalize_text, slugify, slugify_path, strip_diacritics, text_similarity
from .price_parser import (
    ParsedPrice,
    ParsedUnit,
    ParsedSize,
    UnitPrice,
    parse_price,
    parse_unit,
    parse_size,
    parse_unit_price,
    calculate_unit_price,
    sizes_compatible,
)
from .ids import clean_gtin, is_valid_gtin, generate_canonical_id
from .schema import (
    OTHER_CATEGORY,
    OTHER_SLUG,
    StoreId,
    MappingStatus,
    CanonicalProduct,
    validate_product,
)

__all__ = [
    # Errors
    'PreprocessorError',
    'ConfigurationError',
    'TaxonomyError',
    'RuleStoreError',
    'UnknownStoreError',

    # Configuration
    'MappingConfig',
    'ProcessingConfig',
    'StoreSettings',
    'DataPaths',
    'PreprocessorConfig',
    'configure_logging',
    'default_config',

    # Text
    'normalize_text',
    'slugify',
    'slugify_path',
    'strip_diacritics',
    'text_similarity',

    # Parsing
    'ParsedPrice',
    'ParsedUnit',
    'ParsedSize',
    'UnitPrice',
    'parse_price',
    'parse_unit',
    'parse_size',
    'parse_unit_price',
    'calculate_unit_price',
    'sizes_compatible',

    # Identifiers
    'clean_gtin',
    'is_valid_gtin',
    'generate_canonical_id',

    # Schema
    'OTHER_CATEGORY',
    'OTHER_SLUG',
    'StoreId',
    'MappingStatus',
    'CanonicalProduct',
    'validate_product',
]
