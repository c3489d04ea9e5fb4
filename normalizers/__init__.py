"""
Per-Shop Normalizers

One Normalizer per retailer, all sharing the same contract and the same
assembly helpers.

Key Components:
- Normalizer: Capability interface (can_handle, normalize, normalize_batch, get_schema)
- FreshfulNormalizer: Freshful exports
- UniversalNormalizer: Profile-driven normalizer for the other retailers
- BatchRun: Batched streaming with terminal stats
- create_normalizer: Registry lookup by store id
"""

from typing import Optional

from category_mapping import CategoryMappingEngine
from normalization.config import PreprocessorConfig
from normalization.exceptions import UnknownStoreError

from .base import (
    ErrorKind,
    ExtractedFields,
    NormalizationOptions,
    NormalizationResult,
    NormalizationStats,
    Normalizer,
    NormalizerSchema,
)
from .batch import BatchRun, RunState
from .freshful import FreshfulNormalizer
from .universal import FIELD_PROFILES, UniversalNormalizer, detect_store

SUPPORTED_STORES = ('freshful',) + tuple(sorted(FIELD_PROFILES))


def create_normalizer(store_id: str, engine: CategoryMappingEngine,
                      config: Optional[PreprocessorConfig] = None) -> Normalizer:
    """
    Normalizer for a store id.

    Raises:
        UnknownStoreError: If no normalizer exists for the store
    """
    if store_id == 'freshful':
        return FreshfulNormalizer(engine, config)
    if store_id in FIELD_PROFILES:
        return UniversalNormalizer(store_id, engine, config)
    raise UnknownStoreError(store_id, known=list(SUPPORTED_STORES))


__all__ = [
    # Interface
    'Normalizer',
    'NormalizerSchema',
    'NormalizationOptions',
    'NormalizationResult',
    'NormalizationStats',
    'ExtractedFields',
    'ErrorKind',

    # Batching
    'BatchRun',
    'RunState',

    # Implementations
    'FreshfulNormalizer',
    'UniversalNormalizer',
    'SUPPORTED_STORES',
    'create_normalizer',
    'detect_store',
]
