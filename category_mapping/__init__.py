"""
Category Mapping

Resolves vendor category strings to the canonical taxonomy through
exact, regex, synonym and fuzzy tiers, with a content fallback on
product name + brand and an unmapped queue for review.
"""

from .models import (
    GLOBAL_SHOP,
    CategoryRule,
    MappingContext,
    CategoryMappingResult,
    SampleProduct,
    UnmappedCategory,
)
from .rules import RuleStore, InMemoryRuleStore, JsonRuleStore, load_rules_file
from .taxonomy import CategoryTaxonomy
from .unmapped import UnmappedQueue
from .engine import CategoryMappingEngine, make_result, unmapped_result

__all__ = [
    # Models
    'GLOBAL_SHOP',
    'CategoryRule',
    'MappingContext',
    'CategoryMappingResult',
    'SampleProduct',
    'UnmappedCategory',

    # Storage
    'RuleStore',
    'InMemoryRuleStore',
    'JsonRuleStore',
    'load_rules_file',
    'UnmappedQueue',

    # Engine
    'CategoryTaxonomy',
    'CategoryMappingEngine',
    'make_result',
    'unmapped_result',
]
