"""
Category Mapping Models

Rules, unmapped-queue entries and mapping results exchanged between the
engine, the rule store and the normalizers.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from normalization.schema import MappingStatus


PATTERN_TYPES = ('exact', 'regex', 'synonym', 'fuzzy')
RULE_CREATORS = ('system', 'admin', 'learning')

# Rules with this shop apply to every store
GLOBAL_SHOP = '*'


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CategoryRule:
    """
    Persisted mapping unit.

    Example:
        CategoryRule(
            id="freshful-branzeturi",
            shop="freshful",
            pattern="branzeturi",
            pattern_type="exact",
            target_path=["Lactate & ouă"],
        )
    """
    id: str
    shop: str
    pattern: str
    pattern_type: str  # "exact" | "regex" | "synonym" | "fuzzy"
    target_path: List[str]
    confidence: float = 1.0
    created_by: str = 'system'  # "system" | "admin" | "learning"
    usage_count: int = 0
    enabled: bool = True
    created_at: str = field(default_factory=utc_now)

    def __post_init__(self):
        if self.pattern_type not in PATTERN_TYPES:
            raise ValueError(f"Invalid pattern_type: {self.pattern_type}. Must be one of {PATTERN_TYPES}")
        if self.created_by not in RULE_CREATORS:
            raise ValueError(f"Invalid created_by: {self.created_by}. Must be one of {RULE_CREATORS}")
        if not self.target_path:
            raise ValueError(f"Rule {self.id} has an empty target_path")
        if not 0 <= self.confidence <= 1:
            raise ValueError(f"Rule {self.id} confidence must be between 0 and 1")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], shop: Optional[str] = None) -> "CategoryRule":
        """Create from a rule file entry; shop defaults to the file's shop."""
        return cls(
            id=str(data['id']),
            shop=data.get('shop') or shop or GLOBAL_SHOP,
            pattern=str(data['pattern']),
            pattern_type=data.get('pattern_type', 'exact'),
            target_path=list(data['target_path']),
            confidence=float(data.get('confidence', 1.0)),
            created_by=data.get('created_by', 'system'),
            usage_count=int(data.get('usage_count', 0)),
            enabled=bool(data.get('enabled', True)),
            created_at=data.get('created_at') or utc_now(),
        )


@dataclass
class MappingContext:
    """Input to CategoryMappingEngine.map_category()."""
    shop: str
    original_category: Optional[str] = None
    product_name: Optional[str] = None
    brand_name: Optional[str] = None
    allow_fuzzy: bool = True


@dataclass
class CategoryMappingResult:
    category_path: List[str]
    category_slug: str
    mapping_status: MappingStatus
    confidence: float
    rule_id: Optional[str] = None
    tier: Optional[str] = None  # "exact" | "regex" | "synonym" | "fuzzy" | "fallback" | "override"
    notes: List[str] = field(default_factory=list)
    alternatives: List["CategoryMappingResult"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['mapping_status'] = self.mapping_status.value
        for alt in data['alternatives']:
            alt['mapping_status'] = MappingStatus(alt['mapping_status']).value
        return data


@dataclass
class SampleProduct:
    name: str
    brand: Optional[str] = None
    url: Optional[str] = None
    seen_at: str = field(default_factory=utc_now)


@dataclass
class UnmappedCategory:
    """Aggregated unmapped category, keyed by (shop, original_category)."""
    shop: str
    original_category: str
    sample_products: List[SampleProduct] = field(default_factory=list)
    count: int = 0
    first_seen: str = field(default_factory=utc_now)
    last_seen: str = field(default_factory=utc_now)
    suggestions: Optional[List[CategoryMappingResult]] = None

    @property
    def key(self):
        return (self.shop, self.original_category)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.suggestions is not None:
            data['suggestions'] = [s.to_dict() for s in self.suggestions]
        return data
