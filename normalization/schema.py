"""
CanonicalProduct Schema

Unified product format that ALL normalizers must output.
This ensures consistent data for cross-retailer price comparison.

Models are pydantic; validate_product() is the post-validation step run by
every normalizer and never raises.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .text_utils import slugify_path


# Reserved bucket for products no tier could map
OTHER_CATEGORY = "Other"
OTHER_SLUG = "other"


class StoreId(str, Enum):
    AUCHAN = "auchan"
    CARREFOUR = "carrefour"
    KAUFLAND = "kaufland"
    MEGA = "mega"
    FRESHFUL = "freshful"
    LIDL = "lidl"


class MappingStatus(str, Enum):
    OK = "ok"
    FALLBACK_PARENT = "fallback-parent"
    FUZZY_MATCH = "fuzzy-match"
    MANUAL_OVERRIDE = "manual-override"
    UNMAPPED = "unmapped"


class UnitType(str, Enum):
    KILOGRAM = "kg"
    GRAM = "g"
    LITER = "l"
    MILLILITER = "ml"
    PIECE = "pcs"


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    LIMITED_STOCK = "limited_stock"
    PRE_ORDER = "pre_order"


class DiscountType(str, Enum):
    PERCENT = "percent"
    PRICE_DROP = "price_drop"
    BUNDLE = "bundle"


# ============================================
# Component Models
# ============================================

class Source(BaseModel):
    shop: StoreId
    shop_product_id: str = Field(..., min_length=1)
    source_file: str = Field(..., min_length=1)
    fetched_at: str
    line_number: Optional[int] = Field(None, ge=1)


class UnitPriceInfo(BaseModel):
    value: float = Field(..., gt=0)
    unit: str


class Discount(BaseModel):
    type: DiscountType
    value: float = Field(..., gt=0)
    label: Optional[str] = None


class Pricing(BaseModel):
    price: float = Field(..., gt=0)
    currency: Literal["RON"] = "RON"
    unit_price: Optional[UnitPriceInfo] = None
    original_price: Optional[float] = Field(None, gt=0)
    discount: Optional[Discount] = None


class Pack(BaseModel):
    size: float = Field(..., gt=0)
    unit: UnitType


class Stock(BaseModel):
    in_stock: bool = True
    status: StockStatus = StockStatus.IN_STOCK


class Attributes(BaseModel):
    country: Optional[str] = None
    dietary: List[str] = Field(default_factory=list)
    allergens: List[str] = Field(default_factory=list)
    promo_flags: List[str] = Field(default_factory=list)


class Urls(BaseModel):
    product: Optional[str] = None
    image: Optional[str] = None

    @field_validator('product', 'image')
    @classmethod
    def check_http(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.startswith(('http://', 'https://')):
            raise ValueError(f"not an http(s) URL: {value}")
        return value


class Audit(BaseModel):
    normalizer_version: str = Field(..., min_length=1)
    category_rule_id: Optional[str] = None
    mapping_confidence: float = Field(0.0, ge=0, le=1)
    parse_confidence: Dict[str, float] = Field(default_factory=dict)
    notes: List[str] = Field(default_factory=list)


# ============================================
# Canonical Product
# ============================================

class CanonicalProduct(BaseModel):
    """
    Retailer-agnostic product record used for price comparison.

    Invariants:
    - category_path is never empty
    - category_slug is derived from category_path
    - mapping_status "unmapped" implies category_path == ["Other"]
    """
    # === Identity (required) ===
    canonical_id: str = Field(..., min_length=1)
    source: Source

    # === Core Attributes ===
    title: str = Field(..., min_length=1)
    brand: Optional[str] = None
    description: Optional[str] = None

    # === Category ===
    category_path: List[str] = Field(..., min_length=1)
    category_slug: str = Field(..., pattern=r'^[a-z0-9\-/]+$')
    mapping_status: MappingStatus

    # === Price / Pack / Stock ===
    pricing: Pricing
    pack: Pack
    stock: Stock = Field(default_factory=Stock)

    # === Metadata ===
    gtin: Optional[str] = Field(None, pattern=r'^\d{8,14}$')
    attributes: Attributes = Field(default_factory=Attributes)
    urls: Optional[Urls] = None

    # === Tracking ===
    audit: Audit

    @model_validator(mode='after')
    def check_category(self) -> "CanonicalProduct":
        expected_slug = slugify_path(self.category_path)
        if self.category_slug != expected_slug:
            raise ValueError(
                f"category_slug '{self.category_slug}' does not match category_path (expected '{expected_slug}')"
            )
        if self.mapping_status == MappingStatus.UNMAPPED and self.category_path != [OTHER_CATEGORY]:
            raise ValueError(f"unmapped products must use the '{OTHER_CATEGORY}' bucket")
        return self

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dictionary."""
        return self.model_dump(mode='json', exclude_none=True)


def format_validation_error(error: ValidationError) -> str:
    """Flatten pydantic errors into one line: 'pricing.price: Input should be greater than 0; ...'"""
    parts = []
    for item in error.errors():
        location = '.'.join(str(p) for p in item.get('loc', ())) or 'product'
        parts.append(f"{location}: {item.get('msg')}")
    return '; '.join(parts)


def validate_product(data: Dict[str, Any]) -> Tuple[Optional[CanonicalProduct], Optional[str]]:
    """
    Validate an assembled product dictionary.

    Returns:
        (product, None) on success, (None, message) on failure

    Example:
        product, error = validate_product(data)
        if error:
            result.errors.append(f"Validation failed: {error}")
    """
    try:
        return CanonicalProduct.model_validate(data), None
    except ValidationError as e:
        return None, format_validation_error(e)
