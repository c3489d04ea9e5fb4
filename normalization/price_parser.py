"""
Price / Unit / Size Parser

Parses free-text price, unit and pack-size fields from Romanian retailer
feeds into structured values. Every parsed value keeps the original text
and a confidence score instead of failing.

Handles:
- Prices: "12,99 lei", "1.234,56 RON", "1,234.99", "€ 5", numbers
- Units: kg, g, l, ml, buc and their Romanian/English spellings
- Sizes: "500g", "1,5 l", multipacks "6x330ml", piece counts "10 buc"
- Unit prices: "8,49 Lei/kg" or computed from price + size

Example:
    >>> parse_price("12,99 lei").value
    12.99
    >>> parse_size("2x500ml").total_ml
    1000.0
"""

import math
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from .text_utils import strip_diacritics


# === Value Objects ===

@dataclass
class ParsedPrice:
    value: float = 0.0
    currency: str = "RON"
    original_text: str = ""
    confidence: float = 0.0


@dataclass
class ParsedUnit:
    type: str = "pcs"  # "kg" | "g" | "l" | "ml" | "pcs"
    original_text: str = ""
    confidence: float = 0.0


@dataclass
class ParsedSize:
    size: float = 0.0
    unit: str = "pcs"
    original_text: str = ""
    confidence: float = 0.0
    total_grams: Optional[float] = None  # Set for kg/g
    total_ml: Optional[float] = None     # Set for l/ml


@dataclass
class UnitPrice:
    value: float
    unit: str  # "RON/kg" | "RON/l" | "RON/pcs" ...
    original_text: str = ""


@dataclass
class PriceValidation:
    is_valid: bool
    warnings: List[str] = field(default_factory=list)


# === Unit Normalization ===

UNIT_MAPPING = {
    # Kilograms
    'kg': 'kg',
    'kgr': 'kg',
    'kilo': 'kg',
    'kilogram': 'kg',
    'kilograme': 'kg',
    'kilograms': 'kg',

    # Grams
    'g': 'g',
    'gr': 'g',
    'gram': 'g',
    'grame': 'g',
    'grams': 'g',

    # Liters
    'l': 'l',
    'ltr': 'l',
    'litru': 'l',
    'litri': 'l',
    'liter': 'l',
    'litre': 'l',
    'liters': 'l',

    # Milliliters
    'ml': 'ml',
    'mililitru': 'ml',
    'mililitri': 'ml',
    'milliliter': 'ml',
    'millilitre': 'ml',

    # Pieces
    'buc': 'pcs',
    'bucata': 'pcs',
    'bucati': 'pcs',
    'pcs': 'pcs',
    'pc': 'pcs',
    'piece': 'pcs',
    'pieces': 'pcs',
    'bax': 'pcs',
}

UNIT_TYPES = ('kg', 'g', 'l', 'ml', 'pcs')

CURRENCY_TOKENS = re.compile(r'(lei|ron|€|eur)', re.IGNORECASE)
COMPOUND_UNIT = re.compile(r'(?:lei|ron)?\s*/\s*(kg|g|l|ml|buc|pcs)$')
LEADING_NUMBER = re.compile(r'[-+]?(?:\d+(?:\.\d*)?|\.\d+)')


def normalize_unit(unit: Optional[str]) -> str:
    """
    Normalize unit string to standard format.

    Example:
        >>> normalize_unit("Bucăți")
        'pcs'
        >>> normalize_unit("litri")
        'l'
    """
    if not unit:
        return ''

    unit_lower = strip_diacritics(unit).lower().strip().rstrip('.')
    return UNIT_MAPPING.get(unit_lower, unit_lower)


def convert_to_base_unit(value: float, unit: str) -> Tuple[float, str]:
    """
    Convert quantity to base unit (ml or g).

    Example:
        >>> convert_to_base_unit(1.5, 'l')
        (1500.0, 'ml')
        >>> convert_to_base_unit(2, 'kg')
        (2000, 'g')
    """
    unit = normalize_unit(unit)

    if unit == 'l':
        return (value * 1000, 'ml')
    elif unit == 'kg':
        return (value * 1000, 'g')
    else:
        return (value, unit)


# === Price Parsing ===
# Decimal-convention tiers, tried in order; first full match wins

PRICE_TIERS = [
    # "12,99" - Romanian decimal comma
    (re.compile(r'\d+,\d{2}'), 'decimal_comma', 0.95),

    # "12.999,99" - dot thousands, comma decimal
    (re.compile(r'\d{1,3}(?:\.\d{3})*,\d{2}'), 'european', 0.90),

    # "1,234.99" - comma thousands, dot decimal
    (re.compile(r'\d{1,3}(?:,\d{3})*\.\d{2}'), 'us', 0.85),

    # "12" - bare integer, fraction may have been dropped
    (re.compile(r'\d+'), 'integer', 0.70),
]

FALLBACK_PRICE_CONFIDENCE = 0.8


def _dampen(value: float, confidence: float) -> float:
    """Lower confidence for implausible prices."""
    if value > 10000:
        confidence *= 0.5
    if value < 0.01:
        confidence *= 0.3
    return round(confidence, 4)


def parse_price(price_input: Union[str, int, float, None]) -> ParsedPrice:
    """
    Parse a price into RON with a confidence score.

    Never raises: unparseable input gives value 0 and confidence 0.

    Args:
        price_input: Raw price text or number

    Returns:
        ParsedPrice

    Example:
        >>> parse_price("12,99").confidence
        0.95
        >>> parse_price("1.234,56 RON").value
        1234.56
        >>> parse_price("n/a").confidence
        0.0
    """
    if isinstance(price_input, bool):
        return ParsedPrice(original_text=str(price_input))

    if isinstance(price_input, (int, float)):
        value = float(price_input)
        if math.isnan(value) or math.isinf(value) or value < 0:
            return ParsedPrice(original_text=str(price_input))
        return ParsedPrice(value=value, original_text=str(price_input),
                           confidence=_dampen(value, 1.0))

    if not isinstance(price_input, str) or not price_input.strip():
        return ParsedPrice(original_text='' if price_input is None else str(price_input))

    original = price_input
    cleaned = CURRENCY_TOKENS.sub('', price_input.lower())
    cleaned = re.sub(r'\s+', '', cleaned)

    value = None
    confidence = 0.0

    for pattern, tier, tier_confidence in PRICE_TIERS:
        if pattern.fullmatch(cleaned):
            if tier == 'decimal_comma':
                value = float(cleaned.replace(',', '.'))
            elif tier == 'european':
                value = float(cleaned.replace('.', '').replace(',', '.'))
            elif tier == 'us':
                value = float(cleaned.replace(',', ''))
            else:
                value = float(cleaned)
            confidence = tier_confidence
            break

    if value is None:
        # Single comma with no dot is a decimal separator ("12,5")
        if cleaned.count(',') == 1 and '.' not in cleaned:
            cleaned = cleaned.replace(',', '.')
        match = LEADING_NUMBER.match(cleaned)
        if not match:
            return ParsedPrice(original_text=original)
        try:
            value = float(match.group(0))
        except ValueError:
            return ParsedPrice(original_text=original)
        confidence = FALLBACK_PRICE_CONFIDENCE

    if value < 0 or math.isnan(value) or math.isinf(value):
        return ParsedPrice(original_text=original)

    return ParsedPrice(value=value, original_text=original,
                       confidence=_dampen(value, confidence))


def validate_price(parsed: ParsedPrice) -> PriceValidation:
    """
    Sanity-check a parsed price.

    Example:
        >>> validate_price(parse_price("0")).is_valid
        False
    """
    warnings = []

    if parsed.value <= 0:
        return PriceValidation(is_valid=False, warnings=["Price must be greater than 0"])

    if parsed.value > 1000:
        warnings.append(f"Unusually high price: {parsed.value} RON")
    if parsed.value < 0.10:
        warnings.append(f"Unusually low price: {parsed.value} RON")
    if parsed.confidence < 0.5:
        warnings.append(f"Low price parsing confidence: {parsed.confidence}")

    return PriceValidation(is_valid=True, warnings=warnings)


def format_price(value: float) -> str:
    """
    Format a price the Romanian way.

    Example:
        >>> format_price(12.99)
        '12,99 RON'
    """
    return f"{value:.2f}".replace('.', ',') + " RON"


def format_unit_price(unit_price: UnitPrice) -> str:
    """
    Example:
        >>> format_unit_price(UnitPrice(value=20.0, unit="RON/kg"))
        '20,00 RON/kg'
    """
    return f"{unit_price.value:.2f}".replace('.', ',') + f" {unit_price.unit}"


# === Unit Parsing ===

def parse_unit(unit_input: Optional[str] = None) -> ParsedUnit:
    """
    Map a free-text unit token to kg, g, l, ml or pcs.

    Confidence:
        1.0 - dictionary hit ("kg", "litri", "bucată")
        0.9 - compound price suffix ("lei/kg")
        0.3 - field absent
        0.2 - unrecognized token (defaults to pcs)

    Example:
        >>> parse_unit("Litru").type
        'l'
        >>> parse_unit("lei/kg").confidence
        0.9
    """
    if unit_input is None or not str(unit_input).strip():
        return ParsedUnit(type='pcs', original_text='' if unit_input is None else str(unit_input),
                          confidence=0.3)

    original = str(unit_input)
    token = strip_diacritics(original).lower().strip().rstrip('.')

    if token in UNIT_MAPPING:
        return ParsedUnit(type=UNIT_MAPPING[token], original_text=original, confidence=1.0)

    compound = COMPOUND_UNIT.search(token)
    if compound:
        return ParsedUnit(type=normalize_unit(compound.group(1)), original_text=original,
                          confidence=0.9)

    return ParsedUnit(type='pcs', original_text=original, confidence=0.2)


# === Size Parsing ===
# Ordered by specificity (most specific first). Applied to lower-cased,
# diacritic-free text with all whitespace removed.

SIZE_PATTERNS = [
    # Multipack: "6x330ml", "4×1,5l"
    (re.compile(r'(\d+)[x×](\d+(?:[.,]\d+)?)(kg|ml|g|l)(?!ei)'), 'multipack', 0.95),

    # Simple: "500g", "1,5l", "0.75kg"
    (re.compile(r'(\d+(?:[.,]\d+)?)(kg|ml|g|l)(?!ei)'), 'simple', 0.9),

    # Piece counts: "10buc", "6bucati", "4pcs"
    (re.compile(r'(\d+)(bucati|bucata|buc|pieces|piece|pcs|pc)'), 'pieces', 0.9),
]


def _size_from(value: float, unit: str, original: str, confidence: float) -> ParsedSize:
    parsed = ParsedSize(size=value, unit=unit, original_text=original, confidence=confidence)
    base_value, base_unit = convert_to_base_unit(value, unit)
    if base_unit == 'g':
        parsed.total_grams = float(base_value)
    elif base_unit == 'ml':
        parsed.total_ml = float(base_value)
    return parsed


def parse_size(size_input: Optional[str] = None) -> ParsedSize:
    """
    Parse a pack size.

    Args:
        size_input: Size text or a product name containing one

    Returns:
        ParsedSize; size 0 and confidence 0 when nothing matches

    Example:
        >>> s = parse_size("2x500ml")
        >>> (s.size, s.unit, s.total_ml, s.confidence)
        (1000.0, 'ml', 1000.0, 0.95)
        >>> parse_size("Ouă 10 buc").unit
        'pcs'
    """
    if size_input is None or not str(size_input).strip():
        return ParsedSize(original_text='' if size_input is None else str(size_input))

    original = str(size_input)
    text = re.sub(r'\s+', '', strip_diacritics(original).lower())

    for pattern, pattern_type, confidence in SIZE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        try:
            if pattern_type == 'multipack':
                count = int(match.group(1))
                value = float(match.group(2).replace(',', '.'))
                return _size_from(count * value, normalize_unit(match.group(3)), original, confidence)

            elif pattern_type == 'simple':
                value = float(match.group(1).replace(',', '.'))
                return _size_from(value, normalize_unit(match.group(2)), original, confidence)

            elif pattern_type == 'pieces':
                return _size_from(float(match.group(1)), 'pcs', original, confidence)

        except (ValueError, IndexError):
            continue

    return ParsedSize(original_text=original)


def sizes_compatible(size1: ParsedSize, size2: ParsedSize, tolerance: float = 0.05) -> bool:
    """
    Check if two pack sizes describe the same quantity.

    Compares base units (grams or millilitres); pieces compare by count.

    Example:
        >>> sizes_compatible(parse_size("1l"), parse_size("1000 ml"))
        True
        >>> sizes_compatible(parse_size("500g"), parse_size("500ml"))
        False
    """
    if size1.total_grams and size2.total_grams:
        q1, q2 = size1.total_grams, size2.total_grams
    elif size1.total_ml and size2.total_ml:
        q1, q2 = size1.total_ml, size2.total_ml
    elif size1.unit == 'pcs' and size2.unit == 'pcs' and size1.size and size2.size:
        q1, q2 = size1.size, size2.size
    else:
        return False

    if min(q1, q2) <= 0:
        return False

    ratio = max(q1, q2) / min(q1, q2)
    return ratio <= (1 + tolerance)


# === Unit Price ===

UNIT_PRICE_PATTERN = re.compile(
    r'(\d+(?:[.,]\d+)*)\s*(?:lei|ron)\s*/\s*(kg|ml|l|g|buc|bucata|pcs)\b',
    re.IGNORECASE,
)


def parse_unit_price(unit_price_input: Optional[str] = None) -> Optional[UnitPrice]:
    """
    Parse a displayed unit price such as "8,49 Lei/kg".

    Example:
        >>> parse_unit_price("8,49 Lei/kg")
        UnitPrice(value=8.49, unit='RON/kg', original_text='8,49 Lei/kg')
        >>> parse_unit_price("") is None
        True
    """
    if not unit_price_input:
        return None

    original = str(unit_price_input)
    match = UNIT_PRICE_PATTERN.search(strip_diacritics(original))
    if not match:
        return None

    parsed = parse_price(match.group(1))
    if parsed.value <= 0:
        return None

    unit = normalize_unit(match.group(2))
    return UnitPrice(value=parsed.value, unit=f"RON/{unit}", original_text=original)


def calculate_unit_price(price: float, size: ParsedSize) -> Optional[UnitPrice]:
    """
    Compute price per kg, per l or per piece.

    Returns None when the size carries no usable quantity; callers treat
    that as "unit price unavailable", not as zero.

    Example:
        >>> calculate_unit_price(10, ParsedSize(total_grams=500))
        UnitPrice(value=20.0, unit='RON/kg', original_text='10 / ')
    """
    if size is None:
        return None

    original = f"{price} / {size.original_text}"

    if size.total_grams:
        return UnitPrice(value=round(price / size.total_grams * 1000, 2),
                         unit="RON/kg", original_text=original)

    if size.total_ml:
        return UnitPrice(value=round(price / size.total_ml * 1000, 2),
                         unit="RON/l", original_text=original)

    if size.unit == 'pcs' and size.size > 0:
        return UnitPrice(value=round(price / size.size, 2),
                         unit="RON/pcs", original_text=original)

    return None
