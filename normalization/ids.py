"""
Identifier Utilities

Deterministic canonical ids for normalized products.

Priority (first available wins):
1. GTIN / EAN barcode
2. Shop-native product id
3. Last segment of the product URL
4. Content hash of name + brand + size

Example:
    >>> generate_canonical_id("freshful", gtin="5941234567890")
    'freshful:5941234567890'
"""

import hashlib
import re
from typing import Optional
from urllib.parse import urlparse

from .text_utils import normalize_text


GTIN_LENGTHS = (8, 12, 13, 14)


def clean_gtin(value) -> Optional[str]:
    """
    Keep digits only; None unless the result has a valid GTIN length.

    Example:
        >>> clean_gtin(" 594-1234567890 ")
        '5941234567890'
        >>> clean_gtin("abc") is None
        True
    """
    if value is None:
        return None
    digits = re.sub(r'\D', '', str(value))
    if len(digits) not in GTIN_LENGTHS:
        return None
    return digits


def is_valid_gtin(gtin: Optional[str]) -> bool:
    """
    Verify the GS1 mod-10 check digit.

    Example:
        >>> is_valid_gtin("4006381333931")
        True
        >>> is_valid_gtin("4006381333932")
        False
    """
    if not gtin or not gtin.isdigit() or len(gtin) not in GTIN_LENGTHS:
        return False

    body, check = gtin[:-1], int(gtin[-1])
    total = 0
    # Weights alternate 3,1,... starting from the digit next to the check digit
    for i, digit in enumerate(reversed(body)):
        total += int(digit) * (3 if i % 2 == 0 else 1)
    return (10 - total % 10) % 10 == check


def url_slug(url: Optional[str]) -> Optional[str]:
    """
    Last meaningful path segment of a URL.

    Marker segments of one or two characters ("/p" on Auchan pages) are
    skipped when a longer segment precedes them.

    Example:
        >>> url_slug("https://www.freshful.ro/p/100012345-lapte-zuzu-1l?ref=home")
        '100012345-lapte-zuzu-1l'
        >>> url_slug("https://www.auchan.ro/iaurt-grecesc-olympus-150g/p")
        'iaurt-grecesc-olympus-150g'
    """
    if not url:
        return None
    segments = [s for s in urlparse(str(url)).path.split('/') if s]
    if not segments:
        return None
    for segment in reversed(segments):
        if len(segment) > 2:
            return segment
    return segments[-1]


def content_hash(*parts: Optional[str]) -> str:
    """Deterministic 12-char hash of the normalized non-empty parts."""
    text = '|'.join(normalize_text(p) for p in parts if p)
    return hashlib.md5(text.encode('utf-8')).hexdigest()[:12]


def generate_canonical_id(
    shop: str,
    gtin: Optional[str] = None,
    shop_product_id: Optional[str] = None,
    url: Optional[str] = None,
    name: Optional[str] = None,
    brand: Optional[str] = None,
    size_text: Optional[str] = None,
) -> str:
    """
    Build the canonical id for a product.

    Args:
        shop: Store id ("freshful", "mega", ...)
        gtin: Barcode, used only when it has a valid GTIN length
        shop_product_id: Store-native product id
        url: Product page URL
        name, brand, size_text: Content used for the hash fallback

    Returns:
        "{shop}:{identifier}"

    Example:
        >>> generate_canonical_id("mega", url="https://www.mega-image.ro/p/lapte-zuzu/")
        'mega:lapte-zuzu'
    """
    barcode = clean_gtin(gtin)
    if barcode:
        return f"{shop}:{barcode}"

    if shop_product_id is not None and str(shop_product_id).strip():
        return f"{shop}:{str(shop_product_id).strip()}"

    slug = url_slug(url)
    if slug:
        return f"{shop}:{slug}"

    return f"{shop}:hash_{content_hash(name, brand, size_text)}"
