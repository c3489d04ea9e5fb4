"""
Attribute Extractor

Derives product attributes (origin, dietary flags, allergens, promo flags,
discounts, stock) from free text using keyword dictionaries.

Keywords are matched as whole tokens on diacritic-free lowercase text, so
"nou" does not fire on "nougat" and "oua" matches "ouă".

Example:
    "Iaurt grecesc BIO fără lactoză, România" →
        country="România", dietary=["bio", "lactose-free"]
"""

import re
from typing import Any, Dict, List, Optional, Tuple

from .text_utils import contains_phrase, normalize_text


# === Keyword Dictionaries ===

COUNTRIES: Dict[str, str] = {
    'romania': 'România',
    'romanesc': 'România',
    'italia': 'Italia',
    'italian': 'Italia',
    'franta': 'Franța',
    'france': 'Franța',
    'germania': 'Germania',
    'germany': 'Germania',
    'spania': 'Spania',
    'spain': 'Spania',
    'grecia': 'Grecia',
    'grecesc': 'Grecia',
    'polonia': 'Polonia',
    'ungaria': 'Ungaria',
    'olanda': 'Olanda',
    'bulgaria': 'Bulgaria',
}

DIETARY_KEYWORDS: Dict[str, str] = {
    'bio': 'bio',
    'eco': 'bio',
    'organic': 'bio',
    'ecologic': 'bio',
    'vegan': 'vegan',
    'vegetarian': 'vegetarian',
    'fara gluten': 'gluten-free',
    'gluten free': 'gluten-free',
    'fara lactoza': 'lactose-free',
    'lactose free': 'lactose-free',
    'fara zahar': 'sugar-free',
    'sugar free': 'sugar-free',
}

ALLERGEN_KEYWORDS: Dict[str, str] = {
    'gluten': 'gluten',
    'lactoza': 'lactose',
    'lactose': 'lactose',
    'nuci': 'nuts',
    'nuts': 'nuts',
    'alune': 'nuts',
    'arahide': 'peanuts',
    'oua': 'eggs',
    'eggs': 'eggs',
    'soia': 'soy',
    'soy': 'soy',
    'peste': 'fish',
    'susan': 'sesame',
}

# Negated forms ("fara gluten", "gluten free") must not count as allergens
NEGATION_BEFORE = 'fara'
NEGATION_AFTER = 'free'

PROMO_KEYWORDS: Dict[str, str] = {
    'nou': 'new',
    'new': 'new',
    'noutate': 'new',
    'limitat': 'limited',
    'limited': 'limited',
    'editie limitata': 'limited',
    'exclusiv online': 'online-only',
    '1 1': 'bundle',
    'gratis': 'bundle',
}

STOCK_STATUSES: Dict[str, str] = {
    'in_stock': 'in_stock',
    'in stoc': 'in_stock',
    'disponibil': 'in_stock',
    'out_of_stock': 'out_of_stock',
    'stoc epuizat': 'out_of_stock',
    'indisponibil': 'out_of_stock',
    'limited_stock': 'limited_stock',
    'stoc limitat': 'limited_stock',
    'ultimele bucati': 'limited_stock',
    'pre_order': 'pre_order',
    'precomanda': 'pre_order',
}


def _search_text(*parts: Optional[str]) -> str:
    return normalize_text(' '.join(p for p in parts if p))


def extract_country(*texts: Optional[str]) -> Optional[str]:
    """
    Example:
        >>> extract_country("Brânză telemea", "Produs în România")
        'România'
    """
    text = _search_text(*texts)
    for keyword, country in COUNTRIES.items():
        if contains_phrase(text, keyword):
            return country
    return None


def extract_dietary(*texts: Optional[str], organic: bool = False) -> List[str]:
    """
    Example:
        >>> extract_dietary("Iaurt BIO fără lactoză")
        ['bio', 'lactose-free']
    """
    text = _search_text(*texts)
    flags = []
    for keyword, flag in DIETARY_KEYWORDS.items():
        if flag not in flags and contains_phrase(text, keyword):
            flags.append(flag)
    if organic and 'bio' not in flags:
        flags.append('bio')
    return flags


def extract_allergens(*texts: Optional[str]) -> List[str]:
    """
    Example:
        >>> extract_allergens("Biscuiți cu nuci, fără gluten")
        ['nuts']
    """
    tokens = _search_text(*texts).split()
    allergens = []
    for i, token in enumerate(tokens):
        allergen = ALLERGEN_KEYWORDS.get(token)
        if not allergen or allergen in allergens:
            continue
        previous = tokens[i - 1] if i > 0 else ''
        following = tokens[i + 1] if i + 1 < len(tokens) else ''
        if previous == NEGATION_BEFORE or following == NEGATION_AFTER:
            continue
        allergens.append(allergen)
    return allergens


def extract_promo_flags(*texts: Optional[str], promo_label: Optional[str] = None,
                        promotional: bool = False) -> List[str]:
    """
    Example:
        >>> extract_promo_flags("Ciocolată NOU", promo_label="-20%")
        ['discount', 'new']
    """
    flags = []
    if promo_label or promotional:
        flags.append('discount')

    text = _search_text(*texts, promo_label)
    for keyword, flag in PROMO_KEYWORDS.items():
        if flag not in flags and contains_phrase(text, keyword):
            flags.append(flag)
    return flags


def parse_discount(promo_label: Optional[str]) -> Optional[Tuple[str, float]]:
    """
    Parse a promo label into (discount_type, value).

    Example:
        >>> parse_discount("-25%")
        ('percent', 25.0)
        >>> parse_discount("Reducere 5,50 lei")
        ('price_drop', 5.5)
        >>> parse_discount("Nou") is None
        True
    """
    if not promo_label:
        return None

    label = str(promo_label).lower()

    percent = re.search(r'(\d+(?:[.,]\d+)?)\s*%', label)
    if percent:
        return ('percent', float(percent.group(1).replace(',', '.')))

    drop = re.search(r'(\d+(?:[.,]\d+)?)\s*(?:lei|ron)', label)
    if drop:
        return ('price_drop', float(drop.group(1).replace(',', '.')))

    return None


def parse_stock_status(raw: Dict[str, Any]) -> Tuple[bool, str]:
    """
    Derive (in_stock, status) from availability fields.

    Defaults to in stock when the feed says nothing.

    Example:
        >>> parse_stock_status({'availability': 'Stoc limitat'})
        (True, 'limited_stock')
        >>> parse_stock_status({'inStock': False})
        (False, 'out_of_stock')
    """
    availability = raw.get('availability') or raw.get('stock_status')
    if isinstance(availability, str):
        status = STOCK_STATUSES.get(normalize_text(availability).replace(' ', '_'))
        if status is None:
            status = STOCK_STATUSES.get(normalize_text(availability))
        if status:
            return (status != 'out_of_stock', status)

    in_stock = raw.get('inStock', raw.get('in_stock', raw.get('stock', True)))
    if isinstance(in_stock, str):
        in_stock = normalize_text(in_stock) not in ('false', '0', 'nu', 'no')
    in_stock = bool(in_stock)
    return (in_stock, 'in_stock' if in_stock else 'out_of_stock')
