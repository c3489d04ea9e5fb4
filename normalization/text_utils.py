"""
Text Utilities

Locale helpers shared by the parser, the mapping engine and the normalizers.

Key functions:
1. strip_diacritics / normalize_text: Romanian-aware text folding for matching
2. slugify / slugify_path: stable URL-safe slugs for category paths
3. tokenize / text_similarity: token-based comparison of category labels
4. clean_title / clean_brand: display cleanup for scraped strings

Example:
    >>> normalize_text("Lactate & Ouă")
    'lactate oua'
    >>> slugify("Pâine & Patiserie")
    'paine-patiserie'
"""

import re
from difflib import SequenceMatcher
from typing import Iterable, List, Optional

from unidecode import unidecode


# === Stopwords ===
# Romanian function words that carry no category signal

STOPWORDS = {
    'si', 'de', 'cu', 'la', 'pentru', 'din', 'in', 'fara', 'sau', 'pe',
    'al', 'ale', 'a', 'un', 'o', 'the', 'and', 'of', 'for',
}

# Company suffixes stripped from brand names
BRAND_SUFFIXES = [
    r'\s+S\.?R\.?L\.?$',
    r'\s+S\.?A\.?$',
    r'\s+GmbH$',
]


def strip_diacritics(text: str) -> str:
    """
    Reduce accented letters to plain ASCII.

    Handles both comma-below (ș, ț) and cedilla (ş, ţ) Romanian forms.

    Example:
        >>> strip_diacritics("Brânzeturi și ouă")
        'Branzeturi si oua'
    """
    if not text:
        return ""
    return unidecode(text)


def normalize_text(text: Optional[str]) -> str:
    """
    Fold text for matching: no diacritics, lowercase, no punctuation.

    Args:
        text: Raw text (category label, product name, ...)

    Returns:
        Normalized text with single spaces

    Example:
        >>> normalize_text("  Fructe & Legume - Proaspete!")
        'fructe legume proaspete'
    """
    if not text:
        return ""

    normalized = strip_diacritics(str(text)).lower()
    normalized = re.sub(r'[^a-z0-9\s]', ' ', normalized)
    normalized = re.sub(r'\s+', ' ', normalized)
    return normalized.strip()


def tokenize(text: Optional[str]) -> List[str]:
    """
    Split text into significant tokens.

    Example:
        >>> tokenize("Lapte si smantana pentru gatit")
        ['lapte', 'smantana', 'gatit']
    """
    return [t for t in normalize_text(text).split() if t not in STOPWORDS and len(t) > 1]


def slugify(text: Optional[str]) -> str:
    """
    Create a URL-safe slug.

    Idempotent: slugify(slugify(x)) == slugify(x).

    Example:
        >>> slugify("Înghețată & Congelate")
        'inghetata-congelate'
    """
    if not text:
        return ""

    slug = strip_diacritics(str(text)).lower()
    slug = re.sub(r'[^a-z0-9]+', '-', slug)
    slug = re.sub(r'-+', '-', slug)
    return slug.strip('-')


def slugify_path(path: Iterable[str]) -> str:
    """
    Slugify each category path segment and join with '/'.

    Example:
        >>> slugify_path(["Lactate & ouă", "Brânzeturi"])
        'lactate-oua/branzeturi'
    """
    return '/'.join(s for s in (slugify(segment) for segment in path) if s)


def contains_phrase(text: str, phrase: str) -> bool:
    """True if the normalized phrase appears as whole tokens in the normalized text."""
    norm_phrase = normalize_text(phrase)
    if not norm_phrase:
        return False
    return f" {norm_phrase} " in f" {normalize_text(text)} "


def text_similarity(text1: Optional[str], text2: Optional[str]) -> float:
    """
    Similarity of two labels using token overlap + sequence matching.

    The sequence ratio is computed on the tokenized forms so that
    stopwords and punctuation do not count. Typos keep a high score
    through the sequence ratio alone; reordered words through the overlap.

    Returns:
        Score in [0, 1]

    Example:
        >>> text_similarity("Lactate si oua", "Lactate & Ouă")
        1.0
    """
    tokens1 = tokenize(text1)
    tokens2 = tokenize(text2)

    if not tokens1 or not tokens2:
        return 0.0

    joined1 = ' '.join(tokens1)
    joined2 = ' '.join(tokens2)
    if joined1 == joined2:
        return 1.0

    set1, set2 = set(tokens1), set(tokens2)
    overlap = len(set1 & set2) / max(len(set1), len(set2))
    seq_ratio = SequenceMatcher(None, joined1, joined2).ratio()

    return max(seq_ratio, overlap * 0.6 + seq_ratio * 0.4)


def clean_title(text: Optional[str]) -> str:
    """
    Clean a scraped product title for display.

    Example:
        >>> clean_title("  <b>lapte</b>   integral ")
        'Lapte integral'
    """
    if not text:
        return ""

    cleaned = str(text)

    # Remove HTML tags and entities
    cleaned = re.sub(r'<[^>]+>', ' ', cleaned)
    cleaned = re.sub(r'&[a-z]+;', ' ', cleaned)
    cleaned = re.sub(r'&#\d+;', ' ', cleaned)

    cleaned = re.sub(r'\s+', ' ', cleaned).strip()
    if cleaned:
        cleaned = cleaned[0].upper() + cleaned[1:]
    return cleaned


def clean_brand(text: Optional[str]) -> Optional[str]:
    """
    Clean a scraped brand name; None when nothing usable is left.

    Example:
        >>> clean_brand("Albalact S.A.")
        'Albalact'
    """
    if not text:
        return None

    cleaned = re.sub(r'\s+', ' ', str(text)).strip()
    for pattern in BRAND_SUFFIXES:
        cleaned = re.sub(pattern, '', cleaned, flags=re.IGNORECASE)
    return cleaned or None
