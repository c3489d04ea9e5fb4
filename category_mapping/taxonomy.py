"""
Category Taxonomy

Loads the canonical category tree plus the synonym dictionary and the
matching settings from categories.json, and indexes every label so the
engine can turn a term into a root→leaf path.

File layout:

    {
        "matching": {"synonym_match": 0.85, "content_penalty": 0.8, ...},
        "categories": [
            {"name": "Lactate & ouă", "slug": "lactate-oua",
             "subcategories": [{"name": "Brânzeturi"}]}
        ],
        "synonyms": {"Brânzeturi": ["branza", "cascaval"]},
        "generic_categories": ["gama variata", "oferte"],
        "broad_fallbacks": [{"keywords": ["aliment"], "path": ["Băcănie"]}]
    }
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from normalization.exceptions import TaxonomyError
from normalization.text_utils import normalize_text, slugify

logger = logging.getLogger(__name__)


DEFAULT_MATCHING = {
    'synonym_match': 0.85,
    'content_penalty': 0.8,
    'fallback_parent': 0.3,
}


class CategoryTaxonomy:
    """
    Canonical category tree with label and synonym indexes.

    Example:
        taxonomy = CategoryTaxonomy.load("category_mapping/data/categories.json")
        taxonomy.find_path("branzeturi")  # ['Lactate & ouă', 'Brânzeturi']
    """

    def __init__(self, data: Dict[str, Any], source: Optional[str] = None):
        self.source = source
        if not isinstance(data, dict) or not isinstance(data.get('categories'), list):
            raise TaxonomyError("Taxonomy must contain a 'categories' list", source)

        self.matching = dict(DEFAULT_MATCHING)
        self.matching.update(data.get('matching') or {})

        self.paths: List[List[str]] = []
        self._label_index: Dict[str, List[str]] = {}
        for node in data['categories']:
            self._index_node(node, [])

        self.synonyms = self._build_synonyms(data.get('synonyms') or {})
        self.generic_categories = {normalize_text(c) for c in data.get('generic_categories') or []}
        self.broad_fallbacks = self._build_fallbacks(data.get('broad_fallbacks') or [])

    @classmethod
    def load(cls, path: Union[str, Path]) -> "CategoryTaxonomy":
        """
        Load taxonomy from a JSON file.

        Raises:
            TaxonomyError: If the file is missing or malformed
        """
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise TaxonomyError(f"Cannot read taxonomy: {e}", str(path))

        taxonomy = cls(data, source=str(path))
        logger.info(
            f"Loaded taxonomy with {len(taxonomy.paths)} categories and "
            f"{sum(len(s) for _, s in taxonomy.synonyms)} synonyms from {path}"
        )
        return taxonomy

    # === Index building ===

    def _index_node(self, node: Dict[str, Any], parent: List[str]):
        if not isinstance(node, dict) or not node.get('name'):
            raise TaxonomyError(f"Category under {parent or 'root'} has no name", self.source)

        path = parent + [node['name']]
        self.paths.append(path)

        for key in (normalize_text(node['name']), node.get('slug') or slugify(node['name'])):
            if key in self._label_index and self._label_index[key] != path:
                logger.debug(f"Duplicate category label '{key}', keeping {self._label_index[key]}")
                continue
            self._label_index[key] = path

        for child in node.get('subcategories') or []:
            self._index_node(child, path)

    def _build_synonyms(self, raw: Dict[str, List[str]]) -> List[Tuple[str, List[str]]]:
        synonyms = []
        for term, words in raw.items():
            if self.find_path(term) is None:
                logger.warning(f"Synonym term '{term}' is not a taxonomy label")
            normalized = [normalize_text(w) for w in words]
            synonyms.append((term, [w for w in normalized if w]))
        return synonyms

    def _build_fallbacks(self, raw: List[Dict[str, Any]]) -> List[Tuple[List[str], List[str]]]:
        fallbacks = []
        for entry in raw:
            try:
                keywords = [normalize_text(k) for k in entry['keywords']]
                path = list(entry['path'])
            except (KeyError, TypeError):
                raise TaxonomyError(f"Invalid broad fallback entry: {entry}", self.source)
            fallbacks.append((keywords, path))
        return fallbacks

    # === Lookups ===

    def find_path(self, term: Optional[str]) -> Optional[List[str]]:
        """Path for a category name or slug, None if unknown."""
        if not term:
            return None
        path = self._label_index.get(normalize_text(term)) or self._label_index.get(slugify(term))
        return list(path) if path else None

    def has_path(self, path: List[str]) -> bool:
        return list(path) in self.paths

    def labels(self) -> List[Tuple[str, List[str]]]:
        """(label, path) pairs used for fuzzy matching."""
        return [(label.replace('-', ' '), list(path)) for label, path in self._label_index.items()]

    def is_generic(self, category: Optional[str]) -> bool:
        """True if the category string carries no real category signal."""
        return normalize_text(category) in self.generic_categories

    def synonym_matches(self, text: str) -> List[Tuple[str, str]]:
        """
        (canonical_term, synonym) pairs whose synonym appears in text.

        Longest synonym first, the most specific match.
        """
        padded = f" {normalize_text(text)} "
        matches = []
        for term, words in self.synonyms:
            for word in words:
                if f" {word} " in padded:
                    matches.append((term, word))
        matches.sort(key=lambda m: len(m[1]), reverse=True)
        return matches

    def broad_fallback(self, text: str) -> Optional[Tuple[List[str], str]]:
        """(parent_path, keyword) for the first broad keyword prefixing a token."""
        tokens = normalize_text(text).split()
        for keywords, path in self.broad_fallbacks:
            for keyword in keywords:
                if any(token.startswith(keyword) for token in tokens):
                    return list(path), keyword
        return None

    def confidence(self, name: str) -> float:
        return float(self.matching.get(name, DEFAULT_MATCHING.get(name, 0.0)))

    def get_stats(self) -> Dict[str, int]:
        return {
            'category_count': len(self.paths),
            'label_count': len(self._label_index),
            'synonym_terms': len(self.synonyms),
            'generic_categories': len(self.generic_categories),
        }
