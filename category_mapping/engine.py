"""
Category Mapping Engine

Resolves a vendor category string (or, failing that, product text) to a
canonical taxonomy path. Tiers are tried in order, first hit wins:

1. exact   - normalized equality against exact rules
2. regex   - case-insensitive regex rules
3. synonym - synonym rules, then taxonomy synonyms re-checked against rules
4. fuzzy   - text similarity against taxonomy labels and fuzzy rules

When the category is missing, generic ("gama variata") or resolves to
"Other", the same tiers run on product name + brand. Anything still
unresolved is queued in the UnmappedQueue.

Example:
    engine = CategoryMappingEngine.from_config()
    result = engine.map_category(MappingContext(shop="freshful", original_category="branzeturi"))
    # result.category_path == ['Lactate & ouă'], result.mapping_status == MappingStatus.OK
"""

import logging
import re
from collections import Counter
from functools import lru_cache
from threading import Lock
from typing import Dict, List, Optional, Pattern, Tuple

from normalization.config import MappingConfig, PreprocessorConfig, default_config
from normalization.schema import OTHER_CATEGORY, OTHER_SLUG, MappingStatus
from normalization.text_utils import (
    contains_phrase,
    normalize_text,
    slugify,
    slugify_path,
    strip_diacritics,
    text_similarity,
)

from .models import (
    CategoryMappingResult,
    CategoryRule,
    MappingContext,
    SampleProduct,
    UnmappedCategory,
)
from .rules import InMemoryRuleStore, JsonRuleStore, RuleStore
from .taxonomy import CategoryTaxonomy
from .unmapped import UnmappedQueue

logger = logging.getLogger(__name__)


# (similarity, path, label, rule)
Candidate = Tuple[float, List[str], str, Optional[CategoryRule]]


@lru_cache(maxsize=8192)
def _normalized(text: str) -> str:
    return normalize_text(text)


def make_result(path: List[str], status: MappingStatus, confidence: float,
                rule_id: Optional[str] = None, tier: Optional[str] = None,
                notes: Optional[List[str]] = None) -> CategoryMappingResult:
    """Build a result with the slug derived from the path."""
    return CategoryMappingResult(
        category_path=list(path),
        category_slug=slugify_path(path),
        mapping_status=status,
        confidence=round(confidence, 4),
        rule_id=rule_id,
        tier=tier,
        notes=list(notes or []),
    )


def unmapped_result(notes: Optional[List[str]] = None) -> CategoryMappingResult:
    return CategoryMappingResult(
        category_path=[OTHER_CATEGORY],
        category_slug=OTHER_SLUG,
        mapping_status=MappingStatus.UNMAPPED,
        confidence=0.0,
        notes=list(notes or []),
    )


class CategoryMappingEngine:
    """
    Tiered category resolver with an injected rule store and unmapped queue.

    The engine itself keeps no per-product state; usage counters live in
    the RuleStore and misses in the UnmappedQueue, both lock-guarded.
    """

    def __init__(
        self,
        taxonomy: CategoryTaxonomy,
        rule_store: Optional[RuleStore] = None,
        config: Optional[MappingConfig] = None,
        unmapped_queue: Optional[UnmappedQueue] = None,
    ):
        self.taxonomy = taxonomy
        self.rules = rule_store if rule_store is not None else InMemoryRuleStore()
        self.config = config or MappingConfig()
        if unmapped_queue is None:
            unmapped_queue = UnmappedQueue(sample_cap=self.config.sample_cap)
        self.unmapped = unmapped_queue

        self._regex_cache: Dict[str, Optional[Pattern]] = {}
        self._tier_counts: Counter = Counter()
        self._stats_lock = Lock()

    @classmethod
    def from_config(cls, config: Optional[PreprocessorConfig] = None) -> "CategoryMappingEngine":
        """Engine over the configured taxonomy and rule directory."""
        config = config or default_config
        taxonomy = CategoryTaxonomy.load(config.paths.taxonomy_file)
        rule_store = JsonRuleStore(config.paths.rules_dir)
        return cls(taxonomy, rule_store, config.mapping)

    # === Public API ===

    def map_category(self, context: MappingContext) -> CategoryMappingResult:
        """
        Resolve a category for one product.

        Never raises for data problems; a miss returns an unmapped (or
        broad fallback-parent) result and records the category in the queue.
        """
        shop = context.shop
        category = (context.original_category or '').strip()

        if category and not self.taxonomy.is_generic(category):
            result = self._resolve(shop, category, content=False, allow_fuzzy=context.allow_fuzzy)
            if result is not None and not self._is_other(result):
                return self._accept(result)

        content_text = ' '.join(p for p in (context.product_name, context.brand_name) if p).strip()
        if content_text:
            result = self._resolve(shop, content_text, content=True, allow_fuzzy=context.allow_fuzzy)
            if result is not None and not self._is_other(result):
                result.notes.append("Resolved from product name and brand")
                return self._accept(result)

        return self._miss(context, category)

    def get_unmapped_queue(self, shop: Optional[str] = None) -> List[UnmappedCategory]:
        """
        Snapshot of unmapped categories, most frequent first.

        With learning enabled, entries seen at least learning_threshold times
        carry ranked suggestions for promotion.
        """
        entries = self.unmapped.entries(shop)
        if not self.config.enable_learning:
            return entries

        for entry in entries:
            if entry.count >= self.config.learning_threshold:
                entry.suggestions = self.suggest(entry)
        return entries

    def get_learning_candidates(self, shop: Optional[str] = None) -> List[UnmappedCategory]:
        """Unmapped entries frequent enough to be promoted to rules."""
        return [
            e for e in self.get_unmapped_queue(shop)
            if e.count >= self.config.learning_threshold
        ]

    def suggest(self, entry: UnmappedCategory) -> List[CategoryMappingResult]:
        """Ranked fuzzy candidates for an unmapped entry, best first."""
        rules = self.rules.rules_for(entry.shop)
        text, content = entry.original_category, False
        if not text or self.taxonomy.is_generic(text):
            text = ' '.join(s.name for s in entry.sample_products[:1])
            content = True
        if not text:
            return []

        candidates = self._fuzzy_candidates(rules, text)[:self.config.max_suggestions]
        return [self._candidate_result(c, content) for c in candidates]

    def add_mapping_rule(
        self,
        shop: str,
        pattern: str,
        target_path: List[str],
        pattern_type: str = 'exact',
        confidence: float = 1.0,
        created_by: str = 'admin',
    ) -> CategoryRule:
        """
        Create (or replace) a rule and make it live immediately.

        Raises:
            ValueError: If the target is not a taxonomy path or the rule is invalid
        """
        if list(target_path) != [OTHER_CATEGORY] and not self.taxonomy.has_path(target_path):
            raise ValueError(f"Target path {target_path} is not in the taxonomy")

        rule_id = f"{shop}-{pattern_type}-{slugify(pattern) or 'rule'}"
        rule = CategoryRule(
            id=rule_id,
            shop=shop,
            pattern=pattern,
            pattern_type=pattern_type,
            target_path=list(target_path),
            confidence=confidence,
            created_by=created_by,
        )
        if pattern_type == 'regex' and self._compile(pattern) is None:
            raise ValueError(f"Invalid regex pattern: {pattern}")

        stored = self.rules.upsert(rule)
        logger.info(f"[{shop}] Added {pattern_type} rule '{pattern}' -> {' > '.join(target_path)} ({created_by})")
        return stored

    def promote_unmapped(self, shop: str, original_category: str, target_path: List[str],
                         created_by: str = 'admin') -> CategoryRule:
        """Turn an unmapped entry into an exact rule and drop it from the queue."""
        if not original_category:
            raise ValueError("Cannot promote an entry without a category string")
        rule = self.add_mapping_rule(shop, original_category, target_path,
                                     pattern_type='exact', created_by=created_by)
        self.unmapped.clear(shop, original_category)
        return rule

    def clear_unmapped_entry(self, shop: str, original_category: str) -> bool:
        return self.unmapped.clear(shop, original_category)

    def get_stats(self) -> Dict:
        with self._stats_lock:
            tiers = dict(self._tier_counts)
        return {
            'mapped_by_tier': tiers,
            'unmapped_entries': len(self.unmapped),
            'rule_count': len(self.rules.all_rules()),
            **self.taxonomy.get_stats(),
        }

    # === Resolution ===

    def _resolve(self, shop: str, text: str, content: bool,
                 allow_fuzzy: bool = True) -> Optional[CategoryMappingResult]:
        rules = self.rules.rules_for(shop)

        result = (
            self._match_exact(rules, text)
            or self._match_regex(rules, text)
            or self._match_synonym(rules, text)
        )
        if result is None and allow_fuzzy:
            result = self._match_fuzzy(rules, text, content)
        return result

    def _match_exact(self, rules: List[CategoryRule], text: str) -> Optional[CategoryMappingResult]:
        normalized = normalize_text(text)
        if not normalized:
            return None
        for rule in rules:
            if rule.pattern_type == 'exact' and _normalized(rule.pattern) == normalized:
                return make_result(rule.target_path, MappingStatus.OK, rule.confidence,
                                   rule_id=rule.id, tier='exact',
                                   notes=[f"Exact rule '{rule.pattern}'"])
        return None

    def _match_regex(self, rules: List[CategoryRule], text: str) -> Optional[CategoryMappingResult]:
        folded = strip_diacritics(text)
        regex_rules = sorted((r for r in rules if r.pattern_type == 'regex'),
                             key=lambda r: r.confidence, reverse=True)
        for rule in regex_rules:
            compiled = self._compile(rule.pattern)
            if compiled is None:
                continue
            if compiled.search(text) or compiled.search(folded):
                return make_result(rule.target_path, MappingStatus.OK, rule.confidence,
                                   rule_id=rule.id, tier='regex',
                                   notes=[f"Regex rule /{rule.pattern}/"])
        return None

    def _match_synonym(self, rules: List[CategoryRule], text: str) -> Optional[CategoryMappingResult]:
        # Shop synonym rules: "|"-separated alternatives
        for rule in rules:
            if rule.pattern_type != 'synonym':
                continue
            for alternative in rule.pattern.split('|'):
                if contains_phrase(text, alternative):
                    return make_result(rule.target_path, MappingStatus.OK, rule.confidence,
                                       rule_id=rule.id, tier='synonym',
                                       notes=[f"Synonym rule '{alternative.strip()}'"])

        synonym_confidence = self.taxonomy.confidence('synonym_match')
        for term, word in self.taxonomy.synonym_matches(text):
            note = f"Synonym '{word}' -> '{term}'"

            recheck = self._match_exact(rules, term) or self._match_regex(rules, term)
            if recheck is not None:
                recheck.tier = 'synonym'
                recheck.confidence = round(min(recheck.confidence, synonym_confidence), 4)
                recheck.notes.insert(0, note)
                return recheck

            path = self.taxonomy.find_path(term)
            if path:
                return make_result(path, MappingStatus.OK, synonym_confidence,
                                   tier='synonym', notes=[note])
        return None

    def _match_fuzzy(self, rules: List[CategoryRule], text: str,
                     content: bool) -> Optional[CategoryMappingResult]:
        candidates = self._fuzzy_candidates(rules, text)
        if not candidates:
            return None

        similarity, path, label, rule = candidates[0]
        confidence = self._fuzzy_confidence(similarity, rule, content)
        if similarity < self.config.fuzzy_threshold or confidence < self.config.minimum_confidence:
            return None

        result = make_result(path, MappingStatus.FUZZY_MATCH, confidence,
                             rule_id=rule.id if rule else None, tier='fuzzy',
                             notes=[f"Fuzzy match on '{label}' (similarity {similarity:.2f})"])
        result.alternatives = [
            self._candidate_result(c, content)
            for c in candidates[1:self.config.max_suggestions]
        ]
        return result

    def _fuzzy_candidates(self, rules: List[CategoryRule], text: str) -> List[Candidate]:
        """Best candidate per target path, sorted by descending similarity."""
        best: Dict[str, Candidate] = {}

        def consider(label: str, path: List[str], rule: Optional[CategoryRule]):
            similarity = text_similarity(text, label)
            if similarity <= 0:
                return
            key = slugify_path(path)
            if key not in best or similarity > best[key][0]:
                best[key] = (similarity, path, label, rule)

        for label, path in self.taxonomy.labels():
            consider(label, path, None)
        for rule in rules:
            if rule.pattern_type == 'fuzzy':
                consider(rule.pattern, rule.target_path, rule)

        return sorted(best.values(), key=lambda c: c[0], reverse=True)

    def _fuzzy_confidence(self, similarity: float, rule: Optional[CategoryRule], content: bool) -> float:
        """similarity x rule confidence x content penalty (product text only)."""
        confidence = similarity * (rule.confidence if rule else 1.0)
        if content:
            confidence *= self.taxonomy.confidence('content_penalty')
        return round(confidence, 4)

    def _candidate_result(self, candidate: Candidate, content: bool) -> CategoryMappingResult:
        similarity, path, label, rule = candidate
        return make_result(path, MappingStatus.FUZZY_MATCH,
                           self._fuzzy_confidence(similarity, rule, content),
                           rule_id=rule.id if rule else None, tier='fuzzy',
                           notes=[f"Candidate '{label}' (similarity {similarity:.2f})"])

    # === Outcomes ===

    @staticmethod
    def _is_other(result: CategoryMappingResult) -> bool:
        return result.category_slug == OTHER_SLUG

    def _accept(self, result: CategoryMappingResult) -> CategoryMappingResult:
        if result.rule_id:
            self.rules.increment_usage(result.rule_id)
        with self._stats_lock:
            self._tier_counts[result.tier] += 1
        return result

    def _miss(self, context: MappingContext, category: str) -> CategoryMappingResult:
        sample = SampleProduct(name=context.product_name or '', brand=context.brand_name)
        entry = self.unmapped.record(context.shop, category, sample)

        if self.config.enable_learning and entry.count == self.config.learning_threshold:
            logger.info(
                f"[{context.shop}] Unmapped category '{category}' reached "
                f"{entry.count} occurrences, now a learning candidate"
            )

        text = ' '.join(p for p in (category, context.product_name, context.brand_name) if p)
        fallback = self.taxonomy.broad_fallback(text)
        if fallback is not None:
            path, keyword = fallback
            result = make_result(path, MappingStatus.FALLBACK_PARENT,
                                 self.taxonomy.confidence('fallback_parent'),
                                 tier='fallback',
                                 notes=[f"Broad keyword '{keyword}' fallback"])
        else:
            result = unmapped_result(notes=[f"No tier matched '{category or context.product_name or ''}'"])

        with self._stats_lock:
            self._tier_counts[result.tier or 'unmapped'] += 1
        return result

    def _compile(self, pattern: str) -> Optional[Pattern]:
        if pattern not in self._regex_cache:
            try:
                self._regex_cache[pattern] = re.compile(pattern, re.IGNORECASE)
            except re.error as e:
                logger.warning(f"Skipping invalid regex rule /{pattern}/: {e}")
                self._regex_cache[pattern] = None
        return self._regex_cache[pattern]
