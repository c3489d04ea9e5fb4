#!/usr/bin/env python3
"""
Tests for the category mapping engine.

Runs against the packaged taxonomy and rule files, so these also guard
the shipped mapping data.
"""

import threading
import unittest

from category_mapping import (
    CategoryMappingEngine,
    CategoryTaxonomy,
    InMemoryRuleStore,
    JsonRuleStore,
    MappingContext,
    UnmappedQueue,
)
from normalization.config import PreprocessorConfig
from normalization.exceptions import TaxonomyError
from normalization.schema import MappingStatus
from normalization.text_utils import text_similarity


def build_engine(**mapping_overrides):
    config = PreprocessorConfig()
    for key, value in mapping_overrides.items():
        setattr(config.mapping, key, value)
    return CategoryMappingEngine.from_config(config)


class TestTieredMapping(unittest.TestCase):
    """exact -> regex -> synonym -> fuzzy."""

    def setUp(self):
        self.engine = build_engine()

    def map(self, shop, category=None, name=None, brand=None, allow_fuzzy=True):
        return self.engine.map_category(MappingContext(
            shop=shop, original_category=category, product_name=name,
            brand_name=brand, allow_fuzzy=allow_fuzzy))

    def test_exact_shop_rule(self):
        result = self.map('freshful', 'branzeturi')
        self.assertEqual(result.category_path, ['Lactate & ouă', 'Brânzeturi'])
        self.assertEqual(result.category_slug, 'lactate-oua/branzeturi')
        self.assertEqual(result.mapping_status, MappingStatus.OK)
        self.assertEqual(result.confidence, 1.0)
        self.assertEqual(result.rule_id, 'freshful-branzeturi')
        self.assertEqual(result.tier, 'exact')

    def test_exact_match_is_normalized(self):
        """Case, diacritics and punctuation do not matter."""
        result = self.map('freshful', '  BRÂNZETURI! ')
        self.assertEqual(result.rule_id, 'freshful-branzeturi')

    def test_global_rule_applies_to_every_shop(self):
        result = self.map('mega', 'Lactate si oua')
        self.assertEqual(result.category_path, ['Lactate & ouă'])
        self.assertEqual(result.rule_id, 'global-lactate-si-oua')

    def test_shop_rule_wins_over_global(self):
        self.engine.add_mapping_rule('*', 'zz oferta', ['Băcănie'], created_by='system')
        self.engine.add_mapping_rule('kaufland', 'zz oferta', ['Băuturi'])

        self.assertEqual(self.map('kaufland', 'zz oferta').category_path, ['Băuturi'])
        self.assertEqual(self.map('mega', 'zz oferta').category_path, ['Băcănie'])

    def test_regex_rule(self):
        result = self.map('kaufland', 'Pizza congelata')
        self.assertEqual(result.category_path, ['Înghețată & congelate'])
        self.assertEqual(result.tier, 'regex')
        self.assertEqual(result.confidence, 0.9)

    def test_synonym_rule(self):
        result = self.map('carrefour', 'Midii si calamar')
        self.assertEqual(result.category_path, ['Carne & pește', 'Pește și fructe de mare'])
        self.assertEqual(result.rule_id, 'global-synonym-fructe-de-mare')

    def test_taxonomy_synonym(self):
        result = self.map('kaufland', 'Cascaval afumat')
        self.assertEqual(result.category_path, ['Lactate & ouă', 'Brânzeturi'])
        self.assertEqual(result.tier, 'synonym')
        self.assertEqual(result.confidence, 0.85)
        self.assertIsNone(result.rule_id)

    def test_taxonomy_synonym_rechecks_shop_rules(self):
        """The canonical term is matched against the shop's rules first."""
        result = self.map('freshful', 'Cascaval afumat')
        self.assertEqual(result.rule_id, 'freshful-branzeturi')
        self.assertEqual(result.confidence, 0.85)

    def test_fuzzy_match_is_never_ok(self):
        result = self.map('kaufland', 'Lactate si ou')
        self.assertEqual(result.mapping_status, MappingStatus.FUZZY_MATCH)
        self.assertEqual(result.category_path, ['Lactate & ouă'])
        self.assertAlmostEqual(result.confidence, 0.9524, places=3)
        self.assertGreaterEqual(result.confidence, 0.70)
        self.assertLessEqual(len(result.alternatives), 4)

    def test_fuzzy_can_be_disabled(self):
        result = self.map('kaufland', 'Lactate si ou', allow_fuzzy=False)
        self.assertEqual(result.mapping_status, MappingStatus.UNMAPPED)
        self.assertEqual(result.category_path, ['Other'])

    def test_mapping_is_idempotent(self):
        first = self.map('kaufland', 'Lactate si ou')
        second = self.map('kaufland', 'Lactate si ou')
        self.assertEqual(first.category_path, second.category_path)
        self.assertEqual(first.mapping_status, second.mapping_status)
        self.assertEqual(first.confidence, second.confidence)


class TestFuzzyGates(unittest.TestCase):
    """A fuzzy hit needs both the similarity and the confidence minimum."""

    SIMILARITY = text_similarity('Lactate si ou', 'Lactate & ouă')

    def map(self, engine, category):
        return engine.map_category(MappingContext(shop='kaufland', original_category=category))

    def test_similarity_just_under_threshold(self):
        engine = build_engine(fuzzy_threshold=self.SIMILARITY + 0.001)
        result = self.map(engine, 'Lactate si ou')
        self.assertEqual(result.mapping_status, MappingStatus.UNMAPPED)
        self.assertEqual(result.category_path, ['Other'])

    def test_similarity_at_threshold(self):
        engine = build_engine(fuzzy_threshold=self.SIMILARITY)
        result = self.map(engine, 'Lactate si ou')
        self.assertEqual(result.mapping_status, MappingStatus.FUZZY_MATCH)
        self.assertEqual(result.category_path, ['Lactate & ouă'])

    def test_confidence_under_minimum(self):
        """Similarity 1.0 on a 0.5 rule blends to 0.5 < 0.70."""
        engine = build_engine()
        engine.add_mapping_rule('kaufland', 'Zzfoo barqux', ['Băcănie'],
                                pattern_type='fuzzy', confidence=0.5)
        result = self.map(engine, 'Zzfoo barqux')
        self.assertEqual(result.mapping_status, MappingStatus.UNMAPPED)
        self.assertIsNotNone(engine.unmapped.get('kaufland', 'Zzfoo barqux'))

    def test_confidence_at_minimum(self):
        engine = build_engine()
        rule = engine.add_mapping_rule('kaufland', 'Zzfoo barqux', ['Băcănie'],
                                       pattern_type='fuzzy', confidence=0.7)
        result = self.map(engine, 'Zzfoo barqux')
        self.assertEqual(result.mapping_status, MappingStatus.FUZZY_MATCH)
        self.assertEqual(result.category_path, ['Băcănie'])
        self.assertEqual(result.rule_id, rule.id)
        self.assertEqual(result.confidence, 0.7)

    def test_minimum_confidence_alone_rejects(self):
        """Similarity passes the threshold, the blended confidence does not."""
        engine = build_engine(minimum_confidence=round(self.SIMILARITY, 4) + 0.001)
        result = self.map(engine, 'Lactate si ou')
        self.assertGreaterEqual(self.SIMILARITY, engine.config.fuzzy_threshold)
        self.assertEqual(result.mapping_status, MappingStatus.UNMAPPED)


class TestContentFallback(unittest.TestCase):
    """Product name and brand stand in for a missing or generic category."""

    def setUp(self):
        self.engine = build_engine()

    def test_missing_category_uses_product_text(self):
        result = self.engine.map_category(MappingContext(
            shop='kaufland', product_name='Cascaval Hochland 300g', brand_name='Hochland'))
        self.assertEqual(result.category_path, ['Lactate & ouă', 'Brânzeturi'])
        self.assertIn("Resolved from product name and brand", result.notes)

    def test_generic_category_is_skipped(self):
        result = self.engine.map_category(MappingContext(
            shop='kaufland', original_category='Gama variata', product_name='Bere Ursus 500ml'))
        self.assertEqual(result.category_path, ['Băuturi', 'Bere'])
        self.assertEqual(len(self.engine.get_unmapped_queue()), 0)

    def test_broad_fallback_parent(self):
        result = self.engine.map_category(MappingContext(
            shop='kaufland', original_category='Alimente diverse'))
        self.assertEqual(result.mapping_status, MappingStatus.FALLBACK_PARENT)
        self.assertEqual(result.category_path, ['Băcănie'])
        self.assertEqual(result.confidence, 0.3)
        # Still queued for review
        self.assertEqual(self.engine.unmapped.get('kaufland', 'Alimente diverse').count, 1)

    def test_unmapped(self):
        result = self.engine.map_category(MappingContext(
            shop='kaufland', original_category='Xyzzy qwerty', product_name='Produs Necunoscut'))
        self.assertEqual(result.mapping_status, MappingStatus.UNMAPPED)
        self.assertEqual(result.category_path, ['Other'])
        self.assertEqual(result.category_slug, 'other')
        self.assertEqual(result.confidence, 0.0)


class TestUnmappedQueue(unittest.TestCase):

    def setUp(self):
        self.engine = build_engine()

    def miss(self, name, shop='kaufland', category='Xyzzy qwerty'):
        return self.engine.map_category(MappingContext(
            shop=shop, original_category=category, product_name=name))

    def test_repeated_misses_aggregate(self):
        """Three misses of one category give one entry with count 3."""
        for name in ('Produs A', 'Produs B', 'Produs C'):
            self.miss(name)

        entries = self.engine.get_unmapped_queue('kaufland')
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].count, 3)
        self.assertEqual([s.name for s in entries[0].sample_products],
                         ['Produs C', 'Produs B', 'Produs A'])

    def test_samples_are_capped(self):
        for i in range(7):
            self.miss(f'Produs {i}')
        entry = self.engine.unmapped.get('kaufland', 'Xyzzy qwerty')
        self.assertEqual(entry.count, 7)
        self.assertEqual(len(entry.sample_products), 5)
        self.assertEqual(entry.sample_products[0].name, 'Produs 6')

    def test_queue_is_per_shop(self):
        self.miss('Produs A', shop='kaufland')
        self.miss('Produs A', shop='lidl')
        self.assertEqual(len(self.engine.get_unmapped_queue()), 2)
        self.assertEqual(len(self.engine.get_unmapped_queue('lidl')), 1)

    def test_suggestions_after_learning_threshold(self):
        def miss_unfuzzy():
            self.engine.map_category(MappingContext(
                shop='kaufland', original_category='Lactate si ou', allow_fuzzy=False))

        miss_unfuzzy()
        miss_unfuzzy()
        self.assertIsNone(self.engine.get_unmapped_queue('kaufland')[0].suggestions)
        self.assertEqual(self.engine.get_learning_candidates('kaufland'), [])

        miss_unfuzzy()
        entry = self.engine.get_unmapped_queue('kaufland')[0]
        self.assertIsNotNone(entry.suggestions)
        self.assertLessEqual(len(entry.suggestions), 5)
        self.assertEqual(entry.suggestions[0].category_path, ['Lactate & ouă'])
        confidences = [s.confidence for s in entry.suggestions]
        self.assertEqual(confidences, sorted(confidences, reverse=True))
        self.assertEqual(len(self.engine.get_learning_candidates('kaufland')), 1)

    def test_no_suggestions_without_learning(self):
        engine = build_engine(enable_learning=False)
        for _ in range(4):
            engine.map_category(MappingContext(shop='kaufland', original_category='Lactate si ou',
                                               allow_fuzzy=False))
        self.assertIsNone(engine.get_unmapped_queue()[0].suggestions)

    def test_promote_unmapped(self):
        """A promoted entry becomes a live exact rule and leaves the queue."""
        self.miss('Produs A')
        rule = self.engine.promote_unmapped('kaufland', 'Xyzzy qwerty', ['Băcănie'])

        self.assertEqual(rule.id, 'kaufland-exact-xyzzy-qwerty')
        self.assertEqual(rule.created_by, 'admin')
        self.assertIsNone(self.engine.unmapped.get('kaufland', 'Xyzzy qwerty'))

        result = self.miss('Produs A')
        self.assertEqual(result.mapping_status, MappingStatus.OK)
        self.assertEqual(result.category_path, ['Băcănie'])
        self.assertEqual(result.rule_id, rule.id)

    def test_clear_unmapped_entry(self):
        self.miss('Produs A')
        self.assertTrue(self.engine.clear_unmapped_entry('kaufland', 'Xyzzy qwerty'))
        self.assertFalse(self.engine.clear_unmapped_entry('kaufland', 'Xyzzy qwerty'))


class TestRuleManagement(unittest.TestCase):

    def setUp(self):
        self.engine = build_engine()

    def test_invalid_target_rejected(self):
        with self.assertRaises(ValueError):
            self.engine.add_mapping_rule('mega', 'ceva', ['Nu exista'])

    def test_invalid_regex_rejected(self):
        with self.assertRaises(ValueError):
            self.engine.add_mapping_rule('mega', '(unclosed', ['Băcănie'], pattern_type='regex')

    def test_usage_counts(self):
        ctx = MappingContext(shop='freshful', original_category='branzeturi')
        self.engine.map_category(ctx)
        self.engine.map_category(ctx)
        self.assertEqual(self.engine.rules.get('freshful-branzeturi').usage_count, 2)

    def test_stats(self):
        self.engine.map_category(MappingContext(shop='freshful', original_category='branzeturi'))
        self.engine.map_category(MappingContext(shop='kaufland', original_category='Xyzzy qwerty'))

        stats = self.engine.get_stats()
        self.assertEqual(stats['mapped_by_tier'], {'exact': 1, 'unmapped': 1})
        self.assertEqual(stats['unmapped_entries'], 1)
        self.assertGreater(stats['rule_count'], 100)
        self.assertGreater(stats['category_count'], 40)


class TestConcurrency(unittest.TestCase):
    """Shared engine across threads loses no counts."""

    def run_threads(self, target, threads=8):
        workers = [threading.Thread(target=target) for _ in range(threads)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

    def test_unmapped_counts(self):
        engine = build_engine()

        def work():
            for i in range(50):
                engine.map_category(MappingContext(shop='kaufland', original_category='Xyzzy qwerty',
                                                   product_name=f'Produs {i}'))

        self.run_threads(work)
        entry = engine.unmapped.get('kaufland', 'Xyzzy qwerty')
        self.assertEqual(entry.count, 400)
        self.assertEqual(len(entry.sample_products), 5)

    def test_rule_usage_counts(self):
        engine = build_engine()

        def work():
            for _ in range(50):
                engine.map_category(MappingContext(shop='freshful', original_category='branzeturi'))

        self.run_threads(work)
        self.assertEqual(engine.rules.get('freshful-branzeturi').usage_count, 400)


class TestSharedStores(unittest.TestCase):
    """Several engines over one rule store and one unmapped queue."""

    def setUp(self):
        config = PreprocessorConfig()
        self.config = config
        self.taxonomy = CategoryTaxonomy.load(config.paths.taxonomy_file)
        self.rules = InMemoryRuleStore(JsonRuleStore(config.paths.rules_dir).all_rules())
        self.queue = UnmappedQueue()

    def engine(self):
        return CategoryMappingEngine(self.taxonomy, self.rules, self.config.mapping, self.queue)

    def test_empty_queue_is_kept(self):
        first, second = self.engine(), self.engine()
        self.assertIs(first.unmapped, self.queue)
        self.assertIs(second.unmapped, self.queue)

        first.map_category(MappingContext(shop='mega', original_category='Xyzzy'))
        second.map_category(MappingContext(shop='mega', original_category='Xyzzy'))
        self.assertEqual(self.queue.get('mega', 'Xyzzy').count, 2)

    def test_counts_add_up_across_engines(self):
        engines = [self.engine(), self.engine()]

        def work(engine):
            for i in range(50):
                engine.map_category(MappingContext(shop='freshful', original_category='branzeturi'))
                engine.map_category(MappingContext(shop='kaufland', original_category='Xyzzy qwerty',
                                                   product_name=f'Produs {i}'))

        workers = [threading.Thread(target=work, args=(engines[i % 2],)) for i in range(8)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        self.assertEqual(self.rules.get('freshful-branzeturi').usage_count, 400)
        self.assertEqual(self.queue.get('kaufland', 'Xyzzy qwerty').count, 400)
        self.assertEqual(len(engines[0].get_unmapped_queue()), 1)
        self.assertEqual(engines[1].get_unmapped_queue()[0].count, 400)


class TestTaxonomy(unittest.TestCase):

    def setUp(self):
        self.taxonomy = CategoryTaxonomy.load(PreprocessorConfig().paths.taxonomy_file)

    def test_find_path(self):
        self.assertEqual(self.taxonomy.find_path('branzeturi'), ['Lactate & ouă', 'Brânzeturi'])
        self.assertEqual(self.taxonomy.find_path('lactate-oua'), ['Lactate & ouă'])
        self.assertIsNone(self.taxonomy.find_path('nu exista'))

    def test_generic_categories(self):
        self.assertTrue(self.taxonomy.is_generic('Gama Variata'))
        self.assertFalse(self.taxonomy.is_generic('Lactate'))

    def test_synonym_terms_are_labels(self):
        for term, _ in self.taxonomy.synonyms:
            with self.subTest(term=term):
                self.assertIsNotNone(self.taxonomy.find_path(term))

    def test_fallback_paths_exist(self):
        for _, path in self.taxonomy.broad_fallbacks:
            self.assertTrue(self.taxonomy.has_path(path))

    def test_invalid_taxonomy(self):
        with self.assertRaises(TaxonomyError):
            CategoryTaxonomy({})
        with self.assertRaises(TaxonomyError):
            CategoryTaxonomy.load('/nonexistent/categories.json')
        with self.assertRaises(TaxonomyError):
            CategoryTaxonomy({'categories': [{'slug': 'fara-nume'}]})


if __name__ == '__main__':
    unittest.main()
