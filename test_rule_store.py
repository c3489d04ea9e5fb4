#!/usr/bin/env python3
"""
Tests for category_mapping.rules: ordering, usage counters, persistence.
"""

import json
import shutil
import tempfile
import unittest
from pathlib import Path

from category_mapping import (
    GLOBAL_SHOP,
    CategoryRule,
    CategoryTaxonomy,
    InMemoryRuleStore,
    JsonRuleStore,
    load_rules_file,
)
from normalization.config import PreprocessorConfig
from normalization.exceptions import RuleStoreError


def rule(rule_id, shop='mega', pattern='lactate', pattern_type='exact',
         target_path=None, created_by='system'):
    return CategoryRule(id=rule_id, shop=shop, pattern=pattern, pattern_type=pattern_type,
                        target_path=['Lactate & ouă'] if target_path is None else target_path,
                        created_by=created_by)


class TestCategoryRule(unittest.TestCase):

    def test_invalid_pattern_type(self):
        with self.assertRaises(ValueError):
            rule('r1', pattern_type='glob')

    def test_invalid_creator(self):
        with self.assertRaises(ValueError):
            rule('r1', created_by='robot')

    def test_empty_target(self):
        with self.assertRaises(ValueError):
            rule('r1', target_path=[])

    def test_from_dict_defaults(self):
        loaded = CategoryRule.from_dict({'id': 'x', 'pattern': 'apa', 'target_path': ['Băuturi', 'Apă']},
                                        shop='freshful')
        self.assertEqual(loaded.shop, 'freshful')
        self.assertEqual(loaded.pattern_type, 'exact')
        self.assertEqual(loaded.confidence, 1.0)
        self.assertEqual(loaded.usage_count, 0)


class TestInMemoryRuleStore(unittest.TestCase):

    def test_shop_rules_before_global(self):
        store = InMemoryRuleStore([
            rule('global', shop=GLOBAL_SHOP),
            rule('shop', shop='mega'),
            rule('other-shop', shop='lidl'),
        ])
        self.assertEqual([r.id for r in store.rules_for('mega')], ['shop', 'global'])

    def test_admin_before_learning_before_system(self):
        store = InMemoryRuleStore([
            rule('system'),
            rule('learning', created_by='learning'),
            rule('admin', created_by='admin'),
        ])
        self.assertEqual([r.id for r in store.rules_for('mega')], ['admin', 'learning', 'system'])

    def test_load_order_breaks_ties(self):
        store = InMemoryRuleStore([rule('b'), rule('a'), rule('c')])
        self.assertEqual([r.id for r in store.rules_for('mega')], ['b', 'a', 'c'])

    def test_upsert_keeps_usage(self):
        store = InMemoryRuleStore([rule('r1')])
        store.increment_usage('r1')
        store.increment_usage('r1')
        replaced = store.upsert(rule('r1', target_path=['Băcănie']))
        self.assertEqual(replaced.usage_count, 2)
        self.assertEqual(store.get('r1').target_path, ['Băcănie'])

    def test_unknown_rule_id(self):
        store = InMemoryRuleStore()
        with self.assertRaises(RuleStoreError):
            store.increment_usage('missing')
        with self.assertRaises(RuleStoreError):
            store.set_enabled('missing', False)

    def test_disabled_rules_are_skipped(self):
        store = InMemoryRuleStore([rule('r1'), rule('r2')])
        store.set_enabled('r1', False)
        self.assertEqual([r.id for r in store.rules_for('mega')], ['r2'])
        self.assertEqual(len(store.all_rules()), 2)

    def test_retire_unused_rules(self):
        store = InMemoryRuleStore([rule('used'), rule('unused'), rule('lidl-rule', shop='lidl')])
        store.increment_usage('used')

        retired = store.retire_unused_rules(min_usage=1, shop='mega')
        self.assertEqual(retired, ['unused'])
        self.assertFalse(store.get('unused').enabled)
        self.assertTrue(store.get('lidl-rule').enabled)

    def test_usage_report(self):
        store = InMemoryRuleStore([rule('a'), rule('b')])
        store.increment_usage('b')
        report = store.rule_usage_report()
        self.assertEqual(report[0]['id'], 'b')
        self.assertEqual(report[0]['usage_count'], 1)


class TestJsonRuleStore(unittest.TestCase):
    """Rule files on disk."""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def write(self, name, payload):
        path = self.tmp / name
        path.write_text(json.dumps(payload, ensure_ascii=False), encoding='utf-8')
        return path

    def test_usage_survives_save_and_reload(self):
        self.write('mega.json', {'shop': 'mega', 'rules': [
            {'id': 'mega-lactate', 'pattern': 'lactate', 'target_path': ['Lactate & ouă']},
        ]})
        self.write('_global.json', {'shop': '*', 'rules': [
            {'id': 'global-bauturi', 'pattern': 'bauturi', 'target_path': ['Băuturi']},
        ]})

        store = JsonRuleStore(self.tmp)
        self.assertEqual([r.id for r in store.rules_for('mega')], ['mega-lactate', 'global-bauturi'])
        store.increment_usage('mega-lactate')
        store.upsert(CategoryRule(id='lidl-apa', shop='lidl', pattern='apa', pattern_type='exact',
                                  target_path=['Băuturi', 'Apă'], created_by='admin'))
        store.save()

        reloaded = JsonRuleStore(self.tmp)
        self.assertEqual(reloaded.get('mega-lactate').usage_count, 1)
        self.assertEqual(reloaded.get('lidl-apa').created_by, 'admin')
        self.assertTrue((self.tmp / 'lidl.json').exists())
        self.assertEqual(sorted(p.name for p in self.tmp.glob('*.json')),
                         ['_global.json', 'lidl.json', 'mega.json'])

    def test_shop_defaults_to_file_name(self):
        path = self.write('auchan.json', {'rules': [
            {'id': 'auchan-paine', 'pattern': 'paine', 'target_path': ['Brutărie & patiserie', 'Pâine']},
        ]})
        self.assertEqual(load_rules_file(path)[0].shop, 'auchan')

    def test_malformed_files(self):
        bad_json = self.tmp / 'bad.json'
        bad_json.write_text('{not json', encoding='utf-8')
        with self.assertRaises(RuleStoreError):
            load_rules_file(bad_json)

        no_rules = self.write('empty.json', {'shop': 'mega'})
        with self.assertRaises(RuleStoreError):
            load_rules_file(no_rules)

        bad_rule = self.write('invalid.json', {'shop': 'mega', 'rules': [{'id': 'x'}]})
        with self.assertRaises(RuleStoreError):
            load_rules_file(bad_rule)

    def test_missing_directory(self):
        with self.assertRaises(RuleStoreError):
            JsonRuleStore(self.tmp / 'missing')


class TestPackagedRules(unittest.TestCase):
    """The shipped rule files point at real taxonomy paths."""

    def test_targets_exist_in_taxonomy(self):
        config = PreprocessorConfig()
        taxonomy = CategoryTaxonomy.load(config.paths.taxonomy_file)
        store = JsonRuleStore(config.paths.rules_dir)

        self.assertGreater(len(store), 0)
        for loaded in store.all_rules():
            with self.subTest(rule=loaded.id):
                self.assertTrue(taxonomy.has_path(loaded.target_path), loaded.target_path)

    def test_rule_ids_are_unique_per_file(self):
        rules_dir = PreprocessorConfig().paths.rules_dir
        for path in rules_dir.glob('*.json'):
            ids = [r.id for r in load_rules_file(path)]
            self.assertEqual(len(ids), len(set(ids)), path.name)


if __name__ == '__main__':
    unittest.main()
