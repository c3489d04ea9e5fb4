#!/usr/bin/env python3
"""
Tests for normalization.config.
"""

import unittest

from normalization.config import PreprocessorConfig, configure_logging
from normalization.exceptions import ConfigurationError, PreprocessorError


class TestPreprocessorConfig(unittest.TestCase):

    def test_defaults(self):
        config = PreprocessorConfig()
        self.assertEqual(config.processing.batch_size, 1000)
        self.assertEqual(config.mapping.fuzzy_threshold, 0.82)
        self.assertEqual(config.mapping.minimum_confidence, 0.70)
        self.assertEqual(config.mapping.learning_threshold, 3)
        self.assertTrue(config.paths.taxonomy_file.exists())
        self.assertTrue(config.paths.rules_dir.is_dir())

    def test_store_settings(self):
        """Only Freshful redirects 'Other' into its own bucket."""
        config = PreprocessorConfig()
        self.assertEqual(config.store('freshful').other_override_path, ["Mama & copilul"])
        self.assertIsNone(config.store('mega').other_override_path)
        self.assertTrue(config.store('emag').enabled)

    def test_from_env(self):
        config = PreprocessorConfig.from_env({
            'PREPROCESS_BATCH_SIZE': '500',
            'MAPPING_FUZZY_THRESHOLD': '0.9',
            'MAPPING_ENABLE_LEARNING': 'false',
            'LOG_LEVEL': 'debug',
        })
        self.assertEqual(config.processing.batch_size, 500)
        self.assertEqual(config.mapping.fuzzy_threshold, 0.9)
        self.assertFalse(config.mapping.enable_learning)
        self.assertEqual(config.log_level, 'DEBUG')

    def test_from_empty_env_keeps_defaults(self):
        config = PreprocessorConfig.from_env({})
        self.assertEqual(config.processing.batch_size, 1000)
        self.assertTrue(config.mapping.enable_learning)

    def test_invalid_values_raise(self):
        for env in ({'PREPROCESS_BATCH_SIZE': '0'},
                    {'PREPROCESS_BATCH_SIZE': 'abc'},
                    {'MAPPING_FUZZY_THRESHOLD': '1.5'},
                    {'MAPPING_MAX_SUGGESTIONS': '0'}):
            with self.subTest(env=env):
                with self.assertRaises(ConfigurationError) as ctx:
                    PreprocessorConfig.from_env(env)
                self.assertIsInstance(ctx.exception, PreprocessorError)

    def test_error_names_the_field(self):
        with self.assertRaises(ConfigurationError) as ctx:
            PreprocessorConfig.from_env({'PREPROCESS_BATCH_SIZE': '-1'})
        self.assertEqual(ctx.exception.field_name, 'batch_size')

    def test_configure_logging(self):
        configure_logging('debug')


if __name__ == '__main__':
    unittest.main()
