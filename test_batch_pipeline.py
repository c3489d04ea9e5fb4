#!/usr/bin/env python3
"""
Tests for batch runs (normalizers.batch) and the processing pipeline.
"""

import json
import tracemalloc
import unittest

from category_mapping import CategoryMappingEngine
from normalization.config import PreprocessorConfig
from normalization.exceptions import UnknownStoreError
from normalizers import (
    BatchRun,
    ErrorKind,
    FreshfulNormalizer,
    NormalizationOptions,
    RunState,
)
from processing import ProcessingPipeline, ProcessingResult

SOURCE_FILE = 'lactate-uht-gama-variata----freshful-ro.json'


def product_record(i):
    return {'name': f'Produs test {i}', 'price': '9,99', 'url': f'https://www.freshful.ro/p/{i}-produs'}


def feed(count, bad_at=()):
    """Generator feed; positions in bad_at get a record with no name."""
    for i in range(count):
        if i in bad_at:
            yield {'price': None}
        else:
            yield product_record(i)


class ExplodingNormalizer(FreshfulNormalizer):
    """Raises for records flagged with 'explode'."""

    def normalize(self, raw, options=None, line_number=None):
        if isinstance(raw, dict) and raw.get('explode'):
            raise RuntimeError('boom')
        return super().normalize(raw, options, line_number)


class TestBatchRun(unittest.TestCase):

    def setUp(self):
        self.engine = CategoryMappingEngine.from_config(PreprocessorConfig())
        self.normalizer = FreshfulNormalizer(self.engine)

    def test_one_malformed_record_in_a_thousand(self):
        """999 valid + 1 malformed: 999 products, 1 failure, order kept."""
        batches = []
        options = NormalizationOptions(batch_size=100, source_file=SOURCE_FILE)
        run = self.normalizer.normalize_batch(feed(1000, bad_at={500}), options,
                                              on_batch=lambda n, stats: batches.append((n, stats.total)))
        results = list(run)

        self.assertEqual(len(results), 1000)
        self.assertEqual([r.line_number for r in results], list(range(1, 1001)))
        self.assertFalse(results[500].success)
        self.assertEqual(results[500].error_kind, ErrorKind.STRUCTURAL_REJECTION)

        stats = run.stats
        self.assertEqual(stats.total, 1000)
        self.assertEqual(stats.successful, 999)
        self.assertEqual(stats.failed, 1)
        self.assertEqual(stats.mapped, 999)
        self.assertEqual(stats.errors_by_kind, {'structural_rejection': 1})
        self.assertEqual(stats.category_coverage, {'Lactate & ouă > Lapte': 999})
        self.assertAlmostEqual(stats.success_rate, 0.999)

        self.assertEqual(batches, [(n, n * 100) for n in range(1, 11)])
        self.assertEqual(run.state, RunState.COMPLETED)

    def test_fault_is_isolated(self):
        """An unexpected exception fails one record, the stream continues."""
        normalizer = ExplodingNormalizer(self.engine)
        records = [product_record(0), {'name': 'X', 'price': '1', 'explode': True}, product_record(2)]
        results = list(normalizer.normalize_batch(records, NormalizationOptions(source_file=SOURCE_FILE)))

        self.assertEqual([r.success for r in results], [True, False, True])
        self.assertEqual(results[1].errors, ["Batch processing error: boom"])
        self.assertEqual(results[1].error_kind, ErrorKind.BATCH_ITEM_FAULT)
        self.assertEqual(results[1].line_number, 2)
        self.assertEqual(results[1].raw_product['explode'], True)

    def test_run_is_single_use(self):
        run = self.normalizer.normalize_batch([product_record(0)])
        self.assertIsInstance(run, BatchRun)
        self.assertEqual(run.state, RunState.IDLE)

        stats = run.run()
        self.assertEqual(stats.successful, 1)
        with self.assertRaises(RuntimeError):
            iter(run)

    def test_cannot_restart_while_streaming(self):
        run = self.normalizer.normalize_batch(feed(5))
        iterator = iter(run)
        next(iterator)
        self.assertEqual(run.state, RunState.STREAMING)
        with self.assertRaises(RuntimeError):
            iter(run)

    def test_input_is_consumed_lazily(self):
        """Only the current batch is pulled from the source."""
        consumed = []

        def source():
            for i in range(25):
                consumed.append(i)
                yield product_record(i)

        run = self.normalizer.normalize_batch(source(), NormalizationOptions(batch_size=10))
        iterator = iter(run)
        next(iterator)
        self.assertEqual(len(consumed), 10)

        remaining = list(iterator)
        self.assertEqual(len(remaining), 24)
        self.assertEqual(run.batches, 3)

    def test_empty_feed(self):
        run = self.normalizer.normalize_batch([])
        stats = run.run()
        self.assertEqual(stats.total, 0)
        self.assertEqual(stats.success_rate, 0.0)
        self.assertEqual(run.batches, 0)

    def test_memory_usage_when_tracing(self):
        tracemalloc.start()
        try:
            stats = self.normalizer.normalize_batch(feed(20), NormalizationOptions(batch_size=5)).run()
        finally:
            tracemalloc.stop()
        self.assertGreater(stats.memory_usage, 0)

    def test_stats_to_dict(self):
        stats = self.normalizer.normalize_batch(feed(4, bad_at={1})).run()
        data = stats.to_dict()
        self.assertEqual(data['success_rate'], 0.75)
        self.assertEqual(data['failed'], 1)
        json.dumps(data)


class TestProcessingPipeline(unittest.TestCase):

    def setUp(self):
        self.engine = CategoryMappingEngine.from_config(PreprocessorConfig())
        self.pipeline = ProcessingPipeline(PreprocessorConfig(), self.engine)

    def test_process_shop(self):
        products = []
        records = list(feed(10)) + [{'name': 'Lapte fara pret'}]
        result = self.pipeline.process_shop('freshful', records, source_file=SOURCE_FILE,
                                            on_product=products.append)

        self.assertIsInstance(result, ProcessingResult)
        self.assertTrue(result.success)
        self.assertEqual(result.stats.successful, 10)
        self.assertEqual(len(products), 10)
        self.assertEqual(products[0]['source']['source_file'], SOURCE_FILE)

        self.assertEqual(len(result.rejects), 1)
        reject = result.rejects[0]
        self.assertEqual(reject.line_number, 11)
        self.assertEqual(reject.product_name, 'Lapte fara pret')
        self.assertEqual(reject.source_file, SOURCE_FILE)
        self.assertEqual(reject.error_kind, 'structural_rejection')

        json.dumps(result.to_dict())

    def test_limit(self):
        result = self.pipeline.process_shop('freshful', feed(50), source_file=SOURCE_FILE, limit=10)
        self.assertEqual(result.stats.total, 10)

    def test_strict_mapping(self):
        """Unmapped products fail the shop run only in strict mode."""
        records = [{'title': 'Xyzzy qwerty', 'price': '5,00'}]

        lenient = self.pipeline.process_shop('kaufland', records)
        self.assertTrue(lenient.success)
        self.assertEqual(lenient.stats.unmapped, 1)
        self.assertEqual(len(lenient.unmapped), 1)

        strict = self.pipeline.process_shop('kaufland', records, strict=True)
        self.assertFalse(strict.success)

    def test_all_records_failing(self):
        result = self.pipeline.process_shop('freshful', [{'price': None}, None])
        self.assertFalse(result.success)
        self.assertEqual(result.stats.failed, 2)

    def test_unknown_shop(self):
        with self.assertRaises(UnknownStoreError):
            self.pipeline.process_shop('emag', [])

    def test_process_multiple(self):
        """An unknown shop fails only its own entry."""
        results = self.pipeline.process_multiple([
            ('freshful', feed(3), SOURCE_FILE),
            ('emag', [], 'emag.json'),
            ('mega', [{'name': 'Bere Ursus 500ml', 'price': '4,50'}], None),
        ])
        self.assertEqual([r.shop for r in results], ['freshful', 'emag', 'mega'])
        self.assertEqual([r.success for r in results], [True, False, True])
        self.assertIn('emag', results[1].error)

        summary = self.pipeline.build_summary(results)
        self.assertEqual(summary['shops_processed'], 3)
        self.assertEqual(summary['shops_failed'], 1)
        self.assertEqual(summary['total'], 4)
        self.assertEqual(summary['successful'], 4)
        self.assertEqual(summary['success_rate'], 1.0)
        self.assertEqual(summary['category_coverage']['Lactate & ouă > Lapte'], 3)
        self.assertEqual(summary['category_coverage']['Băuturi > Bere'], 1)
        self.assertIn('mapped_by_tier', summary['mapping'])
        json.dumps(summary)

    def test_custom_normalizer(self):
        custom = ExplodingNormalizer(self.engine)
        self.pipeline.register(custom)
        self.assertIs(self.pipeline.normalizer_for('freshful'), custom)

        result = self.pipeline.process_shop('freshful', [{'name': 'X', 'price': '1', 'explode': True}])
        self.assertEqual(result.rejects[0].error_kind, 'batch_item_fault')

    def test_stream(self):
        run = self.pipeline.stream('mega', [{'name': 'Apa plata 2L', 'price': '3,20'}])
        self.assertIsInstance(run, BatchRun)
        results = list(run)
        self.assertTrue(results[0].success)
        self.assertEqual(results[0].product['category_path'], ['Băuturi', 'Apă'])


class TestProcessingJobs(unittest.TestCase):

    def setUp(self):
        self.pipeline = ProcessingPipeline(PreprocessorConfig(),
                                           CategoryMappingEngine.from_config(PreprocessorConfig()))

    def test_create_job(self):
        job = self.pipeline.create_job(['freshful', 'mega'])
        self.assertTrue(job.job_id.startswith('job_'))
        self.assertEqual(len(job.job_id), 16)
        self.assertEqual(job.status, 'pending')
        self.assertEqual(job.shops, ['freshful', 'mega'])

    def test_default_job_covers_enabled_shops(self):
        job = self.pipeline.create_job()
        self.assertEqual(job.shops, ['auchan', 'carrefour', 'freshful', 'kaufland', 'lidl', 'mega'])

    def test_unknown_shop_in_job(self):
        with self.assertRaises(UnknownStoreError):
            self.pipeline.create_job(['freshful', 'emag'])

    def test_run_job(self):
        job = self.pipeline.create_job(['freshful', 'mega'])
        products = []
        self.pipeline.run_job(job, {'freshful': [(feed(5), SOURCE_FILE)]}, on_product=products.append)

        self.assertEqual(job.status, 'completed')
        self.assertEqual(len(job.results), 1)
        self.assertEqual(len(products), 5)
        self.assertIsNotNone(job.started_at)
        self.assertIsNotNone(job.completed_at)

    def test_strict_job_fails_on_unmapped(self):
        job = self.pipeline.create_job(['kaufland'], NormalizationOptions(strict_mapping=True))
        self.pipeline.run_job(job, {'kaufland': [([{'title': 'Xyzzy qwerty', 'price': '5,00'}], None)]})
        self.assertEqual(job.status, 'failed')


if __name__ == '__main__':
    unittest.main()
