# Copyright 2018 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Tests for the statistics generation implementation."""

from absl.testing import absltest
from absl.testing import parameterized
import apache_beam as beam
from apache_beam.testing import util
from feature_stats import constants
from feature_stats.statistics import stats_impl
from feature_stats.statistics import stats_options
from feature_stats.utils import stats_util
from feature_stats.utils import test_util

from google.protobuf import text_format
from tensorflow_metadata.proto.v0 import statistics_pb2


_DATASET_EXAMPLES = [
    ('train', {'a': [1.0, 2.0], 'b': ['x']}),
    ('eval', {'a': [4.0]}),
    ('train', {'a': [3.0], 'b': ['y', 'x']}),
]

_EXPECTED_RESULT = """
datasets {
  name: 'eval'
  num_examples: 1
  weighted_num_examples: 1.0
  features {
    name: 'a'
    type: FLOAT
    num_stats {
      common_stats {
        num_non_missing: 1
        min_num_values: 1
        max_num_values: 1
        avg_num_values: 1.0
        tot_num_values: 1
      }
      mean: 4.0
      min: 4.0
      median: 4.0
      max: 4.0
    }
  }
}
datasets {
  name: 'train'
  num_examples: 2
  weighted_num_examples: 2.0
  features {
    name: 'a'
    type: FLOAT
    num_stats {
      common_stats {
        num_non_missing: 2
        min_num_values: 1
        max_num_values: 2
        avg_num_values: 1.5
        tot_num_values: 3
      }
      mean: 2.0
      std_dev: 0.8164966
      min: 1.0
      median: 2.0
      max: 3.0
    }
  }
  features {
    name: 'b'
    type: STRING
    string_stats {
      common_stats {
        num_non_missing: 2
        min_num_values: 1
        max_num_values: 2
        avg_num_values: 1.5
        tot_num_values: 3
      }
      unique: 2
      top_values {
        value: 'x'
        frequency: 2.0
      }
      top_values {
        value: 'y'
        frequency: 1.0
      }
      avg_length: 1.0
      rank_histogram {
        buckets {
          low_rank: 1
          high_rank: 2
          label: 'x'
          sample_count: 2.0
        }
        buckets {
          low_rank: 2
          high_rank: 3
          label: 'y'
          sample_count: 1.0
        }
      }
    }
  }
}
"""


class StatsImplTest(parameterized.TestCase):

  def setUp(self):
    super(StatsImplTest, self).setUp()
    self._options = stats_options.StatsOptions(
        num_top_values=2,
        num_rank_histogram_buckets=3,
        num_values_histogram_buckets=2,
        num_histogram_buckets=2,
        num_quantiles_histogram_buckets=2)

  def test_stats_impl(self):
    expected_result = text_format.Parse(
        _EXPECTED_RESULT, statistics_pb2.DatasetFeatureStatisticsList())
    with beam.Pipeline() as p:
      result = (
          p | beam.Create(_DATASET_EXAMPLES, reshuffle=False)
          | stats_impl.GenerateStatisticsImpl(self._options))
      util.assert_that(
          result,
          test_util.make_dataset_feature_stats_list_proto_equal_fn(
              self, expected_result, check_histograms=False))

  def test_stats_impl_empty_input(self):
    with beam.Pipeline() as p:
      result = (
          p | beam.Create([], reshuffle=False)
          | stats_impl.GenerateStatisticsImpl(self._options))
      util.assert_that(
          result,
          test_util.make_dataset_feature_stats_list_proto_equal_fn(
              self, statistics_pb2.DatasetFeatureStatisticsList()))

  def test_combine_fn_merge_matches_single_accumulator(self):
    combine_fn = stats_impl._StatisticsAggregatorCombineFn(self._options)
    single = combine_fn.create_accumulator()
    for element in _DATASET_EXAMPLES:
      single = combine_fn.add_input(single, element)

    partials = []
    for element in _DATASET_EXAMPLES:
      partials.append(
          combine_fn.add_input(combine_fn.create_accumulator(), element))
    merged = combine_fn.merge_accumulators(reversed(partials))
    merged = combine_fn.compact(merged)

    expected_result = text_format.Parse(
        _EXPECTED_RESULT, statistics_pb2.DatasetFeatureStatisticsList())
    for accumulator in (single, merged):
      test_util.make_dataset_feature_stats_list_proto_equal_fn(
          self, expected_result, check_histograms=False)(
              [combine_fn.extract_output(accumulator)])

  def test_stats_impl_telemetry(self):
    p = beam.Pipeline()
    _ = (
        p
        | 'CreateExamples' >> beam.Create(
            _DATASET_EXAMPLES + [('train', 'not an example')],
            reshuffle=False)
        | 'GenerateStatsImpl' >> stats_impl.GenerateStatisticsImpl(
            self._options))

    runner = p.run()
    runner.wait_until_finish()
    result_metrics = runner.metrics()

    expected_result = {
        'num_instances': 4,
        'num_invalid_examples': 1,
        'num_datasets': 2,
        'num_partial_datasets': 1,
        'num_float_feature': 2,
        'num_string_feature': 1,
    }

    # Check each counter.
    for counter_name in expected_result:
      actual_counter = result_metrics.query(
          beam.metrics.metric.MetricsFilter().with_name(counter_name)
          )['counters']
      self.assertLen(actual_counter, 1)
      self.assertEqual(actual_counter[0].committed,
                       expected_result[counter_name])

  def test_generate_statistics_in_memory(self):
    result = stats_impl.generate_statistics_in_memory(
        [example for _, example in _DATASET_EXAMPLES], self._options)
    self.assertLen(result.datasets, 1)
    dataset = result.datasets[0]
    self.assertEqual(constants.DEFAULT_DATASET_NAME, dataset.name)
    self.assertEqual(3, dataset.num_examples)
    a_stats = stats_util.get_feature_stats(dataset, 'a')
    self.assertEqual(2.5, a_stats.num_stats.mean)
    b_stats = stats_util.get_feature_stats(dataset, 'b')
    self.assertEqual(1, b_stats.string_stats.common_stats.num_missing)

  def test_generate_statistics_in_memory_empty_examples(self):
    result = stats_impl.generate_statistics_in_memory([], self._options)
    expected_result = text_format.Parse(
        """
        datasets {
          name: 'All Examples'
        }
        """, statistics_pb2.DatasetFeatureStatisticsList())
    test_util.assert_proto_equal(self, expected_result, result)

  def test_generate_partial_statistics_in_memory(self):
    partial = stats_impl.generate_partial_statistics_in_memory(
        [{'a': [1]}], self._options, dataset_name='first')
    partial.merge(
        stats_impl.generate_partial_statistics_in_memory(
            [{'a': [2]}], self._options, dataset_name='second'))
    self.assertEqual(['first', 'second'],
                     [d.name for d in partial.finalize().datasets])


if __name__ == '__main__':
  absltest.main()
