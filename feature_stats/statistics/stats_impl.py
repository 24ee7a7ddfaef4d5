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
"""Implementation of statistics generation."""

from typing import Iterable, Optional, Text

import apache_beam as beam
from feature_stats import constants
from feature_stats import types
from feature_stats.statistics import dataset_aggregator
from feature_stats.statistics import stats_options
from tensorflow_metadata.proto.v0 import statistics_pb2


class GenerateStatisticsImpl(beam.PTransform):
  """Aggregates statistics over (dataset name, example) pairs."""

  def __init__(
      self,
      options: stats_options.StatsOptions = stats_options.StatsOptions()
      ) -> None:
    self._options = options

  def expand(
      self, dataset: beam.PCollection[types.DatasetExample]
  ) -> beam.PCollection[statistics_pb2.DatasetFeatureStatisticsList]:
    return (dataset
            | 'AggregateStatistics' >> beam.CombineGlobally(
                _StatisticsAggregatorCombineFn(self._options)))


def _increment_counter(counter_name: Text, element: int):  # pylint: disable=invalid-name
  counter = beam.metrics.Metrics.counter(
      constants.METRICS_NAMESPACE, counter_name)
  counter.inc(element)
  return element


@beam.typehints.with_output_types(statistics_pb2.DatasetFeatureStatisticsList)
class _StatisticsAggregatorCombineFn(beam.CombineFn):
  """A beam.CombineFn wrapping a StatisticsAggregator.

  Each bundle of input is aggregated into its own StatisticsAggregator; the
  partial aggregators are merged and finalized once all the input is consumed.
  Merging is associative and commutative, so the output does not depend on how
  the runner splits or orders the input.
  """

  def __init__(self, options: stats_options.StatsOptions) -> None:
    self._options = options

    # Metrics
    self._num_instances = beam.metrics.Metrics.counter(
        constants.METRICS_NAMESPACE, 'num_instances')
    self._num_compacts = beam.metrics.Metrics.counter(
        constants.METRICS_NAMESPACE, 'num_compacts')
    self._num_merges = beam.metrics.Metrics.counter(
        constants.METRICS_NAMESPACE, 'num_merges')

  def create_accumulator(self) -> dataset_aggregator.StatisticsAggregator:
    return dataset_aggregator.StatisticsAggregator(self._options)

  def add_input(
      self, accumulator: dataset_aggregator.StatisticsAggregator,
      element: types.DatasetExample
  ) -> dataset_aggregator.StatisticsAggregator:
    dataset_name, example = element
    accumulator.add_example(dataset_name, example)
    self._num_instances.inc(1)
    return accumulator

  def merge_accumulators(
      self,
      accumulators: Iterable[dataset_aggregator.StatisticsAggregator]
      ) -> dataset_aggregator.StatisticsAggregator:
    it = iter(accumulators)
    result = next(it)
    for accumulator in it:
      result.merge(accumulator)
      self._num_merges.inc(1)
    return result

  def compact(
      self, accumulator: dataset_aggregator.StatisticsAggregator
      ) -> dataset_aggregator.StatisticsAggregator:
    self._num_compacts.inc(1)
    accumulator.compact()
    return accumulator

  def extract_output(
      self, accumulator: dataset_aggregator.StatisticsAggregator
  ) -> statistics_pb2.DatasetFeatureStatisticsList:
    result = accumulator.finalize()
    _increment_counter('num_datasets', len(result.datasets))
    _increment_counter('num_partial_datasets',
                       len(accumulator.partial_datasets))
    for dataset in result.datasets:
      for feature in dataset.features:
        _increment_counter(
            'num_%s_feature' %
            statistics_pb2.FeatureNameStatistics.Type.Name(
                feature.type).lower(), 1)
    return result


def generate_partial_statistics_in_memory(
    examples: Iterable[types.Example],
    options: stats_options.StatsOptions,
    dataset_name: types.DatasetName = constants.DEFAULT_DATASET_NAME
) -> dataset_aggregator.StatisticsAggregator:
  """Aggregates an in-memory iterable of examples into partial statistics.

  Args:
    examples: An iterable of examples.
    options: Options for generating data statistics.
    dataset_name: The name of the dataset the examples belong to.

  Returns:
    A StatisticsAggregator holding the partial statistics.
  """
  aggregator = dataset_aggregator.StatisticsAggregator(options)
  aggregator.add_examples(dataset_name, examples)
  return aggregator


def generate_statistics_in_memory(
    examples: Iterable[types.Example],
    options: stats_options.StatsOptions = stats_options.StatsOptions(),
    dataset_name: Optional[types.DatasetName] = None
) -> statistics_pb2.DatasetFeatureStatisticsList:
  """Generates statistics for an in-memory list of examples.

  Args:
    examples: An iterable of examples, each a mapping from feature name or path
      to the feature's values.
    options: Options for generating data statistics.
    dataset_name: The name of the dataset. Defaults to
      constants.DEFAULT_DATASET_NAME.

  Returns:
    A DatasetFeatureStatisticsList proto.
  """
  if dataset_name is None:
    dataset_name = constants.DEFAULT_DATASET_NAME
  return generate_partial_statistics_in_memory(examples, options,
                                               dataset_name).finalize()
