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
"""Feature Statistics API.

The Statistics API consists of a single beam.PTransform, GenerateStatistics,
that computes the statistics of every feature of the input examples in a single
pass over the examples.

Input examples are mappings from a feature name (or path) to the feature's
values. They can be tagged with the name of the dataset they belong to, in
which case one DatasetFeatureStatistics is produced per dataset. The output is
a single DatasetFeatureStatisticsList proto
(https://github.com/tensorflow/metadata/blob/master/tensorflow_metadata/proto/v0/statistics.proto).  # pylint: disable=line-too-long
"""

import random
from typing import Generator, Optional

import apache_beam as beam
import pyarrow as pa
from feature_stats import types
from feature_stats.arrow import arrow_util
from feature_stats.statistics import stats_impl
from feature_stats.statistics import stats_options
from tensorflow_metadata.proto.v0 import statistics_pb2


class GenerateStatistics(beam.PTransform):
  """API for generating data statistics.

  Example:

  ```python
    with beam.Pipeline(runner=...) as p:
      _ = (p
           | 'CreateExamples' >> beam.Create([
               ('train', {'age': [10], 'color': ['red']}),
               ('eval', {'age': [20]}),
           ])
           | 'GenerateStatistics' >> GenerateStatistics()
           | 'WriteStatsOutput' >> beam.Map(print))
  ```
  """

  def __init__(
      self,
      options: stats_options.StatsOptions = stats_options.StatsOptions(),
      dataset_name: Optional[types.DatasetName] = None,
      sample_rate: Optional[float] = None
  ) -> None:
    """Initializes the transform.

    Args:
      options: `StatsOptions` for generating data statistics.
      dataset_name: If set, the input elements are untagged examples (or Arrow
        RecordBatches of examples) which all belong to this dataset. Otherwise
        the input elements are (dataset name, example) pairs.
      sample_rate: An optional sampling rate in (0, 1]. If set, statistics are
        computed over a random sample of the examples.

    Raises:
      TypeError: If options is not of the expected type.
      ValueError: If the sample rate is not in (0, 1].
    """
    if not isinstance(options, stats_options.StatsOptions):
      raise TypeError('options is of type %s, should be a StatsOptions.' %
                      type(options).__name__)
    if sample_rate is not None and not 0 < sample_rate <= 1:
      raise ValueError('Invalid sample_rate %f' % sample_rate)
    self._options = options
    self._dataset_name = dataset_name
    self._sample_rate = sample_rate

  def expand(
      self, dataset: beam.PCollection
  ) -> beam.PCollection[statistics_pb2.DatasetFeatureStatisticsList]:
    if self._dataset_name is not None:
      dataset = (
          dataset
          | 'TagWithDatasetName' >> beam.FlatMap(
              _tag_with_dataset_name, dataset_name=self._dataset_name))
    if self._sample_rate is not None:
      dataset |= ('SampleExamplesAtRate(%s)' % self._sample_rate >>
                  beam.FlatMap(_sample_at_rate,
                               sample_rate=self._sample_rate))
    return (dataset | 'AggregateStatistics' >>
            stats_impl.GenerateStatisticsImpl(self._options))


def _tag_with_dataset_name(
    element, dataset_name: types.DatasetName
) -> Generator[types.DatasetExample, None, None]:
  """Tags an example, or each example of a RecordBatch, with a dataset name."""
  if isinstance(element, pa.RecordBatch):
    for example in arrow_util.record_batch_to_examples(element):
      yield dataset_name, example
  else:
    yield dataset_name, element


def _sample_at_rate(example: types.DatasetExample, sample_rate: float
                   ) -> Generator[types.DatasetExample, None, None]:
  """Sample examples at input sampling rate."""
  if random.random() <= sample_rate:
    yield example
