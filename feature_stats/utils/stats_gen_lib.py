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
"""Convenient library for data statistics generation."""

import copy
import multiprocessing
from typing import Iterable, Optional

from joblib import delayed
from joblib import Parallel
import numpy as np
from pandas import DataFrame
import pyarrow as pa
from feature_stats import constants
from feature_stats import types
from feature_stats.arrow import arrow_util
from feature_stats.statistics import dataset_aggregator
from feature_stats.statistics import stats_impl
from feature_stats.statistics import stats_options as options
from tensorflow_metadata.proto.v0 import statistics_pb2


def generate_statistics_in_memory(
    examples: Iterable[types.Example],
    stats_options: options.StatsOptions = options.StatsOptions(),
    dataset_name: Optional[types.DatasetName] = None
) -> statistics_pb2.DatasetFeatureStatisticsList:
  """Compute data statistics for an in-memory iterable of examples.

  Args:
    examples: An iterable of examples, each a mapping from feature name or path
      to the feature's values.
    stats_options: `StatsOptions` for generating data statistics.
    dataset_name: The name of the dataset. Defaults to
      constants.DEFAULT_DATASET_NAME.

  Returns:
    A DatasetFeatureStatisticsList proto.
  """
  return stats_impl.generate_statistics_in_memory(examples, stats_options,
                                                  dataset_name)


def generate_statistics_from_record_batch(
    record_batch: pa.RecordBatch,
    stats_options: options.StatsOptions = options.StatsOptions(),
    dataset_name: Optional[types.DatasetName] = None
) -> statistics_pb2.DatasetFeatureStatisticsList:
  """Compute data statistics for an Arrow RecordBatch.

  Each row of the RecordBatch is an example. The Arrow types of the columns
  declare the feature types, unless stats_options declares them.

  Args:
    record_batch: Input RecordBatch.
    stats_options: `StatsOptions` for generating data statistics.
    dataset_name: The name of the dataset. Defaults to
      constants.DEFAULT_DATASET_NAME.

  Returns:
    A DatasetFeatureStatisticsList proto.
  """
  if dataset_name is None:
    dataset_name = constants.DEFAULT_DATASET_NAME
  stats_options_modified = _with_arrow_feature_types(record_batch,
                                                     stats_options)
  return _generate_partial_statistics_from_record_batch(
      record_batch, stats_options_modified, dataset_name).finalize()


def generate_statistics_from_dataframe(
    dataframe: DataFrame,
    stats_options: options.StatsOptions = options.StatsOptions(),
    n_jobs: int = 1,
    dataset_name: Optional[types.DatasetName] = None
) -> statistics_pb2.DatasetFeatureStatisticsList:
  """Compute data statistics for the input pandas DataFrame.

  This is a utility function for users with in-memory data represented
  as a pandas DataFrame.

  Each row is an example and each cell holds the single value of a feature in
  that example. Null cells count as missing. Features are reported in the order
  of the DataFrame columns, unless stats_options specifies a feature order.

  Args:
    dataframe: Input pandas DataFrame.
    stats_options: `StatsOptions` for generating data statistics.
    n_jobs: Number of processes to run (defaults to 1). If -1 is provided,
      uses the same number of processes as the number of CPU cores.
    dataset_name: The name of the dataset. Defaults to
      constants.DEFAULT_DATASET_NAME.

  Returns:
    A DatasetFeatureStatisticsList proto.
  """
  if not isinstance(dataframe, DataFrame):
    raise TypeError('dataframe argument is of type {}. Must be a '
                    'pandas DataFrame.'.format(type(dataframe).__name__))

  if n_jobs < -1 or n_jobs == 0:
    raise ValueError('Invalid n_jobs parameter {}. Should be either '
                     ' -1 or >= 1.'.format(n_jobs))

  if n_jobs == -1:
    n_jobs = multiprocessing.cpu_count()
  n_jobs = max(min(n_jobs, multiprocessing.cpu_count()), 1)
  if dataset_name is None:
    dataset_name = constants.DEFAULT_DATASET_NAME

  record_batch = arrow_util.dataframe_to_record_batch(dataframe)
  # Declare the feature types once, from the whole DataFrame, so that all the
  # partial statistics agree on them.
  stats_options_modified = _with_arrow_feature_types(record_batch,
                                                     stats_options)
  if stats_options_modified.feature_order is None:
    stats_options_modified.feature_order = list(record_batch.schema.names)

  if n_jobs == 1:
    aggregator = _generate_partial_statistics_from_record_batch(
        record_batch, stats_options_modified, dataset_name)
  else:
    bounds = np.linspace(0, record_batch.num_rows, n_jobs + 1).astype(int)
    partial_stats = Parallel(n_jobs=n_jobs)(
        delayed(_generate_partial_statistics_from_record_batch)(
            record_batch.slice(start, end - start), stats_options_modified,
            dataset_name)
        for start, end in zip(bounds[:-1].tolist(), bounds[1:].tolist()))
    aggregator = dataset_aggregator.merge_aggregators(partial_stats)
  return aggregator.finalize()


def _with_arrow_feature_types(
    record_batch: pa.RecordBatch,
    stats_options: options.StatsOptions) -> options.StatsOptions:
  """Returns a copy of the options declaring the Arrow feature types."""
  feature_types = arrow_util.get_feature_types(record_batch)
  if stats_options.feature_types:
    feature_types.update(stats_options.feature_types)
  # Create a copy of the stats options so that we don't modify the input object.
  stats_options_modified = copy.copy(stats_options)
  stats_options_modified.feature_types = feature_types
  return stats_options_modified


def _generate_partial_statistics_from_record_batch(
    record_batch: pa.RecordBatch,
    stats_options: options.StatsOptions,
    dataset_name: types.DatasetName
) -> dataset_aggregator.StatisticsAggregator:
  """Generate an aggregator containing partial stats."""
  return stats_impl.generate_partial_statistics_in_memory(
      arrow_util.record_batch_to_examples(record_batch), stats_options,
      dataset_name)
