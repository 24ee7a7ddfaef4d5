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
"""Tracks presence and valency statistics common to every feature.

For each feature it counts the examples with and without values, the number of
values per example and, for features whose values are lists of lists, the
length of the outer list (the feature list length). Every count has a weighted
counterpart, summed exactly so that merging partial trackers in any order gives
identical results.
"""

import fractions
import sys
from typing import Optional

from feature_stats.statistics import histogram_builder
from feature_stats.utils import variance_util
from tensorflow_metadata.proto.v0 import statistics_pb2


class CommonStatsTracker(object):
  """Holds partial common statistics for a single feature."""

  __slots__ = [
      'num_non_missing', 'num_missing', 'min_num_values', 'max_num_values',
      'total_num_values', 'weighted_num_non_missing', 'weighted_num_missing',
      'weighted_total_num_values', 'num_values_summary',
      'feature_list_length_summary'
  ]

  def __init__(self):
    # The number of examples with at least one value for this feature.
    self.num_non_missing = 0
    # The number of examples explicitly observed without values.
    self.num_missing = 0
    # The minimum number of values in a single example for this feature.
    self.min_num_values = sys.maxsize
    # The maximum number of values in a single example for this feature.
    self.max_num_values = 0
    # The total number of values for this feature.
    self.total_num_values = 0
    # The sum of weights of all the examples with at least one value for this
    # feature.
    self.weighted_num_non_missing = variance_util.ExactSum()
    # The sum of weights of the examples explicitly observed without values.
    self.weighted_num_missing = variance_util.ExactSum()
    # The sum of weights of all the values for this feature.
    self.weighted_total_num_values = variance_util.ExactSum()
    # Summary of the number of values per example.
    self.num_values_summary = histogram_builder.HistogramBuilder()
    # Summary of the feature list lengths, only for lists of lists.
    self.feature_list_length_summary = None

  def update(self, num_values: int, weight: float,
             feature_list_length: Optional[int] = None) -> None:
    """Records an example with `num_values` (> 0) values."""
    self.num_non_missing += 1
    self.min_num_values = min(self.min_num_values, num_values)
    self.max_num_values = max(self.max_num_values, num_values)
    self.total_num_values += num_values
    self.weighted_num_non_missing.add(weight)
    self.weighted_total_num_values.add(weight, num_values)
    self.num_values_summary.add(num_values, weight)
    if feature_list_length is not None:
      if self.feature_list_length_summary is None:
        self.feature_list_length_summary = (
            histogram_builder.HistogramBuilder())
      self.feature_list_length_summary.add(feature_list_length, weight)

  def update_missing(self, weight: float) -> None:
    """Records an example without values for this feature."""
    self.num_missing += 1
    self.weighted_num_missing.add(weight)

  def merge_with(self, other: 'CommonStatsTracker') -> None:
    self.num_non_missing += other.num_non_missing
    self.num_missing += other.num_missing
    self.min_num_values = min(self.min_num_values, other.min_num_values)
    self.max_num_values = max(self.max_num_values, other.max_num_values)
    self.total_num_values += other.total_num_values
    self.weighted_num_non_missing.merge(other.weighted_num_non_missing)
    self.weighted_num_missing.merge(other.weighted_num_missing)
    self.weighted_total_num_values.merge(other.weighted_total_num_values)
    self.num_values_summary.merge(other.num_values_summary)
    if other.feature_list_length_summary is not None:
      if self.feature_list_length_summary is None:
        self.feature_list_length_summary = (
            histogram_builder.HistogramBuilder())
      self.feature_list_length_summary.merge(
          other.feature_list_length_summary)


def make_common_stats_proto(
    common_stats: CommonStatsTracker,
    num_values_histogram_buckets: int,
    has_weights: bool,
    num_examples: Optional[int] = None,
    weighted_num_examples: Optional[fractions.Fraction] = None
) -> statistics_pb2.CommonStatistics:
  """Convert the partial common stats into a CommonStatistics proto.

  Args:
    common_stats: The partial common statistics of a feature.
    num_values_histogram_buckets: The number of buckets in the quantiles
      histograms of the number of values and of the feature list length.
    has_weights: Whether to output the weighted common statistics.
    num_examples: The number of examples in which the feature could have been
      present. If given, the examples not counted as non-missing are missing;
      otherwise the explicitly observed missing examples are used.
    weighted_num_examples: The total weight of those examples.

  Returns:
    A CommonStatistics proto.
  """
  result = statistics_pb2.CommonStatistics()
  result.num_non_missing = common_stats.num_non_missing
  if num_examples is not None:
    result.num_missing = max(0, num_examples - common_stats.num_non_missing)
  else:
    result.num_missing = common_stats.num_missing
  result.tot_num_values = common_stats.total_num_values

  if common_stats.num_non_missing > 0:
    result.min_num_values = common_stats.min_num_values
    result.max_num_values = common_stats.max_num_values
    result.avg_num_values = (
        common_stats.total_num_values / common_stats.num_non_missing)
    result.num_values_histogram.CopyFrom(
        common_stats.num_values_summary.finalize(
            statistics_pb2.Histogram.QUANTILES, num_values_histogram_buckets))
    if common_stats.feature_list_length_summary is not None:
      result.feature_list_length_histogram.CopyFrom(
          common_stats.feature_list_length_summary.finalize(
              statistics_pb2.Histogram.QUANTILES,
              num_values_histogram_buckets))

  # Add weighted common stats to the proto.
  if has_weights:
    weighted_non_missing = common_stats.weighted_num_non_missing.as_fraction()
    weighted_total_num_values = (
        common_stats.weighted_total_num_values.as_fraction())
    weighted_common_stats_proto = statistics_pb2.WeightedCommonStatistics(
        num_non_missing=float(weighted_non_missing),
        tot_num_values=float(weighted_total_num_values))
    if weighted_num_examples is not None:
      weighted_common_stats_proto.num_missing = float(
          max(0, weighted_num_examples - weighted_non_missing))
    else:
      weighted_common_stats_proto.num_missing = float(
          common_stats.weighted_num_missing)
    if weighted_non_missing > 0:
      weighted_common_stats_proto.avg_num_values = float(
          weighted_total_num_values / weighted_non_missing)
    result.weighted_common_stats.CopyFrom(weighted_common_stats_proto)
  return result
