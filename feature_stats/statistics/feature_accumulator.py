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
"""Accumulates the statistics of a single feature.

A FeatureAccumulator consumes the values a feature takes in each example and
keeps partial statistics for every kind of value it sees:
  * numeric values (ints, floats and bools): counts of zeros and NaNs, finite
    min and max, exact moments for the (weighted) mean and standard deviation,
    and a histogram builder for the (weighted) median and histograms.
  * categorical values (str, and bytes): character and byte lengths, the
    number of non-utf8 values and a rank histogram builder for the number of
    unique values, top values and rank histograms.
  * struct values (mappings): only counted. Their children are tracked as
    separate features by the caller.
The presence and valency of the feature are tracked for all values.

On finalization the type of the feature is the declared type, if any, or else
the kind holding the most values. Values of other kinds are reported in the
`conflicting_type_values` custom statistic.
"""

import collections
import collections.abc
import fractions
import logging
import math
from typing import Any, List, Optional, Tuple

import numpy as np
from feature_stats import constants
from feature_stats import types
from feature_stats.statistics import common_stats
from feature_stats.statistics import histogram_builder
from feature_stats.statistics import rank_histogram_builder
from feature_stats.statistics import stats_options as options
from feature_stats.utils import stats_util
from feature_stats.utils import variance_util
from tensorflow_metadata.proto.v0 import statistics_pb2

_INT = statistics_pb2.FeatureNameStatistics.INT
_FLOAT = statistics_pb2.FeatureNameStatistics.FLOAT
_STRING = statistics_pb2.FeatureNameStatistics.STRING
_BYTES = statistics_pb2.FeatureNameStatistics.BYTES
_STRUCT = statistics_pb2.FeatureNameStatistics.STRUCT

# Kinds of values, in the order used to break ties in type inference.
_NUMERIC = 0
_CATEGORICAL = 1
_STRUCT_KIND = 2

_TYPE_TO_KIND = {
    _INT: _NUMERIC,
    _FLOAT: _NUMERIC,
    _STRING: _CATEGORICAL,
    _BYTES: _CATEGORICAL,
    _STRUCT: _STRUCT_KIND,
}

_LIST_TYPES = (list, tuple, np.ndarray)


class ClassifiedValues(
    collections.namedtuple('ClassifiedValues', [
        'num_values', 'feature_list_length', 'numbers', 'num_nan', 'has_float',
        'strings', 'non_utf8', 'structs'
    ])):
  """The values of a feature in one example, grouped by kind.

  Attributes:
    num_values: The total number of (flattened) values.
    feature_list_length: The length of the outer list for lists of lists, else
      None.
    numbers: The finite numeric values as floats.
    num_nan: The number of NaN, infinite or overflowing numeric values.
    has_float: Whether any numeric value was a float.
    strings: The str values and the utf-8 decodable bytes values, decoded.
    non_utf8: The bytes values which are not valid utf-8, and the str values
      holding lone surrogates, encoded with `surrogatepass`.
    structs: The struct (mapping) values.
  """
  __slots__ = ()


def as_list(values: Any) -> List[Any]:
  if isinstance(values, np.ndarray):
    return values.tolist()
  if isinstance(values, (list, tuple)):
    return list(values)
  return [values]


def _flatten(values: types.ValueList) -> Tuple[List[Any], Optional[int]]:
  """Returns the flattened values and the feature list length, if nested."""
  if values is None:
    return [], None
  values = as_list(values)
  if not any(isinstance(v, _LIST_TYPES) for v in values):
    return values, None
  flattened = []
  for value in values:
    if not isinstance(value, _LIST_TYPES):
      raise ValueError(
          'A feature list must only contain lists, found %r.' % (value,))
    flattened.extend(as_list(value))
  return flattened, len(values)


def classify_values(values: types.ValueList) -> ClassifiedValues:
  """Groups the values of a feature in one example by kind.

  Args:
    values: A value list, a list of value lists, a single value or None.

  Returns:
    A ClassifiedValues.

  Raises:
    ValueError: If a value is of an unsupported type.
  """
  flattened, feature_list_length = _flatten(values)
  numbers = []
  num_nan = 0
  has_float = False
  strings = []
  non_utf8 = []
  structs = []
  for value in flattened:
    if isinstance(value, (bool, int, np.bool_, np.integer, float,
                          np.floating)):
      if isinstance(value, (float, np.floating)):
        has_float = True
      try:
        number = float(value)
      except OverflowError:
        number = math.nan
      if math.isfinite(number):
        numbers.append(number)
      else:
        num_nan += 1
    elif isinstance(value, str):
      try:
        value.encode('utf-8')
      except UnicodeEncodeError:
        # Lone surrogates have no utf-8 encoding; keep their raw code units.
        non_utf8.append(value.encode('utf-8', 'surrogatepass'))
      else:
        strings.append(value)
    elif isinstance(value, bytes):
      decoded_value = stats_util.maybe_get_utf8(value)
      if decoded_value is None:
        non_utf8.append(value)
      else:
        strings.append(decoded_value)
    elif isinstance(value, collections.abc.Mapping):
      structs.append(value)
    else:
      raise ValueError('Unsupported feature value %r of type %s.' %
                       (value, type(value).__name__))
  return ClassifiedValues(
      num_values=len(flattened),
      feature_list_length=feature_list_length,
      numbers=numbers,
      num_nan=num_nan,
      has_float=has_float,
      strings=strings,
      non_utf8=non_utf8,
      structs=structs)


class _PartialNumericStats(object):
  """Holds partial numeric statistics for a single feature."""

  __slots__ = [
      'num_values', 'has_float', 'num_zeros', 'num_nan', 'min', 'max',
      'mean_var_accumulator', 'weighted_mean_var_accumulator',
      'histogram_builder'
  ]

  def __init__(self, epsilon: Optional[float]):
    # The number of numeric values, including NaNs.
    self.num_values = 0
    # Whether any value was a float.
    self.has_float = False
    # The number of values for this feature that equal 0.
    self.num_zeros = 0
    # The number of NaN, infinite or overflowing values.
    self.num_nan = 0
    # The minimum finite value among all the values for this feature.
    self.min = float('inf')
    # The maximum finite value among all the values for this feature.
    self.max = float('-inf')
    # Accumulators for mean and variance.
    self.mean_var_accumulator = variance_util.MeanVarAccumulator()
    self.weighted_mean_var_accumulator = (
        variance_util.WeightedMeanVarAccumulator())
    # Summary of the finite values, for median and histograms.
    self.histogram_builder = histogram_builder.HistogramBuilder(epsilon)

  def __iadd__(self, other: '_PartialNumericStats') -> '_PartialNumericStats':
    """Merge two partial numeric statistics and return the merged statistics."""
    self.num_values += other.num_values
    self.has_float = self.has_float or other.has_float
    self.num_zeros += other.num_zeros
    self.num_nan += other.num_nan
    self.min = min(self.min, other.min)
    self.max = max(self.max, other.max)
    self.mean_var_accumulator.merge(other.mean_var_accumulator)
    self.weighted_mean_var_accumulator.merge(
        other.weighted_mean_var_accumulator)
    self.histogram_builder.merge(other.histogram_builder)
    return self

  def update(self, values: ClassifiedValues, weight: float) -> None:
    """Update the partial numeric statistics using the input values."""
    self.num_values += len(values.numbers) + values.num_nan
    self.has_float = self.has_float or values.has_float
    self.num_nan += values.num_nan
    if values.num_nan:
      self.histogram_builder.add_nan(values.num_nan)
    if not values.numbers:
      return
    self.num_zeros += sum(1 for v in values.numbers if v == 0)
    self.min = min(self.min, min(values.numbers))
    self.max = max(self.max, max(values.numbers))
    self.mean_var_accumulator.update(values.numbers)
    self.weighted_mean_var_accumulator.update(
        values.numbers, [weight] * len(values.numbers))
    for value in values.numbers:
      self.histogram_builder.add(value, weight)


class _PartialStringStats(object):
  """Holds partial statistics of categorical (string and bytes) values."""

  __slots__ = [
      'num_values', 'num_non_utf8', 'total_length', 'total_num_bytes',
      'min_num_bytes', 'max_num_bytes', 'rank_histogram_builder'
  ]

  def __init__(self, max_unique_values: Optional[int]):
    # The number of categorical values.
    self.num_values = 0
    # The number of bytes values that are not valid utf-8.
    self.num_non_utf8 = 0
    # The total length of all the values, in characters. Non-utf8 values count
    # their number of bytes.
    self.total_length = 0
    # The total, minimum and maximum number of bytes of the values.
    self.total_num_bytes = 0
    self.min_num_bytes = float('inf')
    self.max_num_bytes = float('-inf')
    self.rank_histogram_builder = rank_histogram_builder.RankHistogramBuilder(
        max_unique_values)

  def __iadd__(self, other: '_PartialStringStats') -> '_PartialStringStats':
    """Merge two partial string statistics and return the merged statistics."""
    self.num_values += other.num_values
    self.num_non_utf8 += other.num_non_utf8
    self.total_length += other.total_length
    self.total_num_bytes += other.total_num_bytes
    self.min_num_bytes = min(self.min_num_bytes, other.min_num_bytes)
    self.max_num_bytes = max(self.max_num_bytes, other.max_num_bytes)
    self.rank_histogram_builder.merge(other.rank_histogram_builder)
    return self

  def update(self, values: ClassifiedValues, weight: float) -> None:
    """Update the partial string statistics using the input values."""
    for value in values.strings:
      num_bytes = len(value.encode('utf-8'))
      self._update_value(value, len(value), num_bytes, weight)
    for value in values.non_utf8:
      self._update_value(value, len(value), len(value), weight)
    self.num_non_utf8 += len(values.non_utf8)

  def _update_value(self, value: rank_histogram_builder.CategoricalValue,
                    length: int, num_bytes: int, weight: float) -> None:
    self.num_values += 1
    self.total_length += length
    self.total_num_bytes += num_bytes
    self.min_num_bytes = min(self.min_num_bytes, num_bytes)
    self.max_num_bytes = max(self.max_num_bytes, num_bytes)
    self.rank_histogram_builder.add(value, weight)


class FeatureAccumulator(object):
  """Holds partial statistics for a single feature."""

  __slots__ = [
      'feature_path', 'declared_types', 'first_seen',
      'common_stats', 'numeric_stats', 'string_stats', 'num_struct_values',
      '_options'
  ]

  def __init__(self,
               feature_path: types.FeaturePath,
               stats_options: options.StatsOptions,
               declared_type: Optional[types.FeatureNameStatisticsType] = None,
               first_seen: int = 0):
    self.feature_path = feature_path
    # The declared types of all merged partials. More than one is an error.
    self.declared_types = (
        frozenset() if declared_type is None else frozenset([declared_type]))
    # Ordinal of the first example (within its partial) with this feature.
    # Merging keeps the smallest, so that output order does not depend on the
    # order in which partials are merged.
    self.first_seen = first_seen
    self.common_stats = common_stats.CommonStatsTracker()
    # Created lazily, once values of the corresponding kind are seen.
    self.numeric_stats = None  # type: Optional[_PartialNumericStats]
    self.string_stats = None  # type: Optional[_PartialStringStats]
    self.num_struct_values = 0
    self._options = stats_options

  def observe(self, values: types.ValueList, weight: float = 1.0) -> None:
    """Records the values of the feature in one example.

    Args:
      values: The value list of the feature. Empty lists count as missing.
      weight: The weight of the example for this feature.

    Raises:
      ValueError: If a value is of an unsupported type.
    """
    self.update(classify_values(values), weight)

  def observe_missing(self, weight: float = 1.0) -> None:
    """Records an example in which the feature has no values."""
    self.common_stats.update_missing(weight)

  def update(self, values: ClassifiedValues, weight: float) -> None:
    """Records the classified values of the feature in one example."""
    if not values.num_values:
      self.observe_missing(weight)
      return
    self.common_stats.update(values.num_values, weight,
                             values.feature_list_length)
    if values.numbers or values.num_nan:
      if self.numeric_stats is None:
        self.numeric_stats = _PartialNumericStats(self._options.epsilon)
      self.numeric_stats.update(values, weight)
    if values.strings or values.non_utf8:
      if self.string_stats is None:
        self.string_stats = _PartialStringStats(
            self._options.max_unique_values)
      self.string_stats.update(values, weight)
    self.num_struct_values += len(values.structs)

  def merge(self, other: 'FeatureAccumulator') -> None:
    """Merges another accumulator of the same feature, updating in place."""
    self.first_seen = min(self.first_seen, other.first_seen)
    self.declared_types |= other.declared_types
    self.common_stats.merge_with(other.common_stats)
    if other.numeric_stats is not None:
      if self.numeric_stats is None:
        self.numeric_stats = _PartialNumericStats(self._options.epsilon)
      self.numeric_stats += other.numeric_stats
    if other.string_stats is not None:
      if self.string_stats is None:
        self.string_stats = _PartialStringStats(
            self._options.max_unique_values)
      self.string_stats += other.string_stats
    self.num_struct_values += other.num_struct_values

  def compact(self) -> None:
    if self.numeric_stats is not None:
      self.numeric_stats.histogram_builder.compact()

  def _num_values_by_kind(self) -> List[int]:
    return [
        self.numeric_stats.num_values if self.numeric_stats else 0,
        self.string_stats.num_values if self.string_stats else 0,
        self.num_struct_values,
    ]

  @property
  def declared_type(self) -> Optional[types.FeatureNameStatisticsType]:
    if len(self.declared_types) != 1:
      return None
    return next(iter(self.declared_types))

  def merge_error(self) -> Optional[str]:
    """Returns why partials of this feature could not be merged, if so."""
    if len(self.declared_types) < 2:
      return None
    type_names = [
        statistics_pb2.FeatureNameStatistics.Type.Name(t)
        for t in sorted(self.declared_types)
    ]
    return ('Cannot merge statistics of feature %s declared with types %s.' %
            (self.feature_path, ', '.join(type_names)))

  def feature_type(self) -> Optional[types.FeatureNameStatisticsType]:
    """Returns the declared type, or the type inferred from the values."""
    if self.declared_types:
      # The smallest declared type is reported if they conflict.
      return min(self.declared_types)
    counts = self._num_values_by_kind()
    if not any(counts):
      return None
    # Ties go to the kind listed first.
    kind = max(range(len(counts)), key=lambda k: (counts[k], -k))
    if kind == _NUMERIC:
      return _FLOAT if self.numeric_stats.has_float else _INT
    if kind == _CATEGORICAL:
      if self.string_stats.num_non_utf8 == self.string_stats.num_values:
        return _BYTES
      return _STRING
    return _STRUCT

  def finalize(
      self,
      has_weights: bool,
      num_examples: Optional[int] = None,
      weighted_num_examples: Optional[fractions.Fraction] = None
  ) -> statistics_pb2.FeatureNameStatistics:
    """Materializes the statistics of the feature.

    Args:
      has_weights: Whether to output weighted statistics.
      num_examples: The number of examples in which the feature could have been
        present, if known. See common_stats.make_common_stats_proto.
      weighted_num_examples: The exact total weight of those examples.

    Returns:
      A FeatureNameStatistics proto.
    """
    result = statistics_pb2.FeatureNameStatistics()
    stats_util.set_feature_path(result, self.feature_path)
    feature_type = self.feature_type()
    if feature_type is not None:
      result.type = feature_type
    merge_error = self.merge_error()
    if merge_error is not None:
      logging.warning(merge_error)
      result.custom_stats.add(
          name=constants.MERGE_ERROR_CUSTOM_STATS_NAME, str=merge_error)
      return result

    common_stats_proto = common_stats.make_common_stats_proto(
        self.common_stats, self._options.num_values_histogram_buckets,
        has_weights, num_examples, weighted_num_examples)
    kind = _TYPE_TO_KIND.get(feature_type, _NUMERIC)
    num_conflicting = sum(self._num_values_by_kind()) - (
        self._num_values_by_kind()[kind])
    custom_stats = {}
    if num_conflicting:
      custom_stats[constants.CONFLICTING_TYPE_VALUES_CUSTOM_STATS_NAME] = (
          num_conflicting)

    if kind == _NUMERIC:
      result.num_stats.CopyFrom(
          self._make_numeric_stats_proto(num_conflicting, has_weights,
                                         custom_stats))
      result.num_stats.common_stats.CopyFrom(common_stats_proto)
    elif kind == _CATEGORICAL and feature_type == _BYTES:
      result.bytes_stats.CopyFrom(self._make_bytes_stats_proto(custom_stats))
      result.bytes_stats.common_stats.CopyFrom(common_stats_proto)
    elif kind == _CATEGORICAL:
      result.string_stats.CopyFrom(
          self._make_string_stats_proto(has_weights, custom_stats))
      result.string_stats.common_stats.CopyFrom(common_stats_proto)
    else:
      result.struct_stats.common_stats.CopyFrom(common_stats_proto)

    for name in sorted(custom_stats):
      result.custom_stats.add(name=name, num=custom_stats[name])
    return result

  def _make_numeric_stats_proto(
      self, num_undefined: int, has_weights: bool,
      custom_stats: dict) -> statistics_pb2.NumericStatistics:
    """Convert the partial numeric statistics into NumericStatistics proto."""
    result = statistics_pb2.NumericStatistics()
    numeric_stats = self.numeric_stats
    if numeric_stats is None:
      numeric_stats = _PartialNumericStats(self._options.epsilon)
    builder = numeric_stats.histogram_builder
    histogram_specs = [
        (statistics_pb2.Histogram.STANDARD,
         self._options.num_histogram_buckets),
        (statistics_pb2.Histogram.QUANTILES,
         self._options.num_quantiles_histogram_buckets),
    ]

    if builder.is_empty():
      # If we only have NaN or undefined values, we only set their counts.
      if numeric_stats.num_nan or num_undefined:
        for histogram_type, num_buckets in histogram_specs:
          histogram = result.histograms.add()
          histogram.CopyFrom(builder.finalize(histogram_type, num_buckets))
          histogram.num_undefined = num_undefined
      return result

    mean, variance = numeric_stats.mean_var_accumulator.mean_and_variance()
    result.mean = mean
    result.std_dev = math.sqrt(variance)
    result.num_zeros = numeric_stats.num_zeros
    result.min = numeric_stats.min
    result.max = numeric_stats.max
    result.median = builder.median()
    for histogram_type, num_buckets in histogram_specs:
      histogram = result.histograms.add()
      histogram.CopyFrom(builder.finalize(histogram_type, num_buckets))
      histogram.num_undefined = num_undefined
    if builder.rank_error_bound:
      custom_stats[constants.QUANTILES_ERROR_BOUND_CUSTOM_STATS_NAME] = (
          builder.rank_error_bound)

    # Add weighted numeric stats to the proto.
    if has_weights:
      weighted_numeric_stats_proto = statistics_pb2.WeightedNumericStatistics()
      weighted_mean, weighted_variance = (
          numeric_stats.weighted_mean_var_accumulator.mean_and_variance())
      weighted_numeric_stats_proto.mean = weighted_mean
      weighted_numeric_stats_proto.std_dev = math.sqrt(weighted_variance)
      weighted_median = builder.median(weighted=True)
      if weighted_median is not None:
        weighted_numeric_stats_proto.median = weighted_median
      for histogram_type, num_buckets in histogram_specs:
        histogram = weighted_numeric_stats_proto.histograms.add()
        histogram.CopyFrom(
            builder.finalize(histogram_type, num_buckets, weighted=True))
        histogram.num_undefined = num_undefined
      result.weighted_numeric_stats.CopyFrom(weighted_numeric_stats_proto)
    return result

  def _make_string_stats_proto(
      self, has_weights: bool,
      custom_stats: dict) -> statistics_pb2.StringStatistics:
    """Convert the partial string statistics into StringStatistics proto."""
    result = statistics_pb2.StringStatistics()
    string_stats = self.string_stats
    if string_stats is None:
      return result
    builder = string_stats.rank_histogram_builder
    num_unique, is_estimate = builder.num_unique()
    result.unique = num_unique
    if is_estimate:
      custom_stats[constants.UNIQUES_SKETCH_CUSTOM_STATS_NAME] = num_unique
    if string_stats.num_values:
      result.avg_length = string_stats.total_length / string_stats.num_values
    _add_top_values_and_rank_histogram(result, builder, self._options,
                                       weighted=False)
    if has_weights:
      _add_top_values_and_rank_histogram(result.weighted_string_stats, builder,
                                         self._options, weighted=True)
    return result

  def _make_bytes_stats_proto(
      self, custom_stats: dict) -> statistics_pb2.BytesStatistics:
    """Convert the partial bytes statistics into BytesStatistics proto."""
    result = statistics_pb2.BytesStatistics()
    string_stats = self.string_stats
    if string_stats is None:
      return result
    num_unique, is_estimate = string_stats.rank_histogram_builder.num_unique()
    result.unique = num_unique
    if is_estimate:
      custom_stats[constants.UNIQUES_SKETCH_CUSTOM_STATS_NAME] = num_unique
    if string_stats.num_values:
      result.avg_num_bytes = (
          string_stats.total_num_bytes / string_stats.num_values)
      result.min_num_bytes = string_stats.min_num_bytes
      result.max_num_bytes = string_stats.max_num_bytes
    return result


def _add_top_values_and_rank_histogram(
    string_stats, builder: rank_histogram_builder.RankHistogramBuilder,
    stats_options: options.StatsOptions, weighted: bool) -> None:
  """Adds top values and the rank histogram to (weighted) string stats."""
  top_values, rank_histogram = builder.finalize(
      stats_options.num_top_values, stats_options.num_rank_histogram_buckets,
      stats_options.rank_histogram_bucket_width, weighted=weighted)
  for value_count in top_values:
    string_stats.top_values.add(
        value=value_count.label, frequency=value_count.count)
  string_stats.rank_histogram.CopyFrom(rank_histogram)
