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
"""Builds standard and quantiles histograms over a weighted multiset of doubles.

The builder keeps, per distinct value, the number of observations and their
exact total weight. Histograms and medians are derived from that summary on
finalization, so the output for a given multiset is reproducible bit-for-bit
regardless of insertion or merge order.

When constructed with an `epsilon`, the builder bounds its memory instead: once
it holds more than 2 / epsilon distinct values it moves them into a pair of
mergeable quantiles sketches (one weighing values by count, one by weight).
Quantiles, medians and histograms are then approximate, with a rank error of
at most `epsilon` of the total weight whatever the merge order, and
`rank_error_bound` reports that bound.
"""

import fractions
import math
from typing import Dict, List, Optional, Tuple

import numpy as np
import pyarrow as pa
from feature_stats.utils import quantiles_util
from feature_stats.utils import variance_util
from tensorflow_metadata.proto.v0 import statistics_pb2
from tfx_bsl import sketches


class _ValueEntry(object):
  """Number of observations and exact total weight of a single value."""
  __slots__ = ['count', 'weight']

  def __init__(self):
    self.count = 0
    self.weight = variance_util.ExactSum()

  def merge(self, other: '_ValueEntry') -> None:
    self.count += other.count
    self.weight.merge(other.weight)


class HistogramBuilder(object):
  """Accumulates weighted finite doubles and materializes histograms."""
  __slots__ = ['_entries', '_num_values', '_min', '_max', 'num_nan',
               'num_undefined', '_epsilon', '_counts_sketch',
               '_weights_sketch']

  def __init__(self, epsilon: Optional[float] = None):
    # Exact entries. Once sketched, the entries not yet moved to the sketches.
    self._entries: Dict[float, _ValueEntry] = {}
    self._num_values = 0
    self._min = float('inf')
    self._max = float('-inf')
    self.num_nan = 0
    self.num_undefined = 0
    self._epsilon = epsilon
    self._counts_sketch: Optional[sketches.QuantilesSketch] = None
    self._weights_sketch: Optional[sketches.QuantilesSketch] = None

  def add(self, value: float, weight: float = 1.0, count: int = 1) -> None:
    """Adds `count` observations of a finite value, carrying `weight` in total.

    Args:
      value: A finite number.
      weight: The total weight of the observations.
      count: The number of observations.
    """
    # Adding 0.0 maps -0.0 to 0.0.
    value = float(value) + 0.0
    entry = self._entries.get(value)
    if entry is None:
      entry = _ValueEntry()
      self._entries[value] = entry
    entry.count += count
    entry.weight.add(weight)
    self._num_values += count
    if value < self._min:
      self._min = value
    if value > self._max:
      self._max = value
    self._maybe_flush()

  def add_nan(self, count: int = 1) -> None:
    self.num_nan += count

  def add_undefined(self, count: int = 1) -> None:
    self.num_undefined += count

  def merge(self, other: 'HistogramBuilder') -> None:
    """Merges another builder into this one, updating in place."""
    # pylint: disable=protected-access
    for value, other_entry in other._entries.items():
      entry = self._entries.get(value)
      if entry is None:
        entry = _ValueEntry()
        self._entries[value] = entry
      entry.merge(other_entry)
    if other._counts_sketch is not None:
      self._ensure_sketches()
      self._counts_sketch.Merge(other._counts_sketch)
      self._weights_sketch.Merge(other._weights_sketch)
    self._num_values += other._num_values
    self._min = min(self._min, other._min)
    self._max = max(self._max, other._max)
    # pylint: enable=protected-access
    self.num_nan += other.num_nan
    self.num_undefined += other.num_undefined
    self._maybe_flush()

  def compact(self) -> None:
    """Moves pending entries into the sketches and compacts them, if any."""
    if self._counts_sketch is None:
      return
    self._flush()
    self._counts_sketch.Compact()
    self._weights_sketch.Compact()

  @property
  def num_values(self) -> int:
    """Number of finite values added."""
    return self._num_values

  def is_empty(self) -> bool:
    return not self._num_values

  def is_exact(self) -> bool:
    """Whether the builder still holds every distinct value."""
    return self._counts_sketch is None

  @property
  def min(self) -> float:
    return self._min

  @property
  def max(self) -> float:
    return self._max

  @property
  def rank_error_bound(self) -> float:
    """Upper bound on the relative rank error of quantiles and the median."""
    if self.is_exact():
      return 0.0
    return self._epsilon

  def _ensure_sketches(self) -> None:
    if self._counts_sketch is None:
      self._counts_sketch = self._make_sketch()
      self._weights_sketch = self._make_sketch()

  def _make_sketch(self) -> sketches.QuantilesSketch:
    return sketches.QuantilesSketch(
        eps=self._epsilon, max_num_elements=1 << 32, num_streams=1)

  def _maybe_flush(self) -> None:
    if (self._epsilon is not None and
        len(self._entries) > 2.0 / self._epsilon):
      self._flush()

  def _flush(self) -> None:
    if not self._entries:
      return
    self._ensure_sketches()
    values = pa.array(list(self._entries), type=pa.float64())
    self._counts_sketch.AddValues(
        values,
        pa.array([float(e.count) for e in self._entries.values()],
                 type=pa.float64()))
    self._weights_sketch.AddValues(
        values,
        pa.array([float(e.weight) for e in self._entries.values()],
                 type=pa.float64()))
    self._entries = {}

  def _sketch_summary(
      self, weighted: bool) -> Tuple[np.ndarray, List[fractions.Fraction]]:
    """Turns the sketch quantiles into weighted points."""
    self._flush()
    sketch = self._weights_sketch if weighted else self._counts_sketch
    quantiles, cum_weights = sketch.GetQuantilesAndCumulativeWeights(
        int(math.ceil(2.0 / self._epsilon)))
    quantiles = quantiles.flatten().to_numpy(zero_copy_only=False)
    cum_weights = cum_weights.flatten().to_numpy(zero_copy_only=False)
    points: Dict[float, fractions.Fraction] = {}
    previous = 0.0
    for value, cum_weight in zip(quantiles, cum_weights):
      # The first boundary carries the weight of the minimum.
      weight = max(0.0, float(cum_weight) - previous)
      previous = max(previous, float(cum_weight))
      value = float(value)
      points[value] = points.get(value, fractions.Fraction(0)) + (
          fractions.Fraction(weight))
    sorted_values = sorted(points)
    return (np.array(sorted_values, dtype=np.float64),
            [points[v] for v in sorted_values])

  def _summary(
      self, weighted: bool) -> Tuple[np.ndarray, List[fractions.Fraction]]:
    if not self.is_exact():
      return self._sketch_summary(weighted)
    sorted_values = sorted(self._entries)
    if weighted:
      weights = [self._entries[v].weight.as_fraction() for v in sorted_values]
    else:
      weights = [fractions.Fraction(self._entries[v].count)
                 for v in sorted_values]
    return np.array(sorted_values, dtype=np.float64), weights

  def total_weight(self, weighted: bool = False) -> float:
    _, weights = self._summary(weighted)
    return float(sum(weights, fractions.Fraction(0)))

  def median(self, weighted: bool = False) -> Optional[float]:
    """Returns the (weighted) median, or None if there are no values."""
    values, weights = self._summary(weighted)
    cum_weights = quantiles_util.cumulative_weights(weights)
    if not cum_weights or cum_weights[-1] <= 0:
      return None
    return quantiles_util.find_median(values, cum_weights)

  def finalize(self,
               histogram_type: int,
               num_buckets: int,
               weighted: bool = False) -> statistics_pb2.Histogram:
    """Materializes a histogram.

    Args:
      histogram_type: statistics_pb2.Histogram.STANDARD or
        statistics_pb2.Histogram.QUANTILES.
      num_buckets: The number of buckets.
      weighted: Whether bucket sample counts are total weights rather than
        numbers of observations.

    Returns:
      A statistics_pb2.Histogram proto.

    Raises:
      ValueError: If the histogram type is not supported.
    """
    values, weights = self._summary(weighted)
    if histogram_type == statistics_pb2.Histogram.QUANTILES:
      result = quantiles_util.generate_quantiles_histogram(
          values, quantiles_util.cumulative_weights(weights), self._min,
          self._max, num_buckets)
    elif histogram_type == statistics_pb2.Histogram.STANDARD:
      result = quantiles_util.generate_equi_width_histogram(
          values, weights, self._min, self._max, num_buckets)
    else:
      raise ValueError('Unsupported histogram type %r.' % histogram_type)
    result.num_nan = self.num_nan
    result.num_undefined = self.num_undefined
    return result
