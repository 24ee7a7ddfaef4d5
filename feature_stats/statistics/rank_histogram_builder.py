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
"""Builds top values lists and rank histograms over weighted categorical values.

Values are ranked by descending total weight (or number of observations for
unweighted statistics). Ties are broken by the lexicographic order of the label
the value is reported under, then by its utf-8 encoding, so the ranking never
depends on insertion order.

Without a cap on the number of unique values, every distinct value is kept and
the results are exact. With a cap, the builder stays exact until it holds more
unique values than the cap, then moves its values into mergeable sketches: a
KMV sketch estimating the number of unique values, and Misra-Gries sketches
for the counts and weights of the most frequent ones. Each estimated count is
then below the true count by at most the total count divided by the cap, for
any merge order, and the number of unique values is reported as an estimate.
"""

import collections
from typing import Dict, List, Optional, Tuple, Union

import pyarrow as pa
from feature_stats import constants
from feature_stats.utils import stats_util
from feature_stats.utils import variance_util
from tensorflow_metadata.proto.v0 import statistics_pb2
from tfx_bsl.sketches import KmvSketch
from tfx_bsl.sketches import MisraGriesSketch

CategoricalValue = Union[str, bytes]

# Tuple to hold a ranked value, the label it is reported under and its count
# (total weight for weighted statistics).
FeatureValueCount = collections.namedtuple('FeatureValueCount',
                                           ['feature_value', 'label', 'count'])


def get_label(value: CategoricalValue) -> str:
  """Returns the label a categorical value is reported under."""
  if isinstance(value, bytes):
    decoded_value = stats_util.maybe_get_utf8(value)
    if decoded_value is None:
      return constants.NON_UTF8_PLACEHOLDER
    return decoded_value
  return value


def _raw(value: CategoricalValue) -> bytes:
  if isinstance(value, str):
    return value.encode('utf-8')
  return value


def _from_raw(raw_value: bytes) -> CategoricalValue:
  decoded_value = stats_util.maybe_get_utf8(raw_value)
  if decoded_value is None:
    return raw_value
  return decoded_value


def _sort_key(value: CategoricalValue, count):
  return (-count, get_label(value), _raw(value))


class _CategoricalEntry(object):
  __slots__ = ['count', 'weight']

  def __init__(self):
    self.count = 0
    self.weight = variance_util.ExactSum()


class _Sketches(object):
  """Sketches of the values a builder no longer holds exactly."""
  __slots__ = ['distinct', 'topk_unweighted', 'topk_weighted']

  def __init__(self, num_buckets: int, sketch_size: int):
    self.distinct = KmvSketch(sketch_size)
    self.topk_unweighted = MisraGriesSketch(num_buckets=num_buckets)
    self.topk_weighted = MisraGriesSketch(num_buckets=num_buckets)

  def add(self, values: pa.Array, counts: pa.Array,
          weights: pa.Array) -> None:
    self.distinct.AddValues(values)
    self.topk_unweighted.AddValues(values, counts)
    self.topk_weighted.AddValues(values, weights)

  def merge(self, other: '_Sketches') -> None:
    self.distinct.Merge(other.distinct)
    self.topk_unweighted.Merge(other.topk_unweighted)
    self.topk_weighted.Merge(other.topk_weighted)


class RankHistogramBuilder(object):
  """Aggregates the count and weight of each distinct categorical value."""
  __slots__ = ['_entries', '_max_unique_values', '_sketch_size', '_sketches']

  def __init__(self,
               max_unique_values: Optional[int] = None,
               sketch_size: int = constants.DEFAULT_KMV_SKETCH_SIZE):
    # Exact entries. Once sketched, the entries not yet moved to the sketches.
    self._entries: Dict[CategoricalValue, _CategoricalEntry] = {}
    self._max_unique_values = max_unique_values
    self._sketch_size = sketch_size
    self._sketches: Optional[_Sketches] = None

  def add(self, value: CategoricalValue, weight: float = 1.0,
          count: int = 1) -> None:
    entry = self._entries.get(value)
    if entry is None:
      entry = _CategoricalEntry()
      self._entries[value] = entry
    entry.count += count
    entry.weight.add(weight)
    self._maybe_flush()

  def merge(self, other: 'RankHistogramBuilder') -> None:
    """Merges another builder into this one, updating in place."""
    # pylint: disable=protected-access
    if other._sketches is not None:
      self._ensure_sketches()
      self._sketches.merge(other._sketches)
    for value, other_entry in other._entries.items():
      entry = self._entries.get(value)
      if entry is None:
        entry = _CategoricalEntry()
        self._entries[value] = entry
      entry.count += other_entry.count
      entry.weight.merge(other_entry.weight)
    # pylint: enable=protected-access
    self._maybe_flush()

  def is_exact(self) -> bool:
    """Whether the builder still holds every distinct value."""
    return self._sketches is None

  @property
  def truncated(self) -> bool:
    """Whether only the most frequent values are reported, approximately."""
    return not self.is_exact()

  def num_unique(self) -> Tuple[int, bool]:
    """Returns the number of unique values and whether it is an estimate."""
    if self.is_exact():
      return len(self._entries), False
    self._flush()
    return self._sketches.distinct.Estimate(), True

  def _ensure_sketches(self) -> None:
    if self._sketches is None:
      self._sketches = _Sketches(self._max_unique_values, self._sketch_size)

  def _maybe_flush(self) -> None:
    if (self._max_unique_values is not None and
        len(self._entries) > self._max_unique_values):
      self._flush()

  def _flush(self) -> None:
    if not self._entries:
      return
    self._ensure_sketches()
    entries = self._entries.items()
    self._sketches.add(
        pa.array([_raw(value) for value, _ in entries], type=pa.binary()),
        pa.array([float(entry.count) for _, entry in entries],
                 type=pa.float32()),
        pa.array([float(entry.weight) for _, entry in entries],
                 type=pa.float32()))
    self._entries = {}

  def ranked(self, weighted: bool = False) -> List[FeatureValueCount]:
    """Returns the values in rank order."""
    if self.is_exact():
      counts = [(value, entry.weight.as_fraction() if weighted
                 else entry.count)
                for value, entry in self._entries.items()]
    else:
      self._flush()
      sketch = (self._sketches.topk_weighted if weighted
                else self._sketches.topk_unweighted)
      counts = [(_from_raw(pair['values']), pair['counts'])
                for pair in sketch.Estimate().to_pylist()]
    counts.sort(key=lambda pair: _sort_key(*pair))
    if self._max_unique_values is not None:
      counts = counts[:self._max_unique_values]
    return [
        FeatureValueCount(value, get_label(value),
                          float(count) if weighted else count)
        for value, count in counts
    ]

  def _bucket_count(self, members: List[FeatureValueCount],
                    weighted: bool) -> float:
    if not weighted:
      return sum(member.count for member in members)
    total = variance_util.ExactSum()
    for member in members:
      if self.is_exact():
        total.merge(self._entries[member.feature_value].weight)
      else:
        total.add(member.count)
    return float(total)

  def finalize(
      self,
      top_k: int,
      num_buckets: Optional[int] = None,
      bucket_width: int = 1,
      weighted: bool = False
  ) -> Tuple[List[FeatureValueCount], statistics_pb2.RankHistogram]:
    """Materializes the top values list and the rank histogram.

    Args:
      top_k: The number of top values to return.
      num_buckets: The maximum number of rank histogram buckets. None means no
        limit.
      bucket_width: The number of consecutive ranks in each bucket.
      weighted: Whether values are ranked by total weight rather than by
        number of observations.

    Returns:
      A tuple of the top_k highest ranked values and the rank histogram. Rank 1
      is the highest ranked value; each bucket covers the ranks
      [low_rank, high_rank) and is labelled with its first value. The last
      bucket ends after the lowest ranked value.
    """
    ranked = self.ranked(weighted)
    histogram = statistics_pb2.RankHistogram()
    for start in range(0, len(ranked), bucket_width):
      if num_buckets is not None and len(histogram.buckets) >= num_buckets:
        break
      members = ranked[start:start + bucket_width]
      bucket = histogram.buckets.add()
      bucket.low_rank = start + 1
      bucket.high_rank = start + 1 + len(members)
      bucket.label = members[0].label
      bucket.sample_count = self._bucket_count(members, weighted)
    return ranked[:top_k], histogram
