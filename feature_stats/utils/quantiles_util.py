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

"""Utilities to compute histograms and medians from exact value summaries.

The functions in this module operate on a sorted array of distinct values and
the exact (fractions.Fraction) cumulative weight at each value, so every result
depends only on the multiset of values and weights, not on the order in which
they were observed.
"""
import bisect
import fractions
from typing import List, Sequence

import numpy as np
from tensorflow_metadata.proto.v0 import statistics_pb2

CumulativeWeights = Sequence[fractions.Fraction]


def cumulative_weights(
    weights: Sequence[fractions.Fraction]) -> List[fractions.Fraction]:
  """Returns the running totals of `weights`."""
  result = []
  total = fractions.Fraction(0)
  for weight in weights:
    total += weight
    result.append(total)
  return result


def find_quantile(values: np.ndarray, cum_weights: CumulativeWeights,
                  cut: fractions.Fraction) -> float:
  """Returns the smallest value whose cumulative weight reaches `cut`."""
  index = min(bisect.bisect_left(cum_weights, cut), len(values) - 1)
  return float(values[index])


def find_median(values: np.ndarray, cum_weights: CumulativeWeights) -> float:
  """Finds the weighted median.

  Args:
    values: A sorted numpy array of distinct values.
    cum_weights: The cumulative weight at each value.

  Returns:
    The smallest value at which the cumulative weight reaches half of the total.
    If the cumulative weight equals exactly half of the total there, the mean
    of that value and the next value carrying weight.
  """
  # We assume that we have at least one value.
  assert len(values) > 0  # pylint: disable=g-explicit-length-test
  half = cum_weights[-1] / 2
  index = min(bisect.bisect_left(cum_weights, half), len(values) - 1)
  if cum_weights[index] == half:
    next_index = bisect.bisect_right(cum_weights, half)
    if next_index < len(values):
      return (float(values[index]) + float(values[next_index])) / 2.0
  return float(values[index])


def generate_quantiles_histogram(
    values: np.ndarray, cum_weights: CumulativeWeights, min_value: float,
    max_value: float, num_buckets: int) -> statistics_pb2.Histogram:
  """Generate an equal-weight quantiles histogram.

  Bucket boundaries are the quantiles at k / num_buckets of the total weight.
  A value whose weight straddles a cut point is shared by the buckets on both
  sides of it, which yields zero-width buckets for heavy values. Every bucket
  therefore carries exactly total / num_buckets.

  Args:
    values: A sorted numpy array of distinct values.
    cum_weights: The cumulative weight at each value.
    min_value: The lower bound of the first bucket.
    max_value: The upper bound of the last bucket.
    num_buckets: The number of buckets.

  Returns:
    A statistics_pb2.Histogram proto. It has no buckets if the total weight is
    zero.
  """
  result = statistics_pb2.Histogram()
  result.type = statistics_pb2.Histogram.QUANTILES
  if not len(values) or cum_weights[-1] <= 0:  # pylint: disable=g-explicit-length-test
    return result
  total = cum_weights[-1]
  boundaries = [min_value]
  for k in range(1, num_buckets):
    boundaries.append(
        find_quantile(values, cum_weights, total * k / num_buckets))
  boundaries.append(max_value)
  sample_count = float(total / num_buckets)
  for i in range(num_buckets):
    result.buckets.add(
        low_value=boundaries[i],
        high_value=boundaries[i + 1],
        sample_count=sample_count)
  return result


def generate_equi_width_histogram(
    values: np.ndarray, weights: Sequence[fractions.Fraction],
    min_value: float, max_value: float,
    num_buckets: int) -> statistics_pb2.Histogram:
  """Generates an equal bucket width histogram.

  Args:
    values: A sorted numpy array of distinct values.
    weights: The exact weight of each value.
    min_value: The minimum value.
    max_value: The maximum value.
    num_buckets: The number of buckets when min_value < max_value.

  Returns:
    A standard histogram. If all values are equal it holds a single zero-width
    bucket. The last bucket includes max_value.
  """
  result = statistics_pb2.Histogram()
  result.type = statistics_pb2.Histogram.STANDARD
  if not len(values):  # pylint: disable=g-explicit-length-test
    return result
  if min_value == max_value:
    result.buckets.add(
        low_value=min_value,
        high_value=max_value,
        sample_count=float(sum(weights, fractions.Fraction(0))))
    return result
  boundaries = np.linspace(min_value, max_value, num_buckets + 1)
  if not np.isfinite(boundaries).all():
    # The range overflows a double; there is no meaningful bucketing.
    return result
  bucket_indices = np.clip(
      np.searchsorted(boundaries, values, side='right') - 1, 0,
      num_buckets - 1)
  bucket_weights = [fractions.Fraction(0)] * num_buckets
  for index, weight in zip(bucket_indices.tolist(), weights):
    bucket_weights[index] += weight
  for i in range(num_buckets):
    result.buckets.add(
        low_value=boundaries[i],
        high_value=boundaries[i + 1],
        sample_count=float(bucket_weights[i]))
  return result
