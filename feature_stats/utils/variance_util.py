# Copyright 2021 Google LLC
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
"""Utilities for calculating exact, order-independent sums, means and variances.

Every finite double is a dyadic rational (an integer over a power of two), and
so is a product of doubles. The accumulators below keep their running totals as
integer numerators over power-of-two denominators, so additions and merges are
exact. Their results do not depend on the order in which values are added or
partial accumulators are merged, which makes merging shards associative and
commutative bit-for-bit. Rounding to a double happens once, when a result is
read.
"""

import fractions
import math
from typing import Iterable, Optional, Tuple, Union

import numpy as np

_Number = Union[int, float, np.integer, np.floating]


def _to_dyadic(factors: Iterable[_Number]) -> Tuple[int, int]:
  """Returns (numerator, shift) with prod(factors) == numerator / 2**shift."""
  numerator = 1
  shift = 0
  for factor in factors:
    if isinstance(factor, (int, np.integer)):
      n, d = int(factor), 1
    else:
      n, d = float(factor).as_integer_ratio()
    numerator *= n
    shift += d.bit_length() - 1
  return numerator, shift


def ratio_to_float(numerator: int, denominator: int) -> float:
  """Converts an exact ratio to the nearest double."""
  if denominator == 0:
    return 0.0
  try:
    return numerator / denominator
  except OverflowError:
    return math.copysign(float('inf'), numerator * denominator)


class ExactSum(object):
  """Exact sum of doubles or of products of doubles."""
  __slots__ = ['_numerator', '_shift']

  def __init__(self):
    self._numerator = 0
    self._shift = 0

  def add(self, *factors: _Number) -> None:
    """Adds the product of `factors` to the sum.

    Args:
      *factors: finite numbers. A single factor adds the number itself.
    """
    numerator, shift = _to_dyadic(factors)
    self._add_dyadic(numerator, shift)

  def merge(self, other: 'ExactSum') -> None:
    """Adds another ExactSum to this one, updating in place."""
    self._add_dyadic(other._numerator, other._shift)  # pylint: disable=protected-access

  def _add_dyadic(self, numerator: int, shift: int) -> None:
    if shift > self._shift:
      self._numerator <<= shift - self._shift
      self._shift = shift
    elif shift < self._shift:
      numerator <<= self._shift - shift
    self._numerator += numerator

  def as_fraction(self) -> fractions.Fraction:
    return fractions.Fraction(self._numerator, 1 << self._shift)

  def is_zero(self) -> bool:
    return self._numerator == 0

  def __float__(self) -> float:
    return ratio_to_float(self._numerator, 1 << self._shift)

  def __repr__(self) -> str:
    return 'ExactSum(%r)' % float(self)


def _mean_and_variance(
    total_weight: fractions.Fraction, weighted_sum: fractions.Fraction,
    weighted_sum_of_squares: fractions.Fraction) -> Tuple[float, float]:
  if total_weight == 0:
    return 0.0, 0.0
  mean = weighted_sum / total_weight
  variance = weighted_sum_of_squares / total_weight - mean * mean
  return float(mean), float(max(variance, 0))


class MeanVarAccumulator(object):
  """Tracks exact moments for mean and variance calculation."""
  __slots__ = ['count', '_sum', '_sum_of_squares']

  def __init__(self):
    self.count = 0
    self._sum = ExactSum()
    self._sum_of_squares = ExactSum()

  def update(self, array: Union[np.ndarray, Iterable[float]]) -> None:
    """Updates a MeanVarAccumulator with a batch of finite values.

    Args:
      array: An ndarray (or iterable) with numeric values.
    """
    values = np.asarray(array, dtype=np.float64).ravel().tolist()
    for value in values:
      self._sum.add(value)
      self._sum_of_squares.add(value, value)
    self.count += len(values)

  def merge(self, other: 'MeanVarAccumulator') -> None:
    """Combines two MeanVarAccumulators, updating in place.

    Args:
      other: A MeanVarAccumulator to merge with self.
    """
    self.count += other.count
    self._sum.merge(other._sum)  # pylint: disable=protected-access
    self._sum_of_squares.merge(other._sum_of_squares)  # pylint: disable=protected-access

  def mean_and_variance(self) -> Tuple[float, float]:
    return _mean_and_variance(
        fractions.Fraction(self.count), self._sum.as_fraction(),
        self._sum_of_squares.as_fraction())

  @property
  def mean(self) -> float:
    return self.mean_and_variance()[0]

  @property
  def variance(self) -> float:
    return self.mean_and_variance()[1]


class WeightedMeanVarAccumulator(object):
  """Tracks exact weighted moments for mean and variance calculation."""
  __slots__ = ['count', '_weight_sum', '_sum', '_sum_of_squares']

  def __init__(self):
    self.count = 0
    self._weight_sum = ExactSum()
    self._sum = ExactSum()
    self._sum_of_squares = ExactSum()

  def update(self, array: Union[np.ndarray, Iterable[float]],
             weights: Optional[Union[np.ndarray, Iterable[float]]]) -> None:
    """Updates a WeightedMeanVarAccumulator with a batch of values and weights.

    Args:
      array: An ndarray (or iterable) with finite numeric values.
      weights: A weight array. It must have the same shape as `array`.

    Raises:
      ValueError: If weights and values have incompatible shapes.
    """
    values = np.asarray(array, dtype=np.float64)
    weights = np.asarray(weights, dtype=np.float64)
    if not np.array_equal(values.shape, weights.shape):
      raise ValueError('incompatible weights shape')
    for value, weight in zip(values.ravel().tolist(), weights.ravel().tolist()):
      self._weight_sum.add(weight)
      self._sum.add(weight, value)
      self._sum_of_squares.add(weight, value, value)
    self.count += values.size

  def merge(self, other: 'WeightedMeanVarAccumulator') -> None:
    """Combines two WeightedMeanVarAccumulators, updating in place.

    Args:
      other: A WeightedMeanVarAccumulator to merge with self.
    """
    self.count += other.count
    self._weight_sum.merge(other._weight_sum)  # pylint: disable=protected-access
    self._sum.merge(other._sum)  # pylint: disable=protected-access
    self._sum_of_squares.merge(other._sum_of_squares)  # pylint: disable=protected-access

  def mean_and_variance(self) -> Tuple[float, float]:
    return _mean_and_variance(
        self._weight_sum.as_fraction(), self._sum.as_fraction(),
        self._sum_of_squares.as_fraction())

  @property
  def weight_sum(self) -> float:
    return float(self._weight_sum)

  @property
  def mean(self) -> float:
    return self.mean_and_variance()[0]

  @property
  def variance(self) -> float:
    return self.mean_and_variance()[1]
