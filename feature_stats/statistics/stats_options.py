# Copyright 2022 Google LLC
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
"""Statistics generation options."""

import json
from typing import Any, Dict, List, Optional, Text

from feature_stats import types
from feature_stats.utils import example_weight_map
from tensorflow_metadata.proto.v0 import statistics_pb2


_TYPE_NAME_KEY = 'TYPE_NAME'
_TYPE_NAME = 'StatsOptions'

# Options keyed by feature path, and options listing feature paths. Both are
# stored in JSON under '<option>_json' with paths encoded by
# FeaturePath.to_json.
_PATH_KEYED_OPTIONS = ('per_feature_weight_override', 'feature_types')
_PATH_LIST_OPTIONS = ('feature_allowlist', 'feature_order')

_VALID_FEATURE_TYPES = frozenset(
    statistics_pb2.FeatureNameStatistics.Type.values())


def _bounded_int_option(name: Text, minimum: int, optional: bool = False):
  """Returns a property storing an int option no smaller than `minimum`."""
  attribute = '_' + name

  def getter(self):
    return getattr(self, attribute)

  def setter(self, value):
    if value is None and optional:
      setattr(self, attribute, value)
      return
    if isinstance(value, bool) or not isinstance(value, int):
      raise TypeError('%s is of type %s, should be an int.' %
                      (name, type(value).__name__))
    if value < minimum:
      raise ValueError('Invalid %s %d' % (name, value))
    setattr(self, attribute, value)

  return property(getter, setter)


def _check_type(name: Text, value: Any, expected_type: type) -> None:
  if value is not None and not isinstance(value, expected_type):
    raise TypeError('%s is of type %s, should be a %s.' %
                    (name, type(value).__name__, expected_type.__name__))


class StatsOptions(object):
  """Options for generating statistics."""

  num_top_values = _bounded_int_option('num_top_values', 0)
  num_rank_histogram_buckets = _bounded_int_option(
      'num_rank_histogram_buckets', 0)
  rank_histogram_bucket_width = _bounded_int_option(
      'rank_histogram_bucket_width', 1)
  num_values_histogram_buckets = _bounded_int_option(
      'num_values_histogram_buckets', 1)
  num_histogram_buckets = _bounded_int_option('num_histogram_buckets', 1)
  num_quantiles_histogram_buckets = _bounded_int_option(
      'num_quantiles_histogram_buckets', 1)
  max_unique_values = _bounded_int_option(
      'max_unique_values', 1, optional=True)

  def __init__(
      self,
      weight_feature: Optional[types.FeatureName] = None,
      per_feature_weight_override: Optional[
          Dict[types.FeaturePath, types.FeatureName]] = None,
      feature_types: Optional[types.FeatureTypes] = None,
      feature_allowlist: Optional[List[types.FeatureIdentity]] = None,
      feature_order: Optional[List[types.FeatureIdentity]] = None,
      num_top_values: int = 20,
      num_rank_histogram_buckets: int = 1000,
      rank_histogram_bucket_width: int = 1,
      num_values_histogram_buckets: int = 10,
      num_histogram_buckets: int = 10,
      num_quantiles_histogram_buckets: int = 10,
      max_unique_values: Optional[int] = 100000,
      epsilon: Optional[float] = None):
    """Initializes statistics options.

    Args:
      weight_feature: An optional feature name whose numeric value represents
        the weight of an example.
      per_feature_weight_override: An optional mapping from feature name or
        path to the weight feature of that feature and of the features nested
        below it. Features without an override use `weight_feature`.
      feature_types: An optional mapping from feature name or path to a
        statistics_pb2.FeatureNameStatistics.Type. Declared types take
        precedence over the types inferred from the values.
      feature_allowlist: An optional list of the features (names or paths) to
        compute statistics for. Children of an allowed feature are allowed.
      feature_order: An optional list of features (names or paths) to output
        first, in this order. Other features follow in the order in which they
        were first seen.
      num_top_values: The number of most frequent values to report for string
        features.
      num_rank_histogram_buckets: The number of buckets in the rank histogram
        of string features.
      rank_histogram_bucket_width: The number of consecutive ranks grouped in
        each rank histogram bucket.
      num_values_histogram_buckets: The number of buckets in the quantiles
        histograms of the number of values per example and of the feature list
        length.
      num_histogram_buckets: The number of equal-width buckets in the standard
        numeric histogram.
      num_quantiles_histogram_buckets: The number of equal-count buckets in the
        quantiles numeric histogram.
      max_unique_values: The maximum number of distinct values tracked exactly
        per string feature. Beyond it top values come from Misra-Gries
        sketches and the number of unique values is estimated. None means no
        limit.
      epsilon: An optional error tolerance in (0, 1) for quantiles. If unset,
        quantiles are exact; otherwise the memory per feature is bounded and
        quantiles may be off by `epsilon` in rank.
    """
    self.weight_feature = weight_feature
    self.per_feature_weight_override = per_feature_weight_override
    self.feature_types = feature_types
    self.feature_allowlist = feature_allowlist
    self.feature_order = feature_order
    self.num_top_values = num_top_values
    self.num_rank_histogram_buckets = num_rank_histogram_buckets
    self.rank_histogram_bucket_width = rank_histogram_bucket_width
    self.num_values_histogram_buckets = num_values_histogram_buckets
    self.num_histogram_buckets = num_histogram_buckets
    self.num_quantiles_histogram_buckets = num_quantiles_histogram_buckets
    self.max_unique_values = max_unique_values
    self.epsilon = epsilon

  def __repr__(self):
    return '<{}>'.format(', '.join(
        '{}={!r}'.format(k, v) for k, v in self.__dict__.items()))

  def __eq__(self, other):
    if not isinstance(other, StatsOptions):
      return NotImplemented
    return self.__dict__ == other.__dict__

  def to_json(self) -> Text:
    """Serializes the options, encoding feature paths with to_json."""
    options_dict = dict(self.__dict__)
    options_dict[_TYPE_NAME_KEY] = _TYPE_NAME
    for name in _PATH_KEYED_OPTIONS + _PATH_LIST_OPTIONS:
      value = options_dict.get('_' + name)
      if value is None:
        continue
      del options_dict['_' + name]
      if name in _PATH_KEYED_OPTIONS:
        encoded = {path.to_json(): v for path, v in value.items()}
      else:
        encoded = [types.FeaturePath.coerce(f).to_json() for f in value]
      options_dict[name + '_json'] = encoded
    return json.dumps(options_dict)

  @classmethod
  def from_json(cls, options_json: Text) -> 'StatsOptions':
    """Deserializes options written by `to_json`.

    Raises:
      ValueError: If the JSON encodes some other type.
    """
    options_dict = json.loads(options_json)
    type_name = options_dict.pop(_TYPE_NAME_KEY, None)
    if type_name is not None and type_name != _TYPE_NAME:
      raise ValueError('JSON does not encode a StatsOptions')
    for name in _PATH_KEYED_OPTIONS + _PATH_LIST_OPTIONS:
      encoded = options_dict.pop(name + '_json', None)
      if encoded is None:
        continue
      if name in _PATH_KEYED_OPTIONS:
        decoded = {types.FeaturePath.from_json(k): v
                   for k, v in encoded.items()}
      else:
        decoded = [types.FeaturePath.from_json(p) for p in encoded]
      options_dict['_' + name] = decoded
    options = cls()
    options.__dict__.update(options_dict)
    return options

  @property
  def weight_feature(self) -> Optional[types.FeatureName]:
    return self._weight_feature

  @weight_feature.setter
  def weight_feature(self, weight_feature: Optional[types.FeatureName]) -> None:
    _check_type('weight_feature', weight_feature, str)
    self._weight_feature = weight_feature

  @property
  def per_feature_weight_override(
      self) -> Optional[Dict[types.FeaturePath, types.FeatureName]]:
    return self._per_feature_weight_override

  @per_feature_weight_override.setter
  def per_feature_weight_override(
      self, per_feature_weight_override: Optional[Dict[types.FeatureIdentity,
                                                       types.FeatureName]]
  ) -> None:
    _check_type('per_feature_weight_override', per_feature_weight_override,
                dict)
    if per_feature_weight_override is not None:
      per_feature_weight_override = {
          types.FeaturePath.coerce(k): v
          for k, v in per_feature_weight_override.items()
      }
    self._per_feature_weight_override = per_feature_weight_override

  @property
  def feature_types(self) -> Optional[Dict[types.FeaturePath, int]]:
    return self._feature_types

  @feature_types.setter
  def feature_types(self, feature_types: Optional[types.FeatureTypes]) -> None:
    _check_type('feature_types', feature_types, dict)
    if feature_types is not None:
      coerced = {}
      for feature, feature_type in feature_types.items():
        if feature_type not in _VALID_FEATURE_TYPES:
          raise ValueError('Invalid type %r for feature %s' %
                           (feature_type, feature))
        coerced[types.FeaturePath.coerce(feature)] = feature_type
      feature_types = coerced
    self._feature_types = feature_types

  @property
  def feature_allowlist(self) -> Optional[List[types.FeatureIdentity]]:
    return self._feature_allowlist

  @feature_allowlist.setter
  def feature_allowlist(
      self, feature_allowlist: Optional[List[types.FeatureIdentity]]) -> None:
    _check_type('feature_allowlist', feature_allowlist, list)
    self._feature_allowlist = feature_allowlist

  @property
  def feature_order(self) -> Optional[List[types.FeatureIdentity]]:
    return self._feature_order

  @feature_order.setter
  def feature_order(
      self, feature_order: Optional[List[types.FeatureIdentity]]) -> None:
    _check_type('feature_order', feature_order, list)
    self._feature_order = feature_order

  @property
  def epsilon(self) -> Optional[float]:
    return self._epsilon

  @epsilon.setter
  def epsilon(self, epsilon: Optional[float]) -> None:
    if epsilon is not None and not 0 < epsilon < 1:
      raise ValueError('Invalid epsilon %s' % epsilon)
    self._epsilon = epsilon

  @property
  def example_weight_map(self) -> example_weight_map.ExampleWeightMap:
    return example_weight_map.ExampleWeightMap(
        self.weight_feature, self._per_feature_weight_override)
