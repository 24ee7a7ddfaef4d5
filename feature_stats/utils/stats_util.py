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
"""Utilities for feature statistics protos."""

from typing import Optional, Text, Union

import pyarrow as pa
from feature_stats import types
from google.protobuf import message
from google.protobuf import unknown_fields
from tensorflow_metadata.proto.v0 import statistics_pb2

# Messages that carry a deprecated integer count next to its replacement:
# message name -> (current field, deprecated field, deprecated field number).
_DEPRECATED_COUNT_FIELDS = {
    'StringStatistics.FreqAndValue': ('frequency', 'deprecated_freq', 1),
    'Histogram.Bucket': ('sample_count', 'deprecated_count', 3),
    'RankHistogram.Bucket': ('sample_count', 'deprecated_count', 3),
}

_WIRETYPE_VARINT = 0


def maybe_get_utf8(value: bytes) -> Optional[Text]:
  """Decodes `value` as utf-8, returning None for invalid byte strings."""
  try:
    return value.decode('utf-8')
  except UnicodeError:
    return None


# Predicates on the innermost (non-list) Arrow value type, checked in order.
_ARROW_TYPE_PREDICATES = (
    ((pa.types.is_integer, pa.types.is_boolean),
     statistics_pb2.FeatureNameStatistics.INT),
    ((pa.types.is_floating,), statistics_pb2.FeatureNameStatistics.FLOAT),
    ((pa.types.is_string, pa.types.is_large_string),
     statistics_pb2.FeatureNameStatistics.STRING),
    ((pa.types.is_binary, pa.types.is_large_binary),
     statistics_pb2.FeatureNameStatistics.BYTES),
    ((pa.types.is_struct,), statistics_pb2.FeatureNameStatistics.STRUCT),
)


def get_feature_type_from_arrow_type(
    feature_path: types.FeaturePath,
    arrow_type: pa.DataType) -> Optional[types.FeatureNameStatisticsType]:
  """Maps the Arrow type of a column to a feature type.

  List types are unwrapped down to their value type. A null value type maps to
  None since the feature type cannot be determined from it.

  Raises:
    TypeError: If the value type is not supported.
  """
  value_type = arrow_type
  while pa.types.is_list(value_type) or pa.types.is_large_list(value_type):
    value_type = value_type.value_type
  if pa.types.is_null(value_type):
    return None
  for predicates, feature_type in _ARROW_TYPE_PREDICATES:
    if any(predicate(value_type) for predicate in predicates):
      return feature_type
  raise TypeError('Feature {} has unsupported arrow type: {}'.format(
      feature_path, arrow_type))


def set_feature_path(feature_stats: statistics_pb2.FeatureNameStatistics,
                     feature_path: types.FeaturePath) -> None:
  """Identifies a feature by name if it has a single step, else by path."""
  if len(feature_path) == 1:
    feature_stats.name = feature_path.steps()[0]
  else:
    feature_stats.path.CopyFrom(feature_path.to_proto())


def get_feature_path(
    feature_stats: statistics_pb2.FeatureNameStatistics) -> types.FeaturePath:
  """Returns the path of a feature identified either by name or by path."""
  if feature_stats.WhichOneof('field_id') == 'path':
    return types.FeaturePath.from_proto(feature_stats.path)
  return types.FeaturePath([feature_stats.name])


def _check_proto_type(argument: Text, value: message.Message,
                      expected_type) -> None:
  if not isinstance(value, expected_type):
    raise TypeError('%s is of type %s, should be a %s proto.' %
                    (argument, type(value).__name__,
                     expected_type.DESCRIPTOR.name))


def get_feature_stats(stats: statistics_pb2.DatasetFeatureStatistics,
                      feature: types.FeatureIdentity
                     ) -> statistics_pb2.FeatureNameStatistics:
  """Finds the statistics of a feature, given by name, steps or path.

  Raises:
    TypeError: If `stats` is not a DatasetFeatureStatistics.
    ValueError: If the dataset has no statistics for the feature.
  """
  _check_proto_type('statistics', stats,
                    statistics_pb2.DatasetFeatureStatistics)
  feature_path = types.FeaturePath.coerce(feature)
  matches = [f for f in stats.features if get_feature_path(f) == feature_path]
  if not matches:
    raise ValueError('Feature %s not found in the dataset statistics.' %
                     feature_path)
  return matches[0]


def get_custom_stats(
    feature_stats: statistics_pb2.FeatureNameStatistics,
    custom_stats_name: Text
) -> Union[float, Text, statistics_pb2.Histogram, statistics_pb2.RankHistogram]:
  """Returns the value of the custom statistic named `custom_stats_name`.

  Raises:
    TypeError: If `feature_stats` is not a FeatureNameStatistics.
    ValueError: If the feature has no such custom statistic.
  """
  _check_proto_type('feature_stats', feature_stats,
                    statistics_pb2.FeatureNameStatistics)
  for custom_stat in feature_stats.custom_stats:
    if custom_stat.name == custom_stats_name:
      return getattr(custom_stat, custom_stat.WhichOneof('val'))
  raise ValueError('Custom statistics %s not found in the feature statistics.' %
                   custom_stats_name)


def _pop_deprecated_count(msg: message.Message, field_name: Text,
                          field_number: int) -> Optional[int]:
  """Returns and clears the deprecated count of a message, if it has one."""
  if field_name in msg.DESCRIPTOR.fields_by_name:
    value = getattr(msg, field_name)
    msg.ClearField(field_name)
    return value or None
  # Schema revisions that reserve the deprecated field number keep its value
  # as an unknown field when parsing.
  value = None
  for field in unknown_fields.UnknownFieldSet(msg):
    if (field.field_number == field_number and
        field.wire_type == _WIRETYPE_VARINT):
      value = field.data
  return value or None


def _canonicalize(msg: message.Message) -> None:
  full_name = msg.DESCRIPTOR.full_name
  for suffix, (current, deprecated, number) in (
      _DEPRECATED_COUNT_FIELDS.items()):
    if full_name.endswith('.' + suffix):
      deprecated_value = _pop_deprecated_count(msg, deprecated, number)
      # The current field wins when both are set.
      if deprecated_value is not None and not getattr(msg, current):
        setattr(msg, current, float(deprecated_value))
      break
  for field, value in msg.ListFields():
    if field.message_type is None:
      continue
    if field.message_type.GetOptions().map_entry:
      continue
    if isinstance(value, message.Message):
      _canonicalize(value)
    else:
      for item in value:
        _canonicalize(item)


def canonicalize_deprecated_fields(msg: message.Message) -> message.Message:
  """Moves deprecated integer counts into their replacement fields.

  A deprecated count (`deprecated_freq`, `deprecated_count`) is copied into
  the current field (`frequency`, `sample_count`) only when the current field
  is unset; when both are present the current field takes precedence. The
  deprecated fields are cleared in either case.

  Args:
    msg: A statistics proto (typically a DatasetFeatureStatisticsList),
      updated in place.

  Returns:
    The same proto, for convenience.
  """
  _canonicalize(msg)
  msg.DiscardUnknownFields()
  return msg
