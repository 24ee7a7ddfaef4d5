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
"""Assertions for comparing feature statistics protos in tests.

Floating point fields are compared after rounding to a fixed number of
significant digits. Features are matched by path and custom statistics by name,
so neither needs to appear in a particular order.
"""

import traceback
from typing import Callable, Iterable, Tuple

from absl.testing import absltest
from apache_beam.testing import util
from feature_stats.utils import stats_util
from google.protobuf import message
from google.protobuf import text_format
from tensorflow_metadata.proto.v0 import statistics_pb2

# Number of significant digits kept when comparing floating point fields.
_SIGNIFICANT_DIGITS = 6

_COMMON_STATS_HISTOGRAMS = ('num_values_histogram',
                            'feature_list_length_histogram')


def _copy(msg: message.Message) -> message.Message:
  return type(msg).FromString(msg.SerializeToString(deterministic=True))


def _clear_if_set(msg: message.Message, field_name: str) -> bool:
  if any(field.name == field_name for field, _ in msg.ListFields()):
    msg.ClearField(field_name)
    return True
  return False


def _without_histograms(
    dataset: statistics_pb2.DatasetFeatureStatistics
) -> Tuple[statistics_pb2.DatasetFeatureStatistics, bool]:
  """Returns a copy of `dataset` without histograms and whether it had any."""
  result = _copy(dataset)
  found = False
  for feature in result.features:
    stats_kind = feature.WhichOneof('stats')
    if stats_kind is None:
      continue
    stats = getattr(feature, stats_kind)
    if stats_kind == 'num_stats':
      found |= _clear_if_set(stats, 'histograms')
      found |= _clear_if_set(stats.weighted_numeric_stats, 'histograms')
    for field_name in _COMMON_STATS_HISTOGRAMS:
      found |= _clear_if_set(stats.common_stats, field_name)
  return result, found


def normalize_numbers(msg: message.Message) -> message.Message:
  """Rounds every floating point field of a proto, in place."""
  for field, value in msg.ListFields():
    if field.message_type is not None:
      if field.message_type.GetOptions().map_entry:
        continue
      if isinstance(value, message.Message):
        normalize_numbers(value)
      else:
        for item in value:
          normalize_numbers(item)
    elif isinstance(value, float):
      setattr(msg, field.name,
              float('%.*g' % (_SIGNIFICANT_DIGITS, value)))
  return msg


def assert_proto_equal(test: absltest.TestCase, expected: message.Message,
                       actual: message.Message) -> None:
  """Asserts that two protos are equal up to floating point rounding."""
  expected = normalize_numbers(_copy(expected))
  actual = normalize_numbers(_copy(actual))
  test.assertEqual(
      expected, actual, 'Expected:\n{}\nActual:\n{}'.format(
          text_format.MessageToString(expected),
          text_format.MessageToString(actual)))


def _sort_custom_stats(feature: statistics_pb2.FeatureNameStatistics) -> None:
  ordered = sorted((_copy(stat) for stat in feature.custom_stats),
                   key=lambda stat: stat.name)
  del feature.custom_stats[:]
  feature.custom_stats.extend(ordered)


def assert_feature_proto_equal(
    test: absltest.TestCase, actual: statistics_pb2.FeatureNameStatistics,
    expected: statistics_pb2.FeatureNameStatistics) -> None:
  """Asserts feature protos are equal, ignoring the order of custom stats."""
  actual = _copy(actual)
  expected = _copy(expected)
  test.assertCountEqual(
      [stat.name for stat in expected.custom_stats],
      [stat.name for stat in actual.custom_stats],
      'Custom statistics differ for feature %s.' %
      stats_util.get_feature_path(expected))
  _sort_custom_stats(actual)
  _sort_custom_stats(expected)
  assert_proto_equal(test, expected, actual)


def assert_dataset_feature_stats_proto_equal(
    test: absltest.TestCase,
    actual: statistics_pb2.DatasetFeatureStatistics,
    expected: statistics_pb2.DatasetFeatureStatistics,
    check_histograms: bool = True) -> None:
  """Compares DatasetFeatureStatistics protos, ignoring the feature order.

  Args:
    test: The test case.
    actual: The actual DatasetFeatureStatistics proto.
    expected: The expected DatasetFeatureStatistics proto.
    check_histograms: If False, histograms of `actual` are ignored and
      `expected` must not specify any.

  Raises:
    ValueError: If `expected` has histograms and `check_histograms` is False.
  """
  if not check_histograms:
    expected, expected_has_histograms = _without_histograms(expected)
    if expected_has_histograms:
      raise ValueError(
          'Histograms set in expected result with check_histogram=False.')
    actual, _ = _without_histograms(actual)
  test.assertEqual(expected.name, actual.name, 'Dataset names differ.')
  test.assertEqual(expected.num_examples, actual.num_examples,
                   'num_examples differ in dataset %s.' % actual.name)
  test.assertAlmostEqual(expected.weighted_num_examples,
                         actual.weighted_num_examples)

  expected_by_path = {
      stats_util.get_feature_path(feature): feature
      for feature in expected.features
  }
  test.assertLen(actual.features, len(expected_by_path))
  for feature in actual.features:
    feature_path = stats_util.get_feature_path(feature)
    if feature_path not in expected_by_path:
      raise AssertionError(
          'Feature path %s found in actual but not found in expected.' %
          feature_path)
    assert_feature_proto_equal(test, feature, expected_by_path[feature_path])


def make_dataset_feature_stats_list_proto_equal_fn(
    test: absltest.TestCase,
    expected_result: statistics_pb2.DatasetFeatureStatisticsList,
    check_histograms: bool = True
) -> Callable[[Iterable[statistics_pb2.DatasetFeatureStatisticsList]], None]:
  """Makes a `beam.testing.util.assert_that` matcher for a single stats list.

  Datasets are matched by name. Failures are raised as BeamAssertException.
  """

  def _matcher(actual: Iterable[statistics_pb2.DatasetFeatureStatisticsList]):
    try:
      actual = list(actual)
      test.assertLen(actual, 1,
                     'Expected exactly 1 DatasetFeatureStatisticsList')
      actual_datasets = sorted(actual[0].datasets, key=lambda d: d.name)
      expected_datasets = sorted(expected_result.datasets,
                                 key=lambda d: d.name)
      test.assertEqual([d.name for d in expected_datasets],
                       [d.name for d in actual_datasets])
      for actual_dataset, expected_dataset in zip(actual_datasets,
                                                  expected_datasets):
        assert_dataset_feature_stats_proto_equal(test, actual_dataset,
                                                 expected_dataset,
                                                 check_histograms)
    except AssertionError as e:
      raise util.BeamAssertException(traceback.format_exc()) from e

  return _matcher
