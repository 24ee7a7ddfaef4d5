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
"""Tests for utilities for feature statistics protos."""

import struct

from absl.testing import absltest
from absl.testing import parameterized
import pyarrow as pa
from feature_stats import types
from feature_stats.utils import stats_util

from google.protobuf import text_format
from tensorflow_metadata.proto.v0 import statistics_pb2


class StatsUtilTest(parameterized.TestCase):

  @parameterized.named_parameters(
      ('int', pa.list_(pa.int64()), statistics_pb2.FeatureNameStatistics.INT),
      ('bool', pa.list_(pa.bool_()), statistics_pb2.FeatureNameStatistics.INT),
      ('float', pa.large_list(pa.float32()),
       statistics_pb2.FeatureNameStatistics.FLOAT),
      ('string', pa.list_(pa.list_(pa.string())),
       statistics_pb2.FeatureNameStatistics.STRING),
      ('bytes', pa.list_(pa.binary()),
       statistics_pb2.FeatureNameStatistics.BYTES),
      ('large_bytes', pa.list_(pa.large_binary()),
       statistics_pb2.FeatureNameStatistics.BYTES),
      ('struct', pa.list_(pa.struct([('x', pa.list_(pa.int64()))])),
       statistics_pb2.FeatureNameStatistics.STRUCT),
      ('null', pa.null(), None),
      ('list_of_null', pa.list_(pa.null()), None),
  )
  def test_get_feature_type_from_arrow_type(self, arrow_type, expected):
    self.assertEqual(
        expected,
        stats_util.get_feature_type_from_arrow_type(
            types.FeaturePath(['f']), arrow_type))

  def test_get_feature_type_from_unsupported_arrow_type(self):
    with self.assertRaisesRegex(TypeError, 'unsupported arrow type'):
      stats_util.get_feature_type_from_arrow_type(
          types.FeaturePath(['f']), pa.list_(pa.timestamp('s')))

  def test_maybe_get_utf8(self):
    self.assertEqual('café',
                     stats_util.maybe_get_utf8('café'.encode('utf-8')))
    self.assertIsNone(stats_util.maybe_get_utf8(b'\xff\xfe'))

  def test_set_and_get_feature_path(self):
    feature_stats = statistics_pb2.FeatureNameStatistics()
    stats_util.set_feature_path(feature_stats, types.FeaturePath(['a']))
    self.assertEqual('a', feature_stats.name)
    self.assertEqual(types.FeaturePath(['a']),
                     stats_util.get_feature_path(feature_stats))

    feature_stats = statistics_pb2.FeatureNameStatistics()
    stats_util.set_feature_path(feature_stats, types.FeaturePath(['a', 'b']))
    self.assertEqual('path', feature_stats.WhichOneof('field_id'))
    self.assertEqual(types.FeaturePath(['a', 'b']),
                     stats_util.get_feature_path(feature_stats))

  def test_get_feature_stats(self):
    stats = text_format.Parse(
        """
        features {
          name: "a"
          type: INT
        }
        features {
          path { step: "s" step: "x" }
          type: FLOAT
        }
        """, statistics_pb2.DatasetFeatureStatistics())
    self.assertEqual(statistics_pb2.FeatureNameStatistics.INT,
                     stats_util.get_feature_stats(stats, 'a').type)
    self.assertEqual(
        statistics_pb2.FeatureNameStatistics.FLOAT,
        stats_util.get_feature_stats(stats, types.FeaturePath(['s',
                                                               'x'])).type)
    self.assertEqual(statistics_pb2.FeatureNameStatistics.FLOAT,
                     stats_util.get_feature_stats(stats, ('s', 'x')).type)

  def test_get_feature_stats_not_found(self):
    with self.assertRaisesRegex(ValueError, 'Feature b not found'):
      stats_util.get_feature_stats(
          statistics_pb2.DatasetFeatureStatistics(), 'b')

  def test_get_feature_stats_invalid_input(self):
    with self.assertRaisesRegex(TypeError, 'should be a '
                                'DatasetFeatureStatistics proto'):
      stats_util.get_feature_stats({}, 'a')

  def test_get_custom_stats(self):
    feature_stats = text_format.Parse(
        """
        name: "a"
        custom_stats {
          name: "n"
          num: 3.0
        }
        custom_stats {
          name: "s"
          str: "text"
        }
        """, statistics_pb2.FeatureNameStatistics())
    self.assertEqual(3.0, stats_util.get_custom_stats(feature_stats, 'n'))
    self.assertEqual('text', stats_util.get_custom_stats(feature_stats, 's'))
    with self.assertRaisesRegex(ValueError, 'Custom statistics m not found'):
      stats_util.get_custom_stats(feature_stats, 'm')
    with self.assertRaisesRegex(TypeError, 'should be a '
                                'FeatureNameStatistics proto'):
      stats_util.get_custom_stats({}, 'n')


class CanonicalizeDeprecatedFieldsTest(absltest.TestCase):

  def _bucket_with_deprecated_count(self, count, sample_count=None):
    serialized = b'\x18' + bytes([count])
    if sample_count is not None:
      serialized += b'\x21' + struct.pack('<d', sample_count)
    bucket = statistics_pb2.Histogram.Bucket()
    bucket.MergeFromString(serialized)
    return bucket

  def test_deprecated_count_is_moved(self):
    bucket = self._bucket_with_deprecated_count(7)
    stats_util.canonicalize_deprecated_fields(bucket)
    self.assertEqual(7.0, bucket.sample_count)
    self.assertEqual(b'\x21' + struct.pack('<d', 7.0),
                     bucket.SerializeToString())

  def test_current_field_wins(self):
    bucket = self._bucket_with_deprecated_count(7, sample_count=2.0)
    stats_util.canonicalize_deprecated_fields(bucket)
    self.assertEqual(2.0, bucket.sample_count)
    self.assertEqual(b'\x21' + struct.pack('<d', 2.0),
                     bucket.SerializeToString())

  def test_nested_messages(self):
    histogram = statistics_pb2.Histogram()
    histogram.buckets.add().MergeFromString(
        self._bucket_with_deprecated_count(5).SerializeToString())
    stats_list = statistics_pb2.DatasetFeatureStatisticsList()
    feature = stats_list.datasets.add().features.add(name='a')
    feature.num_stats.histograms.add().MergeFromString(
        histogram.SerializeToString())
    result = stats_util.canonicalize_deprecated_fields(stats_list)
    self.assertIs(stats_list, result)
    self.assertEqual(
        5.0,
        result.datasets[0].features[0].num_stats.histograms[0].buckets[0]
        .sample_count)


if __name__ == '__main__':
  absltest.main()
