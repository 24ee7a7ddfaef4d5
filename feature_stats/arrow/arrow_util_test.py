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
"""Tests for feature_stats.arrow.arrow_util."""

from absl.testing import absltest
import numpy as np
import pandas as pd
import pyarrow as pa
from feature_stats import types
from feature_stats.arrow import arrow_util

from tensorflow_metadata.proto.v0 import statistics_pb2


class ArrowUtilTest(absltest.TestCase):

  def test_get_feature_types(self):
    record_batch = pa.RecordBatch.from_arrays([
        pa.array([[1], [2, 3]], type=pa.list_(pa.int64())),
        pa.array([['a'], None], type=pa.list_(pa.binary())),
        pa.array([None, None], type=pa.null()),
        pa.array([[{'x': [1.0], 'y': ['v']}], None],
                 type=pa.list_(
                     pa.struct([('x', pa.list_(pa.float64())),
                                ('y', pa.list_(pa.string()))]))),
    ], ['i', 'b', 'n', 's'])
    self.assertEqual(
        {
            types.FeaturePath(['i']):
                statistics_pb2.FeatureNameStatistics.INT,
            types.FeaturePath(['b']):
                statistics_pb2.FeatureNameStatistics.BYTES,
            types.FeaturePath(['s']):
                statistics_pb2.FeatureNameStatistics.STRUCT,
            types.FeaturePath(['s', 'x']):
                statistics_pb2.FeatureNameStatistics.FLOAT,
            types.FeaturePath(['s', 'y']):
                statistics_pb2.FeatureNameStatistics.STRING,
        }, arrow_util.get_feature_types(record_batch))

  def test_get_feature_types_unsupported(self):
    record_batch = pa.RecordBatch.from_arrays(
        [pa.array([[1]], type=pa.list_(pa.timestamp('s')))], ['t'])
    with self.assertRaisesRegex(TypeError, 'unsupported arrow type'):
      arrow_util.get_feature_types(record_batch)

  def test_record_batch_to_examples(self):
    record_batch = pa.RecordBatch.from_arrays([
        pa.array([[1, 2], None, [3]]),
        pa.array([['a'], ['b', 'c'], None]),
    ], ['x', 'y'])
    self.assertEqual([
        {'x': [1, 2], 'y': ['a']},
        {'y': ['b', 'c']},
        {'x': [3]},
    ], arrow_util.record_batch_to_examples(record_batch))

  def test_dataframe_to_record_batch(self):
    dataframe = pd.DataFrame({
        'a': [1.0, np.nan, 3.0],
        'b': ['x', None, 'z'],
        'c': [1, 2, 3],
    })
    record_batch = arrow_util.dataframe_to_record_batch(dataframe)
    self.assertEqual(['a', 'b', 'c'], record_batch.schema.names)
    self.assertEqual(pa.list_(pa.float64()), record_batch.column(0).type)
    self.assertEqual(pa.list_(pa.string()), record_batch.column(1).type)
    self.assertEqual(pa.list_(pa.int64()), record_batch.column(2).type)
    self.assertEqual([[1.0], None, [3.0]], record_batch.column(0).to_pylist())
    self.assertEqual([['x'], None, ['z']], record_batch.column(1).to_pylist())
    self.assertEqual([[1], [2], [3]], record_batch.column(2).to_pylist())

  def test_dataframe_with_non_string_column_names(self):
    dataframe = pd.DataFrame({0: [True, False]})
    record_batch = arrow_util.dataframe_to_record_batch(dataframe)
    self.assertEqual(['0'], record_batch.schema.names)
    self.assertEqual([[True], [False]], record_batch.column(0).to_pylist())


if __name__ == '__main__':
  absltest.main()
