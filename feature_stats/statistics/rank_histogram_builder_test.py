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
"""Tests for the rank histogram builder."""

from absl.testing import absltest
from feature_stats import constants
from feature_stats.statistics import rank_histogram_builder
from feature_stats.utils import test_util

from google.protobuf import text_format
from tensorflow_metadata.proto.v0 import statistics_pb2


def _add_all(builder, values, weight=1.0):
  for value in values:
    builder.add(value, weight)
  return builder


class RankHistogramBuilderTest(absltest.TestCase):

  def test_top_values_and_rank_histogram(self):
    builder = _add_all(rank_histogram_builder.RankHistogramBuilder(),
                       ['a', 'b', 'a', 'd', 'c', 'b', 'a'])
    top_values, histogram = builder.finalize(top_k=2)
    self.assertEqual([('a', 'a', 3), ('b', 'b', 2)],
                     [tuple(v) for v in top_values])
    expected_histogram = text_format.Parse(
        """
        buckets { low_rank: 1 high_rank: 2 label: "a" sample_count: 3.0 }
        buckets { low_rank: 2 high_rank: 3 label: "b" sample_count: 2.0 }
        buckets { low_rank: 3 high_rank: 4 label: "c" sample_count: 1.0 }
        buckets { low_rank: 4 high_rank: 5 label: "d" sample_count: 1.0 }
        """, statistics_pb2.RankHistogram())
    test_util.assert_proto_equal(self, expected_histogram, histogram)

  def test_ties_are_broken_by_label(self):
    builder = _add_all(rank_histogram_builder.RankHistogramBuilder(),
                       ['c', 'a', 'b'])
    self.assertEqual(['a', 'b', 'c'], [v.label for v in builder.ranked()])

  def test_weighted_ranking(self):
    builder = rank_histogram_builder.RankHistogramBuilder()
    _add_all(builder, ['a', 'a', 'a'], weight=1.0)
    _add_all(builder, ['b'], weight=5.0)
    self.assertEqual([('a', 3), ('b', 1)],
                     [(v.label, v.count) for v in builder.ranked()])
    self.assertEqual([('b', 5.0), ('a', 3.0)],
                     [(v.label, v.count) for v in builder.ranked(True)])
    _, histogram = builder.finalize(top_k=2, weighted=True)
    self.assertEqual([5.0, 3.0], [b.sample_count for b in histogram.buckets])

  def test_non_utf8_values(self):
    builder = _add_all(rank_histogram_builder.RankHistogramBuilder(),
                       [b'\xff', b'\xfe', b'abc'])
    ranked = builder.ranked()
    self.assertEqual([
        constants.NON_UTF8_PLACEHOLDER, constants.NON_UTF8_PLACEHOLDER, 'abc'
    ], [v.label for v in ranked])
    self.assertEqual([b'\xfe', b'\xff', b'abc'],
                     [v.feature_value for v in ranked])

  def test_bucket_width_and_num_buckets(self):
    builder = _add_all(rank_histogram_builder.RankHistogramBuilder(),
                       ['a', 'a', 'a', 'b', 'b', 'c', 'd'])
    _, histogram = builder.finalize(top_k=0, num_buckets=1, bucket_width=2)
    expected_histogram = text_format.Parse(
        """
        buckets { low_rank: 1 high_rank: 3 label: "a" sample_count: 5.0 }
        """, statistics_pb2.RankHistogram())
    test_util.assert_proto_equal(self, expected_histogram, histogram)

  def test_last_bucket_ends_after_lowest_rank(self):
    builder = _add_all(rank_histogram_builder.RankHistogramBuilder(),
                       ['a', 'a', 'b', 'c'])
    _, histogram = builder.finalize(top_k=0, bucket_width=2)
    self.assertEqual([(1, 3), (3, 4)],
                     [(b.low_rank, b.high_rank) for b in histogram.buckets])

  def test_max_unique_values_finds_heavy_hitter(self):
    values = ['hot'] * 100 + ['v%02d' % i for i in range(50)]
    shards = [values[i::3] for i in range(3)]

    def _merged(order):
      result = rank_histogram_builder.RankHistogramBuilder(
          max_unique_values=5)
      for i in order:
        result.merge(
            _add_all(
                rank_histogram_builder.RankHistogramBuilder(
                    max_unique_values=5), shards[i], weight=2.0))
      return result

    for order in ([0, 1, 2], [2, 1, 0], [1, 0, 2]):
      builder = _merged(order)
      self.assertTrue(builder.truncated)
      self.assertEqual((51, True), builder.num_unique())
      ranked = builder.ranked()
      self.assertLessEqual(len(ranked), 5)
      self.assertEqual('hot', ranked[0].label)
      # Misra-Gries undercounts by at most the total count over the cap + 1.
      self.assertBetween(ranked[0].count, 100 - 150 / 6, 100)
      weighted = builder.ranked(weighted=True)
      self.assertEqual('hot', weighted[0].label)
      self.assertBetween(weighted[0].count, 200 - 300 / 6, 200)

  def test_stays_exact_up_to_max_unique_values(self):
    builder = _add_all(
        rank_histogram_builder.RankHistogramBuilder(max_unique_values=3),
        ['a', 'b', 'c', 'a'])
    self.assertFalse(builder.truncated)
    self.assertEqual((3, False), builder.num_unique())
    builder.add('d')
    self.assertTrue(builder.truncated)
    self.assertEqual((4, True), builder.num_unique())
    self.assertLessEqual(len(builder.ranked()), 3)

  def test_merge_does_not_change_other(self):
    truncated = _add_all(
        rank_histogram_builder.RankHistogramBuilder(max_unique_values=2),
        ['a', 'b', 'c'])
    exact = _add_all(
        rank_histogram_builder.RankHistogramBuilder(max_unique_values=2),
        ['a'])
    exact.merge(truncated)
    self.assertTrue(exact.truncated)
    self.assertEqual((3, True), truncated.num_unique())

  def test_num_unique_exact(self):
    builder = _add_all(rank_histogram_builder.RankHistogramBuilder(),
                       ['a', 'b', 'a'])
    self.assertFalse(builder.truncated)
    self.assertEqual((2, False), builder.num_unique())

  def test_merge_is_order_independent(self):
    shards = [['a', 'b', 'b'], ['c', 'a'], ['b', 'd', 'a', 'a']]
    builders = [
        _add_all(rank_histogram_builder.RankHistogramBuilder(), shard)
        for shard in shards
    ]

    forward = rank_histogram_builder.RankHistogramBuilder()
    for builder in builders:
      forward.merge(builder)
    backward = rank_histogram_builder.RankHistogramBuilder()
    for builder in reversed(builders):
      backward.merge(builder)
    single = _add_all(rank_histogram_builder.RankHistogramBuilder(),
                      [v for shard in shards for v in shard])

    expected = single.finalize(top_k=3)
    self.assertEqual(expected, forward.finalize(top_k=3))
    self.assertEqual(expected, backward.finalize(top_k=3))


if __name__ == '__main__':
  absltest.main()
