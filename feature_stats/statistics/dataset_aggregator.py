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
"""Aggregates per-feature statistics over the examples of named datasets.

The StatisticsAggregator routes the features of each example to per-feature
accumulators, recursing into struct values so that each child is tracked under
its own path. Aggregators built over disjoint shards of the input can be merged
in any order; the finalized statistics are identical, except for features that
outgrow `max_unique_values` or the `epsilon` memory bound, whose sketched
statistics agree within the error bounds of the sketches.

An example that cannot be aggregated (for instance because of an invalid weight
or an unsupported value) is skipped without affecting any statistic. Its dataset
is then reported as partial, and every feature of the dataset carries a
`partial_result` custom statistic describing the failure.
"""

import collections
import collections.abc
import copy
import fractions
import logging
from typing import Dict, Iterable, List, Optional, Tuple

import apache_beam as beam
from feature_stats import constants
from feature_stats import types
from feature_stats.statistics import feature_accumulator
from feature_stats.statistics import stats_options as options
from feature_stats.utils import example_weight_map
from feature_stats.utils import variance_util
from tensorflow_metadata.proto.v0 import statistics_pb2

_INVALID_EXAMPLES_COUNTER = beam.metrics.Metrics.counter(
    constants.METRICS_NAMESPACE, 'num_invalid_examples')
_FAILED_FEATURES_COUNTER = beam.metrics.Metrics.counter(
    constants.METRICS_NAMESPACE, 'num_failed_feature_finalizations')

# The classified values of a feature in an example and the weight they carry.
_FeatureUpdate = collections.namedtuple(
    '_FeatureUpdate', ['feature_path', 'values', 'weight'])


class _PresenceCounter(object):
  """Counts the examples in which an untracked struct feature is present."""

  __slots__ = ['num_non_missing', 'weighted_num_non_missing']

  def __init__(self):
    self.num_non_missing = 0
    self.weighted_num_non_missing = variance_util.ExactSum()

  def add(self, weight: float) -> None:
    self.num_non_missing += 1
    self.weighted_num_non_missing.add(weight)

  def merge(self, other: '_PresenceCounter') -> None:
    self.num_non_missing += other.num_non_missing
    self.weighted_num_non_missing.merge(other.weighted_num_non_missing)


class _DatasetAccumulator(object):
  """Holds partial statistics for all the features of a dataset."""

  __slots__ = [
      'num_examples', 'weighted_num_examples', 'has_weights', 'features',
      'presence', 'next_ordinal', 'num_failures', 'first_failure'
  ]

  def __init__(self):
    self.num_examples = 0
    self.weighted_num_examples = variance_util.ExactSum()
    # Whether any example or feature carried an explicit weight.
    self.has_weights = False
    self.features = {
    }  # type: Dict[types.FeaturePath, feature_accumulator.FeatureAccumulator]
    # Presence of the untracked struct features with allowlisted children.
    self.presence = {}  # type: Dict[types.FeaturePath, _PresenceCounter]
    self.next_ordinal = 0
    # The number of examples or features that could not be aggregated, and
    # the smallest error message among them.
    self.num_failures = 0
    self.first_failure = None  # type: Optional[str]

  def record_failure(self, message: str) -> None:
    self.num_failures += 1
    if self.first_failure is None or message < self.first_failure:
      self.first_failure = message

  def merge_with(self, other: '_DatasetAccumulator') -> None:
    self.num_examples += other.num_examples
    self.weighted_num_examples.merge(other.weighted_num_examples)
    self.has_weights = self.has_weights or other.has_weights
    for feature_path, other_feature in other.features.items():
      feature = self.features.get(feature_path)
      if feature is None:
        self.features[feature_path] = copy.deepcopy(other_feature)
      else:
        feature.merge(other_feature)
    for feature_path, other_presence in other.presence.items():
      presence = self.presence.get(feature_path)
      if presence is None:
        self.presence[feature_path] = copy.deepcopy(other_presence)
      else:
        presence.merge(other_presence)
    self.next_ordinal = max(self.next_ordinal, other.next_ordinal)
    self.num_failures += other.num_failures
    if other.first_failure is not None:
      self.record_failure(other.first_failure)
      # record_failure counted it a second time.
      self.num_failures -= 1


class StatisticsAggregator(object):
  """Computes feature statistics over examples grouped in named datasets."""

  def __init__(self, stats_options: Optional[options.StatsOptions] = None):
    if stats_options is None:
      stats_options = options.StatsOptions()
    if not isinstance(stats_options, options.StatsOptions):
      raise TypeError('stats_options is of type %s, should be a '
                      'StatsOptions.' % type(stats_options).__name__)
    self._options = stats_options
    self._weight_map = stats_options.example_weight_map
    self._feature_types = stats_options.feature_types or {}
    self._allowlist = None
    if stats_options.feature_allowlist is not None:
      self._allowlist = frozenset(
          types.FeaturePath.coerce(f) for f in stats_options.feature_allowlist)
    # Struct features whose presence is needed by an allowlisted child.
    self._allowlist_parents = frozenset(
        ancestor for feature_path in self._allowlist or ()
        for ancestor in feature_path.ancestors() if ancestor != feature_path)
    self._datasets = {}  # type: Dict[types.DatasetName, _DatasetAccumulator]

  @property
  def options(self) -> options.StatsOptions:
    return self._options

  @property
  def dataset_names(self) -> List[types.DatasetName]:
    return sorted(self._datasets)

  @property
  def partial_datasets(self) -> List[types.DatasetName]:
    """Names of the datasets in which some examples could not be aggregated."""
    return sorted(name for name, dataset in self._datasets.items()
                  if dataset.num_failures)

  def _dataset(self, dataset_name: types.DatasetName) -> _DatasetAccumulator:
    dataset = self._datasets.get(dataset_name)
    if dataset is None:
      dataset = _DatasetAccumulator()
      self._datasets[dataset_name] = dataset
    return dataset

  def _is_allowed(self, feature_path: types.FeaturePath) -> bool:
    if self._allowlist is None:
      return True
    return any(ancestor in self._allowlist
               for ancestor in feature_path.ancestors())

  def _example_weight(self, example: types.Example,
                      weight: Optional[float]) -> Tuple[float, bool]:
    """Returns the weight of an example and whether weights are in use."""
    if weight is not None:
      return example_weight_map.validate_weight(weight, 'Example weight'), True
    weight_feature = self._weight_map.get(types.FeaturePath([]))
    if weight_feature is not None:
      return example_weight_map.get_weight(example, weight_feature), True
    return 1.0, self._weight_map.has_weights()

  def _prepare(
      self, example: types.Example, weight: Optional[float]
  ) -> Tuple[float, bool, List[_FeatureUpdate]]:
    """Validates an example and classifies its values.

    Args:
      example: An input example.
      weight: The optional weight of the example.

    Returns:
      A tuple of the example weight, whether any weight was explicit, and the
      updates to apply to the feature accumulators. An update without values
      only records the presence of an untracked struct feature.

    Raises:
      TypeError: If the example or a feature name is of the wrong type.
      ValueError: If a weight or a value is invalid.
    """
    if not isinstance(example, collections.abc.Mapping):
      raise TypeError('Example is of type %s, should be a mapping.' %
                      type(example).__name__)
    example_weight, explicit_weight = self._example_weight(example, weight)
    updates = []
    seen = set()
    pending = []
    for feature, values in example.items():
      pending.append((types.FeaturePath.coerce(feature), values, None))
    while pending:
      feature_path, values, observed_weight = pending.pop(0)
      if feature_path in seen:
        raise ValueError('Feature %s appears more than once in an example.' %
                         feature_path)
      seen.add(feature_path)
      if isinstance(values, types.FeatureObservation):
        if values.weight is not None:
          observed_weight = example_weight_map.validate_weight(
              values.weight, 'Weight of feature %s' % feature_path)
          explicit_weight = True
        values = values.values
      feature_weight = observed_weight
      if feature_weight is None:
        # Children inherit overrides through the weight map.
        feature_weight = example_weight
        weight_feature = self._weight_map.get(feature_path)
        if weight is None and weight_feature is not None:
          feature_weight = example_weight_map.get_weight(example,
                                                         weight_feature)
      classified = feature_accumulator.classify_values(values)
      if self._is_allowed(feature_path):
        updates.append(_FeatureUpdate(feature_path, classified,
                                      feature_weight))
      elif feature_path in self._allowlist_parents and classified.num_values:
        # Only the presence of the feature is recorded.
        updates.append(_FeatureUpdate(feature_path, None, feature_weight))
      children = collections.OrderedDict()
      for struct in classified.structs:
        for child_name, child_values in struct.items():
          if not isinstance(child_name, str):
            raise TypeError('Struct keys must be str, found %r in feature %s.' %
                            (child_name, feature_path))
          merged = children.setdefault(child_name, [])
          if isinstance(child_values, types.FeatureObservation):
            raise TypeError('Struct children of feature %s cannot carry '
                            'their own weight.' % feature_path)
          merged.extend(feature_accumulator.as_list(child_values))
      for child_name, child_values in children.items():
        pending.append(
            (feature_path.child(child_name), child_values, observed_weight))
    return example_weight, explicit_weight, updates

  def add_example(self,
                  dataset_name: types.DatasetName,
                  example: types.Example,
                  weight: Optional[float] = None) -> bool:
    """Adds one example to the statistics of a dataset.

    Args:
      dataset_name: The name of the dataset the example belongs to.
      example: A mapping from feature name or path to the feature's value list,
        or to a FeatureObservation carrying a feature-specific weight. Struct
        values are mappings from child names to value lists.
      weight: The weight of the example. If None, the weight is read from the
        weight feature of the options, or defaults to 1.

    Returns:
      Whether the example was aggregated. Invalid examples are skipped and
      mark the dataset as partial.
    """
    dataset = self._dataset(dataset_name)
    try:
      example_weight, explicit_weight, updates = self._prepare(example, weight)
    except (TypeError, ValueError) as e:
      logging.warning('Skipping an example of dataset %s: %s', dataset_name, e)
      _INVALID_EXAMPLES_COUNTER.inc()
      dataset.record_failure(str(e))
      return False

    dataset.num_examples += 1
    dataset.weighted_num_examples.add(example_weight)
    dataset.has_weights = dataset.has_weights or explicit_weight
    for update in updates:
      if update.values is None:
        presence = dataset.presence.get(update.feature_path)
        if presence is None:
          presence = _PresenceCounter()
          dataset.presence[update.feature_path] = presence
        presence.add(update.weight)
        continue
      accumulator = dataset.features.get(update.feature_path)
      if accumulator is None:
        accumulator = feature_accumulator.FeatureAccumulator(
            update.feature_path,
            self._options,
            declared_type=self._feature_types.get(update.feature_path),
            first_seen=dataset.next_ordinal)
        dataset.next_ordinal += 1
        dataset.features[update.feature_path] = accumulator
      accumulator.update(update.values, update.weight)
    return True

  def add_examples(self, dataset_name: types.DatasetName,
                   examples: Iterable[types.Example]) -> None:
    # The dataset is reported even if it has no examples.
    self._dataset(dataset_name)
    for example in examples:
      self.add_example(dataset_name, example)

  def merge(self, other: 'StatisticsAggregator') -> 'StatisticsAggregator':
    """Merges another aggregator into this one and returns this one."""
    for dataset_name, other_dataset in other._datasets.items():  # pylint: disable=protected-access
      dataset = self._datasets.get(dataset_name)
      if dataset is None:
        self._datasets[dataset_name] = copy.deepcopy(other_dataset)
      else:
        dataset.merge_with(other_dataset)
    return self

  def compact(self) -> None:
    """Compacts the sketches of every feature before the accumulator is sent."""
    for dataset in self._datasets.values():
      for accumulator in dataset.features.values():
        accumulator.compact()

  def _ordered_feature_paths(
      self, dataset: _DatasetAccumulator) -> List[types.FeaturePath]:
    result = []
    for feature in self._options.feature_order or []:
      feature_path = types.FeaturePath.coerce(feature)
      if feature_path in dataset.features and feature_path not in result:
        result.append(feature_path)
    ordered = set(result)
    result.extend(
        sorted((p for p in dataset.features if p not in ordered),
               key=lambda p: (dataset.features[p].first_seen, p.steps())))
    return result

  def _make_dataset_proto(
      self, dataset_name: types.DatasetName,
      dataset: _DatasetAccumulator) -> statistics_pb2.DatasetFeatureStatistics:
    """Convert the partial dataset statistics into its proto."""
    result = statistics_pb2.DatasetFeatureStatistics()
    result.name = dataset_name
    result.num_examples = dataset.num_examples
    result.weighted_num_examples = float(dataset.weighted_num_examples)
    weighted_num_examples = dataset.weighted_num_examples.as_fraction()
    num_failures = dataset.num_failures
    first_failure = dataset.first_failure
    for feature_path in self._ordered_feature_paths(dataset):
      accumulator = dataset.features[feature_path]
      num_examples, weighted_context = _presence_context(
          dataset, feature_path, weighted_num_examples)
      try:
        feature_stats = accumulator.finalize(dataset.has_weights, num_examples,
                                             weighted_context)
      except Exception as e:  # pylint: disable=broad-except
        logging.exception('Unable to compute statistics of feature %s in '
                          'dataset %s.', feature_path, dataset_name)
        _FAILED_FEATURES_COUNTER.inc()
        num_failures += 1
        message = 'Feature %s: %s' % (feature_path, e)
        if first_failure is None or message < first_failure:
          first_failure = message
        continue
      result.features.add().CopyFrom(feature_stats)
    if num_failures:
      marker = ('%d example(s) or feature(s) could not be aggregated: %s' %
                (num_failures, first_failure))
      for feature_stats in result.features:
        feature_stats.custom_stats.add(
            name=constants.PARTIAL_RESULT_CUSTOM_STATS_NAME, str=marker)
    return result

  def finalize(self) -> statistics_pb2.DatasetFeatureStatisticsList:
    """Materializes the statistics of all the datasets, sorted by name."""
    result = statistics_pb2.DatasetFeatureStatisticsList()
    for dataset_name in sorted(self._datasets):
      result.datasets.add().CopyFrom(
          self._make_dataset_proto(dataset_name,
                                   self._datasets[dataset_name]))
    return result


def _presence_context(
    dataset: _DatasetAccumulator, feature_path: types.FeaturePath,
    weighted_num_examples: fractions.Fraction
) -> Tuple[Optional[int], Optional[fractions.Fraction]]:
  """Returns the number (and weight) of examples a feature could be present in.

  Top level features could be present in every example. Children of a struct
  feature could be present in the examples in which the struct is present,
  whether or not the struct itself is tracked.

  Args:
    dataset: The partial statistics of the dataset.
    feature_path: The path of the feature.
    weighted_num_examples: The total weight of the examples of the dataset.

  Returns:
    A tuple of the number of examples and their total weight, or (None, None)
    if the parent of a nested feature was never seen.
  """
  if len(feature_path) <= 1:
    return dataset.num_examples, weighted_num_examples
  parent_path = feature_path.parent()
  parent = dataset.features.get(parent_path)
  if parent is not None:
    presence = parent.common_stats
  else:
    presence = dataset.presence.get(parent_path)
    if presence is None:
      return None, None
  return (presence.num_non_missing,
          presence.weighted_num_non_missing.as_fraction())


def merge_aggregators(
    aggregators: Iterable[StatisticsAggregator]) -> StatisticsAggregator:
  """Merges aggregators by pairwise tree reduction.

  Args:
    aggregators: A non-empty iterable of aggregators. They are not modified.

  Returns:
    A new aggregator holding the merged statistics.

  Raises:
    ValueError: If there are no aggregators.
  """
  level = [copy.deepcopy(a) for a in aggregators]
  if not level:
    raise ValueError('At least one aggregator is required.')
  while len(level) > 1:
    next_level = []
    for i in range(0, len(level) - 1, 2):
      next_level.append(level[i].merge(level[i + 1]))
    if len(level) % 2:
      next_level.append(level[-1])
    level = next_level
  return level[0]
