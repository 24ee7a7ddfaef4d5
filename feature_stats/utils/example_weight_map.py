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
"""Resolves and reads example weights.

A dataset may be weighted by a single weight feature, by per-feature weight
features, or both. `ExampleWeightMap` answers which weight feature applies to a
feature path; `get_weight` reads that feature's value out of an example.
"""

import math
from typing import Any, Mapping, Optional

import numpy as np
from feature_stats import types


class ExampleWeightMap(object):
  """Weight feature lookup by feature path.

  An override registered for a path also applies to everything nested below
  it, the deepest override winning. Paths without an override use the global
  weight feature, which may be None.
  """

  __slots__ = ['_default', '_overrides', '_has_weights']

  def __init__(
      self,
      weight_feature: Optional[types.FeatureName] = None,
      per_feature_override: Optional[Mapping[types.FeaturePath,
                                             types.FeatureName]] = None):
    self._default = weight_feature
    self._overrides = {}
    for feature_path, override in (per_feature_override or {}).items():
      self._overrides[types.FeaturePath.coerce(feature_path).steps()] = override
    self._has_weights = weight_feature is not None or bool(self._overrides)

  def get(self, feature_path: types.FeaturePath) -> Optional[types.FeatureName]:
    steps = feature_path.steps()
    for depth in range(len(steps), 0, -1):
      override = self._overrides.get(steps[:depth])
      if override is not None:
        return override
    return self._default

  def has_weights(self) -> bool:
    return self._has_weights


def validate_weight(weight: Any, description: str = 'weight') -> float:
  """Converts a weight to float, rejecting non-numeric or negative ones."""
  if isinstance(weight, (bool, str, bytes)):
    raise ValueError('%s must be numeric, found %r.' % (description, weight))
  try:
    weight_value = float(weight)
  except (TypeError, ValueError, OverflowError) as e:
    raise ValueError('%s must be numeric, found %r.' %
                     (description, weight)) from e
  if math.isnan(weight_value) or math.isinf(weight_value) or weight_value < 0:
    raise ValueError('%s must be finite and non-negative, found %r.' %
                     (description, weight))
  return weight_value


def get_weight(example: types.Example,
               weight_feature: types.FeatureName) -> float:
  """Reads the weight of `example` from `weight_feature`.

  The weight feature holds at most one value. An example where it is absent
  or empty weighs 1.

  Raises:
    ValueError: On several values or an invalid weight.
  """
  raw = example.get(weight_feature)
  if isinstance(raw, types.FeatureObservation):
    raw = raw.values
  if raw is None:
    return 1.0
  if isinstance(raw, np.ndarray):
    raw = raw.tolist()
  if not isinstance(raw, (list, tuple)):
    raw = [raw]
  if len(raw) > 1:
    raise ValueError(
        'Weight feature "%s" must have exactly one value, found %d.' %
        (weight_feature, len(raw)))
  return validate_weight(raw[0], weight_feature) if raw else 1.0
