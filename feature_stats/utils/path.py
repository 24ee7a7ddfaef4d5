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
"""Addresses features inside (possibly nested) examples.

A top-level feature is addressed by a single step holding its name. The values
of a struct feature are addressed by appending the struct key to the path of
the struct, so `FeaturePath(['user', 'age'])` is the `age` child of `user`.
Statistics protos carry the same steps in a `tensorflow.metadata.v0.Path`.
"""

import functools
import json
from typing import Iterable, Iterator, Tuple, Union

from tensorflow_metadata.proto.v0 import path_pb2


FeatureName = str

# Raw steps of a FeaturePath, used as dictionary keys in hot loops.
FeaturePathTuple = Tuple[FeatureName, ...]

_SEPARATOR = "."


@functools.total_ordering
class FeaturePath(object):
  """An immutable sequence of feature names from the example root."""

  __slots__ = ["_steps"]

  def __init__(self, steps: Iterable[FeatureName]):
    self._steps = tuple(steps)

  # Construction.

  @classmethod
  def coerce(
      cls, feature: Union["FeaturePath", FeatureName, bytes,
                          Iterable[FeatureName]]
  ) -> "FeaturePath":
    """Builds a path from a name, raw utf-8 name, sequence of names or path."""
    if isinstance(feature, cls):
      return feature
    if isinstance(feature, bytes):
      feature = feature.decode("utf-8")
    if isinstance(feature, str):
      return cls((feature,))
    steps = tuple(feature)
    non_strings = [s for s in steps if not isinstance(s, str)]
    if non_strings:
      raise TypeError("Feature path steps must be strings, found %r in %r." %
                      (non_strings[0], steps))
    return cls(steps)

  @classmethod
  def from_proto(cls, path_proto: path_pb2.Path) -> "FeaturePath":
    return cls(path_proto.step)

  @classmethod
  def from_json(cls, path_json: str) -> "FeaturePath":
    """Parses the output of `to_json`."""
    steps = json.loads(path_json)
    if not (isinstance(steps, list) and
            all(isinstance(s, str) for s in steps)):
      raise TypeError("Invalid FeaturePath json: %s" % path_json)
    return cls(steps)

  # Serialization.

  def to_proto(self) -> path_pb2.Path:
    return path_pb2.Path(step=self._steps)

  def to_json(self) -> str:
    return json.dumps(list(self._steps))

  # Navigation.

  def steps(self) -> FeaturePathTuple:
    return self._steps

  def parent(self) -> "FeaturePath":
    if not self._steps:
      raise ValueError("Root does not have parent.")
    return FeaturePath(self._steps[:-1])

  def child(self, child_step: FeatureName) -> "FeaturePath":
    return FeaturePath(self._steps + (child_step,))

  def ancestors(self) -> Iterator["FeaturePath"]:
    """Yields the non-root prefixes of this path, shortest first."""
    for depth in range(1, len(self._steps) + 1):
      yield FeaturePath(self._steps[:depth])

  # Value semantics.

  def __eq__(self, other) -> bool:
    if isinstance(other, FeaturePath):
      return self._steps == other._steps  # pylint: disable=protected-access
    return NotImplemented

  def __lt__(self, other) -> bool:
    if isinstance(other, FeaturePath):
      return self._steps < other._steps  # pylint: disable=protected-access
    return NotImplemented

  def __hash__(self) -> int:
    return hash(self._steps)

  def __len__(self) -> int:
    return len(self._steps)

  def __bool__(self) -> bool:
    return len(self._steps) > 0

  def __str__(self) -> str:
    return _SEPARATOR.join(self._steps)

  def __repr__(self) -> str:
    return "FeaturePath(%r)" % (list(self._steps),)

  def __reduce__(self):
    return (FeaturePath, (self._steps,))
