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
"""Types."""
import collections
from typing import Any, Dict, List, Mapping, Optional, Text, Tuple, Union

import apache_beam as beam
import pyarrow as pa
from feature_stats.utils import path

FeatureName = path.FeatureName

FeaturePath = path.FeaturePath

FeaturePathTuple = path.FeaturePathTuple

# Anything that identifies a feature: a flat name, a sequence of steps or a
# FeaturePath.
FeatureIdentity = Union[FeatureName, FeaturePath, Tuple[FeatureName, ...]]

# Feature type enum value.
FeatureNameStatisticsType = int

# Name of a dataset in a DatasetFeatureStatisticsList.
DatasetName = Text

# A single feature value as found in an input example. Mappings represent
# struct values, nested lists represent feature lists.
FeatureValue = Any

# The values of one feature in one example.
ValueList = Optional[List[FeatureValue]]


class FeatureObservation(
    collections.namedtuple('FeatureObservation', ['values', 'weight'])):
  """The values of a feature in an example with a feature-specific weight.

  A weight of None falls back to the weight of the example.
  """
  __slots__ = ()

  def __new__(cls, values: ValueList, weight: Optional[float] = None):
    return super(FeatureObservation, cls).__new__(cls, values, weight)


# One input example: a mapping from feature identity to the feature's values
# (or a FeatureObservation carrying its own weight).
Example = Mapping[FeatureIdentity, Union[ValueList, FeatureValue,
                                         FeatureObservation]]

# An example tagged with the name of the dataset it belongs to.
DatasetExample = Tuple[DatasetName, Example]

# Declared feature types keyed by feature identity.
FeatureTypes = Dict[FeatureIdentity, FeatureNameStatisticsType]

# Do not use multiple threads to encode record batches, as parallelism
# should be managed by beam.
_ARROW_CODER_IPC_OPTIONS = pa.ipc.IpcWriteOptions(use_threads=False)


class _ArrowRecordBatchCoder(beam.coders.Coder):
  """Custom coder for Arrow record batches."""

  def encode(self, value: pa.RecordBatch) -> bytes:
    sink = pa.BufferOutputStream()
    writer = pa.ipc.new_stream(
        sink, value.schema, options=_ARROW_CODER_IPC_OPTIONS)
    writer.write_batch(value)
    writer.close()
    return sink.getvalue().to_pybytes()

  def decode(self, encoded: bytes) -> pa.RecordBatch:
    reader = pa.ipc.open_stream(encoded)
    result = reader.read_next_batch()
    try:
      reader.read_next_batch()
    except StopIteration:
      pass
    else:
      raise ValueError("Expected only one RecordBatch in the stream.")
    return result

  def to_type_hint(self):
    return pa.RecordBatch


beam.coders.typecoders.registry.register_coder(pa.RecordBatch,
                                               _ArrowRecordBatchCoder)
