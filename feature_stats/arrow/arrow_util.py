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
"""Util functions regarding to Arrow objects."""

from typing import Dict, List

import numpy as np
import pandas as pd
import pyarrow as pa
from feature_stats import types
from feature_stats.utils import stats_util


def is_list_like(data_type: pa.DataType) -> bool:
  """Returns true if an Arrow type is list-like."""
  return pa.types.is_list(data_type) or pa.types.is_large_list(data_type)


def get_feature_types(
    record_batch: pa.RecordBatch
) -> Dict[types.FeaturePath, types.FeatureNameStatisticsType]:
  """Returns the feature types implied by the Arrow types of a RecordBatch.

  Struct columns are recursed into, so that each field of a struct is typed
  under its own path. Columns of null type are left out, as their type cannot
  be determined.

  Args:
    record_batch: A pa.RecordBatch.

  Returns:
    A dict from feature path to statistics_pb2.FeatureNameStatistics.Type.

  Raises:
    TypeError: If a column has an unsupported Arrow type.
  """
  result = {}

  def _recursion_helper(feature_path: types.FeaturePath,
                        data_type: pa.DataType) -> None:
    feature_type = stats_util.get_feature_type_from_arrow_type(
        feature_path, data_type)
    if feature_type is None:
      return
    result[feature_path] = feature_type
    while is_list_like(data_type):
      data_type = data_type.value_type
    if pa.types.is_struct(data_type):
      for field in data_type:
        _recursion_helper(feature_path.child(field.name), field.type)

  for field in record_batch.schema:
    _recursion_helper(types.FeaturePath([field.name]), field.type)
  return result


def record_batch_to_examples(
    record_batch: pa.RecordBatch) -> List[types.Example]:
  """Converts a RecordBatch into a list of examples, one per row.

  Null values are left out of the examples, so they count as missing.

  Args:
    record_batch: A pa.RecordBatch whose columns hold lists of values (or
      single values) per row.

  Returns:
    A list of examples, mapping each feature name to the feature's values.
  """
  columns = record_batch.to_pydict()
  result = []
  for row in range(record_batch.num_rows):
    example = {}
    for name, values in columns.items():
      if values[row] is not None:
        example[name] = values[row]
    result.append(example)
  return result


def dataframe_to_record_batch(dataframe: pd.DataFrame) -> pa.RecordBatch:
  """Converts a DataFrame into a RecordBatch of list columns.

  Every non-null cell becomes a single-value list; null cells (None, NaN, NaT)
  become null lists so that they count as missing.

  Args:
    dataframe: A pandas DataFrame.

  Returns:
    A pa.RecordBatch with one list column per DataFrame column.
  """
  arrays = []
  for column in dataframe.columns:
    values = dataframe[column]
    mask = pd.isnull(values).to_numpy()
    if values.dtype.kind in 'biuf':
      flat_values = pa.array(values.to_numpy()[~mask])
    else:
      flat_values = pa.array(values[~mask].tolist())
    offsets = np.zeros(len(values) + 1, dtype=np.int32)
    offsets[1:] = np.cumsum(~mask)
    list_array = pa.ListArray.from_arrays(
        pa.array(offsets), flat_values,
        mask=pa.array(mask) if mask.any() else None)
    arrays.append(list_array)
  return pa.RecordBatch.from_arrays(arrays,
                                    [str(c) for c in dataframe.columns])
