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

"""Constants used in the feature statistics library."""

# Name of the dataset used when the caller does not provide one.
DEFAULT_DATASET_NAME = 'All Examples'

# Namespace for all metrics.
METRICS_NAMESPACE = 'tfx.FeatureStatistics'

# Placeholder for non-utf8 sequences in top-k results.
NON_UTF8_PLACEHOLDER = '__BYTES_VALUE__'

# Custom statistic holding the number of values whose type differs from the
# type chosen for the feature.
CONFLICTING_TYPE_VALUES_CUSTOM_STATS_NAME = 'conflicting_type_values'

# Custom statistic holding the estimated number of unique values once the
# exact unique tracking cap was exceeded.
UNIQUES_SKETCH_CUSTOM_STATS_NAME = 'uniques_sketch_num_uniques'

# Custom statistic holding the relative rank error bound of approximate
# quantiles.
QUANTILES_ERROR_BOUND_CUSTOM_STATS_NAME = 'quantiles_rank_error_bound'

# Custom statistic describing why partial statistics could not be merged.
MERGE_ERROR_CUSTOM_STATS_NAME = 'merge_error'

# Custom statistic marking the features of a dataset whose aggregation failed
# part way.
PARTIAL_RESULT_CUSTOM_STATS_NAME = 'partial_result'

# Default size of the K-Minimum-Values sketch used to estimate uniques.
DEFAULT_KMV_SKETCH_SIZE = 16384
