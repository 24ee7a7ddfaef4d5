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
"""Init module for Feature Statistics."""

# Import stats API.
from feature_stats.api.stats_api import GenerateStatistics

# Import the aggregation engine.
from feature_stats.statistics.dataset_aggregator import (
    StatisticsAggregator,
    merge_aggregators,
)

# Import stats options.
from feature_stats.statistics.stats_options import StatsOptions

# Import FeaturePath and FeatureObservation.
from feature_stats.types import FeatureObservation, FeaturePath

# Import stats lib.
from feature_stats.utils.stats_gen_lib import (
    generate_statistics_from_dataframe,
    generate_statistics_from_record_batch,
    generate_statistics_in_memory,
)

# Import stats utilities.
from feature_stats.utils.stats_util import (
    canonicalize_deprecated_fields,
    get_custom_stats,
    get_feature_stats,
)

# Import version string.
from feature_stats.version import __version__
