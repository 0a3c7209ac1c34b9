# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 Dashsync Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Version information for dashsync.

Single source of truth for the package version.
"""

__version__ = "0.3.0"


def get_version() -> str:
    """Return the current application version."""
    return __version__
