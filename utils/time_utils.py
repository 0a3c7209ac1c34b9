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
"""Time utilities for dashsync."""

import calendar
import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

logger = logging.getLogger("dashsync.utils.time_utils")


def now_utc() -> datetime:
    """Get current datetime with UTC timezone."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an RFC 3339 timestamp or an all-day ``YYYY-MM-DD`` date.

    Naive values are treated as UTC. Date-only values map to midnight UTC.

    Returns:
        Aware UTC datetime, or None when the value is empty or unparseable.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            logger.warning("Failed to parse timestamp: %s", value)
            return None
    else:
        logger.warning("Unsupported type for parse_timestamp: %s", type(value))
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_utc_iso(value: Any) -> str:
    """
    Convert a datetime-like value to a UTC ISO 8601 string with 'Z' suffix.

    Returns an empty string for empty input.
    """
    if not value:
        return ""

    dt = parse_timestamp(value)
    if dt is None:
        return str(value)
    return dt.isoformat().replace("+00:00", "Z")


def add_months(value: datetime, months: int) -> datetime:
    """Shift a datetime by whole months, clamping the day to the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def to_db_timestamp(value: Any) -> Optional[str]:
    """
    Format a datetime-like value for storage.

    Fixed-width UTC text (microsecond precision) so string order in SQL
    matches chronological order.
    """
    dt = parse_timestamp(value)
    if dt is None:
        return None
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
