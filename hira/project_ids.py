"""Project identifiers of the form ``HIRA-YYYYMMDD-HHMMSS-XXX``."""

from __future__ import annotations

import random
import re
from datetime import datetime
from typing import Optional

import pytz

PROJECT_ID_PATTERN = re.compile(r'^HIRA-\d{8}-\d{6}-\d{3}$')


def generate_project_id(now: Optional[datetime] = None, timezone: str = 'UTC') -> str:
    """New project id stamped with ``now`` (default: current time in ``timezone``)."""
    if now is None:
        now = datetime.now(pytz.timezone(timezone))
    suffix = f'{random.randint(0, 999):03d}'
    return f"HIRA-{now.strftime('%Y%m%d')}-{now.strftime('%H%M%S')}-{suffix}"


def is_valid_project_id(project_id) -> bool:
    return isinstance(project_id, str) and PROJECT_ID_PATTERN.match(project_id) is not None


def get_project_timestamp(project_id) -> Optional[datetime]:
    """Naive datetime embedded in the id, or None when the id is malformed."""
    if not is_valid_project_id(project_id):
        return None
    _, date_part, time_part, _ = project_id.split('-')
    try:
        return datetime.strptime(date_part + time_part, '%Y%m%d%H%M%S')
    except ValueError:
        return None


def compare_project_ids(id_a, id_b) -> int:
    """-1 if ``id_a`` is older, 1 if newer, 0 if equal or either id is invalid."""
    time_a = get_project_timestamp(id_a)
    time_b = get_project_timestamp(id_b)
    if time_a is None or time_b is None:
        return 0
    if time_a < time_b:
        return -1
    if time_a > time_b:
        return 1
    return 0


def format_project_id(project_id) -> str:
    timestamp = get_project_timestamp(project_id)
    if timestamp is None:
        return project_id
    random_part = project_id.rsplit('-', 1)[1]
    return f"{timestamp.strftime('%Y-%m-%d %H:%M:%S')} ({random_part})"
