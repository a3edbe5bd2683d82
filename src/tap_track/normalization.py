"""Utilities to normalize user-supplied task names."""

from __future__ import annotations

import re
from typing import Optional

MAX_TASK_NAME_LENGTH = 200

_WHITESPACE_PATTERN = re.compile(r"\s+")


def normalize_task_name(task_name: Optional[str]) -> str:
    """Collapse whitespace and cap the length; missing names become ``""``."""
    if not task_name:
        return ""
    normalized = _WHITESPACE_PATTERN.sub(" ", task_name).strip()
    return normalized[:MAX_TASK_NAME_LENGTH].rstrip()
