"""Deterministic tag generation."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Mapping

from lifesync.pipeline.validation import is_number
from lifesync.schemas.records import Categorization

HIGH_VALUE_THRESHOLD = 1000


def content_tags(payload: Mapping[str, Any]) -> List[str]:
    tags: List[str] = []
    for key, value in payload.items():
        key = str(key)
        if len(key) > 2:
            tags.append(f"field:{key.lower()}")
        if is_number(value):
            if value > HIGH_VALUE_THRESHOLD:
                tags.append("high-value")
            if value < 0:
                tags.append("negative")
        elif isinstance(value, str):
            if "@" in value:
                tags.append("email-related")
            if "http" in value:
                tags.append("url-related")
    return tags


def temporal_tags(moment: datetime) -> List[str]:
    return [f"year:{moment.year}", f"month:{moment.month}", f"day:{moment.day}"]


def generate_tags(
    payload: Mapping[str, Any],
    categorization: Categorization,
    transformations: Iterable[str],
    processed_at: datetime,
) -> List[str]:
    tags = [categorization.primary]
    if categorization.secondary:
        tags.append(categorization.secondary)
    tags.extend(categorization.suggested_tags)
    tags.extend(f"transformed:{name}" for name in transformations)
    tags.extend(content_tags(payload))
    tags.extend(temporal_tags(processed_at))
    return list(dict.fromkeys(tags))
